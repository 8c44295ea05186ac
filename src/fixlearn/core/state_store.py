"""Key/value stores the persistence adapter writes learning state into.

Values are opaque strings (serialized JSON). Keys are flat dotted paths such
as ``learning.patterns``.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable
import logging

from fixlearn.core.exceptions import PersistenceError
from fixlearn.utils.file_utils import ensure_directory, read_json_file, write_json_atomic

logger = logging.getLogger(__name__)


@runtime_checkable
class StateStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...


class MemoryStateStore:
    """Process-local store, mostly for tests and embedding."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value
        self.writes += 1

    def keys(self) -> List[str]:
        return sorted(self.values)


class SqliteStateStore:
    """Append-only key/value table. Every write adds a row; the newest row wins on read."""

    def __init__(self, db_path: str = ".fixlearn_state.db"):
        self.db_path = str(db_path)
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        if self.db_path != ":memory:":
            ensure_directory(str(Path(self.db_path).parent))

        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS state_entries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        key TEXT NOT NULL,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_state_key ON state_entries(key, id);
                """)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open state database {self.db_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT value FROM state_entries WHERE key = ? ORDER BY id DESC LIMIT 1",
                    (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e

        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO state_entries (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, datetime.now().isoformat())
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    def keys(self) -> List[str]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                rows = conn.execute("SELECT DISTINCT key FROM state_entries ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list keys: {e}") from e

        return [row[0] for row in rows]

    def history(self, key: str, limit: int = 10) -> List[str]:
        """Most recent stored values of a key, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT value FROM state_entries WHERE key = ? ORDER BY id DESC LIMIT ?",
                (key, limit)
            ).fetchall()
        return [row[0] for row in rows]


class JsonFileStateStore:
    """All keys in one JSON document, rewritten atomically on each write."""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self.values: Dict[str, str] = {}

        if self.file_path.exists():
            try:
                self.values = {str(k): str(v) for k, v in read_json_file(str(self.file_path)).items()}
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Cannot read state file {self.file_path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self.values[key] = value
            try:
                write_json_atomic(str(self.file_path), self.values)
            except OSError as e:
                raise PersistenceError(f"Failed to write {key}: {e}") from e

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self.values)


def open_state_store(backend: str, path: str):
    """Store for a configured backend name."""
    if backend == "json":
        return JsonFileStateStore(path)
    if backend == "sqlite":
        return SqliteStateStore(path)
    raise PersistenceError(f"Unsupported state backend: {backend}")
