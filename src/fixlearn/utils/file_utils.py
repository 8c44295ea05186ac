"""File and serialization helpers for fixlearn."""

import os
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


def ensure_directory(path: str) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def read_json_file(file_path: str) -> Dict[str, Any]:
    """Read a JSON file and return its contents."""
    with open(file_path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_json_atomic(file_path: str, data: Dict[str, Any], indent: int = 2) -> None:
    """Write JSON through a temporary file and an atomic rename."""
    ensure_directory(str(Path(file_path).parent))

    temp_file = str(file_path) + '.tmp'
    with open(temp_file, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, sort_keys=True)

    os.replace(temp_file, file_path)


def canonical_json(value: Any) -> str:
    """Deterministic JSON text: identical input always yields identical bytes."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
