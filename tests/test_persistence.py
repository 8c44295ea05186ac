"""Tests for state stores and the persistence adapter."""

import json
from concurrent.futures import ThreadPoolExecutor
import pytest
from pathlib import Path
from unittest.mock import Mock

from fixlearn.core.exceptions import PersistenceError
from fixlearn.core.persistence import LearningPersistence, STATE_KEYS
from fixlearn.core.state_store import (
    MemoryStateStore,
    SqliteStateStore,
    JsonFileStateStore,
    StateStore,
    open_state_store,
)

PATTERNS = [["issue_type:hang", {'frequency': 2, 'successes': 1, 'failures': 1}]]


class TestStateStores:
    """Test the key/value backends."""

    def test_stores_satisfy_protocol(self, memory_store, sqlite_store, temp_directory):
        json_store = JsonFileStateStore(str(Path(temp_directory) / "state.json"))

        for store in (memory_store, sqlite_store, json_store):
            assert isinstance(store, StateStore)

    def test_sqlite_newest_row_wins(self, sqlite_store):
        sqlite_store.set("learning.patterns", "[1]")
        sqlite_store.set("learning.patterns", "[2]")
        sqlite_store.set("learning.timings", "{}")

        assert sqlite_store.get("learning.patterns") == "[2]"
        assert sqlite_store.get("learning.missing") is None
        assert sqlite_store.keys() == ["learning.patterns", "learning.timings"]
        assert sqlite_store.history("learning.patterns") == ["[2]", "[1]"]

    def test_sqlite_survives_reopen(self, temp_directory):
        db_path = str(Path(temp_directory) / "nested" / "state.db")
        SqliteStateStore(db_path).set("k", "v")

        assert SqliteStateStore(db_path).get("k") == "v"

    def test_json_store_survives_reopen(self, temp_directory):
        path = Path(temp_directory) / "state.json"
        JsonFileStateStore(str(path)).set("k", '{"a":1}')

        assert JsonFileStateStore(str(path)).get("k") == '{"a":1}'
        assert json.loads(path.read_text()) == {"k": '{"a":1}'}

    def test_unreadable_json_file(self, temp_directory):
        path = Path(temp_directory) / "state.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError):
            JsonFileStateStore(str(path))

    def test_open_state_store(self, temp_directory):
        assert isinstance(open_state_store("json", str(Path(temp_directory) / "s.json")), JsonFileStateStore)
        assert isinstance(open_state_store("sqlite", str(Path(temp_directory) / "s.db")), SqliteStateStore)
        with pytest.raises(PersistenceError):
            open_state_store("redis", "x")


class TestLearningPersistence:
    """Test save and load through the adapter."""

    def test_unchanged_values_are_not_rewritten(self, memory_store):
        persistence = LearningPersistence(memory_store)

        persistence.save({"learning.patterns": PATTERNS})
        persistence.save({"learning.patterns": PATTERNS})

        assert memory_store.writes == 1
        assert persistence.stats['writes'] == 1

    def test_save_load_save_is_stable(self, memory_store):
        persistence = LearningPersistence(memory_store)
        persistence.save({"learning.patterns": PATTERNS, "learning.fixAttempts": [{'result': 'success'}]})

        reopened = LearningPersistence(memory_store)
        loaded = reopened.load()
        reopened.save(loaded)

        assert loaded["learning.patterns"] == PATTERNS
        assert memory_store.writes == 2

    def test_corrupt_json_is_skipped(self):
        store = MemoryStateStore({
            "learning.patterns": "{broken",
            "learning.fixAttempts": "[]",
        })
        persistence = LearningPersistence(store)

        loaded = persistence.load()

        assert "learning.patterns" not in loaded
        assert loaded["learning.fixAttempts"] == []
        assert persistence.stats['corrupt_keys'] == 1

    def test_schema_violation_is_skipped(self):
        store = MemoryStateStore({
            "learning.patterns": json.dumps([["issue_type:hang", {'frequency': -1, 'successes': 0, 'failures': 0}]]),
        })

        assert LearningPersistence(store).load() == {}

    def test_store_read_error_propagates(self):
        store = Mock()
        store.get.side_effect = PersistenceError("database is locked")

        with pytest.raises(PersistenceError):
            LearningPersistence(store).load()

    def test_write_failures_are_reported_not_raised(self):
        store = Mock()
        store.set.side_effect = [PersistenceError("disk full"), None]
        persistence = LearningPersistence(store)

        failed = persistence.save({"learning.a": [1], "learning.b": [2]})

        assert failed == ["learning.a"]
        assert persistence.stats['write_failures'] == 1

    def test_unserializable_value_is_reported(self, memory_store):
        persistence = LearningPersistence(memory_store)

        assert persistence.save({"learning.x": {1, 2}}) == ["learning.x"]
        assert memory_store.writes == 0

    def test_read_returns_none_for_bad_values(self):
        store = MemoryStateStore({"learning.patterns": "nope"})
        persistence = LearningPersistence(store)

        assert persistence.read("learning.patterns") is None
        assert persistence.read("learning.timings") is None

    def test_older_snapshot_does_not_overwrite_newer(self, memory_store):
        persistence = LearningPersistence(memory_store)
        older, newer = persistence.next_version(), persistence.next_version()

        persistence.save({"learning.fixAttempts": [{'n': 2}], "learning.timings": {}}, newer)
        failed = persistence.save({"learning.fixAttempts": [{'n': 1}], "learning.autoAdjustments": []}, older)

        assert failed == []
        assert json.loads(memory_store.get("learning.fixAttempts")) == [{'n': 2}]
        assert json.loads(memory_store.get("learning.autoAdjustments")) == []
        assert persistence.stats['stale_writes'] == 1

    def test_unversioned_save_counts_as_newest(self, memory_store):
        persistence = LearningPersistence(memory_store)
        taken = persistence.next_version()

        persistence.save({"learning.fixAttempts": [{'n': 2}]})
        persistence.save({"learning.fixAttempts": [{'n': 1}]}, taken)

        assert json.loads(memory_store.get("learning.fixAttempts")) == [{'n': 2}]

    def test_concurrent_saves_keep_the_newest_snapshot(self, memory_store):
        persistence = LearningPersistence(memory_store)
        versions = [persistence.next_version() for _ in range(40)]

        def _save(version):
            persistence.save({"learning.fixAttempts": [{'version': version}]}, version)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(_save, reversed(versions)))

        assert json.loads(memory_store.get("learning.fixAttempts")) == [{'version': versions[-1]}]

    def test_state_keys_start_with_patterns(self):
        assert STATE_KEYS[0] == "learning.patterns"
        assert len(set(STATE_KEYS)) == len(STATE_KEYS)
