"""Pytest configuration and fixtures."""

import pytest
import tempfile
import shutil
from datetime import datetime, timedelta
from pathlib import Path

from fixlearn.core.collaborators import InMemoryIssueDetector, InMemoryFixTracker
from fixlearn.core.learning_engine import LearningEngine
from fixlearn.core.state_store import MemoryStateStore, SqliteStateStore
from fixlearn.utils.config import LearningConfig


@pytest.fixture
def temp_directory():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def config(temp_directory):
    """Config pointing every path into the temporary directory."""
    return LearningConfig(
        state_path=str(Path(temp_directory) / "state.db"),
        monitoring_interval=0.05,
    )


@pytest.fixture
def memory_store():
    return MemoryStateStore()


@pytest.fixture
def sqlite_store(temp_directory):
    return SqliteStateStore(str(Path(temp_directory) / "state.db"))


@pytest.fixture
def issue_detector():
    return InMemoryIssueDetector()


@pytest.fixture
def fix_tracker():
    return InMemoryFixTracker()


@pytest.fixture
def engine_factory(config, memory_store):
    """Build engines sharing the config; each call may override collaborators."""
    def _factory(**kwargs):
        kwargs.setdefault('config', config)
        kwargs.setdefault('state_store', memory_store)
        return LearningEngine(**kwargs)
    return _factory


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


@pytest.fixture
def make_attempt():
    """Attempt dicts in the camelCase shape emitted by the monitoring stack."""
    base_time = datetime(2024, 1, 1, 12, 0, 0)
    counter = {'n': 0}

    def _make(issue_type, method, result, **extra):
        counter['n'] += 1
        attempt = {
            'issueId': extra.pop('issue_id', f"issue-{counter['n']}"),
            'issueType': issue_type,
            'fixMethod': method,
            'fixDetails': extra.pop('fix_details', {}),
            'result': result,
            'timestamp': base_time + timedelta(seconds=counter['n']),
            'duration': extra.pop('duration', 1.0),
        }
        attempt.update(extra)
        return attempt

    return _make
