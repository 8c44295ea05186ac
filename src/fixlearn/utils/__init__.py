"""Configuration and file helpers."""

from .config import LearningConfig, ScoringThresholds, DEFAULT_FACTOR_WEIGHTS
from .file_utils import (
    ensure_directory,
    read_json_file,
    write_json_atomic,
    canonical_json,
)

__all__ = [
    'LearningConfig',
    'ScoringThresholds',
    'DEFAULT_FACTOR_WEIGHTS',
    'ensure_directory',
    'read_json_file',
    'write_json_atomic',
    'canonical_json',
]
