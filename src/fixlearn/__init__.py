"""fixlearn - self-learning diagnostic engine

Records every attempt to fix a detected problem, generalizes attempts into
reusable patterns, warns before a known misdiagnosis is repeated, and scores
how far the accumulated knowledge can be trusted.
"""

__version__ = "0.1.0"

from .core.learning_engine import LearningEngine, BestSolution, create_learning_engine
from .core.schema import Attempt, AttemptResult
from .utils.config import LearningConfig, ScoringThresholds

__all__ = [
    "LearningEngine",
    "BestSolution",
    "create_learning_engine",
    "Attempt",
    "AttemptResult",
    "LearningConfig",
    "ScoringThresholds",
]
