"""Core learning components."""

from .exceptions import (
    LearningError,
    ConfigurationError,
    PersistenceError,
    CorruptStateError,
    InvalidAttemptError
)
from .schema import Attempt, AttemptResult, STORE_SCHEMAS, validate_store_value
from .collaborators import (
    Issue,
    IssueDetector,
    FixTracker,
    ComplianceSource,
    InMemoryIssueDetector,
    InMemoryFixTracker,
    StaticCompliance
)
from .pattern_store import PatternStore, Pattern, PatternKind, cleanup_patterns
from .misdiagnosis_memory import MisdiagnosisMemory, MisdiagnosisPattern, MisdiagnosisPrevention
from .correlator import CausalCorrelator, CausalChain, CrossIssueLink
from .solution_optimizer import SolutionOptimizer, SolutionRanking
from .chain_detector import ChainDetector, ChainDetection, ChainKind, Mitigation
from .confidence_scorer import ConfidenceScorer, ConfidenceSnapshot, FactorBreakdown, MaskingWarning, AutoAdjustment
from .events import (
    EventBus,
    LearningEvent,
    PatternLearned,
    MisdiagnosisRecorded,
    ChainDetected,
    HangDetected,
    MaskingDetected,
    MistakeLearned,
    AutoAdjustmentIssued
)
from .state_store import StateStore, MemoryStateStore, SqliteStateStore, JsonFileStateStore
from .persistence import LearningPersistence, STATE_KEYS
from .quality_guard import (
    MistakeMemory,
    SyntaxErrorMemory,
    TestMaskingResult,
    FixQualityReport,
    detect_test_masking,
    verify_fix_quality
)
from .learning_engine import LearningEngine, BestSolution, create_learning_engine, render_confidence_table

__all__ = [
    'LearningError',
    'ConfigurationError',
    'PersistenceError',
    'CorruptStateError',
    'InvalidAttemptError',
    'Attempt',
    'AttemptResult',
    'STORE_SCHEMAS',
    'validate_store_value',
    'Issue',
    'IssueDetector',
    'FixTracker',
    'ComplianceSource',
    'InMemoryIssueDetector',
    'InMemoryFixTracker',
    'StaticCompliance',
    'PatternStore',
    'Pattern',
    'PatternKind',
    'cleanup_patterns',
    'MisdiagnosisMemory',
    'MisdiagnosisPattern',
    'MisdiagnosisPrevention',
    'CausalCorrelator',
    'CausalChain',
    'CrossIssueLink',
    'SolutionOptimizer',
    'SolutionRanking',
    'ChainDetector',
    'ChainDetection',
    'ChainKind',
    'Mitigation',
    'ConfidenceScorer',
    'ConfidenceSnapshot',
    'FactorBreakdown',
    'MaskingWarning',
    'AutoAdjustment',
    'EventBus',
    'LearningEvent',
    'PatternLearned',
    'MisdiagnosisRecorded',
    'ChainDetected',
    'HangDetected',
    'MaskingDetected',
    'MistakeLearned',
    'AutoAdjustmentIssued',
    'StateStore',
    'MemoryStateStore',
    'SqliteStateStore',
    'JsonFileStateStore',
    'LearningPersistence',
    'STATE_KEYS',
    'MistakeMemory',
    'SyntaxErrorMemory',
    'TestMaskingResult',
    'FixQualityReport',
    'detect_test_masking',
    'verify_fix_quality',
    'LearningEngine',
    'BestSolution',
    'create_learning_engine',
    'render_confidence_table'
]
