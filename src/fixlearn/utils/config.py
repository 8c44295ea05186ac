"""Configuration management for fixlearn."""

import os
from pathlib import Path
from typing import Optional, Dict
from dataclasses import dataclass, field
from dotenv import load_dotenv

from fixlearn.core.exceptions import ConfigurationError


# Fixed policy weights for the overall confidence score. They sum to 1.0.
DEFAULT_FACTOR_WEIGHTS: Dict[str, float] = {
    'pattern_recognition': 0.18,
    'causal_analysis': 0.18,
    'solution_optimization': 0.22,
    'cross_issue_learning': 0.13,
    'prediction_accuracy': 0.09,
    'data_quality': 0.09,
    'compliance': 0.11,
}


@dataclass
class ScoringThresholds:
    """Named constants used by the confidence scorer and masking guard."""

    # Pattern / success-rate quality caps
    min_sample_size: int = 10
    small_sample_high_rate: float = 0.8
    small_sample_quality_cap: float = 0.3
    perfect_rate_sample_floor: int = 50
    perfect_rate_quality_cap: float = 0.2
    recent_window: int = 5
    sudden_jump_divergence: float = 0.5
    sudden_jump_quality_cap: float = 0.4
    suspicious_rate: float = 0.95
    suspicious_rate_quality_cap: float = 0.3

    # Global masking rules
    confidence_jump_points: float = 30.0
    confidence_jump_window: int = 3
    overfit_factor_score: float = 95.0
    overfit_store_minimum: int = 5

    # Auto-adjustment
    low_confidence: float = 50.0
    critical_confidence: float = 30.0
    low_factor: float = 50.0

    # Trend
    trend_window: int = 5
    trend_delta: float = 5.0

    # Chain mitigations
    default_mitigation: str = "make_async"
    default_mitigation_confidence: float = 0.85

    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_FACTOR_WEIGHTS))


@dataclass
class LearningConfig:
    """Central configuration for the learning engine."""

    # Persistence
    state_path: str = ".fixlearn_state.db"
    state_backend: str = "sqlite"  # sqlite or json

    # Logging
    log_level: str = "INFO"
    logs_dir: Optional[str] = None
    debug: bool = False

    # Background scoring
    monitoring_interval: float = 300.0  # seconds (5 minutes)

    # Bounded lists
    max_pattern_solutions: int = 5
    max_pattern_contexts: int = 5
    max_chain_links: int = 20
    max_chain_solutions: int = 10
    max_fix_attempts: int = 500
    max_confidence_history: int = 100
    max_masking_warnings: int = 20
    report_masking_warnings: int = 5
    max_getter_contexts: int = 50
    max_sync_operations: int = 100

    thresholds: ScoringThresholds = field(default_factory=ScoringThresholds)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> 'LearningConfig':
        """Load configuration from environment variables."""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        thresholds = ScoringThresholds(
            min_sample_size=int(os.getenv("FIXLEARN_MIN_SAMPLE_SIZE", ScoringThresholds.min_sample_size)),
            confidence_jump_points=float(os.getenv("FIXLEARN_CONFIDENCE_JUMP_POINTS",
                                                   ScoringThresholds.confidence_jump_points)),
            overfit_factor_score=float(os.getenv("FIXLEARN_OVERFIT_FACTOR_SCORE",
                                                 ScoringThresholds.overfit_factor_score)),
            low_confidence=float(os.getenv("FIXLEARN_LOW_CONFIDENCE", ScoringThresholds.low_confidence)),
            critical_confidence=float(os.getenv("FIXLEARN_CRITICAL_CONFIDENCE",
                                                ScoringThresholds.critical_confidence)),
        )

        return cls(
            state_path=os.getenv("FIXLEARN_STATE_PATH", cls.state_path),
            state_backend=os.getenv("FIXLEARN_STATE_BACKEND", cls.state_backend),
            log_level=os.getenv("FIXLEARN_LOG_LEVEL", cls.log_level),
            logs_dir=os.getenv("FIXLEARN_LOGS_DIR"),
            debug=os.getenv("FIXLEARN_DEBUG", "false").lower() == "true",
            monitoring_interval=float(os.getenv("FIXLEARN_MONITORING_INTERVAL", cls.monitoring_interval)),
            max_fix_attempts=int(os.getenv("FIXLEARN_MAX_FIX_ATTEMPTS", cls.max_fix_attempts)),
            thresholds=thresholds,
        )

    def validate(self) -> None:
        """Validate the configuration."""
        weights = self.thresholds.weights
        if set(weights) != set(DEFAULT_FACTOR_WEIGHTS):
            raise ConfigurationError(f"Unknown confidence factors: {sorted(weights)}")
        if abs(sum(weights.values()) - 1.0) > 1e-9:
            raise ConfigurationError(f"Confidence weights must sum to 1.0, got {sum(weights.values()):.4f}")

        if self.thresholds.critical_confidence > self.thresholds.low_confidence:
            raise ConfigurationError("critical_confidence must not exceed low_confidence")

        for cap_attr in ['max_pattern_solutions', 'max_pattern_contexts', 'max_chain_links',
                         'max_confidence_history', 'max_masking_warnings', 'max_fix_attempts']:
            if getattr(self, cap_attr) <= 0:
                raise ConfigurationError(f"{cap_attr} must be positive")

        if self.monitoring_interval <= 0:
            raise ConfigurationError("monitoring_interval must be positive")

        if self.state_backend not in ("sqlite", "json"):
            raise ConfigurationError(f"Unsupported state backend: {self.state_backend}")

        if self.logs_dir:
            path = Path(self.logs_dir)
            if not path.exists():
                path.mkdir(parents=True, exist_ok=True)
