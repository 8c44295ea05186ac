"""Confidence Scorer & Anti-Masking Guard

Computes the seven-factor weighted confidence in the accumulated learning and
refuses to let statistically thin evidence look trustworthy:

* small samples with high success rates have their quality capped,
* perfect success rates below a sample floor are capped harder,
* a recent window that diverges sharply from the long-run rate is capped,
* sudden jumps of the overall score and near-perfect factors backed by
  almost no data set the global masking flag.

Every trigger is kept as a MaskingWarning and surfaced in each snapshot.
When overall confidence drops below the low threshold one AutoAdjustment is
issued per weak factor, on every scoring cycle until the factor recovers.
"""

import logging
from datetime import datetime
from statistics import mean, pvariance
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field, asdict, replace

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.utils.config import ScoringThresholds
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)

FACTOR_NAMES = (
    'pattern_recognition',
    'causal_analysis',
    'solution_optimization',
    'cross_issue_learning',
    'prediction_accuracy',
    'data_quality',
    'compliance',
)

# Evidence sizes at which a factor component saturates
PATTERN_FREQUENCY_TARGET = 20
CHAIN_LENGTH_TARGET = 5
ALTERNATIVES_TARGET = 3
RELATED_ISSUES_TARGET = 5
COMMON_SOLUTIONS_TARGET = 3
QUALITY_FREQUENCY_TARGET = 50

# Data quality: average evidence size per store that saturates its term
DATA_QUALITY_TARGETS = {
    'patterns': 30,
    'causal_chains': 5,
    'solution_rankings': 20,
    'cross_issue_links': 10,
}
DATA_QUALITY_TERM = 25.0

# Confidence points taken from the latest snapshot per AI mistake type
MISTAKE_PENALTIES = {
    'masked_problem': 15,
    'gave_up': 20,
    'superficial_fix': 10,
}
DEFAULT_MISTAKE_PENALTY = 5

ADJUSTMENT_ACTIONS = {
    'pattern_recognition': 'increase_pattern_collection',
    'causal_analysis': 'improve_causal_analysis',
    'solution_optimization': 'collect_more_solution_attempts',
    'cross_issue_learning': 'correlate_more_issues',
    'prediction_accuracy': 'validate_predictions',
    'data_quality': 'improve_data_quality',
    'compliance': 'review_rule_compliance',
}


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class PatternSample:
    key: str
    frequency: int
    success_rate: float
    recent_results: Tuple[int, ...] = ()


@dataclass(frozen=True)
class RankingSample:
    issue_type: str
    success_rate: float
    attempts: int
    alternatives: int


@dataclass(frozen=True)
class ChainSample:
    length: int
    tagged: int


@dataclass(frozen=True)
class LinkSample:
    related: int
    common_solutions: int
    frequency: int


@dataclass
class ScoringInput:
    """Copy of everything the scorer reads, taken while the engine holds its lock."""
    patterns: List[PatternSample] = field(default_factory=list)
    chains: List[ChainSample] = field(default_factory=list)
    rankings: List[RankingSample] = field(default_factory=list)
    links: List[LinkSample] = field(default_factory=list)
    compliance_ratio: Optional[float] = None


@dataclass(frozen=True)
class FactorBreakdown:
    pattern_recognition: float = 0.0
    causal_analysis: float = 0.0
    solution_optimization: float = 0.0
    cross_issue_learning: float = 0.0
    prediction_accuracy: float = 0.0
    data_quality: float = 0.0
    compliance: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class MaskingWarning:
    timestamp: datetime
    source: str
    reason: str
    severity: str = "warning"

    def to_dict(self) -> Dict[str, Any]:
        return {'timestamp': to_iso(self.timestamp), 'source': self.source,
                'reason': self.reason, 'severity': self.severity}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MaskingWarning':
        return cls(timestamp=from_iso(data['timestamp']), source=data['source'],
                   reason=data['reason'], severity=data.get('severity', 'warning'))


@dataclass(frozen=True)
class AutoAdjustment:
    factor: str
    action: str
    priority: str  # critical or high
    current_score: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {'factor': self.factor, 'action': self.action, 'priority': self.priority,
                'current_score': self.current_score, 'timestamp': to_iso(self.timestamp)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AutoAdjustment':
        return cls(factor=data['factor'], action=data['action'], priority=data['priority'],
                   current_score=float(data['current_score']), timestamp=from_iso(data['timestamp']))


@dataclass(frozen=True)
class ConfidenceSnapshot:
    """One immutable scoring result."""
    timestamp: datetime
    overall_confidence: float
    factors: FactorBreakdown
    masking_detected: bool
    masking_warnings: Tuple[MaskingWarning, ...] = ()
    sample_sizes: Dict[str, int] = field(default_factory=dict)
    auto_adjustments: Tuple[AutoAdjustment, ...] = ()
    trend: str = "insufficient_data"
    penalty: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'timestamp': to_iso(self.timestamp),
            'overall_confidence': self.overall_confidence,
            'factors': self.factors.as_dict(),
            'masking_detected': self.masking_detected,
            'masking_warnings': [w.to_dict() for w in self.masking_warnings],
            'sample_sizes': dict(self.sample_sizes),
            'auto_adjustments': [a.to_dict() for a in self.auto_adjustments],
            'trend': self.trend,
        }
        if self.penalty is not None:
            data['penalty'] = dict(self.penalty)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConfidenceSnapshot':
        return cls(
            timestamp=from_iso(data['timestamp']),
            overall_confidence=float(data['overall_confidence']),
            factors=FactorBreakdown(**data.get('factors', {})),
            masking_detected=bool(data.get('masking_detected')),
            masking_warnings=tuple(MaskingWarning.from_dict(w) for w in data.get('masking_warnings', [])),
            sample_sizes=dict(data.get('sample_sizes', {})),
            auto_adjustments=tuple(AutoAdjustment.from_dict(a) for a in data.get('auto_adjustments', [])),
            trend=data.get('trend', 'insufficient_data'),
            penalty=data.get('penalty'),
        )


class ConfidenceScorer:
    """Seven-factor confidence with masking safeguards and a bounded history."""

    def __init__(self, thresholds: Optional[ScoringThresholds] = None, max_history: int = 100,
                 max_warnings: int = 20, report_warnings: int = 5):
        self.thresholds = thresholds or ScoringThresholds()
        self.max_history = max_history
        self.max_warnings = max_warnings
        self.report_warnings = report_warnings

        self.history: List[ConfidenceSnapshot] = []
        self.masking_warnings: List[MaskingWarning] = []
        self.auto_adjustments: List[AutoAdjustment] = []
        self.masking_detected = False
        # Warnings raised since the current pass began
        self._raised: List[MaskingWarning] = []

        self.stats = {
            'scoring_cycles': 0,
            'masking_flags': 0,
            'auto_adjustments_issued': 0,
            'penalties_applied': 0,
        }

        self.logger = get_logger(component="confidence_scorer")

    # Masking bookkeeping -------------------------------------------------

    def flag_masking(self, source: str, reason: str, severity: str = "warning") -> Optional[MaskingWarning]:
        """Record a masking trigger. An identical open warning is not repeated."""
        if any(w.source == source and w.reason == reason for w in self.masking_warnings):
            return None

        warning = MaskingWarning(timestamp=datetime.now(), source=source, reason=reason, severity=severity)
        self.masking_warnings.append(warning)
        del self.masking_warnings[:-self.max_warnings]
        self._raised.append(warning)
        self.stats['masking_flags'] += 1

        self.logger.warning(
            f"Masking detected in {source}: {reason}",
            category=LogCategory.CONFIDENCE,
            metadata={'severity': severity}
        )
        return warning

    # Quality assessment --------------------------------------------------

    def assess_pattern_quality(self, sample: PatternSample) -> float:
        """Quality in [0, 1]; thin or suspicious evidence is capped, never rewarded."""
        t = self.thresholds
        rate, frequency = sample.success_rate, sample.frequency

        if frequency < t.min_sample_size and rate > t.small_sample_high_rate:
            self.flag_masking(f"pattern:{sample.key}",
                              f"Success rate {rate:.2f} from only {frequency} samples")
            return t.small_sample_quality_cap

        if rate == 1.0 and frequency < t.perfect_rate_sample_floor:
            self.flag_masking(f"pattern:{sample.key}",
                              f"Perfect success rate with fewer than {t.perfect_rate_sample_floor} samples")
            return t.perfect_rate_quality_cap

        recent = sample.recent_results[-t.recent_window:]
        if len(recent) >= 2 and abs(mean(recent) - rate) > t.sudden_jump_divergence:
            self.flag_masking(f"pattern:{sample.key}",
                              f"Recent success rate {mean(recent):.2f} diverges from overall {rate:.2f}")
            return t.sudden_jump_quality_cap

        frequency_quality = min(frequency / QUALITY_FREQUENCY_TARGET, 1.0)
        return frequency_quality * 0.3 + rate * 0.4 + self._variance_quality(sample) * 0.3

    def _variance_quality(self, sample: PatternSample) -> float:
        results = sample.recent_results
        if len(results) < 3:
            return 0.5

        variance = pvariance(results)
        if variance == 0 and sample.frequency < PATTERN_FREQUENCY_TARGET:
            return 0.6
        return 1.0 - min(variance, 0.5)

    def assess_success_rate_quality(self, rate: float, attempts: int, source: str = "solution") -> float:
        t = self.thresholds

        if rate == 1.0 and attempts < t.min_sample_size * 2:
            self.flag_masking(source, f"Perfect success rate after only {attempts} attempts")
            return t.perfect_rate_quality_cap

        if rate > t.suspicious_rate and attempts < t.perfect_rate_sample_floor:
            self.flag_masking(source, f"Success rate {rate:.2f} after only {attempts} attempts")
            return t.suspicious_rate_quality_cap

        if attempts < t.min_sample_size:
            return min(rate, 0.5)

        return rate

    # Factors -------------------------------------------------------------

    def compute_factors(self, data: ScoringInput) -> Tuple[FactorBreakdown, List[float]]:
        qualities = [self.assess_pattern_quality(p) for p in data.patterns]

        pattern_scores = [
            min(p.frequency / PATTERN_FREQUENCY_TARGET, 1.0) * 50 + q * 50
            for p, q in zip(data.patterns, qualities)
        ]
        chain_scores = [
            min(c.length / CHAIN_LENGTH_TARGET, 1.0) * 50 + (c.tagged / c.length) * 50
            for c in data.chains if c.length > 0
        ]
        solution_scores = [
            self.assess_success_rate_quality(r.success_rate, r.attempts, f"solution:{r.issue_type}") * 60
            + min(r.alternatives / ALTERNATIVES_TARGET, 1.0) * 40
            for r in data.rankings
        ]
        link_scores = [
            min(link.related / RELATED_ISSUES_TARGET, 1.0) * 50
            + min(link.common_solutions / COMMON_SOLUTIONS_TARGET, 1.0) * 50
            for link in data.links
        ]

        factors = FactorBreakdown(
            pattern_recognition=_clamp(mean(pattern_scores)) if pattern_scores else 0.0,
            causal_analysis=_clamp(mean(chain_scores)) if chain_scores else 0.0,
            solution_optimization=_clamp(mean(solution_scores)) if solution_scores else 0.0,
            cross_issue_learning=_clamp(mean(link_scores)) if link_scores else 0.0,
            prediction_accuracy=_clamp(mean(qualities) * 100) if qualities else 0.0,
            data_quality=_clamp(self._data_quality(data)),
            compliance=_clamp(data.compliance_ratio * 100) if data.compliance_ratio is not None else 0.0,
        )
        return factors, qualities

    def _data_quality(self, data: ScoringInput) -> float:
        averages = {
            'patterns': [p.frequency for p in data.patterns],
            'causal_chains': [c.length for c in data.chains],
            'solution_rankings': [r.attempts for r in data.rankings],
            'cross_issue_links': [link.frequency for link in data.links],
        }
        terms = [
            min(mean(sizes) / DATA_QUALITY_TARGETS[store], 1.0) * DATA_QUALITY_TERM
            for store, sizes in averages.items() if sizes
        ]
        return mean(terms) if terms else 0.0

    def overall(self, factors: FactorBreakdown) -> float:
        values = factors.as_dict()
        return _clamp(sum(self.thresholds.weights[name] * values[name] for name in FACTOR_NAMES))

    # Global masking rules ---------------------------------------------------

    def _detect_global_masking(self, overall: float, factors: FactorBreakdown, data: ScoringInput) -> bool:
        t = self.thresholds
        detected = False

        values = [s.overall_confidence for s in self.history] + [overall]
        window = t.confidence_jump_window
        if len(values) > window:
            recent = mean(values[-window:])
            previous = values[-(window + 1)]
            if recent - previous > t.confidence_jump_points:
                self.flag_masking("overall_confidence",
                                  f"Confidence jumped {recent - previous:.1f} points "
                                  f"(from {previous:.1f} to {recent:.1f})",
                                  severity="critical")
                detected = True

        backing_sizes = {
            'pattern_recognition': len(data.patterns),
            'causal_analysis': len(data.chains),
            'solution_optimization': len(data.rankings),
            'cross_issue_learning': len(data.links),
            'prediction_accuracy': len(data.patterns),
        }
        scores = factors.as_dict()
        for name, size in backing_sizes.items():
            if scores[name] > t.overfit_factor_score and size < t.overfit_store_minimum:
                self.flag_masking(name, f"Score {scores[name]:.1f} backed by only {size} entries",
                                  severity="critical")
                detected = True

        return detected

    # Auto-adjustment --------------------------------------------------------

    def _auto_adjust(self, overall: float, factors: FactorBreakdown) -> List[AutoAdjustment]:
        t = self.thresholds
        if overall >= t.low_confidence:
            return []

        priority = 'critical' if overall < t.critical_confidence else 'high'
        now = datetime.now()
        return [
            AutoAdjustment(factor=name, action=ADJUSTMENT_ACTIONS[name], priority=priority,
                           current_score=round(score, 2), timestamp=now)
            for name, score in factors.as_dict().items()
            if score < t.low_factor
        ]

    # Scoring cycle ------------------------------------------------------------

    def score(self, data: ScoringInput) -> ConfidenceSnapshot:
        """Run one scoring pass and append the snapshot to the history."""
        snapshot, _ = self.score_pass(data)
        return snapshot

    def score_pass(self, data: ScoringInput) -> Tuple[ConfidenceSnapshot, List[MaskingWarning]]:
        """Like ``score``, also returning the masking warnings this pass created."""
        self._raised = []
        factors, _ = self.compute_factors(data)
        overall = round(self.overall(factors), 2)

        self.masking_detected = self._detect_global_masking(overall, factors, data)
        self.auto_adjustments = self._auto_adjust(overall, factors)
        if self.auto_adjustments:
            self.stats['auto_adjustments_issued'] += len(self.auto_adjustments)
            self.logger.warning(
                f"Confidence {overall:.1f} below {self.thresholds.low_confidence}; "
                f"{len(self.auto_adjustments)} adjustments issued",
                category=LogCategory.CONFIDENCE,
                metadata={'factors': [a.factor for a in self.auto_adjustments]}
            )

        snapshot = ConfidenceSnapshot(
            timestamp=datetime.now(),
            overall_confidence=overall,
            factors=factors,
            masking_detected=self.masking_detected,
            masking_warnings=tuple(self.masking_warnings[-self.report_warnings:]),
            sample_sizes={
                'patterns': len(data.patterns),
                'causal_chains': len(data.chains),
                'solution_rankings': len(data.rankings),
                'cross_issue_links': len(data.links),
                'pattern_observations': sum(p.frequency for p in data.patterns),
            },
            auto_adjustments=tuple(self.auto_adjustments),
            trend=self.get_trend(overall),
        )

        self.history.append(snapshot)
        del self.history[:-self.max_history]
        self.stats['scoring_cycles'] += 1
        return snapshot, self.take_raised()

    def take_raised(self) -> List[MaskingWarning]:
        """Warnings created since the last call, oldest first."""
        raised, self._raised = self._raised, []
        return raised

    def apply_penalty(self, mistake_type: str, details: str = "") -> Optional[ConfidenceSnapshot]:
        """Lower confidence after an AI mistake and flag it as masking.

        The penalty is appended as a copy of the latest snapshot with reduced
        overall confidence. With no history there is nothing to lower and
        only the warning is recorded.
        """
        amount = MISTAKE_PENALTIES.get(mistake_type, DEFAULT_MISTAKE_PENALTY)
        penalized = None

        if self.history:
            last = self.history[-1]
            penalized = replace(
                last,
                timestamp=datetime.now(),
                overall_confidence=max(0.0, last.overall_confidence - amount),
                masking_detected=True,
                penalty={'reason': mistake_type, 'amount': amount},
            )
            self.history.append(penalized)
            del self.history[:-self.max_history]
            self.stats['penalties_applied'] += 1
            self.logger.warning(
                f"Confidence reduced by {amount} after {mistake_type}",
                category=LogCategory.CONFIDENCE,
                metadata={'confidence': penalized.overall_confidence}
            )

        self.masking_detected = True
        self.flag_masking('ai_mistake', f"AI mistake: {mistake_type} - {details}")
        return penalized

    def get_trend(self, current: Optional[float] = None) -> str:
        """improving / declining / stable over the last two trend windows."""
        values = [s.overall_confidence for s in self.history]
        if current is not None:
            values.append(current)

        window = self.thresholds.trend_window
        if len(values) < window * 2:
            return 'insufficient_data'

        change = mean(values[-window:]) - mean(values[-window * 2:-window])
        if change > self.thresholds.trend_delta:
            return 'improving'
        if change < -self.thresholds.trend_delta:
            return 'declining'
        return 'stable'

    # Persistence ------------------------------------------------------------

    def history_to_records(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.history]

    def warnings_to_records(self) -> List[Dict[str, Any]]:
        return [w.to_dict() for w in self.masking_warnings]

    def adjustments_to_records(self) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in self.auto_adjustments]

    def load_history(self, records: List[Dict[str, Any]]) -> None:
        self.history = [ConfidenceSnapshot.from_dict(s) for s in records][-self.max_history:]
        if self.history:
            self.masking_detected = self.history[-1].masking_detected

    def load_warnings(self, records: List[Dict[str, Any]]) -> None:
        self.masking_warnings = [MaskingWarning.from_dict(w) for w in records][-self.max_warnings:]

    def load_adjustments(self, records: List[Dict[str, Any]]) -> None:
        self.auto_adjustments = [AutoAdjustment.from_dict(a) for a in records]
