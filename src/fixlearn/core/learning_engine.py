"""
Learning Engine

Records every fix attempt, generalizes it into reusable patterns, remembers
misdiagnoses and failed methods, correlates related issues, ranks solutions,
recognizes circular and blocking call chains, and scores how far the
accumulated knowledge can be trusted.

All recording calls and scoring passes are serialized through one
re-entrant lock. The confidence scorer works on a copy of the stores taken
under that lock. A background asyncio task re-scores on a fixed interval.
"""

import asyncio
import logging
import threading
from typing import Dict, Any, List, Optional, Sequence, Union, Iterable, Callable
from dataclasses import dataclass, field

from rich.table import Table

from fixlearn.core.chain_detector import ChainDetector, ChainDetection, ChainKind, ChainRecord
from fixlearn.core.collaborators import IssueDetector, FixTracker, ComplianceSource
from fixlearn.core.confidence_scorer import (
    ConfidenceScorer,
    MaskingWarning,
    MISTAKE_PENALTIES,
    DEFAULT_MISTAKE_PENALTY,
    ConfidenceSnapshot,
    ScoringInput,
    PatternSample,
    ChainSample,
    RankingSample,
    LinkSample,
    FACTOR_NAMES,
)
from fixlearn.core.correlator import CausalCorrelator
from fixlearn.core.debugging_tracker import TimingTracker, ManualDebuggingTracker, HangReport
from fixlearn.core.enhanced_logger import get_logger, setup_logging, LogCategory
from fixlearn.core.events import (
    EventBus,
    EventListener,
    LearningEvent,
    PatternLearned,
    MisdiagnosisRecorded,
    ChainDetected,
    HangDetected,
    MaskingDetected,
    MistakeLearned,
    AutoAdjustmentIssued,
)
from fixlearn.core.exceptions import InvalidAttemptError
from fixlearn.core.generalized_patterns import PatternGeneralizationIndex
from fixlearn.core.misdiagnosis_memory import MisdiagnosisMemory, MisdiagnosisPrevention
from fixlearn.core.pattern_generalizer import state_features
from fixlearn.core.pattern_store import (
    PatternStore,
    PatternKind,
    Pattern,
    best_method,
    find_issue_type_patterns,
)
from fixlearn.core.persistence import LearningPersistence, STATE_KEYS, PATTERNS_KEY
from fixlearn.core.quality_guard import (
    MistakeMemory,
    SyntaxErrorMemory,
    TestMaskingResult,
    FixQualityReport,
    detect_test_masking,
    verify_fix_quality,
)
from fixlearn.core.schema import Attempt
from fixlearn.core.solution_optimizer import SolutionOptimizer
from fixlearn.core.state_store import StateStore, open_state_store
from fixlearn.utils.config import LearningConfig

logger = logging.getLogger(__name__)

# Patterns failing this often are reported by predict_issues
PREDICTION_MIN_FREQUENCY = 5
PREDICTION_MAX_SUCCESS_RATE = 0.3
STATE_PREDICTION_MAX_SUCCESS_RATE = 0.5

# Known problematic code patterns; reported once their issue-type pattern mostly fails
CODE_PATTERN_PREDICTIONS = [
    {
        'pattern': 'setInterval_in_constructor',
        'description': 'Timer started in a constructor without guards',
        'likelihood': 0.8,
        'suggestion': 'Delay the timer start and add guards',
    },
    {
        'pattern': 'synchronous_state_access',
        'description': 'Synchronous state access without guards',
        'likelihood': 0.7,
        'suggestion': 'Add guards before state store access',
    },
    {
        'pattern': 'circular_synchronous_calls',
        'description': 'Circular synchronous method calls',
        'likelihood': 0.9,
        'suggestion': 'Break the cycle with an asynchronous call',
    },
]


@dataclass
class BestSolution:
    """Answer of get_best_solution."""
    method: str
    success_rate: float
    confidence: float
    source: str
    description: Optional[str] = None
    frequency: int = 0
    contexts: List[Dict[str, Any]] = field(default_factory=list)
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    general_solution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'success_rate': self.success_rate,
            'confidence': self.confidence,
            'source': self.source,
            'description': self.description,
            'frequency': self.frequency,
            'contexts': list(self.contexts),
            'alternatives': list(self.alternatives),
            'general_solution': self.general_solution,
        }


class LearningEngine:
    """Self-learning diagnostic engine."""

    def __init__(self,
                 config: Optional[LearningConfig] = None,
                 state_store: Optional[StateStore] = None,
                 issue_detector: Optional[IssueDetector] = None,
                 fix_tracker: Optional[FixTracker] = None,
                 compliance: Optional[ComplianceSource] = None,
                 listeners: Iterable[EventListener] = ()):
        self.config = config or LearningConfig()
        self.config.validate()
        thresholds = self.config.thresholds

        if state_store is None:
            state_store = open_state_store(self.config.state_backend, self.config.state_path)
        self.persistence = LearningPersistence(state_store)

        self.issue_detector = issue_detector
        self.fix_tracker = fix_tracker
        self.compliance = compliance
        self.events = EventBus(listeners)

        self._lock = threading.RLock()

        # Stores
        self.patterns = PatternStore(self.config.max_pattern_solutions, self.config.max_pattern_contexts)
        self.misdiagnosis = MisdiagnosisMemory()
        self.correlator = CausalCorrelator(self.config.max_chain_links)
        self.optimizer = SolutionOptimizer()
        self.chains = ChainDetector(
            default_method=thresholds.default_mitigation,
            default_confidence=thresholds.default_mitigation_confidence,
            max_solutions=self.config.max_chain_solutions,
        )
        self.timing = TimingTracker(self.patterns, self.config.max_getter_contexts,
                                    self.config.max_sync_operations)
        self.debugging = ManualDebuggingTracker(self.config.max_pattern_solutions)
        self.generalization = PatternGeneralizationIndex()
        self.scorer = ConfidenceScorer(
            thresholds,
            max_history=self.config.max_confidence_history,
            max_warnings=self.config.max_masking_warnings,
            report_warnings=self.config.report_masking_warnings,
        )
        self.mistakes = MistakeMemory()
        self.syntax_errors = SyntaxErrorMemory()
        self.fix_attempts: List[Dict[str, Any]] = []

        # Background scoring
        self.monitoring_active = False
        self.monitoring_task: Optional[asyncio.Task] = None
        self.shutdown_event: Optional[asyncio.Event] = None

        self.stats = {
            'attempts_recorded': 0,
            'successes': 0,
            'failures': 0,
            'invalid_attempts': 0,
            'scoring_cycles': 0,
        }

        self.logger = get_logger(component="learning_engine")

    # Recording ------------------------------------------------------------

    def learn_from_attempt(self, attempt: Union[Attempt, Dict[str, Any]]) -> Optional[Attempt]:
        """Learn from one completed fix attempt.

        Misdiagnosis tracking and pattern learning always run; the causal,
        cross-issue, ranking and generalization steps run on success, the
        failed-method step on failure. Steps whose fields are missing are
        skipped. State is persisted before returning.
        """
        if not isinstance(attempt, Attempt):
            try:
                attempt = Attempt.parse(attempt)
            except InvalidAttemptError as e:
                self.stats['invalid_attempts'] += 1
                self.logger.warning(f"Ignoring invalid attempt: {e}", category=LogCategory.PATTERN_LEARNING)
                return None

        pending: List[LearningEvent] = []
        with self._lock:
            self.fix_attempts.append(attempt.to_record())
            del self.fix_attempts[:-self.config.max_fix_attempts]

            misdiagnoses = self.misdiagnosis.track(attempt)
            if misdiagnoses:
                pending.append(MisdiagnosisRecorded(
                    record_keys=tuple(r.key for r in misdiagnoses),
                    issue_type=attempt.issue_type,
                ))

            updated = self.patterns.learn(attempt)

            if attempt.succeeded:
                self._learn_from_success(attempt)
            else:
                self._learn_from_failure(attempt)

            self.stats['attempts_recorded'] += 1
            self.stats['successes' if attempt.succeeded else 'failures'] += 1
            state, version = self._state(), self.persistence.next_version()

        pending.append(PatternLearned(
            issue_type=attempt.issue_type,
            fix_method=attempt.fix_method,
            result=attempt.result.value,
            pattern_keys=tuple(p.key for p in updated),
        ))

        self.logger.info(
            f"Learned from {attempt.result.value} of {attempt.fix_method or 'unknown'} "
            f"on {attempt.issue_type or 'unknown'}",
            category=LogCategory.PATTERN_LEARNING,
            metadata={'issue_id': attempt.issue_id, 'patterns': len(updated)}
        )

        self.persistence.save(state, version)
        self._emit_all(pending)
        return attempt

    def _learn_from_success(self, attempt: Attempt) -> None:
        self.correlator.analyze_causal_chain(attempt, self.issue_detector)
        self.correlator.learn_cross_issue(attempt, self.issue_detector, self._method_success_rate)

        rate = self._method_success_rate(attempt.fix_method) if attempt.fix_method else None
        self.optimizer.record(attempt, rate)
        self.generalization.generalize(attempt)

    def _learn_from_failure(self, attempt: Attempt) -> None:
        self.misdiagnosis.record_failed_method(attempt)
        self.optimizer.record(attempt, None)

    def _method_success_rate(self, method: str) -> Optional[float]:
        """Fix tracker rate when it knows the method, else the fix-method pattern rate."""
        if self.fix_tracker is not None and method in (self.fix_tracker.success_rates or {}):
            return self.fix_tracker.get_success_rate(method)
        return self.patterns.method_success_rate(method)

    # Queries --------------------------------------------------------------

    def get_best_solution(self, issue_type: str) -> Optional[BestSolution]:
        """Best known fix for an issue type.

        Tried in decreasing order of specificity: the persisted pattern
        snapshot, the in-memory pattern store, the chain detector for
        hang/circular/blocking issue types, and the solution ranking. The
        abstract category's general solution is attached when one is known.
        """
        if not issue_type:
            return None

        stored = self._persisted_patterns()

        with self._lock:
            solution = self._best_solution(issue_type, stored)
            if solution is not None:
                general = self.generalization.find(issue_type)
                solution.general_solution = general.general_solution if general else None

        return solution

    def _persisted_patterns(self) -> List[Pattern]:
        persisted = self.persistence.read(PATTERNS_KEY) or []
        try:
            return [Pattern.from_dict(key, data) for key, data in persisted]
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Persisted patterns unreadable, using in-memory store only: {e}")
            return []

    def _best_solution(self, issue_type: str, stored: List[Pattern]) -> Optional[BestSolution]:
        ranking = self.optimizer.get_ranking(issue_type)
        alternatives = [dict(a) for a in ranking.alternatives] if ranking else []

        for source, candidates in (('learned_pattern', stored),
                                   ('pattern_store', list(self.patterns.patterns.values()))):
            solution = self._solution_from_patterns(issue_type, candidates, source)
            if solution:
                solution.alternatives = alternatives
                return solution

        kind = self.chains.route_issue_type(issue_type)
        if kind is not None:
            mitigation = self.chains.best_known_mitigation(kind)
            return BestSolution(
                method=mitigation.method,
                success_rate=mitigation.confidence,
                confidence=mitigation.confidence,
                source=mitigation.source,
                description=mitigation.description,
                alternatives=alternatives,
            )

        if ranking and ranking.best_solution:
            return BestSolution(
                method=ranking.best_solution,
                success_rate=ranking.success_rate,
                confidence=ranking.success_rate,
                source='solution_optimizer',
                frequency=ranking.attempts,
                alternatives=alternatives,
            )

        return None

    def _solution_from_patterns(self, issue_type: str, candidates: List[Pattern],
                                source: str) -> Optional[BestSolution]:
        matches = find_issue_type_patterns(candidates, issue_type)
        # Exact key first, then the most observed
        matches.sort(key=lambda p: (p.value != issue_type, -p.frequency, p.value))

        for pattern in matches:
            if not pattern.solutions and not pattern.method:
                continue
            chosen = best_method(pattern, self._method_success_rate)
            if chosen is None:
                continue
            method, rate = chosen
            return BestSolution(
                method=method,
                success_rate=rate,
                confidence=rate,
                source=source,
                frequency=pattern.frequency,
                contexts=[dict(c) for c in pattern.contexts],
            )
        return None

    def get_misdiagnosis_prevention(self, issue_type: Optional[str], error_message: Optional[str] = None,
                                    component: Optional[str] = None) -> MisdiagnosisPrevention:
        with self._lock:
            return self.misdiagnosis.get_prevention(issue_type, error_message, component)

    def get_confidence(self) -> ConfidenceSnapshot:
        """Run one scoring pass; persists the confidence stores and emits masking/adjustment events."""
        compliance_ratio = self.compliance.get_success_ratio() if self.compliance is not None else None

        with self._lock:
            data = self._scoring_input(compliance_ratio)
            snapshot, new_warnings = self.scorer.score_pass(data)
            self.stats['scoring_cycles'] += 1
            state, version = self._confidence_state(), self.persistence.next_version()

        self.persistence.save(state, version)

        pending: List[LearningEvent] = self._masking_events(new_warnings)
        if snapshot.auto_adjustments:
            pending.append(AutoAdjustmentIssued(
                overall_confidence=snapshot.overall_confidence,
                adjustments=snapshot.auto_adjustments,
            ))
        self._emit_all(pending)
        return snapshot

    def _scoring_input(self, compliance_ratio: Optional[float]) -> ScoringInput:
        window = self.config.thresholds.recent_window
        return ScoringInput(
            patterns=[
                PatternSample(p.key, p.frequency, p.success_rate, tuple(p.recent_results(window)))
                for p in self.patterns.patterns.values()
            ],
            chains=[
                ChainSample(length=len(c.links), tagged=c.tagged_links)
                for c in self.correlator.causal_chains.values()
            ],
            rankings=[
                RankingSample(r.issue_type, r.success_rate, r.attempts, len(r.alternatives))
                for r in self.optimizer.rankings.values()
            ],
            links=[
                LinkSample(len(link.related_issues), len(link.common_solutions), link.frequency)
                for link in self.correlator.cross_issue_links.values()
            ],
            compliance_ratio=compliance_ratio,
        )

    def predict_issues(self, current_state: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Likely upcoming issues, most likely first."""
        predictions = []

        with self._lock:
            for key, pattern in self.patterns.patterns.items():
                if pattern.frequency > PREDICTION_MIN_FREQUENCY and \
                        pattern.success_rate < PREDICTION_MAX_SUCCESS_RATE:
                    predictions.append({
                        'type': 'pattern_based',
                        'pattern': key,
                        'likelihood': min(pattern.frequency / 100, 1.0),
                        'reason': f"Pattern {key} has high failure rate ({pattern.success_rate * 100:.1f}%)",
                    })

            for known in CODE_PATTERN_PREDICTIONS:
                pattern = self.patterns.get(PatternKind.ISSUE_TYPE, known['pattern'])
                if pattern and pattern.success_rate < STATE_PREDICTION_MAX_SUCCESS_RATE:
                    predictions.append({
                        'type': 'code_pattern',
                        'pattern': known['pattern'],
                        'likelihood': known['likelihood'],
                        'reason': known['description'],
                        'suggestion': known['suggestion'],
                        'confidence': pattern.success_rate,
                    })

            features = state_features(current_state)
            if features:
                pattern = self.patterns.get(PatternKind.STATE, features)
                if pattern and pattern.success_rate < STATE_PREDICTION_MAX_SUCCESS_RATE:
                    predictions.append({
                        'type': 'state_pattern',
                        'pattern': pattern.key,
                        'likelihood': 1.0 - pattern.success_rate,
                        'reason': f"State {features} preceded failures {pattern.failures} times",
                    })

        initialization = (current_state or {}).get('initialization')
        if isinstance(initialization, dict) and not initialization.get('complete'):
            predictions.append({
                'type': 'state_pattern',
                'pattern': 'state_access_before_init',
                'likelihood': 0.75,
                'reason': 'State accessed before initialization complete',
                'suggestion': 'Add guards to check initialization state',
            })

        predictions.sort(key=lambda p: p['likelihood'], reverse=True)
        return predictions

    # Chains -----------------------------------------------------------------

    def detect_circular_dependency(self, sequence: Sequence[str]) -> Optional[ChainDetection]:
        with self._lock:
            detection = self.chains.detect_circular_dependency(sequence)
            state = self._chain_state() if detection else None
            version = self.persistence.next_version()
        return self._after_detection(detection, state, version)

    def detect_blocking_chain(self, operations: Sequence[Union[str, Dict[str, Any]]]) -> Optional[ChainDetection]:
        with self._lock:
            detection = self.chains.detect_blocking_chain(operations)
            state = self._chain_state() if detection else None
            version = self.persistence.next_version()
        return self._after_detection(detection, state, version)

    def _after_detection(self, detection: Optional[ChainDetection],
                         state: Optional[Dict[str, Any]], version: int) -> Optional[ChainDetection]:
        if detection is None:
            return None
        self.persistence.save(state, version)
        self.events.emit(ChainDetected(
            kind=detection.kind.value,
            signature=detection.signature,
            frequency=detection.frequency,
            severity=detection.severity,
        ))
        return detection

    def find_call_graph_cycles(self, sequence: Sequence[str]) -> List[List[str]]:
        return self.chains.find_call_graph_cycles(sequence)

    def record_chain_mitigation(self, kind: Union[ChainKind, str], chain: Sequence[str], method: str,
                                succeeded: bool, description: Optional[str] = None) -> Optional[ChainRecord]:
        """Count the outcome of a mitigation applied to a detected chain."""
        kind = ChainKind(kind)
        with self._lock:
            record = self.chains.record_mitigation(kind, chain, method, succeeded, description)
            state, version = self._chain_state(), self.persistence.next_version()
        if record is not None:
            self.persistence.save(state, version)
        return record

    # Timing and manual debugging ---------------------------------------------

    def track_initialization(self, component: str, start: float, end: Optional[float] = None) -> Optional[HangReport]:
        with self._lock:
            report = self.timing.track_initialization(component, start, end)
            state, version = self._timing_state(), self.persistence.next_version()
        self.persistence.save(state, version)
        self._emit_hangs([report] if report else [])
        return report

    def track_getter_call(self, method: str, start: float, end: Optional[float] = None,
                          component: Optional[str] = None) -> List[HangReport]:
        with self._lock:
            reports = self.timing.track_getter_call(method, start, end, component)
            state, version = self._timing_state(), self.persistence.next_version()
        self.persistence.save(state, version)
        self._emit_hangs(reports)
        return reports

    def track_synchronous_operation(self, method: str, operation_kind: str,
                                    context: Optional[Dict[str, Any]] = None) -> Optional[HangReport]:
        with self._lock:
            report = self.timing.track_synchronous_operation(method, operation_kind, context)
            state, version = self._timing_state(), self.persistence.next_version()
        if report:
            self.persistence.save(state, version)
            self._emit_hangs([report])
        return report

    def _emit_hangs(self, reports: List[HangReport]) -> None:
        for report in reports:
            self.events.emit(HangDetected(
                issue_type=report.issue_type,
                subject=report.subject,
                severity=report.severity,
                duration=report.duration,
            ))

    def get_initialization_hangs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self.timing.get_initialization_hangs()

    def get_getter_hangs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self.timing.get_getter_hangs()

    def get_synchronous_operations(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self.timing.get_synchronous_operations()

    def track_manual_debugging(self, component: Optional[str], issue: Optional[str], succeeded: bool,
                               description: Optional[str] = None, steps: Optional[List[str]] = None,
                               duration: float = 0.0) -> None:
        with self._lock:
            self.debugging.track(component, issue, succeeded, description, steps, duration)
            state = {'learning.debuggingPatterns': self.debugging.to_entries()}
            version = self.persistence.next_version()
        self.persistence.save(state, version)

    def get_manual_debugging_approach(self, component: Optional[str], issue: Optional[str]) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.debugging.get_approach(component, issue)

    # Quality guard -------------------------------------------------------------

    def learn_from_mistake(self, mistake_type: str, context: Optional[Dict[str, Any]] = None,
                           details: Optional[str] = None) -> Optional[ConfidenceSnapshot]:
        """Remember an AI mistake and take the matching penalty off confidence.

        Returns the penalized snapshot, or None when no confidence has been
        scored yet. The mistake is flagged as masking either way.
        """
        with self._lock:
            pattern = self.mistakes.record(mistake_type, context, details)
            penalized = self.scorer.apply_penalty(mistake_type, details or "")
            warnings = self.scorer.take_raised()
            state = {'learning.mistakePatterns': self.mistakes.to_entries()}
            state.update(self._confidence_state())
            version = self.persistence.next_version()

        self.persistence.save(state, version)

        pending = self._masking_events(warnings)
        pending.append(MistakeLearned(
            mistake_type=mistake_type,
            key=pattern.key,
            penalty=MISTAKE_PENALTIES.get(mistake_type, DEFAULT_MISTAKE_PENALTY),
        ))
        self._emit_all(pending)
        return penalized

    def detect_test_masking(self, old_test: Optional[str], new_test: Optional[str],
                            reason: Optional[str] = None) -> TestMaskingResult:
        """Compare a test before and after a change; a weakened test is flagged as critical masking."""
        result = detect_test_masking(old_test, new_test, reason)
        if result.is_masking:
            self._flag('test_change', f"Test masking: {'; '.join(result.indicators)}", severity='critical')
        return result

    def verify_fix_quality(self, fix: Dict[str, Any], problem: Optional[Dict[str, Any]] = None) -> FixQualityReport:
        """Score a fix against its problem; a score below 50 is flagged as masking."""
        report = verify_fix_quality(fix, problem)
        if report.test_masking is not None and report.test_masking.is_masking:
            self._flag('test_change', f"Test masking: {'; '.join(report.test_masking.indicators)}",
                       severity='critical')
        if report.is_low_quality:
            self._flag('fix_quality', f"Low fix quality: {'; '.join(report.issues)}")
        return report

    def _flag(self, source: str, reason: str, severity: str = "warning") -> None:
        with self._lock:
            self.scorer.flag_masking(source, reason, severity)
            warnings = self.scorer.take_raised()
            state, version = self._confidence_state(), self.persistence.next_version()

        if warnings:
            self.persistence.save(state, version)
            self._emit_all(self._masking_events(warnings))

    def learn_from_syntax_error(self, error: Dict[str, Any]) -> Optional[str]:
        """Count a syntax error by its shape. Returns the pattern key, or None when ``type`` is missing."""
        with self._lock:
            record = self.syntax_errors.learn(error)
            if record is None:
                return None
            state = {'learning.syntaxErrors': self.syntax_errors.to_entries()}
            version = self.persistence.next_version()

        self.persistence.save(state, version)
        return record.key

    def get_syntax_error_suggestions(self, error: Dict[str, Any]) -> List[Any]:
        with self._lock:
            return self.syntax_errors.get_suggestions(error)

    # Reports -----------------------------------------------------------------

    def get_learning_report(self) -> Dict[str, Any]:
        """Summary of everything learned so far."""
        with self._lock:
            top_patterns = sorted(self.patterns.patterns.values(), key=lambda p: (-p.frequency, p.key))[:10]
            misdiagnoses = sorted(
                (r for r in self.misdiagnosis.records.values() if r.frequency > 0),
                key=lambda r: (r.time_wasted, r.frequency), reverse=True
            )
            latest = self.scorer.history[-1] if self.scorer.history else None

            return {
                'counts': {
                    'patterns': len(self.patterns),
                    'misdiagnosis_patterns': len(self.misdiagnosis),
                    'failed_methods': sum(len(m) for m in self.misdiagnosis.failed_methods.values()),
                    'causal_chains': len(self.correlator.causal_chains),
                    'cross_issue_links': len(self.correlator.cross_issue_links),
                    'solution_rankings': len(self.optimizer),
                    'circular_dependencies': self.chains.count(ChainKind.CIRCULAR_DEPENDENCY),
                    'blocking_chains': self.chains.count(ChainKind.BLOCKING_CHAIN),
                    'generalized_patterns': len(self.generalization),
                    'debugging_patterns': len(self.debugging),
                    'mistake_patterns': len(self.mistakes),
                    'syntax_error_patterns': len(self.syntax_errors),
                    'fix_attempts': len(self.fix_attempts),
                },
                'top_patterns': [
                    {'pattern': p.key, 'frequency': p.frequency, 'success_rate': p.success_rate}
                    for p in top_patterns
                ],
                'misdiagnoses': [
                    {'pattern': r.key, 'frequency': r.frequency, 'time_wasted': r.time_wasted,
                     'correct_approach': r.correct_approach}
                    for r in misdiagnoses
                ],
                'solutions': {
                    issue_type: ranking.best_solution
                    for issue_type, ranking in sorted(self.optimizer.rankings.items())
                },
                'confidence': latest.to_dict() if latest else None,
                'trend': self.scorer.get_trend(),
            }

    def get_status_report(self) -> Dict[str, Any]:
        """Monitoring state and statistics."""
        with self._lock:
            return {
                'monitoring_status': {
                    'active': self.monitoring_active,
                    'interval': self.config.monitoring_interval,
                },
                'statistics': {
                    'engine': dict(self.stats),
                    'patterns': dict(self.patterns.stats),
                    'misdiagnosis': dict(self.misdiagnosis.stats),
                    'correlation': dict(self.correlator.stats),
                    'chains': dict(self.chains.stats),
                    'confidence': dict(self.scorer.stats),
                    'persistence': dict(self.persistence.stats),
                    'events': dict(self.events.stats),
                    'quality': dict(self.mistakes.stats),
                },
                'masking_detected': self.scorer.masking_detected,
                'recent_warnings': [w.to_dict() for w in self.scorer.masking_warnings[-5:]],
                'auto_adjustments': [a.to_dict() for a in self.scorer.auto_adjustments],
            }

    # Persistence -------------------------------------------------------------

    def _loaders(self) -> Dict[str, Callable[[Any], None]]:
        return {
            PATTERNS_KEY: self.patterns.load_entries,
            'learning.misdiagnosisPatterns': self.misdiagnosis.load_records,
            'learning.failedMethods': self.misdiagnosis.load_failed_methods,
            'learning.causalChains': self.correlator.load_chains,
            'learning.crossIssueLearning': self.correlator.load_links,
            'learning.solutionOptimization': self.optimizer.load_entries,
            'learning.circularDependencies':
                lambda entries: self.chains.load_entries(ChainKind.CIRCULAR_DEPENDENCY, entries),
            'learning.blockingChains': lambda entries: self.chains.load_entries(ChainKind.BLOCKING_CHAIN, entries),
            'learning.debuggingPatterns': self.debugging.load_entries,
            'learning.generalizedPatterns': self.generalization.load_patterns,
            'learning.generalizationRules': self.generalization.load_rules,
            'learning.fixAttempts': self._load_fix_attempts,
            'learning.timings': self.timing.load,
            'learning.confidenceHistory': self.scorer.load_history,
            'learning.maskingWarnings': self.scorer.load_warnings,
            'learning.autoAdjustments': self.scorer.load_adjustments,
            'learning.mistakePatterns': self.mistakes.load_entries,
            'learning.syntaxErrors': self.syntax_errors.load_entries,
        }

    def _load_fix_attempts(self, records: List[Dict[str, Any]]) -> None:
        self.fix_attempts = list(records)[-self.config.max_fix_attempts:]

    def load(self) -> None:
        """Restore every store from the state store.

        Absent keys leave their store empty. A key whose value is corrupt
        is logged and its store starts empty. So is a schema-valid value
        whose records cannot be read back (a bad timestamp, say). Errors
        opening or reading the state store propagate.
        """
        with self._lock:
            loaded = self.persistence.load(STATE_KEYS)
            cleaned = False

            for key, loader in self._loaders().items():
                if key not in loaded:
                    continue
                try:
                    changed = loader(loaded[key])
                except (KeyError, TypeError, ValueError) as e:
                    self.logger.error(
                        f"Discarding unreadable records for {key}: {e}",
                        category=LogCategory.PERSISTENCE,
                        include_stack=False
                    )
                    loader({} if key == 'learning.timings' else [])
                    continue
                if key == PATTERNS_KEY:
                    cleaned = bool(changed)

            patterns_state = {PATTERNS_KEY: self.patterns.to_entries()} if cleaned else None
            version = self.persistence.next_version()

        if patterns_state:
            self.persistence.save(patterns_state, version)

    def save(self) -> List[str]:
        """Persist every store. Returns the keys that could not be written."""
        with self._lock:
            state, version = self._state(), self.persistence.next_version()
        return self.persistence.save(state, version)

    def _state(self) -> Dict[str, Any]:
        state = {
            PATTERNS_KEY: self.patterns.to_entries(),
            'learning.misdiagnosisPatterns': self.misdiagnosis.records_to_entries(),
            'learning.failedMethods': self.misdiagnosis.failed_methods_to_entries(),
            'learning.causalChains': self.correlator.chains_to_entries(),
            'learning.crossIssueLearning': self.correlator.links_to_entries(),
            'learning.solutionOptimization': self.optimizer.to_entries(),
            'learning.debuggingPatterns': self.debugging.to_entries(),
            'learning.generalizedPatterns': self.generalization.patterns_to_entries(),
            'learning.generalizationRules': self.generalization.rules_to_entries(),
            'learning.mistakePatterns': self.mistakes.to_entries(),
            'learning.syntaxErrors': self.syntax_errors.to_entries(),
            'learning.fixAttempts': list(self.fix_attempts),
        }
        state.update(self._chain_state())
        state.update(self._timing_state())
        state.update(self._confidence_state())
        return state

    def _chain_state(self) -> Dict[str, Any]:
        return {
            'learning.circularDependencies': self.chains.to_entries(ChainKind.CIRCULAR_DEPENDENCY),
            'learning.blockingChains': self.chains.to_entries(ChainKind.BLOCKING_CHAIN),
        }

    def _timing_state(self) -> Dict[str, Any]:
        # Timing hangs are also recorded as failure patterns
        return {
            'learning.timings': self.timing.to_dict(),
            PATTERNS_KEY: self.patterns.to_entries(),
        }

    def _confidence_state(self) -> Dict[str, Any]:
        return {
            'learning.confidenceHistory': self.scorer.history_to_records(),
            'learning.maskingWarnings': self.scorer.warnings_to_records(),
            'learning.autoAdjustments': self.scorer.adjustments_to_records(),
        }

    @staticmethod
    def _masking_events(warnings: List[MaskingWarning]) -> List[LearningEvent]:
        return [MaskingDetected(source=w.source, reason=w.reason) for w in warnings]

    def _emit_all(self, events: List[LearningEvent]) -> None:
        for event in events:
            self.events.emit(event)

    # Background scoring ------------------------------------------------------

    async def start_monitoring(self):
        """Start periodic confidence scoring."""
        if self.monitoring_active:
            logger.warning("Confidence monitoring already active")
            return

        self.monitoring_active = True
        self.shutdown_event = asyncio.Event()
        self.monitoring_task = asyncio.create_task(self._monitoring_loop())
        self.logger.info(
            f"Confidence monitoring started (interval: {self.config.monitoring_interval}s)",
            category=LogCategory.CONFIDENCE
        )

    async def stop_monitoring(self):
        """Stop periodic confidence scoring."""
        self.monitoring_active = False
        if self.shutdown_event is not None:
            self.shutdown_event.set()

        if self.monitoring_task and not self.monitoring_task.done():
            try:
                await asyncio.wait_for(self.monitoring_task, timeout=5.0)
            except asyncio.TimeoutError:
                self.monitoring_task.cancel()

        self.logger.info("Confidence monitoring stopped", category=LogCategory.CONFIDENCE)

    async def _monitoring_loop(self):
        while self.monitoring_active and not self.shutdown_event.is_set():
            try:
                snapshot = self.get_confidence()
                logger.debug(f"Confidence {snapshot.overall_confidence:.1f} ({snapshot.trend})")
            except Exception as e:
                self.logger.error(f"Confidence monitoring error: {e}", category=LogCategory.CONFIDENCE)

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.config.monitoring_interval)
            except asyncio.TimeoutError:
                pass


def create_learning_engine(config: Optional[LearningConfig] = None, load: bool = True,
                           **kwargs) -> LearningEngine:
    """Entry point for hosts: configure logging from ``config``, build the engine, restore its state.

    ``config`` defaults to ``LearningConfig.from_env()``. Remaining keyword
    arguments go to ``LearningEngine``.
    """
    config = config or LearningConfig.from_env()
    setup_logging(config.log_level, config.logs_dir, config.debug)

    engine = LearningEngine(config, **kwargs)
    if load:
        engine.load()
    return engine


def render_confidence_table(snapshot: ConfidenceSnapshot) -> Table:
    """Rich table of a confidence snapshot's factor breakdown."""
    table = Table(title=f"Learning Confidence: {snapshot.overall_confidence:.1f}% ({snapshot.trend})")
    table.add_column("Factor", style="cyan")
    table.add_column("Score", style="white", justify="right")

    scores = snapshot.factors.as_dict()
    for name in FACTOR_NAMES:
        style = "red" if scores[name] < 50 else "green"
        table.add_row(name.replace('_', ' ').title(), f"[{style}]{scores[name]:.1f}[/{style}]")

    if snapshot.masking_detected:
        table.caption = "[red]Masking detected[/red]"
    return table
