"""Pattern Store

Keeps generalized, frequency/success-tracked pattern records extracted from
fix attempts, and merges duplicate records left behind by older,
un-generalized keys.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple, Callable, Iterable
from dataclasses import dataclass, field

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.pattern_generalizer import (
    create_minimal_context,
    generalize_state_pattern,
    generalize_state_key,
    extract_log_pattern,
    calculate_pattern_similarity,
)
from fixlearn.core.schema import Attempt
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)


class PatternKind(Enum):
    """Observation category a pattern is keyed by."""
    ISSUE_TYPE = "issue_type"
    FIX_METHOD = "fix_method"
    STATE = "state"
    LOG = "log"
    INIT_HANG = "init_hang"
    GETTER_HANG = "getter_hang"
    CONSTRUCTOR_WORKS_GETTER_HANGS = "constructor_works_getter_hangs"
    SYNC_OP_IN_GETTER = "sync_op_in_getter"


# Key prefixes written before kinds were normalized.
LEGACY_KIND_NAMES = {
    'issueType': PatternKind.ISSUE_TYPE.value,
    'fixMethod': PatternKind.FIX_METHOD.value,
}


@dataclass
class SolutionEntry:
    """One method applied against a pattern."""
    method: str
    result: str  # success or failure
    timestamp: datetime

    @property
    def succeeded(self) -> bool:
        return self.result == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {'method': self.method, 'result': self.result, 'timestamp': to_iso(self.timestamp)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SolutionEntry':
        timestamp = data.get('timestamp')
        if isinstance(timestamp, (int, float)):
            # Epoch milliseconds from older records
            timestamp = datetime.fromtimestamp(timestamp / 1000)
        else:
            timestamp = from_iso(timestamp) or datetime.fromtimestamp(0)
        return cls(method=data.get('method') or 'unknown', result=data.get('result') or 'failure',
                   timestamp=timestamp)


@dataclass
class Pattern:
    """Generalized pattern record; successes + failures always equals frequency."""
    kind: str
    value: str
    frequency: int = 0
    successes: int = 0
    failures: int = 0
    success_rate: float = 0.0
    solutions: List[SolutionEntry] = field(default_factory=list)
    contexts: List[Dict[str, Any]] = field(default_factory=list)
    method: Optional[str] = None  # most recent successful method
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @property
    def key(self) -> str:
        return make_key(self.kind, self.value)

    def recompute_rate(self) -> None:
        self.success_rate = self.successes / self.frequency if self.frequency else 0.0

    def recent_results(self, window: int) -> List[int]:
        return [1 if s.succeeded else 0 for s in self.solutions[-window:]]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'kind': self.kind,
            'value': self.value,
            'frequency': self.frequency,
            'successes': self.successes,
            'failures': self.failures,
            'success_rate': self.success_rate,
            'solutions': [s.to_dict() for s in self.solutions],
            'contexts': list(self.contexts),
            'first_seen': to_iso(self.first_seen),
            'last_seen': to_iso(self.last_seen),
        }
        if self.method:
            data['method'] = self.method
        return data

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'Pattern':
        kind, value = split_key(key)
        successes = int(data.get('successes') or 0)
        failures = int(data.get('failures') or 0)
        pattern = cls(
            kind=kind,
            value=value,
            frequency=successes + failures,
            successes=successes,
            failures=failures,
            solutions=[SolutionEntry.from_dict(s) for s in data.get('solutions') or [] if isinstance(s, dict)],
            contexts=[c for c in data.get('contexts') or [] if isinstance(c, dict)],
            method=data.get('method'),
            first_seen=from_iso(data.get('first_seen')),
            last_seen=from_iso(data.get('last_seen')),
        )
        pattern.recompute_rate()
        return pattern


def make_key(kind: str, value: str) -> str:
    return f"{kind}:{value}"


def split_key(key: str) -> Tuple[str, str]:
    kind, _, value = key.partition(':')
    return kind, value


def generalize_pattern_key(key: str) -> str:
    """Rewrite a stored key into its generalized form."""
    if not isinstance(key, str) or ':' not in key:
        return key

    kind, value = split_key(key)
    kind = LEGACY_KIND_NAMES.get(kind, kind)

    if kind == PatternKind.STATE.value:
        return make_key(kind, generalize_state_key(value))

    return make_key(kind, value)


class PatternStore:
    """In-memory pattern records keyed by ``kind:value``."""

    def __init__(self, max_solutions: int = 5, max_contexts: int = 5):
        self.max_solutions = max_solutions
        self.max_contexts = max_contexts
        self.patterns: Dict[str, Pattern] = {}

        self.stats = {
            'outcomes_recorded': 0,
            'patterns_merged': 0,
        }

        self.logger = get_logger(component="pattern_store")

    def __len__(self) -> int:
        return len(self.patterns)

    def get(self, kind: PatternKind, value: str) -> Optional[Pattern]:
        return self.patterns.get(make_key(kind.value, value))

    def record_outcome(self, kind: PatternKind, value: str, context: Optional[Dict[str, Any]],
                       succeeded: bool, method: Optional[str] = None,
                       timestamp: Optional[datetime] = None) -> Pattern:
        """Count one outcome against a pattern, creating it on first sight."""
        timestamp = timestamp or datetime.now()
        key = make_key(kind.value, value)

        pattern = self.patterns.get(key)
        if pattern is None:
            pattern = Pattern(kind=kind.value, value=value, first_seen=timestamp)
            self.patterns[key] = pattern

        pattern.frequency += 1
        if succeeded:
            pattern.successes += 1
            if method:
                pattern.method = method
        else:
            pattern.failures += 1
        pattern.last_seen = timestamp

        if context:
            pattern.contexts.append(dict(context))
            del pattern.contexts[:-self.max_contexts]

        if method:
            pattern.solutions.append(SolutionEntry(
                method=method,
                result="success" if succeeded else "failure",
                timestamp=timestamp
            ))
            del pattern.solutions[:-self.max_solutions]

        pattern.recompute_rate()
        self.stats['outcomes_recorded'] += 1
        return pattern

    def extract_patterns(self, attempt: Attempt) -> List[Tuple[PatternKind, str, Dict[str, Any]]]:
        """Generalized (kind, value, context) observations carried by one attempt."""
        context = create_minimal_context(attempt.fix_details)
        observations = []

        if attempt.issue_type:
            observations.append((PatternKind.ISSUE_TYPE, attempt.issue_type, context))

        if attempt.fix_method:
            observations.append((PatternKind.FIX_METHOD, attempt.fix_method, context))

        if attempt.state and attempt.issue_type:
            state_value = generalize_state_pattern(attempt.state, attempt.issue_type)
            if state_value:
                observations.append((PatternKind.STATE, state_value, context))

        if attempt.logs:
            log_value = extract_log_pattern(attempt.logs)
            if log_value:
                observations.append((PatternKind.LOG, log_value, context))

        return observations

    def learn(self, attempt: Attempt) -> List[Pattern]:
        """Record every pattern observed in an attempt."""
        updated = []
        for kind, value, context in self.extract_patterns(attempt):
            updated.append(self.record_outcome(
                kind, value, context,
                succeeded=attempt.succeeded,
                method=attempt.fix_method,
                timestamp=attempt.timestamp
            ))

        if updated:
            self.logger.debug(
                f"Updated {len(updated)} patterns",
                category=LogCategory.PATTERN_LEARNING,
                metadata={'keys': [p.key for p in updated], 'result': attempt.result.value}
            )
        return updated

    def method_success_rate(self, method: str) -> Optional[float]:
        pattern = self.get(PatternKind.FIX_METHOD, method)
        return pattern.success_rate if pattern and pattern.frequency else None

    # Serialization -----------------------------------------------------

    def to_entries(self) -> List[List[Any]]:
        return [[key, self.patterns[key].to_dict()] for key in sorted(self.patterns)]

    def load_entries(self, entries: Iterable[Any]) -> bool:
        """Replace contents with stored entries, generalizing and merging legacy keys.

        Returns True when the cleanup changed anything, meaning the stored
        form should be rewritten.
        """
        cleaned, changed = cleanup_patterns(entries, self.max_solutions, self.max_contexts)
        self.patterns = dict(cleaned)
        if changed:
            self.stats['patterns_merged'] += 1
            self.logger.info(
                f"Generalized stored patterns ({len(self.patterns)} after cleanup)",
                category=LogCategory.PATTERN_LEARNING
            )
        return changed


# Key similarity at which an issue-type pattern belongs to the same family (substring match)
ISSUE_TYPE_MATCH_SIMILARITY = 0.7


def find_issue_type_patterns(patterns: Iterable[Pattern], issue_type: str) -> List[Pattern]:
    """Issue-type patterns equal to or overlapping ``issue_type``, most similar first."""
    target = make_key(PatternKind.ISSUE_TYPE.value, issue_type)
    scored = []
    for pattern in patterns:
        if pattern.kind != PatternKind.ISSUE_TYPE.value or not pattern.value:
            continue
        similarity = calculate_pattern_similarity(target, pattern.key)
        if similarity >= ISSUE_TYPE_MATCH_SIMILARITY:
            scored.append((similarity, pattern))

    scored.sort(key=lambda s: -s[0])
    return [pattern for _, pattern in scored]


def best_method(pattern: Pattern, rate_of: Callable[[str], Optional[float]]) -> Optional[Tuple[str, float]]:
    """Highest-rated method among the pattern's recent successful solutions.

    Ties go to the most recent solution. Falls back to ``pattern.method`` for
    records that kept a method but no solution history.
    """
    best: Optional[Tuple[str, float]] = None
    for solution in reversed(pattern.solutions):
        if not solution.succeeded:
            continue
        rate = rate_of(solution.method)
        rate = pattern.success_rate if rate is None else rate
        if best is None or rate > best[1]:
            best = (solution.method, rate)

    if best is None and pattern.method:
        rate = rate_of(pattern.method)
        best = (pattern.method, pattern.success_rate if rate is None else rate)

    return best


def _merge(first: Pattern, second: Pattern, max_solutions: int, max_contexts: int) -> Pattern:
    merged = Pattern(
        kind=first.kind,
        value=first.value,
        successes=first.successes + second.successes,
        failures=first.failures + second.failures,
        first_seen=min((d for d in (first.first_seen, second.first_seen) if d), default=None),
        last_seen=max((d for d in (first.last_seen, second.last_seen) if d), default=None),
    )
    merged.frequency = merged.successes + merged.failures
    merged.recompute_rate()

    solutions = sorted(first.solutions + second.solutions, key=lambda s: s.timestamp, reverse=True)
    merged.solutions = sorted(solutions[:max_solutions], key=lambda s: s.timestamp)
    merged.contexts = (first.contexts + second.contexts)[-max_contexts:]

    # Higher success rate wins; ties keep the first record's method
    if second.success_rate > first.success_rate and second.method:
        merged.method = second.method
    else:
        merged.method = first.method or second.method

    return merged


def cleanup_patterns(entries: Iterable[Any], max_solutions: int = 5,
                     max_contexts: int = 5) -> Tuple[List[Tuple[str, Pattern]], bool]:
    """Generalize stored ``[key, data]`` entries and merge keys that now collide."""
    cleaned: Dict[str, Pattern] = {}
    changed = False

    for entry in entries or []:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2 or not isinstance(entry[1], dict):
            changed = True
            continue

        original_key, data = entry[0], entry[1]
        key = generalize_pattern_key(original_key)
        pattern = Pattern.from_dict(key, data)

        if (key != original_key or len(pattern.solutions) > max_solutions
                or len(pattern.contexts) > max_contexts or pattern.frequency != data.get('frequency')):
            changed = True
        pattern.solutions = pattern.solutions[-max_solutions:]
        pattern.contexts = pattern.contexts[-max_contexts:]

        if key in cleaned:
            cleaned[key] = _merge(cleaned[key], pattern, max_solutions, max_contexts)
            changed = True
        else:
            cleaned[key] = pattern

    return list(cleaned.items()), changed
