"""Quality Guard

Catches fixes that hide a problem instead of solving it. Remembers the
mistakes an assistant made and the situations they happened in, spots test
edits that stop a test from testing anything, scores fix descriptions for
workarounds, and keeps the fixes that resolved each syntax error shape.

All checks here are keyword heuristics over free text. They lean towards
raising a flag; the engine turns flags into masking warnings.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.utils.file_utils import canonical_json, to_iso, from_iso

logger = logging.getLogger(__name__)

MAX_MISTAKE_EXAMPLES = 10
MAX_SYNTAX_CONTEXTS = 10
SYNTAX_SUGGESTION_LIMIT = 5

# Case-insensitive substrings; a test "has" a property when any one appears
FUNCTIONALITY_MARKERS = ('result', 'verify', 'assert', 'expect', 'should', 'pass', 'fail', 'equal', 'match')
EXECUTION_MARKERS = ('await', '()', 'call', 'execute', 'run', 'timeoperation', 'processline', 'recorderror')
ASSERTION_MARKERS = ('assert', 'expect', 'should', 'equal', 'match', 'be', 'have')

MASKING_REASON_KEYWORDS = ('simplify', 'easier', 'avoid', 'skip', 'bypass', 'workaround', 'hanging')
WORKAROUND_KEYWORDS = ('workaround', 'bypass', 'skip', 'avoid', 'ignore', 'simplify', 'easier')

SYNTAX_KEY_PHRASES = ('brace', 'try', 'catch', 'quote', 'syntax', 'unexpected', 'missing', 'unmatched',
                      'parse', 'token')

# Fix quality scoring
FULL_QUALITY = 100
UNRELATED_FIX_PENALTY = 30
WORKAROUND_PENALTY = 50
TEST_MASKING_PENALTY = 40
UNVERIFIED_PENALTY = 10
LOW_QUALITY_SCORE = 50
SHARED_WORD_MIN_LENGTH = 5


def _contains_any(text: Optional[str], markers) -> bool:
    if not text:
        return False
    lowered = str(text).lower()
    return any(marker in lowered for marker in markers)


def has_functionality_check(test_code: Optional[str]) -> bool:
    return _contains_any(test_code, FUNCTIONALITY_MARKERS)


def has_execution(test_code: Optional[str]) -> bool:
    return _contains_any(test_code, EXECUTION_MARKERS)


def has_assertions(test_code: Optional[str]) -> bool:
    return _contains_any(test_code, ASSERTION_MARKERS)


@dataclass
class TestMaskingResult:
    """Outcome of comparing a test before and after a change."""
    is_masking: bool
    indicators: List[str] = field(default_factory=list)
    severity: Optional[str] = None

    __test__ = False


def detect_test_masking(old_test: Optional[str], new_test: Optional[str],
                        reason: Optional[str] = None) -> TestMaskingResult:
    """Flag a test change that removed checks, execution or assertions.

    A property counts as removed when the old test had it and the new one
    does not. A change reason mentioning a shortcut is an indicator too.
    """
    indicators = []

    if has_functionality_check(old_test) and not has_functionality_check(new_test):
        indicators.append("Functionality check removed from test")
    if has_execution(old_test) and not has_execution(new_test):
        indicators.append("Test execution removed - test no longer runs functionality")
    if has_assertions(old_test) and not has_assertions(new_test):
        indicators.append("Assertions removed from test")

    if isinstance(reason, str) and _contains_any(reason, MASKING_REASON_KEYWORDS):
        indicators.append(f'Masking keyword in reason: "{reason}"')

    if not indicators:
        return TestMaskingResult(is_masking=False)
    return TestMaskingResult(is_masking=True, indicators=indicators, severity='critical')


@dataclass
class FixQualityReport:
    score: int
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    test_masking: Optional[TestMaskingResult] = None

    @property
    def is_low_quality(self) -> bool:
        return self.score < LOW_QUALITY_SCORE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'score': self.score,
            'issues': list(self.issues),
            'warnings': list(self.warnings),
            'is_low_quality': self.is_low_quality,
        }


def _long_words(text: Optional[str]) -> set:
    if not isinstance(text, str):
        return set()
    return {word for word in text.lower().split() if len(word) >= SHARED_WORD_MIN_LENGTH}


def verify_fix_quality(fix: Dict[str, Any], problem: Optional[Dict[str, Any]]) -> FixQualityReport:
    """Score a fix out of 100 against the problem it claims to solve.

    ``fix`` keys: ``description``, optional ``testChange`` (new test code)
    with ``oldTest``, ``reason`` and ``verification`` (``{'verified': bool}``).
    ``problem`` keys: ``description``.
    """
    fix = fix if isinstance(fix, dict) else {}
    description = fix.get('description') if isinstance(fix.get('description'), str) else ""

    score = FULL_QUALITY
    issues: List[str] = []
    warnings: List[str] = []
    masking = None

    if isinstance(problem, dict):
        if not _long_words(problem.get('description')) & _long_words(description):
            score -= UNRELATED_FIX_PENALTY
            issues.append("Fix does not mention original problem")

        if _contains_any(description, WORKAROUND_KEYWORDS):
            score -= WORKAROUND_PENALTY
            issues.append("Fix appears to be a workaround")

    if fix.get('testChange'):
        masking = detect_test_masking(fix.get('oldTest'), fix.get('testChange'), fix.get('reason'))
        if masking.is_masking:
            score -= TEST_MASKING_PENALTY
            issues.append(f"Test masking detected: {'; '.join(masking.indicators)}")

    verification = fix.get('verification')
    if not (isinstance(verification, dict) and verification.get('verified')):
        score -= UNVERIFIED_PENALTY
        warnings.append("Fix not verified - may not actually work")

    return FixQualityReport(score=max(0, score), issues=issues, warnings=warnings, test_masking=masking)


@dataclass
class MistakePattern:
    """A recurring mistake, or a situation in which mistakes happen.

    ``kind`` is ``mistake`` for a (type, context) pair and ``context`` for a
    situation such as ``problem_hang`` or ``time_pressure``.
    """
    key: str
    kind: str
    frequency: int = 0
    mistake_type: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    mistakes: List[str] = field(default_factory=list)
    examples: List[Dict[str, Any]] = field(default_factory=list)
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'frequency': self.frequency,
            'mistake_type': self.mistake_type,
            'context': dict(self.context),
            'mistakes': list(self.mistakes),
            'examples': [dict(e) for e in self.examples],
            'first_seen': to_iso(self.first_seen),
            'last_seen': to_iso(self.last_seen),
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'MistakePattern':
        return cls(
            key=key,
            kind=data.get('kind', 'mistake'),
            frequency=int(data['frequency']),
            mistake_type=data.get('mistake_type'),
            context=dict(data.get('context') or {}),
            mistakes=list(data.get('mistakes') or []),
            examples=list(data.get('examples') or []),
            first_seen=from_iso(data.get('first_seen')),
            last_seen=from_iso(data.get('last_seen')),
        )


def _scalar_context(context: Any) -> Dict[str, Any]:
    if not isinstance(context, dict):
        return {}
    return {
        str(key): value if isinstance(value, (str, int, float, bool)) or value is None else str(value)
        for key, value in context.items()
    }


def context_patterns(context: Dict[str, Any]) -> List[str]:
    """Situations a mistake happened in: problem type, complexity, time pressure."""
    patterns = []
    if context.get('problemType'):
        patterns.append(f"problem_{context['problemType']}")
    if context.get('complexity'):
        patterns.append(f"complexity_{context['complexity']}")
    if context.get('timePressure'):
        patterns.append('time_pressure')
    return patterns


class MistakeMemory:
    """Mistakes keyed by type and context, plus the situations that produce them."""

    def __init__(self, max_examples: int = MAX_MISTAKE_EXAMPLES):
        self.max_examples = max_examples
        self.patterns: Dict[str, MistakePattern] = {}
        self.stats = {'mistakes_recorded': 0}
        self.logger = get_logger(component="quality_guard")

    def __len__(self) -> int:
        return len(self.patterns)

    def record(self, mistake_type: str, context: Optional[Dict[str, Any]] = None,
               details: Optional[str] = None) -> MistakePattern:
        context = _scalar_context(context)
        now = datetime.now()
        key = f"{mistake_type}_{canonical_json(context)}"

        pattern = self.patterns.get(key)
        if pattern is None:
            pattern = MistakePattern(key=key, kind='mistake', mistake_type=mistake_type,
                                     context=dict(context), first_seen=now)
            self.patterns[key] = pattern

        pattern.frequency += 1
        pattern.last_seen = now
        pattern.examples.append({'type': mistake_type, 'details': details, 'timestamp': to_iso(now)})
        del pattern.examples[:-self.max_examples]

        for situation in context_patterns(context):
            entry = self.patterns.get(situation)
            if entry is None:
                entry = MistakePattern(key=situation, kind='context', first_seen=now)
                self.patterns[situation] = entry
            entry.frequency += 1
            entry.last_seen = now
            entry.mistakes.append(mistake_type)

        self.stats['mistakes_recorded'] += 1
        self.logger.warning(
            f"Learned from AI mistake: {mistake_type}",
            category=LogCategory.QUALITY,
            metadata={'context': context, 'frequency': pattern.frequency}
        )
        return pattern

    def situations(self) -> List[MistakePattern]:
        """Context patterns, most frequent first."""
        entries = [p for p in self.patterns.values() if p.kind == 'context']
        return sorted(entries, key=lambda p: (-p.frequency, p.key))

    def to_entries(self) -> List[List[Any]]:
        return [[key, self.patterns[key].to_dict()] for key in sorted(self.patterns)]

    def load_entries(self, entries: List[List[Any]]) -> None:
        self.patterns = {key: MistakePattern.from_dict(key, data) for key, data in entries}


def syntax_error_pattern(error: Dict[str, Any]) -> str:
    """``<type>_<phrase>...`` for every key phrase found in the error message."""
    pattern = error.get('type') if isinstance(error.get('type'), str) and error['type'] else 'SYNTAX_ERROR'
    message = error.get('message')
    if isinstance(message, str):
        lowered = message.lower()
        pattern += ''.join(f"_{phrase}" for phrase in SYNTAX_KEY_PHRASES if phrase in lowered)
    return pattern


@dataclass
class SyntaxErrorRecord:
    key: str
    frequency: int = 0
    contexts: List[Dict[str, Any]] = field(default_factory=list)
    solutions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'frequency': self.frequency,
            'contexts': [dict(c) for c in self.contexts],
            'solutions': [dict(s) for s in self.solutions],
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'SyntaxErrorRecord':
        return cls(key=key, frequency=int(data['frequency']),
                   contexts=list(data.get('contexts') or []),
                   solutions=list(data.get('solutions') or []))


class SyntaxErrorMemory:
    """Syntax error shapes, where they occurred, and the fixes that resolved them."""

    def __init__(self, max_contexts: int = MAX_SYNTAX_CONTEXTS):
        self.max_contexts = max_contexts
        self.records: Dict[str, SyntaxErrorRecord] = {}

    def __len__(self) -> int:
        return len(self.records)

    def learn(self, error: Dict[str, Any]) -> Optional[SyntaxErrorRecord]:
        """Count one occurrence. Errors without a ``type`` are ignored."""
        if not isinstance(error, dict) or not isinstance(error.get('type'), str) or not error['type']:
            return None

        key = syntax_error_pattern(error)
        record = self.records.setdefault(key, SyntaxErrorRecord(key=key))
        now = to_iso(datetime.now())

        record.frequency += 1
        record.contexts.append({
            'file': error.get('filePath') or error.get('file'),
            'line': error.get('line'),
            'message': error.get('message'),
            'timestamp': now,
        })
        del record.contexts[:-self.max_contexts]

        if error.get('solution'):
            record.solutions.append({'solution': error['solution'], 'timestamp': now})

        logger.info(f"Learned from syntax error {key}")
        return record

    def get_suggestions(self, error: Dict[str, Any]) -> List[Any]:
        """Most recent solutions recorded for this error's shape."""
        if not isinstance(error, dict):
            return []
        record = self.records.get(syntax_error_pattern(error))
        if record is None:
            return []
        return [s['solution'] for s in record.solutions[-SYNTAX_SUGGESTION_LIMIT:]]

    def to_entries(self) -> List[List[Any]]:
        return [[key, self.records[key].to_dict()] for key in sorted(self.records)]

    def load_entries(self, entries: List[List[Any]]) -> None:
        self.records = {key: SyntaxErrorRecord.from_dict(key, data) for key, data in entries}
