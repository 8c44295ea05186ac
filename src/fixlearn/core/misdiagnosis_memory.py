"""Misdiagnosis Memory

Remembers symptom families that are commonly diagnosed wrongly, what the
actual root cause turned out to be, and which methods already failed for an
issue type, so callers can be warned before repeating a known mistake.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.pattern_generalizer import as_number
from fixlearn.core.schema import Attempt
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)


# Known symptom families. ``symptom`` is a pipe-separated list of substrings
# matched case-insensitively against the error message.
SEEDED_MISDIAGNOSES: List[Dict[str, Any]] = [
    {
        'key': 'powershell_bracket_error_misdiagnosis',
        'symptom': 'bracket missing|missing closing bracket|unexpected token',
        'common_misdiagnosis': 'Searching for missing brackets throughout the code',
        'actual_root_cause': 'Missing catch block in try statement',
        'correct_approach': 'Check try/catch structure first, then brackets',
        'component': 'PowerShell',
        'issue_type': 'powershell_syntax_error',
    },
    {
        'key': 'circular_sync_hang_misdiagnosis',
        'symptom': 'hang|not responding|maximum call stack',
        'common_misdiagnosis': 'Adding timeouts or retries around the hanging call',
        'actual_root_cause': 'Synchronous circular call chain between components',
        'correct_approach': 'Trace the call sequence and break the cycle with an asynchronous boundary',
        'component': None,
        'issue_type': 'hang',
    },
    {
        'key': 'undefined_before_init_misdiagnosis',
        'symptom': 'undefined|cannot read propert|before initialization',
        'common_misdiagnosis': 'Adding default values where the undefined value is read',
        'actual_root_cause': 'Dependency used before its initialization finished',
        'correct_approach': 'Add an initialization guard and defer access until the dependency is ready',
        'component': None,
        'issue_type': 'undefined',
    },
]


@dataclass
class MisdiagnosisPattern:
    """Symptom -> wrong approach -> actual root cause -> correct approach."""
    key: str
    symptom: str
    common_misdiagnosis: str = ""
    actual_root_cause: str = ""
    correct_approach: str = ""
    component: Optional[str] = None
    issue_type: Optional[str] = None
    frequency: int = 0
    time_wasted: float = 0.0
    successes: int = 0
    failures: int = 0
    success_rate: float = 0.0
    last_seen: Optional[datetime] = None

    def matches_symptom(self, text: Optional[str]) -> bool:
        if not text or not self.symptom:
            return False
        lowered = text.lower()
        return any(part.strip() and part.strip().lower() in lowered for part in self.symptom.split('|'))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['last_seen'] = to_iso(self.last_seen)
        return data

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'MisdiagnosisPattern':
        fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        fields['key'] = key
        fields['last_seen'] = from_iso(data.get('last_seen'))
        return cls(**fields)


@dataclass
class FailedMethod:
    """A method that already failed for an issue type."""
    method: str
    frequency: int = 0
    time_wasted: float = 0.0
    last_attempt: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'frequency': self.frequency,
            'time_wasted': self.time_wasted,
            'last_attempt': to_iso(self.last_attempt),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FailedMethod':
        return cls(
            method=data['method'],
            frequency=int(data.get('frequency') or 0),
            time_wasted=float(data.get('time_wasted') or 0.0),
            last_attempt=from_iso(data.get('last_attempt')),
        )


@dataclass
class MisdiagnosisPrevention:
    """Advice returned before a fix is attempted."""
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    failed_methods: List[FailedMethod] = field(default_factory=list)
    correct_approach: Optional[str] = None
    common_misdiagnosis: Optional[str] = None
    time_savings: float = 0.0

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings or self.failed_methods)


def _loose_match(expected: Optional[str], actual: Optional[str]) -> bool:
    """Missing values are wildcards; otherwise either side may contain the other."""
    if not expected or not actual or expected.lower() == 'any':
        return True
    expected, actual = expected.lower(), actual.lower()
    return expected in actual or actual in expected


def _annotation(details: Dict[str, Any], name: str, legacy_name: str) -> Any:
    return details.get(name) or details.get(legacy_name)


def _text_annotation(details: Dict[str, Any], name: str, legacy_name: str) -> Optional[str]:
    value = _annotation(details, name, legacy_name)
    return value if isinstance(value, str) else None


class MisdiagnosisMemory:
    """Misdiagnosis records and per-issue-type failed methods."""

    def __init__(self):
        self.records: Dict[str, MisdiagnosisPattern] = {}
        self.failed_methods: Dict[str, Dict[str, FailedMethod]] = {}

        self.stats = {
            'misdiagnoses_matched': 0,
            'records_created': 0,
            'failed_methods_recorded': 0,
        }

        self.logger = get_logger(component="misdiagnosis_memory")
        self._seed()

    def _seed(self) -> None:
        for seed in SEEDED_MISDIAGNOSES:
            if seed['key'] not in self.records:
                self.records[seed['key']] = MisdiagnosisPattern(**seed)

    def __len__(self) -> int:
        return len(self.records)

    def track(self, attempt: Attempt) -> List[MisdiagnosisPattern]:
        """Update every symptom family the attempt belongs to.

        Runs for both outcomes. A successful attempt carrying
        ``actual_root_cause`` / ``correct_approach`` in its fix details
        overwrites the stored diagnosis.
        """
        text = attempt.error_message or attempt.issue_type
        if not text:
            return []

        details = attempt.fix_details
        annotated = as_number(_annotation(details, 'time_wasted', 'timeWasted'))
        time_wasted = float(annotated if annotated is not None and annotated >= 0 else attempt.duration)
        matched = []

        for record in self.records.values():
            if not (record.matches_symptom(text)
                    and _loose_match(record.component, attempt.component)
                    and _loose_match(record.issue_type, attempt.issue_type)):
                continue

            record.frequency += 1
            record.last_seen = attempt.timestamp
            if attempt.succeeded:
                record.successes += 1
                root_cause = _text_annotation(details, 'actual_root_cause', 'actualRootCause')
                approach = _text_annotation(details, 'correct_approach', 'correctApproach')
                if root_cause:
                    record.actual_root_cause = root_cause
                if approach:
                    record.correct_approach = approach
            else:
                record.failures += 1
                record.time_wasted += time_wasted
            record.success_rate = record.successes / record.frequency
            matched.append(record)

        if not matched and not attempt.succeeded:
            created = self._create_from_annotation(attempt, time_wasted)
            if created:
                matched.append(created)

        if matched:
            self.stats['misdiagnoses_matched'] += len(matched)
            self.logger.info(
                f"Misdiagnosis pattern matched for {attempt.issue_type or text}",
                category=LogCategory.MISDIAGNOSIS,
                metadata={'records': [r.key for r in matched], 'result': attempt.result.value}
            )

        return matched

    def _create_from_annotation(self, attempt: Attempt, time_wasted: float) -> Optional[MisdiagnosisPattern]:
        details = attempt.fix_details
        symptom = details.get('symptom') if isinstance(details.get('symptom'), str) else None
        root_cause = _text_annotation(details, 'actual_root_cause', 'actualRootCause')
        if not symptom or not root_cause or not attempt.issue_type:
            return None

        key = f"{attempt.issue_type}:{attempt.fix_method or 'unknown'}"
        record = MisdiagnosisPattern(
            key=key,
            symptom=symptom,
            common_misdiagnosis=attempt.fix_method or _text_annotation(details, 'wrong_approach', 'wrongApproach') or "",
            actual_root_cause=root_cause,
            correct_approach=_text_annotation(details, 'correct_approach', 'correctApproach') or "",
            component=attempt.component,
            issue_type=attempt.issue_type,
            frequency=1,
            failures=1,
            time_wasted=time_wasted,
            last_seen=attempt.timestamp,
        )
        self.records[key] = record
        self.stats['records_created'] += 1
        return record

    def record_failed_method(self, attempt: Attempt) -> Optional[FailedMethod]:
        """Remember that a method did not work for an issue type."""
        if attempt.succeeded or not attempt.issue_type or not attempt.fix_method:
            return None

        methods = self.failed_methods.setdefault(attempt.issue_type, {})
        failed = methods.get(attempt.fix_method)
        if failed is None:
            failed = FailedMethod(method=attempt.fix_method)
            methods[attempt.fix_method] = failed

        failed.frequency += 1
        failed.time_wasted += attempt.duration or 0.0
        failed.last_attempt = attempt.timestamp
        self.stats['failed_methods_recorded'] += 1
        return failed

    def get_prevention(self, issue_type: Optional[str], error_message: Optional[str] = None,
                       component: Optional[str] = None) -> MisdiagnosisPrevention:
        """Warnings for matching records, most time wasted first, plus already-failed methods."""
        prevention = MisdiagnosisPrevention()
        search_text = error_message or issue_type
        matching = []

        for record in self.records.values():
            symptom_match = record.matches_symptom(search_text)
            issue_type_match = bool(issue_type and record.issue_type) and _loose_match(record.issue_type, issue_type)
            if not (symptom_match or issue_type_match) or not _loose_match(record.component, component):
                continue
            if record.frequency >= 1 or record.actual_root_cause:
                matching.append(record)

        matching.sort(key=lambda r: (r.time_wasted, r.frequency), reverse=True)

        for record in matching:
            prevention.warnings.append({
                'type': 'MISDIAGNOSIS_WARNING',
                'pattern': record.key,
                'message': f"Common misdiagnosis detected: {record.common_misdiagnosis}",
                'common_misdiagnosis': record.common_misdiagnosis,
                'actual_root_cause': record.actual_root_cause,
                'correct_approach': record.correct_approach,
                'frequency': record.frequency,
                'time_wasted': record.time_wasted,
                'success_rate': record.success_rate,
            })

        if matching:
            top = matching[0]
            prevention.correct_approach = top.correct_approach or None
            prevention.common_misdiagnosis = top.common_misdiagnosis or None
            prevention.time_savings = top.time_wasted

        if issue_type:
            prevention.failed_methods = sorted(
                self.failed_methods.get(issue_type, {}).values(),
                key=lambda m: (m.frequency, m.time_wasted),
                reverse=True
            )

        return prevention

    # Serialization -----------------------------------------------------

    def records_to_entries(self) -> List[List[Any]]:
        return [[key, self.records[key].to_dict()] for key in sorted(self.records)]

    def failed_methods_to_entries(self) -> List[List[Any]]:
        return [
            [issue_type, [m.to_dict() for _, m in sorted(self.failed_methods[issue_type].items())]]
            for issue_type in sorted(self.failed_methods)
        ]

    def load_records(self, entries: List[List[Any]]) -> None:
        self.records = {key: MisdiagnosisPattern.from_dict(key, data) for key, data in entries}
        self._seed()

    def load_failed_methods(self, entries: List[List[Any]]) -> None:
        self.failed_methods = {
            issue_type: {m['method']: FailedMethod.from_dict(m) for m in methods}
            for issue_type, methods in entries
        }
