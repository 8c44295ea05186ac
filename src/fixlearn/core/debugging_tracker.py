"""Initialization, getter and synchronous-operation timing, plus manual debugging sessions."""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.pattern_store import PatternStore, PatternKind
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)

INIT_HANG_SECONDS = 5.0
INIT_CRITICAL_SECONDS = 10.0
GETTER_HANG_SECONDS = 1.0
GETTER_CRITICAL_SECONDS = 5.0

SYNC_OPERATION_KINDS = ('file', 'state', 'blocking')


@dataclass
class HangReport:
    """A detected hang, ready to be reported to the issue detector."""
    issue_type: str
    subject: str
    duration: Optional[float]
    severity: str
    component: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class TimingRecord:
    name: str
    calls: int = 0
    total_time: float = 0.0
    max_time: float = 0.0
    hangs: int = 0
    last_start: Optional[float] = None
    last_end: Optional[float] = None

    @property
    def avg_time(self) -> float:
        return self.total_time / self.calls if self.calls else 0.0

    @property
    def hang_rate(self) -> float:
        return self.hangs / self.calls if self.calls else 0.0


@dataclass
class SyncOperationRecord:
    method: str
    file_ops: int = 0
    state_ops: int = 0
    blocking_ops: int = 0
    operations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_ops(self) -> int:
        return self.file_ops + self.state_ops + self.blocking_ops


@dataclass
class DebuggingRecord:
    """Manual debugging sessions for one ``component:issue`` pair."""
    key: str
    frequency: int = 0
    successes: int = 0
    failures: int = 0
    success_rate: float = 0.0
    total_time: float = 0.0
    solutions: List[Dict[str, Any]] = field(default_factory=list)
    last_seen: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('key')
        data['last_seen'] = to_iso(self.last_seen)
        return data

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'DebuggingRecord':
        return cls(
            key=key,
            frequency=int(data.get('frequency') or 0),
            successes=int(data.get('successes') or 0),
            failures=int(data.get('failures') or 0),
            success_rate=float(data.get('success_rate') or 0.0),
            total_time=float(data.get('total_time') or 0.0),
            solutions=list(data.get('solutions') or []),
            last_seen=from_iso(data.get('last_seen')),
        )


class TimingTracker:
    """Detects initialization hangs, slow getters and synchronous work inside getters.

    Every hang is also counted as a failure pattern in the pattern store so
    it feeds prediction and confidence scoring.
    """

    def __init__(self, pattern_store: PatternStore, max_getter_contexts: int = 50,
                 max_sync_operations: int = 100):
        self.pattern_store = pattern_store
        self.max_getter_contexts = max_getter_contexts
        self.max_sync_operations = max_sync_operations

        self.initialization: Dict[str, TimingRecord] = {}
        self.getters: Dict[str, TimingRecord] = {}
        self.getter_contexts: Dict[str, List[Dict[str, Any]]] = {}
        self.synchronous_operations: Dict[str, SyncOperationRecord] = {}

        self.logger = get_logger(component="timing_tracker")

    def track_initialization(self, component: str, start: float, end: Optional[float] = None) -> Optional[HangReport]:
        """Record one initialization; times are in seconds. A missing end means it never finished."""
        timing = self.initialization.setdefault(component, TimingRecord(name=component))
        timing.calls += 1
        timing.last_start = start

        duration = None
        if end is not None:
            duration = end - start
            timing.last_end = end
            timing.total_time += duration
            timing.max_time = max(timing.max_time, duration)
            if duration <= INIT_HANG_SECONDS:
                return None

        timing.hangs += 1
        severity = 'critical' if duration and duration > INIT_CRITICAL_SECONDS else 'high'
        self.pattern_store.record_outcome(
            PatternKind.INIT_HANG, component, {'severity': severity}, succeeded=False
        )
        self.logger.warning(
            f"Initialization hang detected in {component}",
            category=LogCategory.CHAIN_DETECTION,
            metadata={'duration': duration, 'severity': severity}
        )
        return HangReport('initialization_hang', component, duration, severity, component=component)

    def track_getter_call(self, method: str, start: float, end: Optional[float] = None,
                          component: Optional[str] = None) -> List[HangReport]:
        """Record one getter call; flags "constructor works but getter hangs"."""
        timing = self.getters.setdefault(method, TimingRecord(name=method))
        timing.calls += 1
        timing.last_start = start

        duration = None
        if end is not None:
            duration = end - start
            timing.last_end = end
            timing.total_time += duration
            timing.max_time = max(timing.max_time, duration)

        contexts = self.getter_contexts.setdefault(method, [])
        contexts.append({'start': start, 'end': end, 'duration': duration, 'component': component})
        del contexts[:-self.max_getter_contexts]

        if duration is not None and duration <= GETTER_HANG_SECONDS:
            return []

        timing.hangs += 1
        severity = 'critical' if duration and duration > GETTER_CRITICAL_SECONDS else 'high'
        self.pattern_store.record_outcome(PatternKind.GETTER_HANG, method, {'severity': severity}, succeeded=False)
        reports = [HangReport('getter_hang', method, duration, severity, component=component)]

        init = self.initialization.get(component or 'unknown')
        if init is not None and init.last_end is not None:
            self.pattern_store.record_outcome(
                PatternKind.CONSTRUCTOR_WORKS_GETTER_HANGS, f"{component}:{method}",
                {'severity': 'critical'}, succeeded=False
            )
            reports.append(HangReport('constructor_works_getter_hangs', method, duration, 'critical',
                                      component=component))
            self.logger.error(
                f"Constructor of {component} works but getter {method} hangs",
                category=LogCategory.CHAIN_DETECTION,
                include_stack=False
            )
        else:
            self.logger.warning(f"Getter hang detected in {method}", category=LogCategory.CHAIN_DETECTION,
                                metadata={'duration': duration})

        return reports

    def track_synchronous_operation(self, method: str, operation_kind: str,
                                    context: Optional[Dict[str, Any]] = None) -> Optional[HangReport]:
        """Record a file/state/blocking operation performed synchronously inside a getter."""
        if operation_kind not in SYNC_OPERATION_KINDS:
            return None

        ops = self.synchronous_operations.setdefault(method, SyncOperationRecord(method=method))
        if operation_kind == 'file':
            ops.file_ops += 1
        elif operation_kind == 'state':
            ops.state_ops += 1
        else:
            ops.blocking_ops += 1

        ops.operations.append({'kind': operation_kind, 'timestamp': to_iso(datetime.now()),
                               'context': dict(context or {})})
        del ops.operations[:-self.max_sync_operations]

        severity = 'critical' if ops.blocking_ops else 'high' if ops.file_ops else 'medium'
        self.pattern_store.record_outcome(PatternKind.SYNC_OP_IN_GETTER, method, {'severity': severity},
                                          succeeded=False)
        return HangReport('synchronous_operation_in_getter', method, None, severity)

    def get_initialization_hangs(self) -> List[Dict[str, Any]]:
        return _hang_summary(self.initialization, 'component')

    def get_getter_hangs(self) -> List[Dict[str, Any]]:
        return _hang_summary(self.getters, 'method')

    def get_synchronous_operations(self) -> List[Dict[str, Any]]:
        patterns = [
            {
                'method': method,
                'file_ops': ops.file_ops,
                'state_ops': ops.state_ops,
                'blocking_ops': ops.blocking_ops,
                'total_ops': ops.total_ops,
            }
            for method, ops in self.synchronous_operations.items()
            if ops.total_ops > 0
        ]
        return sorted(patterns, key=lambda p: p['total_ops'], reverse=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'initialization': {k: asdict(v) for k, v in sorted(self.initialization.items())},
            'getters': {k: asdict(v) for k, v in sorted(self.getters.items())},
            'synchronous_operations': {k: asdict(v) for k, v in sorted(self.synchronous_operations.items())},
        }

    def load(self, data: Dict[str, Any]) -> None:
        self.initialization = {k: TimingRecord(**v) for k, v in (data.get('initialization') or {}).items()}
        self.getters = {k: TimingRecord(**v) for k, v in (data.get('getters') or {}).items()}
        self.synchronous_operations = {
            k: SyncOperationRecord(**v) for k, v in (data.get('synchronous_operations') or {}).items()
        }


def _hang_summary(records: Dict[str, TimingRecord], label: str) -> List[Dict[str, Any]]:
    hangs = [
        {
            label: name,
            'hangs': timing.hangs,
            'calls': timing.calls,
            'max_time': timing.max_time,
            'avg_time': timing.avg_time,
            'hang_rate': timing.hang_rate,
        }
        for name, timing in records.items()
        if timing.hangs > 0
    ]
    return sorted(hangs, key=lambda h: h['hang_rate'], reverse=True)


class ManualDebuggingTracker:
    """What a person did by hand to find a root cause, keyed ``component:issue``."""

    def __init__(self, max_solutions: int = 5):
        self.max_solutions = max_solutions
        self.records: Dict[str, DebuggingRecord] = {}

    def __len__(self) -> int:
        return len(self.records)

    def track(self, component: Optional[str], issue: Optional[str], succeeded: bool,
              description: Optional[str] = None, steps: Optional[List[str]] = None,
              duration: float = 0.0) -> DebuggingRecord:
        key = f"{component or 'unknown'}:{issue or 'unknown'}"
        record = self.records.setdefault(key, DebuggingRecord(key=key))

        record.frequency += 1
        record.total_time += duration
        record.last_seen = datetime.now()

        if succeeded:
            record.successes += 1
            if description and not any(s['description'] == description for s in record.solutions):
                record.solutions.append({'description': description, 'steps': list(steps or [])})
                del record.solutions[:-self.max_solutions]
        else:
            record.failures += 1

        record.success_rate = record.successes / record.frequency
        return record

    def get_approach(self, component: Optional[str], issue: Optional[str]) -> Optional[Dict[str, Any]]:
        """The most detailed successful approach recorded for the pair."""
        record = self.records.get(f"{component or 'unknown'}:{issue or 'unknown'}")
        if record is None or not record.solutions:
            return None

        best = max(record.solutions, key=lambda s: len(s.get('steps') or []))
        return {
            'method': 'manual_debugging',
            'description': best['description'],
            'steps': list(best.get('steps') or []),
            'confidence': record.success_rate,
            'source': 'manual_debugging_pattern',
        }

    def to_entries(self) -> List[List[Any]]:
        return [[key, self.records[key].to_dict()] for key in sorted(self.records)]

    def load_entries(self, entries: List[List[Any]]) -> None:
        self.records = {key: DebuggingRecord.from_dict(key, data) for key, data in entries}
