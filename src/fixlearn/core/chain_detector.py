"""Cycle & Chain Detector

Recognizes circular call sequences and chains of blocking operations, and
keeps the mitigations that worked keyed by the exact chain signature.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Sequence, Union
from dataclasses import dataclass, field

import networkx as nx

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)

CHAIN_SEPARATOR = " → "

# Method-name fragments that mark an operation as blocking.
BLOCKING_NAME_MARKERS = ('Sync', 'readFileSync', 'writeFileSync', '_sync')

# Issue-type fragments routed to each detector, checked in this order.
CIRCULAR_ISSUE_MARKERS = ('hang', 'circular', 'loop')
BLOCKING_ISSUE_MARKERS = ('blocking', 'sync', 'hang')

DEFAULT_DESCRIPTIONS = {
    'circular_dependency': 'Break the circular dependency by making one call in the cycle asynchronous',
    'blocking_chain': 'Break the blocking chain by making the operations asynchronous',
}


class ChainKind(Enum):
    CIRCULAR_DEPENDENCY = "circular_dependency"
    BLOCKING_CHAIN = "blocking_chain"


@dataclass
class Mitigation:
    method: str
    description: str
    confidence: float
    source: str


@dataclass
class ChainRecord:
    """A recognized chain and the mitigations tried against it."""
    signature: str
    kind: str
    chain: List[str]
    frequency: int = 0
    solutions: List[Dict[str, Any]] = field(default_factory=list)  # one per method
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def best_solution(self) -> Optional[Dict[str, Any]]:
        if not self.solutions:
            return None
        return max(self.solutions, key=lambda s: s['success_rate'])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'chain': list(self.chain),
            'frequency': self.frequency,
            'solutions': [dict(s) for s in self.solutions],
            'first_seen': to_iso(self.first_seen),
            'last_seen': to_iso(self.last_seen),
        }

    @classmethod
    def from_dict(cls, signature: str, data: Dict[str, Any]) -> 'ChainRecord':
        return cls(
            signature=signature,
            kind=data.get('kind', ChainKind.CIRCULAR_DEPENDENCY.value),
            chain=list(data['chain']),
            frequency=int(data.get('frequency') or 0),
            solutions=list(data.get('solutions') or []),
            first_seen=from_iso(data.get('first_seen')),
            last_seen=from_iso(data.get('last_seen')),
        )


@dataclass
class ChainDetection:
    """Result of a detection call."""
    kind: ChainKind
    chain: List[str]
    signature: str
    frequency: int
    severity: str
    mitigation: Mitigation


def chain_signature(chain: Sequence[str]) -> str:
    return CHAIN_SEPARATOR.join(chain)


def find_cycle_window(sequence: Sequence[str]) -> Optional[List[str]]:
    """First window of 3 (or 4) consecutive calls whose last call repeats the first."""
    if len(sequence) < 3:
        return None

    for i in range(len(sequence) - 2):
        start = sequence[i]
        if sequence[i + 2] == start:
            return list(sequence[i:i + 3])
        if i + 3 < len(sequence) and sequence[i + 3] == start:
            return list(sequence[i:i + 4])

    return None


def _operation_name(op: Union[str, Dict[str, Any]]) -> Optional[str]:
    if isinstance(op, str):
        return op or None
    if not isinstance(op, dict):
        return None
    name = op.get('method') or op.get('type')
    return str(name) if name else None


def is_blocking(op: Union[str, Dict[str, Any]]) -> bool:
    if isinstance(op, str):
        return any(marker in op for marker in BLOCKING_NAME_MARKERS)

    if not isinstance(op, dict):
        return False
    if op.get('type') == 'sync' or op.get('blocking') is True:
        return True

    method = str(op.get('method') or '')
    return any(marker in method for marker in BLOCKING_NAME_MARKERS)


class ChainDetector:
    """Circular-dependency and blocking-chain records keyed by chain signature."""

    def __init__(self, default_method: str = "make_async", default_confidence: float = 0.85,
                 max_solutions: int = 10):
        self.default_method = default_method
        self.default_confidence = default_confidence
        self.max_solutions = max_solutions

        self.records: Dict[ChainKind, Dict[str, ChainRecord]] = {
            ChainKind.CIRCULAR_DEPENDENCY: {},
            ChainKind.BLOCKING_CHAIN: {},
        }

        self.stats = {
            'cycles_detected': 0,
            'blocking_chains_detected': 0,
            'mitigations_recorded': 0,
        }

        self.logger = get_logger(component="chain_detector")

    def detect_circular_dependency(self, sequence: Sequence[str]) -> Optional[ChainDetection]:
        chain = find_cycle_window(list(sequence or []))
        if chain is None:
            return None

        self.stats['cycles_detected'] += 1
        return self._track(ChainKind.CIRCULAR_DEPENDENCY, chain, severity='critical')

    def detect_blocking_chain(self, operations: Sequence[Union[str, Dict[str, Any]]]) -> Optional[ChainDetection]:
        blocking = [op for op in operations or [] if is_blocking(op)]
        chain = [name for name in (_operation_name(op) for op in blocking) if name]
        # Unnamed operations cannot be keyed; a chain needs two named links
        if len(chain) < 2:
            return None

        self.stats['blocking_chains_detected'] += 1
        return self._track(ChainKind.BLOCKING_CHAIN, chain, severity='high')

    def _track(self, kind: ChainKind, chain: List[str], severity: str) -> ChainDetection:
        signature = chain_signature(chain)
        now = datetime.now()

        record = self.records[kind].get(signature)
        if record is None:
            record = ChainRecord(signature=signature, kind=kind.value, chain=list(chain), first_seen=now)
            self.records[kind][signature] = record

        record.frequency += 1
        record.last_seen = now

        self.logger.info(
            f"{kind.value.replace('_', ' ').capitalize()} tracked: {signature}",
            category=LogCategory.CHAIN_DETECTION,
            metadata={'frequency': record.frequency, 'solutions': len(record.solutions)}
        )

        return ChainDetection(
            kind=kind,
            chain=list(record.chain),
            signature=signature,
            frequency=record.frequency,
            severity=severity,
            mitigation=self.get_mitigation(kind, chain),
        )

    def get_mitigation(self, kind: ChainKind, chain: Sequence[str]) -> Mitigation:
        """Best proven mitigation for this exact chain, or the conservative default."""
        record = self.records[kind].get(chain_signature(chain))
        best = record.best_solution() if record else None
        if best:
            return Mitigation(
                method=best['method'],
                description=best.get('description') or DEFAULT_DESCRIPTIONS[kind.value],
                confidence=best['success_rate'],
                source=f"{kind.value}_pattern",
            )
        return self._default_mitigation(kind)

    def best_known_mitigation(self, kind: ChainKind) -> Mitigation:
        """Highest-rated mitigation across every chain of a kind."""
        candidates = [
            (record.best_solution(), record)
            for record in self.records[kind].values()
            if record.solutions
        ]
        if not candidates:
            return self._default_mitigation(kind)

        best, record = max(candidates, key=lambda c: (c[0]['success_rate'], c[1].frequency))
        return Mitigation(
            method=best['method'],
            description=best.get('description') or DEFAULT_DESCRIPTIONS[kind.value],
            confidence=best['success_rate'],
            source=f"{kind.value}_pattern",
        )

    def _default_mitigation(self, kind: ChainKind) -> Mitigation:
        return Mitigation(
            method=self.default_method,
            description=DEFAULT_DESCRIPTIONS[kind.value],
            confidence=self.default_confidence,
            source="default",
        )

    def record_mitigation(self, kind: ChainKind, chain: Sequence[str], method: str,
                          succeeded: bool, description: Optional[str] = None) -> Optional[ChainRecord]:
        """Count the outcome of applying ``method`` to a previously detected chain."""
        record = self.records[kind].get(chain_signature(chain))
        if record is None:
            return None

        solution = next((s for s in record.solutions if s['method'] == method), None)
        if solution is None:
            if len(record.solutions) >= self.max_solutions:
                return record
            solution = {'method': method, 'description': description or "", 'attempts': 0,
                        'successes': 0, 'success_rate': 0.0}
            record.solutions.append(solution)

        solution['attempts'] += 1
        if succeeded:
            solution['successes'] += 1
        solution['success_rate'] = solution['successes'] / solution['attempts']
        if description:
            solution['description'] = description

        self.stats['mitigations_recorded'] += 1
        return record

    def route_issue_type(self, issue_type: str) -> Optional[ChainKind]:
        lowered = issue_type.lower()
        if any(marker in lowered for marker in CIRCULAR_ISSUE_MARKERS):
            return ChainKind.CIRCULAR_DEPENDENCY
        if any(marker in lowered for marker in BLOCKING_ISSUE_MARKERS):
            return ChainKind.BLOCKING_CHAIN
        return None

    def find_call_graph_cycles(self, sequence: Sequence[str]) -> List[List[str]]:
        """All simple cycles in the graph of consecutive calls, including long loops."""
        graph = nx.DiGraph()
        calls = list(sequence or [])
        graph.add_nodes_from(calls)
        graph.add_edges_from(zip(calls, calls[1:]))

        first_index = {}
        for index, call in enumerate(calls):
            first_index.setdefault(call, index)

        cycles = []
        try:
            for cycle in nx.simple_cycles(graph):
                if len(cycle) > 1:
                    start = min(range(len(cycle)), key=lambda i: first_index[cycle[i]])
                    cycles.append(cycle[start:] + cycle[:start])
        except nx.NetworkXException as e:
            logger.error(f"Call graph cycle detection error: {e}")

        return sorted(cycles, key=lambda c: (first_index[c[0]], len(c)))

    def count(self, kind: ChainKind) -> int:
        return len(self.records[kind])

    def to_entries(self, kind: ChainKind) -> List[List[Any]]:
        records = self.records[kind]
        return [[key, records[key].to_dict()] for key in sorted(records)]

    def load_entries(self, kind: ChainKind, entries: List[List[Any]]) -> None:
        self.records[kind] = {key: ChainRecord.from_dict(key, data) for key, data in entries}
