"""Interfaces of the systems the learning engine consumes.

The issue detector, fix tracker and compliance tracker live outside this
package. The engine only needs the small surfaces below; the in-memory
implementations are enough to embed the engine or drive it from tests.
"""

from datetime import datetime
from typing import Dict, Any, List, Optional, Protocol, runtime_checkable
from dataclasses import dataclass, field


@dataclass
class Issue:
    """A detected problem as reported by the issue detector."""
    id: str
    type: str
    root_cause: Optional[str] = None
    details: Dict[str, str] = field(default_factory=dict)
    first_seen: datetime = field(default_factory=datetime.now)


@runtime_checkable
class IssueDetector(Protocol):
    def get_issue(self, issue_id: str) -> Optional[Issue]:
        ...

    def get_active_issues(self) -> List[Issue]:
        ...


@runtime_checkable
class FixTracker(Protocol):
    success_rates: Dict[str, Dict[str, Any]]

    def get_success_rate(self, method: str) -> float:
        ...


@runtime_checkable
class ComplianceSource(Protocol):
    def get_success_ratio(self) -> Optional[float]:
        """Ratio in [0, 1], or None while nothing has been tracked."""
        ...


class InMemoryIssueDetector:
    """Issue registry keyed by id."""

    def __init__(self, issues: Optional[List[Issue]] = None):
        self.issues: Dict[str, Issue] = {}
        self.resolved: set = set()
        for issue in issues or []:
            self.add_issue(issue)

    def add_issue(self, issue: Issue) -> None:
        self.issues[issue.id] = issue
        self.resolved.discard(issue.id)

    def resolve(self, issue_id: str) -> None:
        self.resolved.add(issue_id)

    def get_issue(self, issue_id: str) -> Optional[Issue]:
        return self.issues.get(issue_id)

    def get_active_issues(self) -> List[Issue]:
        return [issue for issue_id, issue in self.issues.items() if issue_id not in self.resolved]


class InMemoryFixTracker:
    """Per-method attempt counts and success rates."""

    def __init__(self):
        self.success_rates: Dict[str, Dict[str, Any]] = {}

    def record(self, method: str, succeeded: bool) -> None:
        stats = self.success_rates.setdefault(method, {'attempts': 0, 'successes': 0, 'rate': 0.0})
        stats['attempts'] += 1
        if succeeded:
            stats['successes'] += 1
        stats['rate'] = stats['successes'] / stats['attempts']

    def set_rate(self, method: str, rate: float) -> None:
        self.success_rates[method] = {'attempts': 0, 'successes': 0, 'rate': rate}

    def get_success_rate(self, method: str) -> float:
        return self.success_rates.get(method, {}).get('rate', 0.0)


class StaticCompliance:
    """Compliance source returning a fixed ratio."""

    def __init__(self, ratio: Optional[float] = None):
        self.ratio = ratio

    def get_success_ratio(self) -> Optional[float]:
        return self.ratio
