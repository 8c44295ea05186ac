"""Per-issue-type ranking of fix methods by empirical success rate."""

import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.schema import Attempt
from fixlearn.utils.file_utils import to_iso

logger = logging.getLogger(__name__)


@dataclass
class SolutionRanking:
    issue_type: str
    best_solution: Optional[str] = None
    success_rate: float = 0.0
    alternatives: List[Dict[str, Any]] = field(default_factory=list)  # {method, success_rate, last_used}
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'best_solution': self.best_solution,
            'success_rate': self.success_rate,
            'alternatives': [dict(a) for a in self.alternatives],
            'attempts': self.attempts,
        }

    @classmethod
    def from_dict(cls, issue_type: str, data: Dict[str, Any]) -> 'SolutionRanking':
        return cls(
            issue_type=issue_type,
            best_solution=data.get('best_solution'),
            success_rate=float(data.get('success_rate') or 0.0),
            alternatives=list(data.get('alternatives') or []),
            attempts=int(data.get('attempts') or 0),
        )


class SolutionOptimizer:
    """Keeps the best known method per issue type."""

    def __init__(self):
        self.rankings: Dict[str, SolutionRanking] = {}
        self.logger = get_logger(component="solution_optimizer")

    def __len__(self) -> int:
        return len(self.rankings)

    def get_ranking(self, issue_type: str) -> Optional[SolutionRanking]:
        return self.rankings.get(issue_type)

    def record(self, attempt: Attempt, success_rate: Optional[float]) -> Optional[SolutionRanking]:
        """Count the attempt; on success re-rank its method.

        ``success_rate`` is the method's engine-wide empirical rate. The best
        solution only changes when that rate is strictly greater than the
        stored one.
        """
        if not attempt.issue_type:
            return None

        ranking = self.rankings.get(attempt.issue_type)
        if ranking is None:
            ranking = SolutionRanking(issue_type=attempt.issue_type)
            self.rankings[attempt.issue_type] = ranking

        ranking.attempts += 1

        if not attempt.succeeded or not attempt.fix_method:
            return ranking

        rate = success_rate or 0.0
        method = attempt.fix_method

        if ranking.best_solution is None or rate > ranking.success_rate:
            if ranking.best_solution != method:
                self.logger.info(
                    f"New best solution for {attempt.issue_type}: {method} ({rate:.2f})",
                    category=LogCategory.SOLUTION_RANKING,
                    metadata={'previous': ranking.best_solution}
                )
            ranking.best_solution = method
            ranking.success_rate = rate

        existing = next((a for a in ranking.alternatives if a['method'] == method), None)
        if existing is None:
            ranking.alternatives.append({
                'method': method,
                'success_rate': rate,
                'last_used': to_iso(attempt.timestamp),
            })
        else:
            existing['success_rate'] = rate
            existing['last_used'] = to_iso(attempt.timestamp)

        ranking.alternatives.sort(key=lambda a: a['success_rate'], reverse=True)
        return ranking

    def to_entries(self) -> List[List[Any]]:
        return [[key, self.rankings[key].to_dict()] for key in sorted(self.rankings)]

    def load_entries(self, entries: List[List[Any]]) -> None:
        self.rankings = {key: SolutionRanking.from_dict(key, data) for key, data in entries}
