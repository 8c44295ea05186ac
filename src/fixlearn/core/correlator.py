"""Causal & Cross-Issue Correlator

Links the issue behind a successful attempt to structurally related active
issues. Two issues are related when they share a root cause, share a type,
or have at least one detail key in common.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Callable
from dataclasses import dataclass, field

from fixlearn.core.collaborators import Issue, IssueDetector
from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.schema import Attempt
from fixlearn.utils.file_utils import to_iso, from_iso

logger = logging.getLogger(__name__)


class Relationship(Enum):
    SAME_ROOT_CAUSE = "same_root_cause"
    SAME_TYPE = "same_type"
    RELATED = "related"


@dataclass
class ChainLink:
    """One step of a causal chain. The first link is the attempt itself and has no relationship."""
    issue_type: str
    timestamp: datetime
    relationship: Optional[str] = None
    issue_id: Optional[str] = None
    fix_method: Optional[str] = None
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issue_type': self.issue_type,
            'timestamp': to_iso(self.timestamp),
            'relationship': self.relationship,
            'issue_id': self.issue_id,
            'fix_method': self.fix_method,
            'result': self.result,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChainLink':
        return cls(
            issue_type=data['issue_type'],
            timestamp=from_iso(data.get('timestamp')) or datetime.fromtimestamp(0),
            relationship=data.get('relationship'),
            issue_id=data.get('issue_id'),
            fix_method=data.get('fix_method'),
            result=data.get('result'),
        )


@dataclass
class CausalChain:
    issue_id: str
    links: List[ChainLink] = field(default_factory=list)

    @property
    def tagged_links(self) -> int:
        return sum(1 for link in self.links if link.relationship)

    def to_dict(self) -> Dict[str, Any]:
        return {'issue_id': self.issue_id, 'links': [link.to_dict() for link in self.links]}

    @classmethod
    def from_dict(cls, issue_id: str, data: Dict[str, Any]) -> 'CausalChain':
        return cls(issue_id=issue_id, links=[ChainLink.from_dict(link) for link in data.get('links', [])])


@dataclass
class CrossIssueLink:
    """Knowledge shared by an unordered pair of issue types."""
    key: str
    issue_types: List[str]
    related_issues: List[Dict[str, str]] = field(default_factory=list)  # {id, type}
    common_solutions: List[Dict[str, Any]] = field(default_factory=list)  # {method, success_rate, last_used}
    frequency: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issue_types': list(self.issue_types),
            'related_issues': [dict(r) for r in self.related_issues],
            'common_solutions': [dict(s) for s in self.common_solutions],
            'frequency': self.frequency,
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'CrossIssueLink':
        return cls(
            key=key,
            issue_types=list(data.get('issue_types') or key.split(':', 1)),
            related_issues=list(data.get('related_issues') or []),
            common_solutions=list(data.get('common_solutions') or []),
            frequency=int(data.get('frequency') or 0),
        )


def are_similar(first: Issue, second: Issue) -> bool:
    """Non-empty intersection of detail keys."""
    return bool(set(first.details or {}) & set(second.details or {}))


def relationship_between(root: Issue, other: Issue) -> Optional[Relationship]:
    if root.root_cause and root.root_cause == other.root_cause:
        return Relationship.SAME_ROOT_CAUSE
    if root.type == other.type:
        return Relationship.SAME_TYPE
    if are_similar(root, other):
        return Relationship.RELATED
    return None


def pair_key(first_type: str, second_type: str) -> str:
    return ':'.join(sorted((first_type, second_type)))


class CausalCorrelator:
    """Causal chains keyed by issue id and cross-issue links keyed by type pair."""

    def __init__(self, max_chain_links: int = 20):
        self.max_chain_links = max_chain_links
        self.causal_chains: Dict[str, CausalChain] = {}
        self.cross_issue_links: Dict[str, CrossIssueLink] = {}

        self.stats = {
            'chains_built': 0,
            'cross_issue_updates': 0,
        }

        self.logger = get_logger(component="causal_correlator")

    def analyze_causal_chain(self, attempt: Attempt, issue_detector: Optional[IssueDetector]) -> Optional[CausalChain]:
        """Build the chain rooted at the attempt's issue."""
        if issue_detector is None or not attempt.issue_id:
            return None

        issue = issue_detector.get_issue(attempt.issue_id)
        if issue is None:
            return None

        chain = CausalChain(issue_id=issue.id, links=[ChainLink(
            issue_type=attempt.issue_type or issue.type,
            timestamp=attempt.timestamp,
            issue_id=issue.id,
            fix_method=attempt.fix_method,
            result=attempt.result.value,
        )])

        for other in issue_detector.get_active_issues():
            if other.id == issue.id:
                continue
            relationship = relationship_between(issue, other)
            if relationship is None:
                continue
            chain.links.append(ChainLink(
                issue_type=other.type,
                timestamp=other.first_seen,
                relationship=relationship.value,
                issue_id=other.id,
            ))

        del chain.links[self.max_chain_links:]
        self.causal_chains[issue.id] = chain
        self.stats['chains_built'] += 1

        self.logger.debug(
            f"Causal chain for {issue.id} has {len(chain.links)} links",
            category=LogCategory.CORRELATION,
            metadata={'tagged_links': chain.tagged_links}
        )
        return chain

    def learn_cross_issue(self, attempt: Attempt, issue_detector: Optional[IssueDetector],
                          rate_of: Callable[[str], Optional[float]]) -> List[CrossIssueLink]:
        """Update the link of every (issue type, similar issue type) pair."""
        if issue_detector is None or not attempt.issue_id:
            return []

        issue = issue_detector.get_issue(attempt.issue_id)
        if issue is None:
            return []

        issue_type = attempt.issue_type or issue.type
        updated = []

        for other in issue_detector.get_active_issues():
            if other.id == issue.id or not are_similar(issue, other):
                continue

            key = pair_key(issue_type, other.type)
            link = self.cross_issue_links.get(key)
            if link is None:
                link = CrossIssueLink(key=key, issue_types=sorted((issue_type, other.type)))
                self.cross_issue_links[key] = link

            link.frequency += 1
            if not any(r['id'] == other.id for r in link.related_issues):
                link.related_issues.append({'id': other.id, 'type': other.type})

            if attempt.succeeded and attempt.fix_method and \
                    not any(s['method'] == attempt.fix_method for s in link.common_solutions):
                rate = rate_of(attempt.fix_method)
                link.common_solutions.append({
                    'method': attempt.fix_method,
                    'success_rate': rate if rate is not None else 0.0,
                    'last_used': to_iso(attempt.timestamp),
                })

            updated.append(link)

        if updated:
            self.stats['cross_issue_updates'] += len(updated)
            self.logger.debug(
                f"Updated {len(updated)} cross-issue links for {issue_type}",
                category=LogCategory.CORRELATION
            )
        return updated

    def chains_to_entries(self) -> List[List[Any]]:
        return [[key, self.causal_chains[key].to_dict()] for key in sorted(self.causal_chains)]

    def links_to_entries(self) -> List[List[Any]]:
        return [[key, self.cross_issue_links[key].to_dict()] for key in sorted(self.cross_issue_links)]

    def load_chains(self, entries: List[List[Any]]) -> None:
        self.causal_chains = {key: CausalChain.from_dict(key, data) for key, data in entries}

    def load_links(self, entries: List[List[Any]]) -> None:
        self.cross_issue_links = {key: CrossIssueLink.from_dict(key, data) for key, data in entries}
