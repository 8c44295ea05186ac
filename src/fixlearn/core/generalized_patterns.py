"""Maps successful attempts onto abstract problem categories.

A successful attempt is first classified into a specific pattern key
(``<component>.initialization_hang``, ``undefined_access.missing_guard`` ...)
and the specific key is then mapped onto a general category such as
``initialization_race_condition``. Both steps use ordered rule tables; the
first matching rule wins.
"""

import logging
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field

from fixlearn.core.enhanced_logger import get_logger, LogCategory
from fixlearn.core.schema import Attempt

logger = logging.getLogger(__name__)

# (attempt field, substrings, specific key template). ``{component}`` is
# replaced with the attempt's component, or "unknown".
SPECIFIC_PATTERN_RULES: List[Tuple[str, Tuple[str, ...], str]] = [
    ('issue_type', ('timing',), '{component}.timing_issue'),
    ('issue_type', ('initialization', 'init_hang'), '{component}.initialization_hang'),
    ('issue_type', ('circular',), 'circular_dependency.synchronous_loop'),
    ('fix_method', ('setImmediate', 'make_async'), 'circular_dependency.synchronous_loop'),
    ('issue_type', ('undefined',), 'undefined_access.missing_guard'),
    ('fix_method', ('guard',), 'undefined_access.missing_guard'),
]

# (substring of the specific key, general category)
GENERAL_CATEGORY_RULES: List[Tuple[str, str]] = [
    ('misdiagnosis', 'symptom_vs_root_cause_misdiagnosis'),
    ('powershell_bracket_error', 'error_message_misleading_pattern'),
    ('timing', 'initialization_race_condition'),
    ('initialization', 'initialization_race_condition'),
    ('circular', 'synchronous_loop_pattern'),
    ('loop', 'synchronous_loop_pattern'),
    ('undefined', 'missing_dependency_guard'),
    ('guard', 'missing_dependency_guard'),
    ('hang', 'blocking_operation_pattern'),
    ('blocking', 'blocking_operation_pattern'),
]
DEFAULT_GENERAL_CATEGORY = 'general_fix_pattern'

# (substring of the fix method, general solution text)
GENERAL_SOLUTION_RULES: List[Tuple[str, str]] = [
    ('setImmediate', 'Delay async operations and add guards'),
    ('guard', 'Add guards before accessing dependencies'),
    ('try', 'Wrap operations in try/catch blocks'),
    ('catch', 'Wrap operations in try/catch blocks'),
    ('async', 'Make operations async to break blocking chains'),
]
DEFAULT_GENERAL_SOLUTION = 'Apply learned solution pattern'

BRACKET_MISDIAGNOSIS_METHODS = ('search_brackets', 'find_missing_bracket')
BRACKET_CORRECT_METHODS = ('try_catch', 'check_try_catch')


@dataclass
class GeneralizedPattern:
    key: str
    general_solution: str
    specific_instances: List[str] = field(default_factory=list)
    success_rate: float = 0.0
    attempts: int = 0
    successes: int = 0
    applicable_to: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'general_solution': self.general_solution,
            'specific_instances': sorted(self.specific_instances),
            'success_rate': self.success_rate,
            'attempts': self.attempts,
            'successes': self.successes,
            'applicable_to': sorted(self.applicable_to),
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'GeneralizedPattern':
        return cls(
            key=key,
            general_solution=data.get('general_solution') or DEFAULT_GENERAL_SOLUTION,
            specific_instances=sorted(data.get('specific_instances') or []),
            success_rate=float(data.get('success_rate') or 0.0),
            attempts=int(data.get('attempts') or 0),
            successes=int(data.get('successes') or 0),
            applicable_to=sorted(data.get('applicable_to') or []),
        )


def _bracket_pattern(attempt: Attempt) -> Optional[str]:
    issue_type = (attempt.issue_type or '').lower()
    component = attempt.component or ''
    message = (attempt.error_message or '').lower()
    method = attempt.fix_method or ''
    approach = attempt.fix_details.get('approach')

    if not ('powershell' in issue_type or 'syntax_error' in issue_type):
        return None
    if not ('PowerShell' in component or 'ps1' in component):
        return None
    if not any(word in message for word in ('bracket', 'missing', 'unexpected')):
        return None

    if any(m in method for m in BRACKET_MISDIAGNOSIS_METHODS) or approach == 'search_for_brackets':
        return 'powershell_bracket_error_misdiagnosis'
    if any(m in method for m in BRACKET_CORRECT_METHODS) or approach == 'check_try_catch_structure':
        return 'powershell_bracket_error_try_catch_fix'
    return None


def detect_specific_pattern(attempt: Attempt) -> Optional[str]:
    """Specific pattern key for an attempt, or None when no rule applies."""
    bracket = _bracket_pattern(attempt)
    if bracket:
        return bracket

    for attribute, substrings, template in SPECIFIC_PATTERN_RULES:
        value = getattr(attempt, attribute) or ''
        if any(s in value for s in substrings):
            return template.format(component=attempt.component or 'unknown')

    return None


def map_to_general_pattern(specific_key: str) -> str:
    for substring, category in GENERAL_CATEGORY_RULES:
        if substring in specific_key:
            return category
    return DEFAULT_GENERAL_CATEGORY


def extract_general_solution(attempt: Attempt, specific_key: Optional[str]) -> str:
    if specific_key == 'powershell_bracket_error_try_catch_fix':
        return 'For PowerShell bracket errors: check try/catch structure first, then brackets'
    if specific_key and 'misdiagnosis' in specific_key:
        return 'Avoid common misdiagnosis: check the actual root cause before treating the symptom'

    method = attempt.fix_method or ''
    for substring, solution in GENERAL_SOLUTION_RULES:
        if substring in method:
            return solution
    return DEFAULT_GENERAL_SOLUTION


class PatternGeneralizationIndex:
    """Generalized patterns plus the specific -> general rule map built from them."""

    def __init__(self):
        self.patterns: Dict[str, GeneralizedPattern] = {}
        self.rules: Dict[str, str] = {}
        self.logger = get_logger(component="pattern_generalization")

    def __len__(self) -> int:
        return len(self.patterns)

    def generalize(self, attempt: Attempt) -> Optional[GeneralizedPattern]:
        """Fold a successful attempt into its general category."""
        if not attempt.succeeded:
            return None

        specific_key = detect_specific_pattern(attempt)
        if specific_key is None:
            return None

        general_key = map_to_general_pattern(specific_key)
        pattern = self.patterns.get(general_key)
        if pattern is None:
            pattern = GeneralizedPattern(
                key=general_key,
                general_solution=extract_general_solution(attempt, specific_key)
            )
            self.patterns[general_key] = pattern
            self.logger.info(
                f"New generalized pattern {general_key} from {specific_key}",
                category=LogCategory.PATTERN_LEARNING
            )

        if specific_key not in pattern.specific_instances:
            pattern.specific_instances.append(specific_key)

        pattern.attempts += 1
        pattern.successes += 1
        pattern.success_rate = pattern.successes / pattern.attempts

        component = attempt.component or (attempt.issue_type or 'unknown').split('.')[0]
        if component not in pattern.applicable_to:
            pattern.applicable_to.append(component)

        self.rules[specific_key] = general_key
        return pattern

    def find(self, issue_type: str, component: Optional[str] = None) -> Optional[GeneralizedPattern]:
        """Generalized pattern for an issue type, through its specific key when one is known."""
        lookup = Attempt(issue_type=issue_type, component=component, result="success")
        specific_key = detect_specific_pattern(lookup)
        general_key = self.rules.get(specific_key) if specific_key else None
        return self.patterns.get(general_key) if general_key else None

    def patterns_to_entries(self) -> List[List[Any]]:
        return [[key, self.patterns[key].to_dict()] for key in sorted(self.patterns)]

    def rules_to_entries(self) -> List[List[str]]:
        return [[key, self.rules[key]] for key in sorted(self.rules)]

    def load_patterns(self, entries: List[List[Any]]) -> None:
        self.patterns = {key: GeneralizedPattern.from_dict(key, data) for key, data in entries}

    def load_rules(self, entries: List[List[str]]) -> None:
        self.rules = {specific: general for specific, general in entries}
