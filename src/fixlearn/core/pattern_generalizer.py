"""Pattern generalization rules.

Turns specific observations (exact paths, exact counts, raw error text) into
categories so that similar situations collide into the same pattern key.
All free-text classification goes through ordered ``(substrings, category)``
tables: the first rule whose substrings all match wins. Behaviour depends on
the exact substrings, so extend the tables rather than reorder them.
"""

import math
import re
from typing import Dict, Any, List, Optional, Sequence, Tuple, Union

# Number buckets: value < low -> "low", < medium -> "medium", < high -> "high"
DEFAULT_NUMBER_THRESHOLDS = (10, 100, 1000)
PLAYER_COUNT_THRESHOLDS = (2, 5, 10)

FILE_TYPE_MAP: Dict[str, str] = {
    'ps1': 'powershell_script',
    'js': 'javascript_file',
    'ts': 'typescript_file',
    'json': 'json_file',
    'md': 'markdown_file',
    'cs': 'csharp_file',
    'py': 'python_file',
}

# Each rule: (all of, any of, category). Empty "any of" means no extra condition.
ERROR_CATEGORY_RULES: List[Tuple[Tuple[str, ...], Tuple[str, ...], str]] = [
    (('missing',), ('catch', 'finally'), 'try_catch_finally_structure'),
    ((), ('missing closing', "missing '}'"), 'missing_closing_brace'),
    ((), ('syntax error', 'syntaxerror'), 'syntax_error'),
    ((), ('typeerror', 'type error'), 'type_error'),
    ((), ('referenceerror', 'reference error'), 'reference_error'),
    ((), ('undefined', 'null'), 'null_undefined_error'),
    ((), ('timeout', 'timed out'), 'timeout_error'),
    ((), ('permission', 'access denied'), 'permission_error'),
]

FIX_CATEGORY_RULES: List[Tuple[Tuple[str, ...], Tuple[str, ...], str]] = [
    (('try',), ('catch', 'finally'), 'fix_try_catch_finally_structure'),
    ((), ('brace', 'closing'), 'fix_missing_brace'),
    ((), ('syntax',), 'fix_syntax_error'),
    ((), ('type', 'undefined'), 'fix_type_error'),
    ((), ('import', 'require'), 'fix_import_error'),
    ((), ('async', 'await'), 'fix_async_error'),
]

# Issue types for which a generalized state pattern is worth keeping.
STATE_RELEVANT_ISSUES = (
    'chip_mismatch',
    'chip_integrity',
    'player_state',
    'game_state',
    'table_state',
    'balance_error',
)

# State keys with their own feature rule; other numeric keys are bucketed generically.
STATE_FEATURE_KEYS = ('chips', 'players', 'phase')

LOG_KEYWORDS = re.compile(r'\b(error|fail|exception|timeout|null|undefined)\b', re.IGNORECASE)
ERROR_TYPE_PATTERN = re.compile(r'(\w+error|\w+exception)', re.IGNORECASE)


def _match_rules(text: Optional[str], rules, default: Optional[str]) -> Optional[str]:
    if not text:
        return None

    lowered = text.lower()
    for all_of, any_of, category in rules:
        if all(s in lowered for s in all_of) and (not any_of or any(s in lowered for s in any_of)):
            return category
    return default


def as_number(value: Any) -> Optional[float]:
    """Finite number held by ``value`` (numeric strings included), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return value


def categorize_number(value: Any, thresholds: Sequence[float] = DEFAULT_NUMBER_THRESHOLDS) -> str:
    """Bucket a number into zero/low/medium/high/very_high; anything non-numeric is unknown."""
    value = as_number(value)
    if value is None:
        return 'unknown'
    if value == 0:
        return 'zero'

    low, medium, high = thresholds
    if value < low:
        return 'low'
    if value < medium:
        return 'medium'
    if value < high:
        return 'high'
    return 'very_high'


def generalize_file_path(file_path: Optional[str]) -> Optional[str]:
    if not file_path:
        return None

    ext = file_path.rsplit('.', 1)[-1].lower()
    return FILE_TYPE_MAP.get(ext, 'unknown_file')


def generalize_error_message(error_message: Optional[str]) -> Optional[str]:
    """Map raw error text to an error category."""
    category = _match_rules(error_message, ERROR_CATEGORY_RULES, default=None)
    if category or not error_message:
        return category

    match = ERROR_TYPE_PATTERN.search(error_message)
    if match:
        name = match.group(1).lower()
        return name.replace('error', '_error', 1).replace('exception', '_exception', 1)

    return 'unknown_error'


def generalize_fix_description(fix_description: Optional[str]) -> Optional[str]:
    return _match_rules(fix_description, FIX_CATEGORY_RULES, default='fix_unknown')


def _first_text(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return value if isinstance(value, str) else None


def create_minimal_context(details: Dict[str, Any], severity: Optional[str] = None) -> Dict[str, Any]:
    """Reduce fix details to categories only; no exact values survive."""
    minimal = {
        'file_type': generalize_file_path(_first_text(details.get('file'))),
        'error_category': generalize_error_message(_first_text(details.get('errors'))),
        'fix_category': generalize_fix_description(_first_text(details.get('fixes'))),
        'component': generalize_file_path(_first_text(details.get('component'))),
        'severity': _first_text(details.get('severity')) or severity or 'unknown',
    }

    return {key: value for key, value in minimal.items() if value is not None}


def is_state_relevant(issue_type: Optional[str]) -> bool:
    if not issue_type:
        return False
    lowered = issue_type.lower()
    return any(relevant in lowered for relevant in STATE_RELEVANT_ISSUES)


def generalize_state_pattern(state: Optional[Dict[str, Any]], issue_type: Optional[str]) -> Optional[str]:
    """Build a ``chips:<bucket>|players:<bucket>|phase:<phase>|<key>:<bucket>`` feature string.

    Returns None when the issue type does not depend on state or the state
    carries none of the known features.
    """
    if not state or not is_state_relevant(issue_type):
        return None
    return state_features(state)


def _player_count(players: Any) -> Optional[float]:
    if isinstance(players, (list, tuple, set, dict)):
        return len(players)
    return as_number(players)


def state_features(state: Optional[Dict[str, Any]]) -> Optional[str]:
    """Feature string of a state regardless of the issue type it came with.

    Values that are not numbers where a number is expected are left out.
    Numeric keys other than chips/players follow in key order.
    """
    if not isinstance(state, dict) or not state:
        return None

    features = []

    chips = state.get('chips')
    if chips:
        total = chips.get('total', 0) if isinstance(chips, dict) else chips
        if as_number(total) is not None:
            features.append(f"chips:{categorize_number(total)}")

    players = state.get('players')
    count = _player_count(players) if players else None
    if count is not None:
        features.append(f"players:{categorize_number(count, PLAYER_COUNT_THRESHOLDS)}")

    phase = state.get('phase')
    if phase and isinstance(phase, (str, int)) and not isinstance(phase, bool):
        features.append(f"phase:{phase}")

    for key in sorted(k for k in state if isinstance(k, str) and ':' not in k and '|' not in k):
        value = state[key]
        if key in STATE_FEATURE_KEYS or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if as_number(value) is not None:
            features.append(f"{key}:{categorize_number(value)}")

    return '|'.join(features) if features else None


def generalize_state_key(state_value: str) -> str:
    """Re-bucket numeric features of an already stored state pattern value."""
    generalized = []
    for feature in state_value.split('|'):
        name, sep, value = feature.partition(':')
        if not sep:
            generalized.append(feature)
            continue

        try:
            number = int(value)
        except ValueError:
            generalized.append(feature)
            continue

        thresholds = PLAYER_COUNT_THRESHOLDS if name == 'players' else DEFAULT_NUMBER_THRESHOLDS
        generalized.append(f"{name}:{categorize_number(number, thresholds)}")

    return '|'.join(generalized)


def extract_log_pattern(logs: Sequence[Union[str, Dict[str, Any]]]) -> str:
    """Distinct failure keywords from the first five log lines, pipe-joined."""
    keywords: List[str] = []
    for entry in list(logs)[:5]:
        message = entry.get('message') if isinstance(entry, dict) else entry
        if not message:
            continue
        for keyword in LOG_KEYWORDS.findall(str(message)):
            keyword = keyword.lower()
            if keyword not in keywords:
                keywords.append(keyword)

    return '|'.join(keywords)


def calculate_pattern_similarity(key1: Optional[str], key2: Optional[str]) -> float:
    """Similarity of two ``kind:value`` keys in [0, 1]."""
    if not key1 or not key2:
        return 0.0
    if key1 == key2:
        return 1.0

    kind1, _, value1 = key1.partition(':')
    kind2, _, value2 = key2.partition(':')

    if kind1 == kind2:
        if value1 == value2:
            return 1.0
        if value1 in value2 or value2 in value1:
            return 0.7
        return 0.3

    if {kind1, kind2} == {'issue_type', 'fix_method'}:
        return 0.5

    return 0.0

