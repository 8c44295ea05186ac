"""Tests for pattern generalization rules."""

import pytest

from fixlearn.core.pattern_generalizer import (
    categorize_number,
    generalize_file_path,
    generalize_error_message,
    generalize_fix_description,
    create_minimal_context,
    is_state_relevant,
    generalize_state_pattern,
    generalize_state_key,
    state_features,
    extract_log_pattern,
    calculate_pattern_similarity,
)


class TestNumberBuckets:
    """Test numeric bucketing."""

    @pytest.mark.parametrize("value,expected", [
        (None, 'unknown'),
        (0, 'zero'),
        (3, 'low'),
        (10, 'medium'),
        (999, 'high'),
        (1000, 'very_high'),
        ('250', 'high'),
        ('lots', 'unknown'),
        (True, 'unknown'),
        (float('nan'), 'unknown'),
    ])
    def test_default_thresholds(self, value, expected):
        assert categorize_number(value) == expected

    def test_player_thresholds(self):
        """Player counts use their own, smaller thresholds."""
        assert categorize_number(1, (2, 5, 10)) == 'low'
        assert categorize_number(4, (2, 5, 10)) == 'medium'
        assert categorize_number(7, (2, 5, 10)) == 'high'


class TestTextCategories:
    """Test free-text classification tables."""

    def test_file_types(self):
        assert generalize_file_path("C:/scripts/deploy.ps1") == 'powershell_script'
        assert generalize_file_path("src/app.PY") == 'python_file'
        assert generalize_file_path("notes.xyz") == 'unknown_file'
        assert generalize_file_path(None) is None

    def test_error_categories_follow_rule_order(self):
        assert generalize_error_message("Missing catch or finally block") == 'try_catch_finally_structure'
        assert generalize_error_message("missing closing bracket") == 'missing_closing_brace'
        assert generalize_error_message("TypeError: x is not a function") == 'type_error'
        assert generalize_error_message("Request timed out") == 'timeout_error'

    def test_error_type_name_fallback(self):
        assert generalize_error_message("ValueError raised in parser") == 'value_error'
        assert generalize_error_message("something odd happened") == 'unknown_error'
        assert generalize_error_message(None) is None

    def test_fix_categories(self):
        assert generalize_fix_description("Added try/catch around call") == 'fix_try_catch_finally_structure'
        assert generalize_fix_description("await the promise") == 'fix_async_error'
        assert generalize_fix_description("restarted the server") == 'fix_unknown'

    def test_minimal_context_drops_exact_values(self):
        context = create_minimal_context({
            'file': '/srv/app/handlers/table.js',
            'errors': ['ReferenceError: pot is not defined'],
            'fixes': ['import the pot module'],
            'line': 412,
        })

        assert context == {
            'file_type': 'javascript_file',
            'error_category': 'reference_error',
            'fix_category': 'fix_import_error',
            'severity': 'unknown',
        }

    def test_minimal_context_accepts_single_values(self):
        context = create_minimal_context({
            'file': 42,
            'errors': 'TypeError: x is not a function',
            'fixes': [],
            'severity': ['high'],
        })

        assert context == {'error_category': 'type_error', 'severity': 'high'}


class TestStateGeneralization:
    """Test state feature extraction."""

    def test_only_state_relevant_issue_types(self):
        state = {'chips': {'total': 5000}, 'players': ['a', 'b', 'c'], 'phase': 'flop'}

        assert is_state_relevant("chip_mismatch")
        assert not is_state_relevant("init_hang")
        assert generalize_state_pattern(state, "init_hang") is None
        assert generalize_state_pattern(state, "chip_mismatch") == "chips:very_high|players:medium|phase:flop"

    def test_state_features_without_numeric_keys(self):
        assert state_features({'unrelated': 'x'}) is None
        assert state_features(None) is None
        assert state_features(['chips']) is None

    def test_other_numeric_keys_are_bucketed_in_key_order(self):
        assert generalize_state_pattern({'pot': 350}, "game_state") == "pot:high"
        assert state_features({'round': 2, 'phase': 'turn', 'blind': 50, 'label': 'x', 'live': True}) == \
            "phase:turn|blind:medium|round:low"

    @pytest.mark.parametrize("state,expected", [
        ({'players': 4}, "players:medium"),
        ({'players': '7'}, "players:high"),
        ({'players': {'a': 1, 'b': 2}}, "players:medium"),
        ({'chips': '500'}, "chips:high"),
        ({'chips': {'total': 'lots'}}, None),
        ({'chips': 'many', 'players': None}, None),
        ({'phase': ['flop']}, None),
    ])
    def test_loosely_typed_state_values(self, state, expected):
        assert state_features(state) == expected

    def test_stored_state_keys_are_rebucketed(self):
        assert generalize_state_key("chips:2500|phase:river") == "chips:very_high|phase:river"
        assert generalize_state_key("players:low") == "players:low"


class TestLogsAndSimilarity:
    """Test log keywords and key similarity."""

    def test_log_keywords_from_first_five_lines(self):
        logs = [
            "ERROR: connection failed",
            {'message': "Timeout waiting for lock"},
            "value was undefined",
            "error again",
            "ok",
            "exception in line six is ignored",
        ]
        assert extract_log_pattern(logs) == "error|timeout|undefined"

    def test_similarity_scores(self):
        assert calculate_pattern_similarity("issue_type:hang", "issue_type:hang") == 1.0
        assert calculate_pattern_similarity("issue_type:init_hang", "issue_type:hang") == 0.7
        assert calculate_pattern_similarity("issue_type:hang", "issue_type:leak") == 0.3
        assert calculate_pattern_similarity("issue_type:hang", "fix_method:make_async") == 0.5
        assert calculate_pattern_similarity("state:chips:low", "log:error") == 0.0
        assert calculate_pattern_similarity(None, "log:error") == 0.0
