"""Tests for cross-instance generalization of successful fixes."""

from fixlearn.core.generalized_patterns import (
    PatternGeneralizationIndex,
    detect_specific_pattern,
    map_to_general_pattern,
    extract_general_solution,
)
from fixlearn.core.schema import Attempt


def _success(**fields):
    fields.setdefault('result', 'success')
    return Attempt(**fields)


class TestClassification:
    """Test the specific and general rule tables."""

    def test_specific_keys(self):
        assert detect_specific_pattern(_success(issueType="init_hang", component="Wallet")) == \
            "Wallet.initialization_hang"
        assert detect_specific_pattern(_success(issueType="timing_race")) == "unknown.timing_issue"
        assert detect_specific_pattern(_success(issueType="x", fixMethod="add_guard")) == \
            "undefined_access.missing_guard"
        assert detect_specific_pattern(_success(issueType="disk_full", fixMethod="cleanup")) is None

    def test_powershell_bracket_keys(self):
        base = dict(issueType="syntax_error", component="PowerShell", errorMessage="Missing closing bracket")

        assert detect_specific_pattern(_success(fixMethod="search_brackets", **base)) == \
            'powershell_bracket_error_misdiagnosis'
        assert detect_specific_pattern(_success(fixMethod="check_try_catch", **base)) == \
            'powershell_bracket_error_try_catch_fix'

    def test_general_categories(self):
        assert map_to_general_pattern("Wallet.initialization_hang") == 'initialization_race_condition'
        assert map_to_general_pattern("powershell_bracket_error_misdiagnosis") == \
            'symptom_vs_root_cause_misdiagnosis'
        assert map_to_general_pattern("circular_dependency.synchronous_loop") == 'synchronous_loop_pattern'
        assert map_to_general_pattern("something.else") == 'general_fix_pattern'

    def test_general_solutions(self):
        assert extract_general_solution(_success(fixMethod="make_async"), "x") == \
            'Make operations async to break blocking chains'
        assert extract_general_solution(_success(fixMethod="rewrite"), None) == 'Apply learned solution pattern'


class TestGeneralizationIndex:
    """Test folding attempts into generalized patterns."""

    def test_successes_accumulate(self):
        index = PatternGeneralizationIndex()
        index.generalize(_success(issueType="init_hang", component="Wallet", fixMethod="make_async"))
        pattern = index.generalize(_success(issueType="initialization_timeout", component="Pot",
                                            fixMethod="make_async"))

        assert pattern.key == 'initialization_race_condition'
        assert pattern.attempts == 2
        assert pattern.success_rate == 1.0
        assert sorted(pattern.specific_instances) == ["Pot.initialization_hang", "Wallet.initialization_hang"]
        assert sorted(pattern.applicable_to) == ["Pot", "Wallet"]
        assert index.rules["Wallet.initialization_hang"] == 'initialization_race_condition'

    def test_failures_are_ignored(self):
        index = PatternGeneralizationIndex()
        assert index.generalize(Attempt(issueType="init_hang", result="failure")) is None
        assert len(index) == 0

    def test_find_by_issue_type(self):
        index = PatternGeneralizationIndex()
        index.generalize(_success(issueType="init_hang", component="Wallet", fixMethod="make_async"))

        assert index.find("init_hang", "Wallet").key == 'initialization_race_condition'
        assert index.find("init_hang", "Other") is None

    def test_round_trip(self):
        index = PatternGeneralizationIndex()
        index.generalize(_success(issueType="circular_import", fixMethod="setImmediate"))

        restored = PatternGeneralizationIndex()
        restored.load_patterns(index.patterns_to_entries())
        restored.load_rules(index.rules_to_entries())

        assert restored.patterns_to_entries() == index.patterns_to_entries()
        assert restored.rules_to_entries() == index.rules_to_entries()
