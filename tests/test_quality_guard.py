"""Tests for test-masking detection, fix quality and mistake memory."""

import pytest

from fixlearn.core.quality_guard import (
    MistakeMemory,
    SyntaxErrorMemory,
    detect_test_masking,
    has_assertions,
    has_execution,
    has_functionality_check,
    syntax_error_pattern,
    verify_fix_quality,
)

FULL_TEST = "const result = await recorder.run(); expect(result).toEqual(3);"


class TestMaskingDetection:
    """Test comparison of a test before and after a change."""

    def test_test_code_properties(self):
        assert has_functionality_check(FULL_TEST)
        assert has_execution(FULL_TEST)
        assert has_assertions(FULL_TEST)

        assert not has_functionality_check("console.log('ok')")
        assert not has_execution("// nothing here")
        assert not has_assertions(None)

    def test_removed_checks_are_masking(self):
        result = detect_test_masking(FULL_TEST, "// nothing here")

        assert result.is_masking
        assert result.severity == 'critical'
        assert result.indicators == [
            "Functionality check removed from test",
            "Test execution removed - test no longer runs functionality",
            "Assertions removed from test",
        ]

    def test_reason_keywords(self):
        result = detect_test_masking(FULL_TEST, FULL_TEST, reason="Skip the slow part to make it easier")

        assert result.is_masking
        assert result.indicators == ['Masking keyword in reason: "Skip the slow part to make it easier"']

    def test_unchanged_test_is_clean(self):
        result = detect_test_masking(FULL_TEST, FULL_TEST + " // tidy", reason="rename variable")

        assert not result.is_masking
        assert result.indicators == []
        assert result.severity is None

    def test_properties_missing_before_are_not_removed(self):
        assert not detect_test_masking("// todo", "// still todo").is_masking


class TestFixQuality:
    """Test fix quality scoring."""

    PROBLEM = {'description': 'Dealer rotation hangs after timeout'}

    def test_verified_fix_for_the_problem(self):
        report = verify_fix_quality({
            'description': 'Break synchronous loop that hangs dealer rotation',
            'verification': {'verified': True},
        }, self.PROBLEM)

        assert report.score == 100
        assert report.issues == []
        assert not report.is_low_quality

    def test_unverified_workaround(self):
        report = verify_fix_quality({'description': 'Skip the check entirely'}, self.PROBLEM)

        assert report.score == 10
        assert report.issues == ["Fix does not mention original problem", "Fix appears to be a workaround"]
        assert report.warnings == ["Fix not verified - may not actually work"]
        assert report.is_low_quality

    def test_test_masking_costs_forty(self):
        report = verify_fix_quality({
            'description': 'Rotation hangs fixed',
            'oldTest': FULL_TEST,
            'testChange': "// nothing here",
            'verification': {'verified': True},
        }, self.PROBLEM)

        assert report.score == 60
        assert report.test_masking.is_masking
        assert report.issues[0].startswith("Test masking detected: Functionality check removed from test; ")

    def test_score_is_floored_at_zero(self):
        report = verify_fix_quality({
            'description': 'workaround',
            'oldTest': FULL_TEST,
            'testChange': "// nothing",
        }, {'description': 'unrelated words entirely'})

        assert report.score == 0
        assert report.to_dict()['is_low_quality']

    def test_without_problem_only_verification_counts(self):
        assert verify_fix_quality({'description': 'bypass'}, None).score == 90
        assert verify_fix_quality(None, None).score == 90


class TestMistakeMemory:
    """Test mistake and situation tracking."""

    def test_same_type_and_context_accumulate(self):
        memory = MistakeMemory(max_examples=2)
        context = {'problemType': 'hang', 'complexity': 'high'}

        for i in range(3):
            pattern = memory.record('masked_problem', dict(context), details=f"attempt {i}")

        assert pattern.key == 'masked_problem_{"complexity":"high","problemType":"hang"}'
        assert pattern.frequency == 3
        assert [e['details'] for e in pattern.examples] == ["attempt 1", "attempt 2"]
        assert memory.stats['mistakes_recorded'] == 3

    def test_situations(self):
        memory = MistakeMemory()
        memory.record('gave_up', {'problemType': 'hang', 'timePressure': True})
        memory.record('superficial_fix', {'problemType': 'hang'})
        memory.record('masked_problem', None)

        situations = memory.situations()

        assert [(s.key, s.frequency) for s in situations] == [('problem_hang', 2), ('time_pressure', 1)]
        assert situations[0].mistakes == ['gave_up', 'superficial_fix']
        assert 'masked_problem_{}' in memory.patterns

    def test_non_json_context_values_are_stringified(self):
        memory = MistakeMemory()
        pattern = memory.record('gave_up', {'files': {'a.js'}})

        assert pattern.context == {'files': "{'a.js'}"}

    def test_round_trip(self):
        memory = MistakeMemory()
        memory.record('gave_up', {'problemType': 'hang'}, "stopped early")

        restored = MistakeMemory()
        restored.load_entries(memory.to_entries())

        assert restored.to_entries() == memory.to_entries()


class TestSyntaxErrorMemory:
    """Test syntax error shapes and suggestions."""

    ERROR = {'type': 'PARSE_ERROR', 'message': "Missing closing '}' in try block", 'filePath': 'deploy.ps1', 'line': 40}

    def test_pattern_key_phrases(self):
        assert syntax_error_pattern(self.ERROR) == 'PARSE_ERROR_try_missing'
        assert syntax_error_pattern({'message': 'Unexpected token'}) == 'SYNTAX_ERROR_unexpected_token'
        assert syntax_error_pattern({'type': 3}) == 'SYNTAX_ERROR'

    def test_contexts_are_capped_and_solutions_kept(self):
        memory = SyntaxErrorMemory(max_contexts=3)

        for i in range(7):
            memory.learn(dict(self.ERROR, line=i, solution=f"fix {i}"))

        record = memory.records['PARSE_ERROR_try_missing']
        assert record.frequency == 7
        assert [c['line'] for c in record.contexts] == [4, 5, 6]
        assert record.contexts[-1]['file'] == 'deploy.ps1'
        assert memory.get_suggestions(self.ERROR) == ["fix 2", "fix 3", "fix 4", "fix 5", "fix 6"]

    @pytest.mark.parametrize("error", [None, {}, {'message': 'Unexpected token'}, {'type': ''}])
    def test_errors_without_type_are_ignored(self, error):
        memory = SyntaxErrorMemory()

        assert memory.learn(error) is None
        assert len(memory) == 0

    def test_no_suggestions_for_unknown_shapes(self):
        memory = SyntaxErrorMemory()
        memory.learn(self.ERROR)

        assert memory.get_suggestions(self.ERROR) == []
        assert memory.get_suggestions({'type': 'OTHER'}) == []
        assert memory.get_suggestions(None) == []
