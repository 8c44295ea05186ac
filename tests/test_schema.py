"""Tests for attempt parsing and stored-state schemas."""

import pytest
from datetime import datetime

from fixlearn.core.exceptions import CorruptStateError, InvalidAttemptError
from fixlearn.core.schema import Attempt, AttemptResult, validate_store_value, STORE_SCHEMAS
from fixlearn.core.persistence import STATE_KEYS


class TestAttempt:
    """Test attempt validation."""

    def test_camel_case_keys(self):
        attempt = Attempt.parse({
            'issueId': 'i-1',
            'issueType': 'init_hang',
            'fixMethod': 'make_async',
            'fixDetails': {'file': 'a.js'},
            'result': 'success',
            'timestamp': '2024-01-01T12:00:00',
            'errorMessage': 'hung',
        })

        assert attempt.issue_id == 'i-1'
        assert attempt.fix_method == 'make_async'
        assert attempt.result == AttemptResult.SUCCESS
        assert attempt.succeeded
        assert attempt.timestamp == datetime(2024, 1, 1, 12, 0, 0)

    def test_snake_case_keys(self):
        attempt = Attempt(issue_type='leak', fix_method='restart', result='failure')

        assert attempt.issue_type == 'leak'
        assert not attempt.succeeded

    def test_blank_strings_become_none(self):
        attempt = Attempt.parse({'issueType': '  ', 'fixMethod': '', 'result': 'failure', 'fixDetails': None})

        assert attempt.issue_type is None
        assert attempt.fix_method is None
        assert attempt.fix_details == {}

    @pytest.mark.parametrize("data", [
        {},
        {'result': 'partial'},
        {'result': None},
        {'duration': 3, 'issueType': 'hang'},
    ])
    def test_invalid_attempts(self, data):
        with pytest.raises(InvalidAttemptError):
            Attempt.parse(data)

    def test_unusable_optional_fields_fall_back(self):
        before = datetime.now()
        attempt = Attempt.parse({
            'result': 'failure',
            'timestamp': 'yesterday',
            'duration': -1,
            'issueType': 42,
            'state': ['chips'],
            'logs': 'ERROR: boom',
            'fixDetails': 'see ticket',
        })

        assert attempt.timestamp >= before
        assert attempt.duration == 0.0
        assert attempt.issue_type == '42'
        assert attempt.state is None
        assert attempt.logs == []
        assert attempt.fix_details == {}

    def test_non_text_log_lines_are_dropped(self):
        attempt = Attempt.parse({'result': 'success', 'logs': ['timeout', 7, {'message': 'null'}, None]})

        assert attempt.logs == ['timeout', {'message': 'null'}]

    def test_record_is_json_ready(self):
        record = Attempt(issue_type='leak', result='success', timestamp=datetime(2024, 5, 1)).to_record()

        assert record['result'] == 'success'
        assert record['timestamp'] == '2024-05-01T00:00:00'


class TestStoreSchemas:
    """Test validation of loaded values."""

    def test_every_state_key_has_a_schema(self):
        assert set(STATE_KEYS) == set(STORE_SCHEMAS)

    def test_valid_pattern_entries(self):
        value = [["issue_type:hang", {'frequency': 1, 'successes': 1, 'failures': 0}]]
        assert validate_store_value("learning.patterns", value) is value

    @pytest.mark.parametrize("key,value", [
        ("learning.patterns", {"issue_type:hang": {}}),
        ("learning.patterns", [["issue_type:hang"]]),
        ("learning.patterns", [["issue_type:hang", {'frequency': 1}]]),
        ("learning.misdiagnosisPatterns", [["k", {'frequency': 1}]]),
        ("learning.fixAttempts", [1, 2]),
        ("learning.timings", []),
    ])
    def test_invalid_values(self, key, value):
        with pytest.raises(CorruptStateError) as exc_info:
            validate_store_value(key, value)

        assert exc_info.value.key == key

    def test_unknown_key_is_not_checked(self):
        assert validate_store_value("learning.other", 42) == 42
