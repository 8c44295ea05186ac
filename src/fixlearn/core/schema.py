"""Attempt record model and persisted-state schemas for the learning engine."""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, ValidationError
from jsonschema import validate, ValidationError as JsonSchemaError
import logging

from fixlearn.core.exceptions import CorruptStateError, InvalidAttemptError

logger = logging.getLogger(__name__)


class AttemptResult(str, Enum):
    """Outcome of one fix attempt."""
    SUCCESS = "success"
    FAILURE = "failure"


class Attempt(BaseModel):
    """One completed attempt to fix a detected issue.

    Accepts both snake_case field names and the camelCase keys emitted by
    the monitoring stack (``issueId``, ``fixMethod`` ...). Every field other
    than ``result`` is optional; learning steps that need a missing field are
    skipped for that attempt. An unusable optional value falls back to its
    default instead of rejecting the attempt: a bad timestamp becomes now,
    a bad duration 0, a non-mapping state None.
    """
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    issue_id: Optional[str] = Field(None, alias='issueId')
    issue_type: Optional[str] = Field(None, alias='issueType')
    fix_method: Optional[str] = Field(None, alias='fixMethod')
    fix_details: Dict[str, Any] = Field(default_factory=dict, alias='fixDetails')
    result: AttemptResult
    timestamp: datetime = Field(default_factory=datetime.now)
    duration: float = Field(0.0, ge=0, description="Seconds spent on the attempt")
    error_message: Optional[str] = Field(None, alias='errorMessage')
    component: Optional[str] = None
    state: Optional[Dict[str, Any]] = None
    logs: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)

    @field_validator('issue_id', 'issue_type', 'fix_method', 'error_message', 'component', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if not isinstance(v, str) or not v.strip():
            return None
        return v

    @field_validator('fix_details', mode='before')
    @classmethod
    def details_default(cls, v):
        return v if isinstance(v, dict) else {}

    @field_validator('state', mode='before')
    @classmethod
    def state_mapping(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator('logs', mode='before')
    @classmethod
    def log_lines(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [line for line in v if isinstance(line, (str, dict))]

    @field_validator('timestamp', mode='wrap')
    @classmethod
    def timestamp_or_now(cls, v, handler):
        try:
            return handler(v)
        except ValidationError:
            logger.debug(f"Unparseable attempt timestamp {v!r}, using now")
            return datetime.now()

    @field_validator('duration', mode='wrap')
    @classmethod
    def duration_or_zero(cls, v, handler):
        try:
            return handler(v)
        except ValidationError:
            logger.debug(f"Unusable attempt duration {v!r}, using 0")
            return 0.0

    @property
    def succeeded(self) -> bool:
        return self.result == AttemptResult.SUCCESS

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> 'Attempt':
        """Validate a raw attempt mapping."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidAttemptError(str(e)) from e

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


def _entries_schema(value_schema: Dict[str, Any]) -> Dict[str, Any]:
    """Schema for the ``[[key, value], ...]`` layout used by keyed stores."""
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "array",
        "items": {
            "type": "array",
            "minItems": 2,
            "maxItems": 2,
            "items": [{"type": "string"}, value_schema],
        }
    }


_COUNTER = {"type": "integer", "minimum": 0}
_RATE = {"type": "number", "minimum": 0, "maximum": 1}

PATTERN_SCHEMA = {
    "type": "object",
    "properties": {
        "frequency": _COUNTER,
        "successes": _COUNTER,
        "failures": _COUNTER,
        "success_rate": _RATE,
        "solutions": {"type": "array"},
        "contexts": {"type": "array"},
    },
    "required": ["frequency", "successes", "failures"]
}

MISDIAGNOSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "symptom": {"type": "string"},
        "frequency": _COUNTER,
        "time_wasted": {"type": "number", "minimum": 0},
    },
    "required": ["symptom", "frequency"]
}

RECORD_LIST_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "array",
    "items": {"type": "object"}
}

# One schema per persisted key path.
STORE_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "learning.patterns": _entries_schema(PATTERN_SCHEMA),
    "learning.misdiagnosisPatterns": _entries_schema(MISDIAGNOSIS_SCHEMA),
    "learning.failedMethods": _entries_schema(RECORD_LIST_SCHEMA),
    "learning.causalChains": _entries_schema({"type": "object", "required": ["links"]}),
    "learning.solutionOptimization": _entries_schema({"type": "object", "required": ["attempts"]}),
    "learning.crossIssueLearning": _entries_schema({"type": "object", "required": ["frequency"]}),
    "learning.circularDependencies": _entries_schema({"type": "object", "required": ["chain", "frequency"]}),
    "learning.blockingChains": _entries_schema({"type": "object", "required": ["chain", "frequency"]}),
    "learning.debuggingPatterns": _entries_schema({"type": "object"}),
    "learning.generalizedPatterns": _entries_schema({"type": "object", "required": ["attempts"]}),
    "learning.generalizationRules": _entries_schema({"type": "string"}),
    "learning.mistakePatterns": _entries_schema({"type": "object", "required": ["frequency"]}),
    "learning.syntaxErrors": _entries_schema({"type": "object", "required": ["frequency"]}),
    "learning.fixAttempts": RECORD_LIST_SCHEMA,
    "learning.autoAdjustments": RECORD_LIST_SCHEMA,
    "learning.confidenceHistory": RECORD_LIST_SCHEMA,
    "learning.maskingWarnings": RECORD_LIST_SCHEMA,
    "learning.timings": {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {
            "initialization": {"type": "object"},
            "getters": {"type": "object"},
            "synchronous_operations": {"type": "object"},
        }
    },
}


def validate_store_value(key: str, value: Any) -> Any:
    """Check one loaded value against its schema; raise CorruptStateError on mismatch."""
    schema = STORE_SCHEMAS.get(key)
    if schema is None:
        return value

    try:
        validate(instance=value, schema=schema)
    except JsonSchemaError as e:
        raise CorruptStateError(key, e.message) from e

    return value
