"""Exception types raised by the learning engine."""


class LearningError(Exception):
    """Base class for learning engine errors."""
    pass


class ConfigurationError(LearningError):
    """Raised when a LearningConfig fails validation."""
    pass


class PersistenceError(LearningError):
    """Raised by a state store when a read or write cannot be completed."""
    pass


class CorruptStateError(LearningError):
    """A stored value could not be parsed or failed schema validation."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupt state for '{key}': {reason}")
        self.key = key
        self.reason = reason


class InvalidAttemptError(LearningError):
    """Raised by Attempt.parse when an attempt record cannot be validated."""
    pass
