"""Typed events published by the learning engine."""

import logging
import threading
from datetime import datetime
from typing import List, Optional, Tuple, Callable, Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LearningEvent:
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class PatternLearned(LearningEvent):
    issue_type: Optional[str] = None
    fix_method: Optional[str] = None
    result: str = ""
    pattern_keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MisdiagnosisRecorded(LearningEvent):
    record_keys: Tuple[str, ...] = ()
    issue_type: Optional[str] = None


@dataclass(frozen=True)
class ChainDetected(LearningEvent):
    kind: str = ""
    signature: str = ""
    frequency: int = 0
    severity: str = ""


@dataclass(frozen=True)
class HangDetected(LearningEvent):
    issue_type: str = ""
    subject: str = ""
    severity: str = ""
    duration: Optional[float] = None


@dataclass(frozen=True)
class MaskingDetected(LearningEvent):
    source: str = ""
    reason: str = ""


@dataclass(frozen=True)
class MistakeLearned(LearningEvent):
    mistake_type: str = ""
    key: str = ""
    penalty: int = 0


@dataclass(frozen=True)
class AutoAdjustmentIssued(LearningEvent):
    overall_confidence: float = 0.0
    adjustments: Tuple = ()  # AutoAdjustment records


EventListener = Callable[[LearningEvent], None]


class EventBus:
    """Synchronous fan-out of events to subscribed listeners."""

    def __init__(self, listeners: Iterable[EventListener] = ()):
        self._listeners: List[EventListener] = list(listeners)
        self._lock = threading.Lock()
        self.stats = {'events_emitted': 0, 'listener_errors': 0}

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: LearningEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)

        self.stats['events_emitted'] += 1
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self.stats['listener_errors'] += 1
                logger.error(f"Event listener failed on {type(event).__name__}: {e}")
