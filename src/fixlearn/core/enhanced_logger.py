"""Structured logging for the learning engine with rich console output."""

import logging
import json
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
from enum import Enum

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.panel import Panel


class LogLevel(Enum):
    """Structured log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


class LogCategory(Enum):
    """Log categories, one per engine concern."""
    PATTERN_LEARNING = "pattern_learning"
    MISDIAGNOSIS = "misdiagnosis"
    CORRELATION = "correlation"
    SOLUTION_RANKING = "solution_ranking"
    CHAIN_DETECTION = "chain_detection"
    CONFIDENCE = "confidence"
    PERSISTENCE = "persistence"
    QUALITY = "quality"
    SYSTEM = "system"


@dataclass
class StructuredLogEntry:
    """Structured log entry with metadata."""
    timestamp: str
    level: str
    category: str
    component: str
    message: str
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = None
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class ContextualLogger:
    """Logger bound to one engine component."""

    def __init__(self, sink: 'EnhancedLogger', component: str, session_id: Optional[str] = None):
        self.sink = sink
        self.component = component
        self.session_id = session_id
        self._logger = logging.getLogger(f"fixlearn.{component}")

    def log(self, level: LogLevel, category: LogCategory, message: str,
            metadata: Optional[Dict[str, Any]] = None,
            include_stack: bool = False) -> None:
        """Log with full context."""
        entry = StructuredLogEntry(
            timestamp=datetime.now().isoformat(),
            level=level.value,
            category=category.value,
            component=self.component,
            message=message,
            session_id=self.session_id,
            metadata=metadata or {},
        )

        if include_stack:
            entry.stack_trace = traceback.format_exc()

        self.sink.log_structured(entry)
        self._logger.log(_STDLIB_LEVELS[level], message, extra={'category': category.value})

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM,
              metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.DEBUG, category, message, metadata)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM,
             metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.INFO, category, message, metadata)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM,
                metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log(LogLevel.WARNING, category, message, metadata)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM,
              metadata: Optional[Dict[str, Any]] = None, include_stack: bool = True) -> None:
        self.log(LogLevel.ERROR, category, message, metadata, include_stack)


class EnhancedLogger:
    """Collects structured entries in a bounded buffer and an optional JSONL file."""

    def __init__(self, logs_dir: Optional[str] = None, max_buffer_size: int = 1000):
        self.console = Console(stderr=True)
        self.session_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.session_log_file: Optional[Path] = None
        if self.logs_dir:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            self.session_log_file = self.logs_dir / f"learning_{self.session_timestamp}.jsonl"

        self.log_buffer: List[StructuredLogEntry] = []
        self.max_buffer_size = max_buffer_size

        self._lock = threading.Lock()
        self.component_loggers: Dict[str, ContextualLogger] = {}

    def log_structured(self, entry: StructuredLogEntry) -> None:
        """Log a structured entry."""
        with self._lock:
            self.log_buffer.append(entry)
            if len(self.log_buffer) > self.max_buffer_size:
                self.log_buffer.pop(0)

            if self.session_log_file is None:
                return

            try:
                with open(self.session_log_file, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(entry.to_dict(), default=str) + '\n')
            except OSError as e:
                self.console.print(f"[red]Failed to write log: {e}[/red]")

    def get_component_logger(self, component: str, session_id: Optional[str] = None) -> ContextualLogger:
        """Get or create a contextual logger for a component."""
        logger_key = f"{component}_{session_id}"

        if logger_key not in self.component_loggers:
            self.component_loggers[logger_key] = ContextualLogger(self, component, session_id)

        return self.component_loggers[logger_key]

    def get_logs_by_category(self, category: LogCategory, limit: int = 100) -> List[StructuredLogEntry]:
        """Get logs filtered by category."""
        with self._lock:
            filtered_logs = [
                entry for entry in self.log_buffer
                if entry.category == category.value
            ]
            return filtered_logs[-limit:]

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of errors in current session."""
        with self._lock:
            errors = [
                entry for entry in self.log_buffer
                if entry.level in [LogLevel.ERROR.value, LogLevel.CRITICAL.value]
            ]

            error_by_component: Dict[str, List[Dict[str, Any]]] = {}
            for error in errors:
                error_by_component.setdefault(error.component, []).append({
                    'message': error.message,
                    'timestamp': error.timestamp,
                    'category': error.category,
                    'metadata': error.metadata
                })

            return {
                'total_errors': len(errors),
                'errors_by_component': error_by_component,
                'recent_errors': [entry.to_dict() for entry in errors[-5:]]
            }

    def display_session_summary(self) -> None:
        """Display session summary in console."""
        summary_table = Table(title=f"Learning Session - {self.session_timestamp}")
        summary_table.add_column("Category", style="cyan")
        summary_table.add_column("Count", style="white")
        summary_table.add_column("Last Entry", style="dim")

        categories: Dict[str, Dict[str, Any]] = {}
        for entry in self.log_buffer:
            data = categories.setdefault(entry.category, {'count': 0, 'last_entry': None})
            data['count'] += 1
            data['last_entry'] = entry.timestamp

        for category, data in categories.items():
            summary_table.add_row(
                category.replace('_', ' ').title(),
                str(data['count']),
                data['last_entry'][:19] if data['last_entry'] else "-"
            )

        self.console.print(summary_table)

        error_summary = self.get_error_summary()
        if error_summary['total_errors'] > 0:
            self.console.print(Panel(
                f"Total Errors: {error_summary['total_errors']}\n" +
                f"Components with errors: {', '.join(error_summary['errors_by_component'].keys())}",
                title="Error Summary",
                border_style="red"
            ))


_default_sink: Optional[EnhancedLogger] = None
_sink_lock = threading.Lock()


def get_enhanced_logger() -> EnhancedLogger:
    """Return the process-wide log sink, created on first use."""
    global _default_sink
    with _sink_lock:
        if _default_sink is None:
            _default_sink = EnhancedLogger()
        return _default_sink


def setup_logging(level: str = "INFO", logs_dir: Optional[str] = None, debug: bool = False) -> EnhancedLogger:
    """Install the rich console handler on the fixlearn logger hierarchy."""
    global _default_sink
    with _sink_lock:
        _default_sink = EnhancedLogger(logs_dir=logs_dir)
        sink = _default_sink

    package_logger = logging.getLogger("fixlearn")
    package_logger.setLevel(logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO))

    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)

    console_handler = RichHandler(
        console=sink.console,
        show_level=True,
        show_time=True,
        rich_tracebacks=True
    )
    package_logger.addHandler(console_handler)
    return sink


def get_logger(component: str, session_id: Optional[str] = None) -> ContextualLogger:
    """Get a contextual logger for a component."""
    return get_enhanced_logger().get_component_logger(component, session_id)
