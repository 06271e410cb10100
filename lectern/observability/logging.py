"""
Structured Logging

JSON-structured logging with context propagation.

Design decisions:
- Structured JSON output (or a single-line text format for local runs)
- Request, tenant and session identifiers propagate through contextvars,
  so concurrent queries never mix their log context
- Loggers share one handler list, replaced by configure_logging()
- BufferHandler lets tests assert on emitted records
"""

import contextvars
import json
import sys
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, TextIO


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


@dataclass
class LogRecord:
    """A structured log record."""

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    logger_name: str = "lectern"

    # Structured data
    data: dict[str, Any] = field(default_factory=dict)

    # Error info
    error: str | None = None
    error_type: str | None = None
    stack_trace: str | None = None

    # Request context
    request_id: str | None = None
    tenant: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": LogLevel(self.level).name,
            "logger": self.logger_name,
            "message": self.message,
        }

        if self.data:
            result["data"] = self.data

        if self.error:
            result["error"] = {
                "message": self.error,
                "type": self.error_type,
                "stack_trace": self.stack_trace,
            }

        if self.request_id:
            result["request_id"] = self.request_id
        if self.tenant:
            result["tenant"] = self.tenant
        if self.session_id:
            result["session_id"] = self.session_id

        return result

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class LogHandler:
    """Base class for log handlers."""

    def __init__(self, level: LogLevel = LogLevel.DEBUG):
        self.level = level

    def should_handle(self, level: LogLevel) -> bool:
        return level >= self.level

    def handle(self, record: LogRecord) -> None:
        pass


class ConsoleHandler(LogHandler):
    """Outputs logs to console."""

    def __init__(
        self,
        level: LogLevel = LogLevel.DEBUG,
        stream: TextIO | None = None,
        json_output: bool = True,
    ):
        super().__init__(level)
        self.stream = stream or sys.stderr
        self.json_output = json_output

    def handle(self, record: LogRecord) -> None:
        if not self.should_handle(record.level):
            return

        if self.json_output:
            output = record.to_json()
        else:
            output = (
                f"[{record.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] "
                f"{LogLevel(record.level).name:8s} {record.logger_name}: {record.message}"
            )
            if record.tenant:
                output += f" [tenant={record.tenant}]"
            if record.data:
                output += f" | {record.data}"
            if record.error:
                output += f" | ERROR: {record.error_type}: {record.error}"

        print(output, file=self.stream)


class FileHandler(LogHandler):
    """Appends JSON lines to a file."""

    def __init__(
        self,
        filename: str,
        level: LogLevel = LogLevel.DEBUG,
    ):
        super().__init__(level)
        self.filename = filename
        self._file: TextIO | None = None

    def handle(self, record: LogRecord) -> None:
        if not self.should_handle(record.level):
            return

        if self._file is None:
            self._file = open(self.filename, "a", encoding="utf-8")

        self._file.write(record.to_json() + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None


class BufferHandler(LogHandler):
    """Buffers logs in memory for testing."""

    def __init__(self, level: LogLevel = LogLevel.DEBUG, max_records: int = 1000):
        super().__init__(level)
        self.records: list[LogRecord] = []
        self._max_records = max_records

    def handle(self, record: LogRecord) -> None:
        if not self.should_handle(record.level):
            return

        self.records.append(record)

        if len(self.records) > self._max_records:
            self.records = self.records[-self._max_records :]

    def messages(self, level: LogLevel | None = None) -> list[str]:
        return [r.message for r in self.records if level is None or r.level == level]

    def clear(self) -> None:
        self.records.clear()


# Context variables for log enrichment
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

_CONTEXT_FIELDS = ("request_id", "tenant", "session_id")

# Shared by every logger returned from get_logger()
_handlers: list[LogHandler] = [ConsoleHandler(level=LogLevel.INFO)]
_level: LogLevel = LogLevel.INFO


class StructuredLogger:
    """
    Main structured logging interface.

    A logger without explicit handlers writes to the shared handler list,
    so reconfiguring logging takes effect for module-level loggers too.
    """

    def __init__(
        self,
        name: str = "lectern",
        level: LogLevel | None = None,
        handlers: list[LogHandler] | None = None,
    ):
        self.name = name
        self._level = level
        self._handlers = handlers

    @property
    def level(self) -> LogLevel:
        return self._level if self._level is not None else _level

    @property
    def handlers(self) -> list[LogHandler]:
        return self._handlers if self._handlers is not None else _handlers

    def _log(
        self,
        level: LogLevel,
        message: str,
        data: dict[str, Any] | None = None,
        error: BaseException | None = None,
        **extra: Any,
    ) -> None:
        if level < self.level:
            return

        context = _log_context.get()

        record = LogRecord(
            level=level,
            message=message,
            logger_name=self.name,
            data={**(data or {}), **extra},
            **{key: context.get(key) for key in _CONTEXT_FIELDS},
        )

        if error is not None:
            record.error = str(error)
            record.error_type = type(error).__name__
            if error.__traceback__ is not None:
                record.stack_trace = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )

        for handler in self.handlers:
            try:
                handler.handle(record)
            except Exception:
                pass  # Logging must never break the request path

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(
        self, message: str, error: BaseException | None = None, **kwargs: Any
    ) -> None:
        self._log(LogLevel.WARNING, message, error=error, **kwargs)

    def error(self, message: str, error: BaseException | None = None, **kwargs: Any) -> None:
        self._log(LogLevel.ERROR, message, error=error, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log the exception currently being handled at ERROR level."""
        self.error(message, error=sys.exc_info()[1], **kwargs)

    @staticmethod
    @contextmanager
    def context(**kwargs: Any):
        """
        Context manager for adding context to logs.

        Usage:
            with logger.context(request_id="123", tenant="user-1"):
                logger.info("Processing request")
        """
        current = _log_context.get()
        token = _log_context.set({**current, **kwargs})

        try:
            yield
        finally:
            _log_context.reset(token)

    @staticmethod
    def set_context(**kwargs: Any) -> None:
        """Set context values that persist until changed."""
        current = _log_context.get()
        _log_context.set({**current, **kwargs})

    @staticmethod
    def clear_context() -> None:
        _log_context.set({})


def get_logger(name: str = "lectern") -> StructuredLogger:
    """Get a logger bound to the shared handlers."""
    return StructuredLogger(name=name)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    json_output: bool = True,
    log_file: str | None = None,
    handlers: list[LogHandler] | None = None,
) -> list[LogHandler]:
    """
    Replace the shared handlers used by every logger.

    Passing ``handlers`` installs them verbatim (tests use a BufferHandler).
    Returns the installed handler list.
    """
    global _level

    if isinstance(level, str):
        level = LogLevel[level.upper()]

    if handlers is None:
        handlers = [ConsoleHandler(level=level, json_output=json_output)]
        if log_file:
            handlers.append(FileHandler(log_file, level=level))

    for old in _handlers:
        if isinstance(old, FileHandler):
            old.close()

    _handlers[:] = handlers
    _level = level
    return handlers
