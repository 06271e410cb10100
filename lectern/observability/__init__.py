"""
Observability Module

Structured logging with request, tenant and session context.
"""

from lectern.observability.logging import (
    BufferHandler,
    ConsoleHandler,
    FileHandler,
    LogLevel,
    LogRecord,
    StructuredLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "BufferHandler",
    "ConsoleHandler",
    "FileHandler",
    "LogLevel",
    "LogRecord",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]
