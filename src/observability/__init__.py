"""Structured logging helpers built on the standard ``logging`` module."""

from .config import ContextFilter, JsonFormatter, PlainFormatter, configure_logging
from .context import LogContext, bind_context, clear_context, get_context, log_context

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "ContextFilter",
    "get_context",
    "JsonFormatter",
    "log_context",
    "LogContext",
    "PlainFormatter",
]
