"""Correlation fields carried on every log line of the current task.

The context is a fixed set of identifiers: service identity plus the ids of
the request, message, thread, and appointment being worked on. Binding an
unknown field raises ``TypeError`` so typos surface in tests instead of as
silently missing log keys.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from typing import Iterator


@dataclass(frozen=True)
class LogContext:
    """Immutable snapshot of the bound correlation fields."""

    service: str | None = None
    environment: str | None = None
    request_id: str | None = None
    message_id: str | None = None
    thread_id: str | None = None
    appointment_id: str | None = None

    def with_values(self, **values: object) -> LogContext:
        """Return a copy with non-``None`` values stringified and applied."""
        changes = {key: str(value) for key, value in values.items() if value is not None}
        return replace(self, **changes) if changes else self

    def without(self, *keys: str) -> LogContext:
        """Return a copy with the given fields unset."""
        return replace(self, **{key: None for key in keys})

    def as_fields(self) -> dict[str, str]:
        """Return the bound fields in declaration order."""
        return {key: value for key, value in asdict(self).items() if value is not None}


_CURRENT: ContextVar[LogContext] = ContextVar("stonegate_log_context", default=LogContext())


def get_context() -> dict[str, str]:
    """Return the currently bound fields."""
    return _CURRENT.get().as_fields()


def bind_context(**values: object) -> None:
    """Bind correlation fields for the rest of the current task."""
    _CURRENT.set(_CURRENT.get().with_values(**values))


def clear_context(*keys: str) -> None:
    """Unset the given fields, or every field when none are named."""
    _CURRENT.set(_CURRENT.get().without(*keys) if keys else LogContext())


@contextmanager
def log_context(**values: object) -> Iterator[LogContext]:
    """Bind fields for the duration of a block, restoring the outer context after."""
    token = _CURRENT.set(_CURRENT.get().with_values(**values))
    try:
        yield _CURRENT.get()
    finally:
        _CURRENT.reset(token)
