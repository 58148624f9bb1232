# src/logging/context.py — v2
"""Contextual logging support: attach document and listener to log records.

The registry binds these while dispatching to a listener, so any record a
consumer emits from inside its callback carries both.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

_document: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "fieldsync_document", default=None
)
_listener: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "fieldsync_listener", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    document: str | None = None
    listener: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(document=_document.get(), listener=_listener.get())


@contextmanager
def bind_log_context(
    document: str | None = None, listener: str | None = None
) -> Iterator[LogContext]:
    """Set document/listener for the duration of the block, then restore."""
    doc_token = _document.set(document)
    listener_token = _listener.set(listener)
    try:
        yield get_context()
    finally:
        _listener.reset(listener_token)
        _document.reset(doc_token)


def clear_context() -> None:
    """Reset all context variables."""
    _document.set(None)
    _listener.set(None)
