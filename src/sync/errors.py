# src/sync/errors.py — v1
"""Error taxonomy for the synchronization engine.

Structural errors (MissingParentPath, FileResolutionError) are raised
synchronously to the caller. PersistenceFailure is raised by stores and
recovered inside the registry. InternalInvariantViolation and
ReentrantUpdateError signal programmer errors and are never caught.
"""

from __future__ import annotations

from typing import Any, Sequence


class SyncError(Exception):
    """Base class for all fieldsync errors."""


class MissingParentPath(SyncError):
    """An update targets a path whose ancestor chain does not exist."""

    def __init__(self, path: Sequence[str | int]) -> None:
        self.path = tuple(path)
        super().__init__(
            f"The parent of {_render(self.path)!r} does not exist, "
            "create the parent first"
        )


class FileResolutionError(SyncError):
    """A document name could not be resolved to exactly one document."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot resolve {name!r}: {reason}")


class PersistenceFailure(SyncError):
    """A read or write against the document store failed."""

    def __init__(self, document: Any, operation: str, cause: BaseException | None = None) -> None:
        self.document = document
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to {operation} {document}{detail}")


class InternalInvariantViolation(SyncError):
    """The registry was driven into a state that must never happen."""


class ReentrantUpdateError(SyncError):
    """Listener callbacks kept writing back into the same entry."""

    def __init__(self, path: Sequence[str | int], depth: int) -> None:
        self.path = tuple(path)
        self.depth = depth
        super().__init__(
            f"Update of {_render(self.path)!r} nested {depth} dispatches deep; "
            "listeners are writing back to each other in a cycle"
        )


def _render(path: tuple[str | int, ...]) -> str:
    # Local import keeps errors.py free of a hard dependency cycle.
    from fieldsync.sync.path_utils import format_path

    return format_path(path)
