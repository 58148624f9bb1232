# src/__init__.py — v1
"""fieldsync: keep UI-bound fields in sync with per-document frontmatter."""

from fieldsync.sync.binding import BindTarget, BoundField, CallbackListener, FieldListener
from fieldsync.sync.errors import (
    FileResolutionError,
    InternalInvariantViolation,
    MissingParentPath,
    PersistenceFailure,
    ReentrantUpdateError,
    SyncError,
)
from fieldsync.sync.registry import CacheHandle, SyncRegistry
from fieldsync.sync.scheduler import AsyncioTicker, BaseTicker, ManualTicker
from fieldsync.version import __version__

__all__ = [
    "AsyncioTicker",
    "BaseTicker",
    "BindTarget",
    "BoundField",
    "CacheHandle",
    "CallbackListener",
    "FieldListener",
    "FileResolutionError",
    "InternalInvariantViolation",
    "ManualTicker",
    "MissingParentPath",
    "PersistenceFailure",
    "ReentrantUpdateError",
    "SyncError",
    "SyncRegistry",
    "__version__",
]
