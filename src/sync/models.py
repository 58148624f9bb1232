# src/sync/models.py — v1
"""Cache entry and listener records, plus the EntryStatus snapshot model.

CacheEntry and Listener are mutable runtime records owned by SyncRegistry.
EntryStatus is the read-only view handed to callers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from fieldsync.sync.path_utils import KeyPath

if TYPE_CHECKING:
    from fieldsync.sync.binding import FieldListener


@dataclass(eq=False)
class Listener:
    """One consumer's interest in one location of a document."""

    path: KeyPath
    consumer: FieldListener
    id: str


@dataclass(eq=False)
class CacheEntry:
    """In-memory mirror of one document's structured data."""

    document: Any
    data: dict[str, Any] = field(default_factory=dict)
    listeners: list[Listener] = field(default_factory=list)
    dirty: bool = False
    ticks_since_last_local_write: int = 0

    # Bookkeeping for asynchronous load/write and dispatch.
    load_task: asyncio.Task[None] | None = None
    loaded: bool = False
    load_failed: bool = False
    write_task: asyncio.Task[None] | None = None
    detached: bool = False
    dispatch_depth: int = 0
    # Local writes made before the load resolved, replayed over the loaded data.
    pending_writes: list[tuple[KeyPath, Any]] = field(default_factory=list)

    @property
    def write_in_flight(self) -> bool:
        return self.write_task is not None and not self.write_task.done()

    @property
    def listener_ids(self) -> list[str]:
        return [listener.id for listener in self.listeners]


class EntryStatus(BaseModel):
    """Snapshot of one cache entry's bookkeeping."""

    document: str
    dirty: bool
    ticks_since_last_local_write: int
    listener_ids: list[str]
    loaded: bool
    load_failed: bool = False
    write_in_flight: bool = False

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> EntryStatus:
        return cls(
            document=str(entry.document),
            dirty=entry.dirty,
            ticks_since_last_local_write=entry.ticks_since_last_local_write,
            listener_ids=entry.listener_ids,
            loaded=entry.loaded,
            load_failed=entry.load_failed,
            write_in_flight=entry.write_in_flight,
        )
