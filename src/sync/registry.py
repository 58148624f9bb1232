# src/sync/registry.py — v1
"""Synchronization registry: per-document cache, listeners, persistence tick.

One CacheEntry exists per registered document. Consumers push values with
update_property_at_path; the entry is marked dirty and other listeners on
the same path are notified synchronously. A periodic tick persists dirty
entries and ages each entry's recency counter. External change
notifications are applied only once the counter has reached the echo
threshold, otherwise they are dropped as echoes of our own writes.

Nothing is written for an entry whose load has not succeeded. Local writes
made before then are kept and replayed over the stored data once a load
resolves, so the store never sees a partial document.

Known limitation: a genuine external edit that arrives within the echo
window after a local write is lost. The threshold is a debounce, not a
vector clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Sequence

from fieldsync.logging.context import bind_log_context
from fieldsync.stores.base_store import BaseDocumentStore
from fieldsync.sync.binding import FieldListener
from fieldsync.sync.errors import (
    InternalInvariantViolation,
    MissingParentPath,
    PersistenceFailure,
    ReentrantUpdateError,
)
from fieldsync.sync.models import CacheEntry, EntryStatus, Listener
from fieldsync.sync.path_utils import (
    KeyPath,
    Segment,
    as_key_path,
    copy_value,
    deep_equal,
    format_path,
    get_at_path,
    locate_parent,
    set_at_path,
)
from fieldsync.sync.scheduler import AsyncioTicker, BaseTicker

if TYPE_CHECKING:
    from fieldsync.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_ECHO_THRESHOLD = 5
DEFAULT_MAX_DISPATCH_DEPTH = 16

EvictionPolicy = Literal["flush", "discard"]


@dataclass(frozen=True, eq=False)
class CacheHandle:
    """What a consumer gets back from register()."""

    registry: SyncRegistry
    document: Any
    path: KeyPath
    listener_id: str

    def get_value(self) -> Any:
        return self.registry.get_value(self.document, self.path)

    def update(self, value: Any) -> None:
        self.registry.update_property_at_path(
            self.document, self.path, value, origin_id=self.listener_id
        )

    async def wait_until_loaded(self) -> None:
        await self.registry.wait_until_loaded(self.document)

    def unregister(self) -> None:
        self.registry.unregister(self.document, self.listener_id)


class SyncRegistry:
    """Keeps bound consumers consistent with a document store.

    The ticker is started on construction and stopped by close(). All
    synchronous operations run to completion without yielding; loads and
    writes run as tasks on the current event loop.
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        ticker: BaseTicker,
        echo_threshold: int = DEFAULT_ECHO_THRESHOLD,
        eviction_policy: EvictionPolicy = "flush",
        max_dispatch_depth: int = DEFAULT_MAX_DISPATCH_DEPTH,
    ) -> None:
        if eviction_policy not in ("flush", "discard"):
            raise ValueError(f"Unsupported eviction policy: {eviction_policy!r}")
        if echo_threshold < 0:
            raise ValueError("echo_threshold must be >= 0")
        if max_dispatch_depth < 1:
            raise ValueError("max_dispatch_depth must be >= 1")

        self._store = store
        self._ticker = ticker
        self.echo_threshold = echo_threshold
        self.eviction_policy = eviction_policy
        self.max_dispatch_depth = max_dispatch_depth

        self._entries: dict[Any, CacheEntry] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False

        self._unsubscribe = store.subscribe(self.ingest_external_change)
        ticker.start(self.tick)

    @classmethod
    def from_settings(
        cls,
        store: BaseDocumentStore,
        settings: Settings,
        ticker: BaseTicker | None = None,
    ) -> SyncRegistry:
        """Build a registry configured from Settings."""
        if ticker is None:
            ticker = AsyncioTicker(settings.sync_interval_s, name="sync")
        return cls(
            store,
            ticker,
            echo_threshold=settings.echo_threshold,
            eviction_policy=settings.eviction_policy,
            max_dispatch_depth=settings.max_dispatch_depth,
        )

    # --- Introspection ---

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, document: object) -> bool:
        return document in self._entries

    @property
    def closed(self) -> bool:
        return self._closed

    def get_entry(self, document: Any) -> CacheEntry | None:
        """Return the live entry for ``document``, if any."""
        return self._entries.get(document)

    def status(self) -> list[EntryStatus]:
        return [EntryStatus.from_entry(e) for e in self._entries.values()]

    def get_value(self, document: Any, path: Sequence[Segment]) -> Any:
        """Detached copy of the value at ``path``, None when absent."""
        entry = self._require_entry(document)
        return copy_value(get_at_path(entry.data, path).value)

    # --- Registration ---

    def register(
        self,
        document: Any,
        consumer: FieldListener,
        path: Sequence[Segment],
        listener_id: str,
    ) -> CacheHandle:
        """Bind ``consumer`` to ``path`` inside ``document``.

        The first registration for a document creates its entry and starts
        loading it; every listener is notified once the load resolves.
        Later registrations are appended without a retroactive notification.
        Registering the same id twice appends two listener records.
        """
        if self._closed:
            raise InternalInvariantViolation("Cannot register on a closed registry")
        if not isinstance(consumer, FieldListener):
            raise TypeError(f"{consumer!r} does not implement on_update()")

        key_path = as_key_path(path)
        listener = Listener(path=key_path, consumer=consumer, id=listener_id)

        entry = self._entries.get(document)
        if entry is not None:
            logger.debug(
                "Registered %s to existing cache %s -> %s",
                listener_id, document, format_path(key_path),
            )
            entry.listeners.append(listener)
            if entry.load_failed and not self._load_pending(entry):
                self._schedule_load(entry)
        else:
            logger.debug(
                "Registered %s to new cache %s -> %s",
                listener_id, document, format_path(key_path),
            )
            entry = CacheEntry(document=document, listeners=[listener])
            self._entries[document] = entry
            self._schedule_load(entry)

        return CacheHandle(self, document, key_path, listener_id)

    def unregister(self, document: Any, listener_id: str) -> None:
        """Remove every listener with ``listener_id``; evict an emptied entry."""
        entry = self._entries.get(document)
        if entry is None:
            return

        remaining = [l for l in entry.listeners if l.id != listener_id]
        if len(remaining) == len(entry.listeners):
            return
        entry.listeners = remaining
        logger.debug("Unregistered %s from cache %s", listener_id, document)

        if not entry.listeners:
            self._evict(entry)

    def _evict(self, entry: CacheEntry) -> None:
        del self._entries[entry.document]
        entry.detached = True
        logger.debug("Deleted unused cache %s", entry.document)

        if not entry.dirty:
            return
        if self.eviction_policy == "discard":
            entry.dirty = False
            logger.warning(
                "Discarding unsaved changes of %s on eviction", entry.document
            )
            return
        self._spawn(self._flush_evicted(entry))

    # --- Updates ---

    def update_property_at_path(
        self,
        document: Any,
        path: Sequence[Segment],
        value: Any,
        origin_id: str | None = None,
    ) -> None:
        """Set ``value`` at ``path`` and notify listeners bound to that path.

        Raises MissingParentPath when an ancestor of ``path`` is missing.
        A value deep-equal to the current one is ignored. The listener whose
        id equals ``origin_id`` is not notified.
        """
        entry = self._require_entry(document)
        key_path = as_key_path(path)

        if not locate_parent(entry.data, key_path).parent_exists:
            raise MissingParentPath(key_path)

        current = get_at_path(entry.data, key_path)
        if current.found and deep_equal(current.value, value):
            logger.debug(
                "Skipping redundant update of %s in %s", format_path(key_path), document
            )
            return

        self._check_dispatch_depth(entry, key_path)
        logger.debug("Updating %s in %s to %r", format_path(key_path), document, value)
        set_at_path(entry.data, key_path, copy_value(value))
        if not entry.loaded:
            entry.pending_writes.append((key_path, copy_value(value)))
        self._mark_local_write(entry)
        self.notify(entry, key_path, except_id=origin_id)

    def replace_all(
        self,
        document: Any,
        new_data: Mapping[str, Any],
        persist: bool = False,
        origin_id: str | None = None,
    ) -> bool:
        """Replace the entry's data wholesale and resync every listener.

        ``persist`` marks the entry dirty so the next tick writes it out.
        Returns False when ``new_data`` equals the current data.
        """
        entry = self._require_entry(document)
        if not isinstance(new_data, Mapping):
            raise TypeError("Document data must be a mapping")
        if deep_equal(entry.data, new_data):
            return False

        self._check_dispatch_depth(entry, ())
        entry.data = copy_value(dict(new_data))
        if persist:
            if not entry.loaded:
                entry.pending_writes = [((), copy_value(entry.data))]
            self._mark_local_write(entry)
        self.notify(entry, except_id=origin_id)
        return True

    def ingest_external_change(self, document: Any, raw_snapshot: Mapping[str, Any] | None) -> bool:
        """Change-source callback. Returns True when the snapshot was accepted."""
        entry = self._entries.get(document)
        if entry is None:
            return False
        if not entry.loaded:
            logger.debug("Ignoring external change of %s until its load resolves", document)
            return False

        if entry.ticks_since_last_local_write < self.echo_threshold:
            logger.debug(
                "Ignoring external change of %s, %d ticks since last local write",
                document, entry.ticks_since_last_local_write,
            )
            return False

        logger.debug("Applying external change of %s", document)
        self.replace_all(document, dict(raw_snapshot or {}), persist=False)
        return True

    def _mark_local_write(self, entry: CacheEntry) -> None:
        entry.dirty = True
        entry.ticks_since_last_local_write = 0

    def _check_dispatch_depth(self, entry: CacheEntry, path: Sequence[Segment]) -> None:
        if entry.dispatch_depth >= self.max_dispatch_depth:
            raise ReentrantUpdateError(path, entry.dispatch_depth)

    # --- Notification ---

    def notify(
        self,
        entry: CacheEntry,
        path: Sequence[Segment] | None = None,
        except_id: str | None = None,
    ) -> None:
        """Dispatch to listeners bound to ``path``, or to all when omitted."""
        if entry.detached or self._entries.get(entry.document) is not entry:
            raise InternalInvariantViolation(
                f"Cannot notify listeners of evicted cache {entry.document}"
            )
        if not entry.listeners:
            raise InternalInvariantViolation(
                f"Live cache {entry.document} has no listeners"
            )

        key_path = as_key_path(path) if path is not None else None

        entry.dispatch_depth += 1
        try:
            for listener in list(entry.listeners):
                if except_id is not None and listener.id == except_id:
                    continue
                # A callback earlier in this loop may have unregistered it.
                if listener not in entry.listeners:
                    continue
                if key_path is not None and listener.path != key_path:
                    continue
                # Read per listener: an earlier callback may have written again.
                listener_value = get_at_path(entry.data, listener.path).value

                with bind_log_context(document=str(entry.document), listener=listener.id):
                    logger.debug("Notifying %s of updated metadata", listener.id)
                    listener.consumer.on_update(copy_value(listener_value))
        finally:
            entry.dispatch_depth -= 1

    # --- Persistence ---

    def tick(self) -> None:
        """Persist dirty entries and age every entry's recency counter."""
        if self._closed:
            return
        for entry in list(self._entries.values()):
            if entry.dirty:
                if not entry.loaded:
                    logger.debug("Holding writes of %s until its load succeeds", entry.document)
                elif entry.write_in_flight:
                    logger.debug("Write of %s still in flight, retrying next tick", entry.document)
                else:
                    self._start_write(entry)
            entry.ticks_since_last_local_write += 1

    async def flush(self, document: Any | None = None) -> int:
        """Persist dirty entries now. Returns the number of writes issued."""
        entries = list(self._entries.values()) if document is None else [self._require_entry(document)]
        written = 0
        for entry in entries:
            if self._load_pending(entry):
                await entry.load_task
            if entry.write_task is not None:
                await entry.write_task
            if not entry.dirty:
                continue
            if not entry.loaded:
                logger.warning("Not flushing %s, its metadata never loaded", entry.document)
                continue
            await self._start_write(entry)
            written += 1
        return written

    async def drain(self) -> None:
        """Wait for in-flight writes and eviction flushes to settle."""
        while True:
            pending = [t for t in self._background if not t.done()]
            pending += [
                e.write_task for e in self._entries.values()
                if e.write_task is not None and not e.write_task.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def wait_until_loaded(self, document: Any) -> None:
        entry = self._require_entry(document)
        if entry.load_task is not None:
            await entry.load_task

    async def close(self, flush: bool = True) -> None:
        """Stop the ticker and detach from the change source. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._ticker.stop()
        self._unsubscribe()
        if flush:
            await self.flush()
        await self.drain()
        logger.info("Sync registry closed with %d cached documents", len(self._entries))

    def _start_write(self, entry: CacheEntry) -> asyncio.Task[None]:
        snapshot = copy_value(entry.data)
        entry.dirty = False
        entry.write_task = asyncio.get_running_loop().create_task(
            self._write(entry, snapshot)
        )
        return entry.write_task

    async def _write(self, entry: CacheEntry, snapshot: dict[str, Any]) -> None:
        logger.debug("Updating frontmatter of %s", entry.document)
        try:
            await self._store.write(entry.document, snapshot)
        except PersistenceFailure as exc:
            entry.dirty = True
            logger.error("Failed to persist %s, retrying next tick: %s", entry.document, exc)

    async def _flush_evicted(self, entry: CacheEntry) -> None:
        if self._load_pending(entry):
            await entry.load_task
        if not entry.loaded:
            entry.dirty = False
            logger.warning(
                "Unsaved changes of evicted %s were lost, its metadata never loaded",
                entry.document,
            )
            return
        if entry.write_task is not None:
            await entry.write_task
        if entry.dirty:
            snapshot = copy_value(entry.data)
            entry.dirty = False
            await self._write(entry, snapshot)
            if entry.dirty:
                logger.warning("Unsaved changes of evicted %s were lost", entry.document)

    # --- Loading ---

    def _load_pending(self, entry: CacheEntry) -> bool:
        return entry.load_task is not None and not entry.load_task.done()

    def _schedule_load(self, entry: CacheEntry) -> None:
        entry.load_failed = False
        entry.load_task = asyncio.get_running_loop().create_task(self._load(entry))

    async def _load(self, entry: CacheEntry) -> None:
        try:
            data = await self._store.read(entry.document)
        except PersistenceFailure as exc:
            entry.load_failed = True
            logger.error("Failed to load %s: %s", entry.document, exc)
            return

        entry.data = self._replay_pending(entry, copy_value(dict(data or {})))
        entry.loaded = True
        if entry.detached:
            # Kept only so an eviction flush can write the merged data.
            logger.debug("Not notifying listeners of evicted cache %s", entry.document)
            return

        logger.info("Loaded metadata for %s", entry.document)
        try:
            self.notify(entry)
        except Exception:
            logger.exception("Listener failed while loading %s", entry.document)

    def _replay_pending(self, entry: CacheEntry, data: dict[str, Any]) -> dict[str, Any]:
        """Apply writes made before the load over the stored data."""
        for key_path, value in entry.pending_writes:
            if not key_path:
                data = copy_value(value)
                continue
            try:
                set_at_path(data, key_path, copy_value(value))
            except MissingParentPath:
                logger.warning(
                    "Dropping early write of %s in %s, its parent no longer exists",
                    format_path(key_path), entry.document,
                )
        if entry.pending_writes:
            logger.debug(
                "Replayed %d early writes over loaded %s",
                len(entry.pending_writes), entry.document,
            )
        entry.pending_writes = []
        return data

    # --- Helpers ---

    def _require_entry(self, document: Any) -> CacheEntry:
        entry = self._entries.get(document)
        if entry is None:
            raise InternalInvariantViolation(f"No live cache for {document}")
        return entry

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
