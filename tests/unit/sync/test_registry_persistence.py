# tests/unit/sync/test_registry_persistence.py — v1
"""Tests for sync/registry.py — tick-driven writes, failures and eviction."""

from __future__ import annotations

import asyncio
import logging

import pytest

from fieldsync.stores.memory_store import InMemoryDocumentStore
from fieldsync.sync.errors import PersistenceFailure
from fieldsync.sync.registry import SyncRegistry
from fieldsync.sync.scheduler import ManualTicker


class GatedStore(InMemoryDocumentStore):
    """Memory store whose reads and writes block until their gate opens."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.read_gate = asyncio.Event()
        self.write_gate = asyncio.Event()
        self.read_gate.set()
        self.writes_started = 0

    async def read(self, document):
        await self.read_gate.wait()
        return await super().read(document)

    async def write(self, document, data):
        self.writes_started += 1
        await self.write_gate.wait()
        await super().write(document, data)


class FlakyStore(InMemoryDocumentStore):
    """Memory store that fails its first N reads and writes."""

    def __init__(self, *args, failing_reads: int = 0, failing_writes: int = 0, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failing_reads = failing_reads
        self.failing_writes = failing_writes

    async def read(self, document):
        if self.failing_reads:
            self.failing_reads -= 1
            raise PersistenceFailure(document, "read", OSError("disk unplugged"))
        return await super().read(document)

    async def write(self, document, data):
        if self.failing_writes:
            self.failing_writes -= 1
            raise PersistenceFailure(document, "write", OSError("disk full"))
        await super().write(document, data)


async def _loaded(registry, doc, listener, path=("a", "b"), listener_id="L1"):
    registry.register(doc, listener, path, listener_id)
    await registry.wait_until_loaded(doc)


class TestTick:
    @pytest.mark.asyncio
    async def test_writes_dirty_entry_and_clears_flag(self, registry, doc, store, ticker, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        ticker.fire()
        assert registry.get_entry(doc).dirty is False
        await registry.drain()

        assert store.writes == [(doc, {"a": {"b": 2}, "title": "F"})]

    @pytest.mark.asyncio
    async def test_clean_entry_is_not_written(self, registry, doc, store, ticker, recorder):
        await _loaded(registry, doc, recorder())
        ticker.fire(3)
        await registry.drain()
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_counter_ages_on_every_tick(self, registry, doc, ticker, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        ticker.fire(3)
        assert registry.get_entry(doc).ticks_since_last_local_write == 3

    @pytest.mark.asyncio
    async def test_in_flight_write_is_not_duplicated(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}}}, echo_writes=False)
        ticker = ManualTicker()
        registry = SyncRegistry(store, ticker)
        await _loaded(registry, doc, recorder())

        registry.update_property_at_path(doc, ("a", "b"), 2)
        ticker.fire()
        await asyncio.sleep(0)
        assert store.writes_started == 1

        registry.update_property_at_path(doc, ("a", "b"), 3)
        ticker.fire()
        await asyncio.sleep(0)
        entry = registry.get_entry(doc)
        assert store.writes_started == 1
        assert entry.dirty is True
        assert entry.write_in_flight is True

        store.write_gate.set()
        await registry.drain()
        ticker.fire()
        await registry.drain()

        assert [data for _, data in store.writes] == [{"a": {"b": 2}}, {"a": {"b": 3}}]

    @pytest.mark.asyncio
    async def test_write_before_load_waits_and_merges(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}, "title": "F"}}, echo_writes=False)
        store.read_gate.clear()
        store.write_gate.set()
        ticker = ManualTicker()
        registry = SyncRegistry(store, ticker)
        title = recorder()
        registry.register(doc, title, ("title",), "L1")

        registry.update_property_at_path(doc, ("title",), "X")
        ticker.fire()
        await registry.drain()
        assert store.writes_started == 0

        store.read_gate.set()
        await registry.wait_until_loaded(doc)
        entry = registry.get_entry(doc)
        assert entry.data == {"a": {"b": 1}, "title": "X"}
        assert entry.dirty is True
        assert entry.pending_writes == []
        assert title.values == ["X", "X"]

        ticker.fire()
        await registry.drain()
        assert store.writes == [(doc, {"a": {"b": 1}, "title": "X"})]

    @pytest.mark.asyncio
    async def test_flush_waits_for_pending_load(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}, "title": "F"}}, echo_writes=False)
        store.read_gate.clear()
        store.write_gate.set()
        registry = SyncRegistry(store, ManualTicker())
        registry.register(doc, recorder(), ("a", "b"), "L1")
        registry.update_property_at_path(doc, ("title",), "X")

        flushing = asyncio.get_running_loop().create_task(registry.flush())
        await asyncio.sleep(0)
        store.read_gate.set()

        assert await flushing == 1
        assert store.get(doc) == {"a": {"b": 1}, "title": "X"}

    @pytest.mark.asyncio
    async def test_tick_after_close_does_nothing(self, registry, doc, store, ticker, recorder):
        await _loaded(registry, doc, recorder())
        await registry.close(flush=False)
        registry.tick()
        assert store.writes == []


class TestPersistenceFailure:
    @pytest.mark.asyncio
    async def test_failed_write_is_retried_next_tick(self, doc, recorder, caplog):
        store = FlakyStore({doc: {"a": {"b": 1}}}, failing_writes=1, echo_writes=False)
        ticker = ManualTicker()
        registry = SyncRegistry(store, ticker)
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        with caplog.at_level(logging.ERROR, logger="fieldsync.sync.registry"):
            ticker.fire()
            await registry.drain()

        assert store.writes == []
        assert registry.get_entry(doc).dirty is True
        assert "Failed to persist" in caplog.text

        ticker.fire()
        await registry.drain()
        assert store.writes == [(doc, {"a": {"b": 2}})]
        assert registry.get_entry(doc).dirty is False

    @pytest.mark.asyncio
    async def test_failed_load_leaves_entry_empty(self, doc, recorder):
        store = FlakyStore({doc: {"a": {"b": 1}}}, failing_reads=1)
        registry = SyncRegistry(store, ManualTicker())
        l1 = recorder()
        await _loaded(registry, doc, l1)

        entry = registry.get_entry(doc)
        assert entry.load_failed is True
        assert entry.loaded is False
        assert entry.data == {}
        assert l1.values == []

    @pytest.mark.asyncio
    async def test_next_registration_retries_failed_load(self, doc, recorder):
        store = FlakyStore({doc: {"a": {"b": 1}}}, failing_reads=1)
        registry = SyncRegistry(store, ManualTicker())
        l1, l2 = recorder(), recorder()
        await _loaded(registry, doc, l1)

        await _loaded(registry, doc, l2, listener_id="L2")

        entry = registry.get_entry(doc)
        assert entry.loaded is True
        assert entry.load_failed is False
        assert l1.values == [1]
        assert l2.values == [1]

    @pytest.mark.asyncio
    async def test_write_after_failed_load_does_not_clobber_document(self, doc, recorder):
        store = FlakyStore({doc: {"a": {"b": 1}, "title": "F"}}, failing_reads=1, echo_writes=False)
        ticker = ManualTicker()
        registry = SyncRegistry(store, ticker)
        await _loaded(registry, doc, recorder(), path=("title",))
        registry.update_property_at_path(doc, ("title",), "X")

        ticker.fire()
        await registry.drain()
        assert store.writes == []
        assert registry.get_entry(doc).dirty is True
        assert await registry.flush() == 0

        await _loaded(registry, doc, recorder(), path=("title",), listener_id="L2")
        entry = registry.get_entry(doc)
        assert entry.data == {"a": {"b": 1}, "title": "X"}

        ticker.fire()
        await registry.drain()
        assert store.writes == [(doc, {"a": {"b": 1}, "title": "X"})]


class TestEviction:
    @pytest.mark.asyncio
    async def test_flush_policy_writes_pending_change(self, registry, doc, store, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        registry.unregister(doc, "L1")
        assert doc not in registry
        await registry.drain()

        assert store.get(doc) == {"a": {"b": 2}, "title": "F"}

    @pytest.mark.asyncio
    async def test_flush_waits_for_in_flight_write(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}}}, echo_writes=False)
        ticker = ManualTicker()
        registry = SyncRegistry(store, ticker)
        await _loaded(registry, doc, recorder())

        registry.update_property_at_path(doc, ("a", "b"), 2)
        ticker.fire()
        registry.update_property_at_path(doc, ("a", "b"), 3)
        registry.unregister(doc, "L1")

        store.write_gate.set()
        await registry.drain()

        assert [data for _, data in store.writes] == [{"a": {"b": 2}}, {"a": {"b": 3}}]

    @pytest.mark.asyncio
    async def test_discard_policy_drops_pending_change(self, doc, store, recorder, caplog):
        registry = SyncRegistry(store, ManualTicker(), eviction_policy="discard")
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        with caplog.at_level(logging.WARNING, logger="fieldsync.sync.registry"):
            registry.unregister(doc, "L1")
            await registry.drain()

        assert store.writes == []
        assert "Discarding unsaved changes" in caplog.text

    @pytest.mark.asyncio
    async def test_clean_entry_evicts_without_write(self, registry, doc, store, recorder):
        await _loaded(registry, doc, recorder())
        registry.unregister(doc, "L1")
        await registry.drain()
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_load_completing_after_eviction_notifies_nobody(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}}})
        store.read_gate.clear()
        registry = SyncRegistry(store, ManualTicker())
        l1 = recorder()
        registry.register(doc, l1, ("a", "b"), "L1")
        entry = registry.get_entry(doc)

        registry.unregister(doc, "L1")
        store.read_gate.set()
        await entry.load_task

        assert entry.detached is True
        assert l1.values == []
        assert doc not in registry
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_eviction_before_load_merges_early_write(self, doc, recorder):
        store = GatedStore({doc: {"a": {"b": 1}, "title": "F"}}, echo_writes=False)
        store.read_gate.clear()
        store.write_gate.set()
        registry = SyncRegistry(store, ManualTicker())
        registry.register(doc, recorder(), ("title",), "L1")
        registry.update_property_at_path(doc, ("title",), "X")

        registry.unregister(doc, "L1")
        store.read_gate.set()
        await registry.drain()

        assert store.get(doc) == {"a": {"b": 1}, "title": "X"}

    @pytest.mark.asyncio
    async def test_eviction_after_failed_load_writes_nothing(self, doc, recorder, caplog):
        store = FlakyStore({doc: {"a": {"b": 1}, "title": "F"}}, failing_reads=1)
        registry = SyncRegistry(store, ManualTicker())
        await _loaded(registry, doc, recorder(), path=("title",))
        registry.update_property_at_path(doc, ("title",), "X")

        with caplog.at_level(logging.WARNING, logger="fieldsync.sync.registry"):
            registry.unregister(doc, "L1")
            await registry.drain()

        assert store.writes == []
        assert store.get(doc) == {"a": {"b": 1}, "title": "F"}
        assert "never loaded" in caplog.text


class TestFlushAndClose:
    @pytest.mark.asyncio
    async def test_flush_writes_now(self, registry, doc, other_doc, store, recorder):
        await _loaded(registry, doc, recorder())
        await _loaded(registry, other_doc, recorder(), path=("x",))
        registry.update_property_at_path(doc, ("a", "b"), 2)

        assert await registry.flush() == 1
        assert store.writes == [(doc, {"a": {"b": 2}, "title": "F"})]

    @pytest.mark.asyncio
    async def test_flush_single_document(self, registry, doc, store, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("title",), "F2")

        assert await registry.flush(doc) == 1
        assert await registry.flush(doc) == 0

    @pytest.mark.asyncio
    async def test_close_flushes_dirty_entries(self, registry, doc, store, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        await registry.close()
        assert store.get(doc)["a"] == {"b": 2}

    @pytest.mark.asyncio
    async def test_close_without_flush(self, registry, doc, store, recorder):
        await _loaded(registry, doc, recorder())
        registry.update_property_at_path(doc, ("a", "b"), 2)

        await registry.close(flush=False)
        assert store.writes == []
