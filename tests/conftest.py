# tests/conftest.py — v2
"""Shared test fixtures for unit and integration tests.

Provides an in-memory store, a manual ticker, a registry wired to both and
a recording listener. No external dependencies; all I/O is in memory or
under tmp_path.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from fieldsync.stores.documents import DocumentHandle
from fieldsync.stores.memory_store import InMemoryDocumentStore
from fieldsync.sync.registry import SyncRegistry
from fieldsync.sync.scheduler import ManualTicker


class RecordingListener:
    """FieldListener that remembers every value it was given."""

    def __init__(self) -> None:
        self.values: list[Any] = []

    def on_update(self, value: Any) -> None:
        self.values.append(value)

    @property
    def last(self) -> Any:
        return self.values[-1]


# === FIXTURES: Documents and stores ===


@pytest.fixture
def doc() -> DocumentHandle:
    """Document F from the end-to-end scenario."""
    return DocumentHandle(path=Path("/vault/F.md"), name="F.md")


@pytest.fixture
def other_doc() -> DocumentHandle:
    return DocumentHandle(path=Path("/vault/G.md"), name="G.md")


@pytest.fixture
def store(doc: DocumentHandle) -> InMemoryDocumentStore:
    """Store where F holds {a: {b: 1}}."""
    return InMemoryDocumentStore({doc: {"a": {"b": 1}, "title": "F"}})


# === FIXTURES: Registry ===


@pytest.fixture
def ticker() -> ManualTicker:
    return ManualTicker()


@pytest.fixture
def registry(store: InMemoryDocumentStore, ticker: ManualTicker) -> SyncRegistry:
    return SyncRegistry(store, ticker)


@pytest.fixture
def recorder() -> type[RecordingListener]:
    """Factory for RecordingListener instances."""
    return RecordingListener
