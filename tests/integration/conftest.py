# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests against real markdown files.

Every test gets its own vault under tmp_path. Tickers stay manual so each
test decides exactly when the registry, fields and file poller run.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fieldsync.stores.documents import DocumentIndex
from fieldsync.stores.markdown_store import MarkdownFrontmatterStore
from fieldsync.sync.registry import SyncRegistry
from fieldsync.sync.scheduler import ManualTicker


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: marks tests touching the filesystem")


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    (tmp_path / "projects").mkdir()
    (tmp_path / "projects" / "Alpha.md").write_text(
        "---\nstatus: draft\nmeta:\n  priority: 1\n---\n# Alpha\n\nNotes.\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def index(vault: Path) -> DocumentIndex:
    return DocumentIndex(vault)


@pytest.fixture
def md_store() -> MarkdownFrontmatterStore:
    return MarkdownFrontmatterStore()


@pytest.fixture
def sync_ticker() -> ManualTicker:
    return ManualTicker()


@pytest.fixture
def poll_ticker() -> ManualTicker:
    return ManualTicker()


@pytest.fixture
def md_registry(md_store, sync_ticker, poll_ticker) -> SyncRegistry:
    md_store.watch(poll_ticker)
    return SyncRegistry(md_store, sync_ticker)
