# src/stores/markdown_store.py — v1
"""Markdown-file document store (default STORE_BACKEND=markdown).

Each document is a markdown file whose structured data lives in its YAML
frontmatter. Changes are detected by polling file mtimes; polling reports
every change, including the ones this store wrote itself.
"""

from __future__ import annotations

import logging
from typing import Any

from fieldsync.stores.base_store import BaseDocumentStore
from fieldsync.stores.documents import DocumentHandle
from fieldsync.stores.frontmatter import (
    FrontmatterError,
    parse_frontmatter,
    replace_frontmatter,
)
from fieldsync.sync.errors import PersistenceFailure
from fieldsync.sync.scheduler import BaseTicker

logger = logging.getLogger(__name__)


class MarkdownFrontmatterStore(BaseDocumentStore):
    """Reads and writes frontmatter of files addressed by DocumentHandle."""

    def __init__(self) -> None:
        super().__init__()
        self._mtimes: dict[DocumentHandle, int] = {}
        self._watch_ticker: BaseTicker | None = None

    async def read(self, document: DocumentHandle) -> dict[str, Any]:
        """Parse the document's frontmatter and start tracking its mtime."""
        path = document.path
        if not path.exists():
            return {}
        try:
            mtime = path.stat().st_mtime_ns
            data = parse_frontmatter(path.read_text(encoding="utf-8"))
        except (OSError, FrontmatterError) as exc:
            raise PersistenceFailure(document, "read", exc) from exc
        self._mtimes[document] = mtime
        return data

    async def write(self, document: DocumentHandle, data: dict[str, Any]) -> None:
        """Rewrite the frontmatter block, leaving the body untouched."""
        path = document.path
        try:
            text = path.read_text(encoding="utf-8") if path.exists() else ""
            path.write_text(replace_frontmatter(text, data), encoding="utf-8")
        except (OSError, FrontmatterError) as exc:
            raise PersistenceFailure(document, "write", exc) from exc
        logger.debug("Wrote frontmatter of %s", document)

    def track(self, document: DocumentHandle) -> None:
        """Watch ``document`` for changes without reading it first."""
        try:
            self._mtimes[document] = document.path.stat().st_mtime_ns
        except FileNotFoundError:
            self._mtimes[document] = 0

    def poll_changes(self) -> int:
        """Emit a snapshot for every tracked file whose mtime moved."""
        emitted = 0
        for document, last_seen in list(self._mtimes.items()):
            try:
                mtime = document.path.stat().st_mtime_ns
            except FileNotFoundError:
                continue
            if mtime == last_seen:
                continue
            self._mtimes[document] = mtime
            try:
                snapshot = parse_frontmatter(document.path.read_text(encoding="utf-8"))
            except (OSError, FrontmatterError) as exc:
                logger.warning("Ignoring unreadable change of %s: %s", document, exc)
                continue
            logger.debug("Detected change of %s", document)
            self._emit_change(document, snapshot)
            emitted += 1
        return emitted

    def watch(self, ticker: BaseTicker) -> None:
        """Poll for changes on every tick of ``ticker``."""
        self._watch_ticker = ticker
        ticker.start(self.poll_changes)

    def stop_watching(self) -> None:
        if self._watch_ticker is not None:
            self._watch_ticker.stop()
