# src/stores/memory_store.py — v1
"""In-memory document store (STORE_BACKEND=memory).

Echoes its own writes back to subscribers, the way a file watcher would,
and lets callers simulate another writer with external_edit().
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from fieldsync.stores.base_store import BaseDocumentStore

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(BaseDocumentStore):
    """Dict-backed store keyed by document handle."""

    def __init__(
        self,
        documents: Mapping[Any, Mapping[str, Any]] | None = None,
        echo_writes: bool = True,
    ) -> None:
        super().__init__()
        self._data: dict[Any, dict[str, Any]] = {
            doc: copy.deepcopy(dict(data)) for doc, data in (documents or {}).items()
        }
        self._echo_writes = echo_writes
        self.reads: list[Any] = []
        self.writes: list[tuple[Any, dict[str, Any]]] = []

    async def read(self, document: Any) -> dict[str, Any]:
        self.reads.append(document)
        return copy.deepcopy(self._data.get(document, {}))

    async def write(self, document: Any, data: dict[str, Any]) -> None:
        snapshot = copy.deepcopy(data)
        self._data[document] = snapshot
        self.writes.append((document, copy.deepcopy(snapshot)))
        logger.debug("Stored %d keys for %s", len(snapshot), document)
        if self._echo_writes:
            self._emit_change(document, copy.deepcopy(snapshot))

    def external_edit(self, document: Any, data: Mapping[str, Any]) -> None:
        """Replace a document as another writer would and announce it."""
        self._data[document] = copy.deepcopy(dict(data))
        self._emit_change(document, copy.deepcopy(self._data[document]))

    def get(self, document: Any) -> dict[str, Any] | None:
        """Current stored data, bypassing the read log."""
        if document not in self._data:
            return None
        return copy.deepcopy(self._data[document])
