# src/stores/base_store.py — v1
"""Abstract document store: persistence adapter plus change source."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

ChangeCallback = Callable[[Any, dict[str, Any]], None]


class BaseDocumentStore(ABC):
    """Unified interface for document storage backends.

    ``read`` and ``write`` raise PersistenceFailure on I/O errors. Change
    notifications are delivered to subscribers as ``(document, snapshot)``
    and may include echoes of this store's own writes.
    """

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    @abstractmethod
    async def read(self, document: Any) -> dict[str, Any]:
        """Return the document's structured data, ``{}`` if it has none."""

    @abstractmethod
    async def write(self, document: Any, data: dict[str, Any]) -> None:
        """Replace the document's structured data."""

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a change callback. Returns a function that unsubscribes."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit_change(self, document: Any, snapshot: dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            callback(document, snapshot)
