# src/stores/store_factory.py — v1
"""Factory for document store instantiation."""

from __future__ import annotations

from fieldsync.config.settings import Settings
from fieldsync.stores.base_store import BaseDocumentStore


def create_document_store(settings: Settings | None = None) -> BaseDocumentStore:
    """Instantiate the configured store backend.

    Args:
        settings: Application settings. Defaults to the markdown backend.

    Returns:
        Configured BaseDocumentStore implementation.
    """
    backend = "markdown" if settings is None else settings.store_backend

    if backend == "markdown":
        from fieldsync.stores.markdown_store import MarkdownFrontmatterStore
        return MarkdownFrontmatterStore()

    if backend == "memory":
        from fieldsync.stores.memory_store import InMemoryDocumentStore
        return InMemoryDocumentStore()

    raise ValueError(f"Unsupported store backend: {backend!r}")
