# src/main.py — v2
"""CLI entry point: show, get, set and watch frontmatter fields.

Usage:
    fieldsync show <note>
    fieldsync get <note> <path>
    fieldsync set <note> <path> <value>
    fieldsync watch <note> <path> [--duration SECONDS]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from fieldsync.config.settings import ConfigurationError, Settings, load_settings
from fieldsync.logging.logger import setup_logging
from fieldsync.stores.base_store import BaseDocumentStore
from fieldsync.stores.documents import DocumentHandle, DocumentIndex
from fieldsync.stores.store_factory import create_document_store
from fieldsync.sync.binding import CallbackListener
from fieldsync.sync.errors import MissingParentPath, SyncError
from fieldsync.sync.path_utils import format_path, parse_path
from fieldsync.sync.registry import SyncRegistry
from fieldsync.sync.scheduler import AsyncioTicker
from fieldsync.version import __version__

logger = logging.getLogger(__name__)

CLI_LISTENER_ID = "fieldsync-cli"


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _load_settings(args)
    except (ConfigurationError, ValidationError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except SyncError as exc:
        logger.error("%s", exc)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fieldsync",
        description=f"fieldsync v{__version__}: frontmatter field synchronization",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--vault", type=Path, default=None,
        help="Vault root directory (default: VAULT_ROOT or .)",
    )

    subparsers = parser.add_subparsers(dest="command")

    p_show = subparsers.add_parser("show", help="Print a note's frontmatter")
    p_show.add_argument("note", help="Note name or vault-relative path")
    p_show.set_defaults(func=_cmd_show)

    p_get = subparsers.add_parser("get", help="Print one frontmatter field")
    p_get.add_argument("note", help="Note name or vault-relative path")
    p_get.add_argument("path", type=parse_path, help="Field path, e.g. tags[0]")
    p_get.set_defaults(func=_cmd_get)

    p_set = subparsers.add_parser("set", help="Write one frontmatter field")
    p_set.add_argument("note", help="Note name or vault-relative path")
    p_set.add_argument("path", type=parse_path, help="Field path, e.g. status")
    p_set.add_argument("value", help="YAML value, e.g. 3, true, '[a, b]'")
    p_set.set_defaults(func=_cmd_set)

    p_watch = subparsers.add_parser("watch", help="Print a field whenever it changes")
    p_watch.add_argument("note", help="Note name or vault-relative path")
    p_watch.add_argument("path", type=parse_path, help="Field path")
    p_watch.add_argument(
        "--duration", type=float, default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    p_watch.set_defaults(func=_cmd_watch)

    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    if args.vault is not None:
        return load_settings(vault_root=args.vault)
    return load_settings()


def _open(settings: Settings, note: str) -> tuple[BaseDocumentStore, DocumentHandle]:
    index = DocumentIndex(settings.vault_root)
    document = index.resolve(note)
    return create_document_store(settings), document


async def _cmd_show(args: argparse.Namespace, settings: Settings) -> int:
    """Print the whole frontmatter of a note as YAML."""
    store, document = _open(settings, args.note)
    data = await store.read(document)
    print(_dump(data), end="")
    return 0


async def _cmd_get(args: argparse.Namespace, settings: Settings) -> int:
    """Print the value at a path."""
    store, document = _open(settings, args.note)
    registry = SyncRegistry.from_settings(store, settings)
    try:
        handle = registry.register(document, CallbackListener(lambda _: None), args.path, CLI_LISTENER_ID)
        await handle.wait_until_loaded()
        if not _loaded(registry, document):
            return 1
        print(_dump(handle.get_value()), end="")
    finally:
        await registry.close(flush=False)
    return 0


async def _cmd_set(args: argparse.Namespace, settings: Settings) -> int:
    """Write a value through the registry and flush it."""
    store, document = _open(settings, args.note)
    value = yaml.safe_load(args.value)
    registry = SyncRegistry.from_settings(store, settings)
    try:
        handle = registry.register(document, CallbackListener(lambda _: None), args.path, CLI_LISTENER_ID)
        await handle.wait_until_loaded()
        if not _loaded(registry, document):
            return 1
        try:
            handle.update(value)
        except MissingParentPath as exc:
            logger.error("%s", exc)
            return 1
    finally:
        await registry.close(flush=True)
    logger.info("Set %s in %s", format_path(args.path), document)
    return 0


async def _cmd_watch(args: argparse.Namespace, settings: Settings) -> int:
    """Bind a printing listener and follow external changes."""
    from fieldsync.stores.markdown_store import MarkdownFrontmatterStore

    store, document = _open(settings, args.note)
    registry = SyncRegistry.from_settings(store, settings)
    watcher = AsyncioTicker(settings.watch_interval_s, name="watch")
    if isinstance(store, MarkdownFrontmatterStore):
        store.watch(watcher)

    def show(value: Any) -> None:
        print(f"{format_path(args.path)}: {_dump(value).strip()}", flush=True)

    try:
        handle = registry.register(document, CallbackListener(show), args.path, CLI_LISTENER_ID)
        await handle.wait_until_loaded()
        if args.duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(args.duration)
    finally:
        watcher.stop()
        await registry.close(flush=True)
    return 0


def _loaded(registry: SyncRegistry, document: DocumentHandle) -> bool:
    entry = registry.get_entry(document)
    if entry is None or entry.load_failed:
        logger.error("Cannot read frontmatter of %s", document)
        return False
    return True


def _dump(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return yaml.safe_dump(value, sort_keys=False, allow_unicode=True, default_flow_style=False)
    if isinstance(value, str):
        return value + "\n"
    # Scalars: YAML would append a document end marker.
    return json.dumps(value, default=str) + "\n"


if __name__ == "__main__":
    sys.exit(main())
