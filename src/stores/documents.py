# src/stores/documents.py — v1
"""Identity-stable document handles and name resolution inside a vault."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from fieldsync.sync.errors import FileResolutionError

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".md"


@dataclass(eq=False)
class DocumentHandle:
    """Opaque cache key for one markdown document.

    Equality is identity: DocumentIndex hands out exactly one handle per
    file, so two handles for the same file never coexist.
    """

    path: Path
    name: str

    def __str__(self) -> str:
        return self.name


class DocumentIndex:
    """Resolves note names under a vault root to interned handles."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._handles: dict[Path, DocumentHandle] = {}

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, name: str) -> DocumentHandle:
        """Find a note by vault-relative path, or by file name anywhere.

        Raises:
            FileResolutionError: No note or more than one note matches.
        """
        relative = Path(name)
        if not relative.suffix:
            relative = relative.with_suffix(MARKDOWN_SUFFIX)

        direct = self._root / relative
        if direct.is_file():
            return self.handle_for(direct)

        matches = sorted(self._root.rglob(relative.name))
        matches = [m for m in matches if m.is_file()]
        if not matches:
            raise FileResolutionError(name, "file not found")
        if len(matches) > 1:
            raise FileResolutionError(
                name, "multiple files found, please specify the file path"
            )
        return self.handle_for(matches[0])

    def handle_for(self, path: str | Path) -> DocumentHandle:
        """Return the interned handle for ``path``."""
        resolved = Path(path).expanduser().resolve()
        handle = self._handles.get(resolved)
        if handle is None:
            try:
                name = resolved.relative_to(self._root).as_posix()
            except ValueError:
                name = resolved.as_posix()
            handle = DocumentHandle(path=resolved, name=name)
            self._handles[resolved] = handle
            logger.debug("Indexed document %s", name)
        return handle

    def __len__(self) -> int:
        return len(self._handles)
