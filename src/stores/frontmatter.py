# src/stores/frontmatter.py — v1
"""Split, parse and render the YAML frontmatter block of a markdown file.

A frontmatter block starts on the first line with ``---`` and ends at the
next line consisting of ``---`` or ``...``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import yaml

_OPEN = "---"
_CLOSE = ("---", "...")


class FrontmatterError(ValueError):
    """The frontmatter block exists but is not a YAML mapping."""


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Return ``(yaml_block, body)``; the block is None when absent."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip() != _OPEN:
        return None, text

    for i in range(1, len(lines)):
        if lines[i].rstrip() in _CLOSE:
            return "".join(lines[1:i]), "".join(lines[i + 1:])
    return None, text


def parse_frontmatter(text: str) -> dict[str, Any]:
    """Structured data of a markdown document, ``{}`` when it has none."""
    block, _ = split_frontmatter(text)
    if block is None:
        return {}
    try:
        parsed = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"Invalid YAML frontmatter: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise FrontmatterError("Frontmatter root must be a mapping")
    return dict(parsed)


def render_frontmatter(data: Mapping[str, Any], body: str) -> str:
    """Prefix ``body`` with ``data`` as frontmatter; empty data drops the block."""
    if not data:
        return body
    try:
        dumped = yaml.safe_dump(
            dict(data), sort_keys=False, allow_unicode=True, default_flow_style=False
        )
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"Cannot serialize frontmatter: {exc}") from exc
    return f"{_OPEN}\n{dumped}{_OPEN}\n{body}"


def replace_frontmatter(text: str, data: Mapping[str, Any]) -> str:
    """Rewrite the frontmatter of ``text``, keeping its body."""
    _, body = split_frontmatter(text)
    return render_frontmatter(data, body)
