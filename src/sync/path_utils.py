# src/sync/path_utils.py — v1
"""Read and write values at a key path inside nested structured data.

A key path is a non-empty tuple of segments. String segments index into
mappings, integer segments index into lists. Lookups return a tri-state
Lookup so that a stored None is never confused with a missing location.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Sequence

from fieldsync.sync.errors import MissingParentPath

Segment = str | int
KeyPath = tuple[Segment, ...]

_TOKEN_RE = re.compile(r"^([^.\[\]]+)((?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


class LookupStatus(str, Enum):
    FOUND = "found"
    FOUND_NULL = "found_null"
    MISSING = "missing"


@dataclass(frozen=True)
class Lookup:
    """Result of get_at_path."""

    status: LookupStatus
    value: Any = None

    @property
    def found(self) -> bool:
        return self.status is not LookupStatus.MISSING

    @property
    def missing(self) -> bool:
        return self.status is LookupStatus.MISSING


MISSING = Lookup(LookupStatus.MISSING)


@dataclass(frozen=True)
class ParentLocation:
    """Where a path's final segment would be written."""

    parent: Any
    parent_exists: bool
    final_key: Segment


def as_key_path(path: Iterable[Segment]) -> KeyPath:
    """Normalize a segment sequence into a KeyPath, rejecting empty paths.

    A bare string is refused rather than split into characters; use
    ``("title",)`` or ``parse_path("title")``.
    """
    if isinstance(path, (str, bytes)):
        raise TypeError(f"Key path must be a sequence of segments, not {path!r}")
    key_path = tuple(path)
    if not key_path:
        raise ValueError("A key path needs at least one segment")
    for segment in key_path:
        if isinstance(segment, bool) or not isinstance(segment, (str, int)):
            raise TypeError(f"Invalid path segment {segment!r}")
    return key_path


def parse_path(text: str) -> KeyPath:
    """Parse a dotted path such as ``tags[0].name`` into a KeyPath."""
    if not text or not text.strip():
        raise ValueError("A key path needs at least one segment")

    segments: list[Segment] = []
    for token in text.strip().split("."):
        match = _TOKEN_RE.match(token)
        if match is None:
            raise ValueError(f"Malformed key path {text!r}")
        segments.append(match.group(1))
        segments.extend(int(i) for i in _INDEX_RE.findall(match.group(2)))
    return tuple(segments)


def format_path(path: Sequence[Segment]) -> str:
    """Inverse of parse_path."""
    out = ""
    for segment in path:
        if isinstance(segment, int):
            out += f"[{segment}]"
        else:
            out += f".{segment}" if out else segment
    return out


def _step(node: Any, segment: Segment) -> Lookup:
    if isinstance(node, Mapping):
        if segment in node:
            value = node[segment]
            if value is None:
                return Lookup(LookupStatus.FOUND_NULL)
            return Lookup(LookupStatus.FOUND, value)
        return MISSING
    if isinstance(node, list) and isinstance(segment, int) and not isinstance(segment, bool):
        if 0 <= segment < len(node):
            value = node[segment]
            if value is None:
                return Lookup(LookupStatus.FOUND_NULL)
            return Lookup(LookupStatus.FOUND, value)
    return MISSING


def get_at_path(data: Any, path: Sequence[Segment]) -> Lookup:
    """Traverse ``data`` segment by segment."""
    node = data
    result = MISSING
    for segment in as_key_path(path):
        result = _step(node, segment)
        if result.missing:
            return MISSING
        node = result.value
    return result


def locate_parent(data: Any, path: Sequence[Segment]) -> ParentLocation:
    """Find the container the final segment of ``path`` lives in.

    The parent exists when every ancestor resolves and the last one is a
    container that can hold ``final_key``: a mapping for any key, a list
    for an index no greater than its length (equal means append).
    """
    key_path = as_key_path(path)
    final_key = key_path[-1]

    if len(key_path) == 1:
        parent = data
    else:
        lookup = get_at_path(data, key_path[:-1])
        if lookup.missing or lookup.value is None:
            return ParentLocation(None, False, final_key)
        parent = lookup.value

    if isinstance(parent, dict):
        return ParentLocation(parent, True, final_key)
    if isinstance(parent, list) and isinstance(final_key, int):
        return ParentLocation(parent, 0 <= final_key <= len(parent), final_key)
    return ParentLocation(parent, False, final_key)


def set_at_path(data: Any, path: Sequence[Segment], value: Any) -> None:
    """Write ``value`` at ``path`` in place, requiring the parent to exist."""
    location = locate_parent(data, path)
    if not location.parent_exists:
        raise MissingParentPath(path)

    parent, key = location.parent, location.final_key
    if isinstance(parent, list) and key == len(parent):
        parent.append(value)
    else:
        parent[key] = value


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality over mappings, sequences and scalars.

    Mapping key order is ignored. Booleans never equal numbers, unlike
    Python's ``True == 1``.
    """
    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)

    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if not (isinstance(a, (list, tuple)) and isinstance(b, (list, tuple))):
            return False
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b

    return a == b


def copy_value(value: Any) -> Any:
    """Detached copy handed across the registry boundary."""
    return copy.deepcopy(value)
