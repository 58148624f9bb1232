# src/sync/binding.py — v1
"""Consumer side of the synchronization contract.

Consumers implement FieldListener and register with SyncRegistry under a
stable id. Callbacks are delivered synchronously on the calling turn; there
is no batching.

Reentrancy: a consumer that writes back from inside ``on_update`` is
excluded from its own notification through ``origin_id``, but nothing stops
a cycle between two consumers (A writes, B is notified and writes a
different value, A is notified again...). Converging cycles end through
redundant-write suppression. Diverging ones are cut by the registry's
dispatch depth limit, which raises ReentrantUpdateError. BoundField avoids
the problem altogether by deferring its writes to its debounce tick.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from fieldsync.sync.errors import MissingParentPath
from fieldsync.sync.path_utils import KeyPath, as_key_path, deep_equal, format_path
from fieldsync.sync.scheduler import BaseTicker

if TYPE_CHECKING:
    from fieldsync.sync.registry import SyncRegistry

logger = logging.getLogger(__name__)


@runtime_checkable
class FieldListener(Protocol):
    """Single-method interface the registry dispatches to."""

    def on_update(self, value: Any) -> None: ...


class CallbackListener:
    """Adapt a plain callable to FieldListener."""

    def __init__(self, callback: Callable[[Any], None]) -> None:
        self._callback = callback

    def on_update(self, value: Any) -> None:
        self._callback(value)


@dataclass(frozen=True, eq=False)
class BindTarget:
    """A resolved (document, path) pair. Resolution happens elsewhere."""

    document: Any
    path: KeyPath

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", as_key_path(self.path))

    def __str__(self) -> str:
        return f"{self.document}#{format_path(self.path)}"


class BoundField:
    """Field-side model of one UI input bound to a document location.

    Local edits are queued and only the most recent one is written, once per
    debounce tick. Incoming values are ignored while a local edit is still
    queued so the field never jumps back to a stale value mid-typing.

    A field is single-use: once detached it cannot be attached again, since
    its ticker cannot be restarted. Build a new field with a fresh ticker.
    """

    def __init__(
        self,
        registry: SyncRegistry,
        target: BindTarget,
        ticker: BaseTicker,
        field_id: str | None = None,
        on_display: Callable[[Any], None] | None = None,
    ) -> None:
        self._registry = registry
        self.target = target
        self._ticker = ticker
        self.id = field_id or str(uuid.uuid4())
        self._on_display = on_display
        self._value: Any = None
        self._queue: list[Any] = []
        self._attached = False
        self._detached = False
        self.error: str | None = None

    @property
    def value(self) -> Any:
        return self._value

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def has_pending_write(self) -> bool:
        return bool(self._queue)

    def attach(self) -> None:
        """Register with the registry and start the debounce ticker."""
        if self._attached:
            return
        if self._detached:
            raise RuntimeError(
                f"Field {self.id} was detached and cannot be re-attached; "
                "create a new field with a fresh ticker"
            )
        self._ticker.start(self.flush_pending)
        self._registry.register(self.target.document, self, self.target.path, self.id)
        self._attached = True

        current = self._registry.get_value(self.target.document, self.target.path)
        if current is not None:
            self._show(current)

    def detach(self) -> None:
        """Write out any queued edit, then unregister."""
        if not self._attached:
            return
        self.flush_pending()
        self._ticker.stop()
        self._registry.unregister(self.target.document, self.id)
        self._attached = False
        self._detached = True

    def set_value(self, value: Any) -> None:
        """Record a local edit made by the user."""
        self._value = value
        self._queue.append(value)

    def flush_pending(self) -> None:
        """Debounce tick: push the latest queued edit to the registry."""
        if not self._queue:
            return
        latest = self._queue[-1]
        self._queue.clear()
        try:
            self._registry.update_property_at_path(
                self.target.document, self.target.path, latest, origin_id=self.id
            )
        except MissingParentPath as exc:
            self.error = str(exc)
            logger.warning("Field %s cannot write %s: %s", self.id, self.target, exc)
            return
        self.error = None

    def on_update(self, value: Any) -> None:
        if value is None or self._queue or deep_equal(value, self._value):
            return
        logger.debug("Updating field %s to %r", self.id, value)
        self._show(value)

    def _show(self, value: Any) -> None:
        self._value = value
        if self._on_display is not None:
            self._on_display(value)
