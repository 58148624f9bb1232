# src/sync/scheduler.py — v1
"""Injectable tickers that drive periodic work.

SyncRegistry.tick, the BoundField write debounce and the markdown store's
change polling all run from a BaseTicker. Production code uses
AsyncioTicker; tests use ManualTicker to fire ticks deterministically.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]


class BaseTicker(ABC):
    """Calls a callback on a fixed period until stopped.

    A ticker is started at most once. ``stop`` is idempotent.
    """

    @abstractmethod
    def start(self, callback: TickCallback) -> None:
        """Begin invoking ``callback`` every period."""

    @abstractmethod
    def stop(self) -> None:
        """Stop invoking the callback. Safe to call more than once."""

    @property
    @abstractmethod
    def running(self) -> bool:
        """Whether the ticker is currently started."""


class AsyncioTicker(BaseTicker):
    """Ticker backed by a task on the running asyncio loop."""

    def __init__(self, interval_s: float, name: str = "tick") -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._interval = interval_s
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def interval_s(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: TickCallback) -> None:
        if self._task is not None or self._stopped:
            raise RuntimeError(f"Ticker {self._name!r} can only be started once")
        self._task = asyncio.get_running_loop().create_task(
            self._run(callback), name=f"fieldsync-{self._name}"
        )
        logger.debug("Started ticker %s every %.3fs", self._name, self._interval)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.debug("Stopped ticker %s", self._name)

    async def _run(self, callback: TickCallback) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                callback()
            except Exception:
                # One failing tick must not kill the period.
                logger.exception("Tick callback %s failed", self._name)


class ManualTicker(BaseTicker):
    """Ticker that only fires when told to."""

    def __init__(self) -> None:
        self._callback: TickCallback | None = None
        self._stopped = False
        self.stop_calls = 0

    @property
    def running(self) -> bool:
        return self._callback is not None and not self._stopped

    def start(self, callback: TickCallback) -> None:
        if self._callback is not None or self._stopped:
            raise RuntimeError("ManualTicker can only be started once")
        self._callback = callback

    def stop(self) -> None:
        self.stop_calls += 1
        self._stopped = True

    def fire(self, times: int = 1) -> None:
        """Invoke the callback ``times`` times, synchronously."""
        if not self.running:
            raise RuntimeError("ManualTicker is not running")
        for _ in range(times):
            self._callback()  # type: ignore[misc]
