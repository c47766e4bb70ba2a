from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, TypeVar

log = logging.getLogger(__name__)

V = TypeVar("V")

FlushCallback = Callable[[V], Awaitable[Any]]


@dataclass
class _Entry(Generic[V]):
    value: V
    callback: FlushCallback
    handle: asyncio.TimerHandle


class DebounceScheduler(Generic[V]):
    """Per-key cancel-and-restart timers.

    Each key holds at most one pending value. Rescheduling a key replaces the
    value and restarts its timer; other keys are untouched. An entry leaves
    the mapping before its callback runs, so a restart never cancels a write
    that is already in flight.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._entries: dict[Hashable, _Entry[V]] = {}
        self._inflight: set[asyncio.Task[Any]] = set()

    def schedule(self, key: Hashable, value: V, callback: FlushCallback) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.delay, self._fire, key)
        self._entries[key] = _Entry(value, callback, handle)

    def cancel(self, key: Hashable) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._entries):
            self.cancel(key)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._entries

    def pending(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        return entry.value if entry else None

    def pending_keys(self) -> list[Hashable]:
        return list(self._entries)

    def _fire(self, key: Hashable) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        task = asyncio.get_running_loop().create_task(self._run(key, entry))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, key: Hashable, entry: _Entry[V]) -> None:
        try:
            await entry.callback(entry.value)
        except Exception as e:
            log.error("Debounced flush for %s failed: %s", key, e)

    async def flush(self, key: Hashable) -> bool:
        """Run a pending entry now instead of waiting for its timer."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.handle.cancel()
        await self._run(key, entry)
        return True

    async def flush_all(self) -> None:
        for key in list(self._entries):
            await self.flush(key)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
