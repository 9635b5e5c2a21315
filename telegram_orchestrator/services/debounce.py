"""Cancel-and-restart timers keyed by an arbitrary hashable value.

Every ``schedule(key, action)`` cancels the timer already pending for ``key``
and starts a fresh one. Only a timer that sleeps through the whole window runs
its action, so a burst of events collapses into a single call.

The map does not own a lock: it is handed the lock of the structure that owns
it so that handle bookkeeping happens under the same guard as everything else.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Coroutine, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

Action = Callable[[], Awaitable[None]]
Spawn = Callable[[Coroutine], asyncio.Task]


class DebounceMap(Generic[K]):
    def __init__(
        self,
        delay: float,
        *,
        lock: threading.Lock | None = None,
        spawn: Spawn | None = None,
    ) -> None:
        self.delay = delay
        self._lock = lock or threading.Lock()
        self._spawn = spawn or asyncio.create_task
        self._handles: dict[K, asyncio.Task] = {}

    def schedule(self, key: K, action: Action) -> asyncio.Task:
        """(Re)start the timer for ``key``; returns the new handle."""
        with self._lock:
            previous = self._handles.pop(key, None)
            if previous is not None:
                # No-op if it already fired.
                previous.cancel()
                logger.debug("[DEBOUNCE] Cancelled pending timer for %s", key)
            task = self._spawn(self._fire_after_delay(key, action))
            self._handles[key] = task
        return task

    def cancel(self, key: K) -> bool:
        with self._lock:
            handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_pending(self, key: K) -> bool:
        with self._lock:
            return key in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    async def _fire_after_delay(self, key: K, action: Action) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return

        with self._lock:
            # Consume our own handle; a newer timer for the key is left alone.
            if self._handles.get(key) is asyncio.current_task():
                del self._handles[key]

        try:
            await action()
        except Exception:
            logger.exception("[DEBOUNCE] Action for %s failed", key)
