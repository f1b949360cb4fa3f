"""
Cooperative cancellation handle.

A ``CancelToken`` is handed into a generation call and checked at every
suspension point (network request, per-chunk read).  Cancelling is
idempotent and never raises.  ``cancel`` may be called from any thread: when
a loop is waiting on the token from another thread, the wake-up is scheduled
on that loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._cancelled = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            self.reason = reason
            loop = self._loop
            callbacks, self._callbacks = self._callbacks, []

        if loop is not None and not loop.is_closed() and not self._on_loop(loop):
            loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("Cancel callback failed")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run *callback* once on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    async def wait(self) -> None:
        with self._lock:
            self._loop = asyncio.get_running_loop()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False
