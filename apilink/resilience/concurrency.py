"""
apilink Concurrency Gate — Bounded FIFO Admission.

At most ``max_concurrent`` holders at a time. Excess callers wait in
arrival order; a released slot is handed straight to the oldest waiter,
so a newcomer can never overtake the queue.
"""
from __future__ import annotations
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator
import asyncio


class ConcurrencyGate:

    def __init__(self, max_concurrent: int | None = None):
        if max_concurrent is not None and max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._active = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    def _has_capacity(self) -> bool:
        return self.max_concurrent is None or self._active < self.max_concurrent

    async def acquire(self) -> None:
        if self._has_capacity() and not self.queued:
            self._active += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation; pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Ownership transfers; the active count stays the same.
                waiter.set_result(None)
                return
        if self._active <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self._active -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()
