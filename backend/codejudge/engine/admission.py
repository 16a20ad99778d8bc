from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from codejudge.engine.errors import EngineBusy

log = logging.getLogger("codejudge.admission")


class AdmissionController:
    """Bounded worker pool in front of the engine."""

    def __init__(self, max_concurrent: int, max_queued: int, queue_timeout_s: float):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.max_queued = max_queued
        self.queue_timeout_s = queue_timeout_s
        self._slots = asyncio.Semaphore(max_concurrent)
        self.active = 0
        self.waiting = 0

    @asynccontextmanager
    async def slot(self):
        if self._slots.locked():
            if self.waiting >= self.max_queued:
                log.warning("run queue full (%d waiting)", self.waiting)
                raise EngineBusy("Too many runs in progress, try again later")
            self.waiting += 1
            try:
                await asyncio.wait_for(self._slots.acquire(), self.queue_timeout_s)
            except asyncio.TimeoutError:
                raise EngineBusy("Timed out waiting for a free runner") from None
            finally:
                self.waiting -= 1
        else:
            await self._slots.acquire()
        self.active += 1
        try:
            yield
        finally:
            self.active -= 1
            self._slots.release()
