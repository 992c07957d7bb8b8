"""Liveness signal for long-running workflows."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from loguru import logger

from config.settings import settings


class Heartbeat:
    """
    Periodic no-op ping that keeps the host from reclaiming an idle coordinator.

    Reference-counted: every ``start`` must be matched by a ``stop`` and the
    ping task runs while at least one holder remains. Use ``hold()`` so the
    release happens on every exit path.
    """

    def __init__(self, interval: Optional[float] = None) -> None:
        self._interval = interval or settings.heartbeat_interval_seconds
        self._holders = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def holders(self) -> int:
        return self._holders

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._holders += 1
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._ping())

    def stop(self) -> None:
        if self._holders == 0:
            logger.warning("Heartbeat stop without matching start")
            return
        self._holders -= 1
        if self._holders == 0 and self._task is not None:
            self._task.cancel()
            self._task = None

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        self.start()
        try:
            yield
        finally:
            self.stop()

    async def _ping(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            logger.debug(f"Keepalive ping ({self._holders} active workflows)")
