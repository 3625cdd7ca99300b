from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

from ports.time import SleeperPort

LOG: Final = logging.getLogger("periodic")

# Returning False from a tick ends the task.
Tick = Callable[[], Awaitable[bool | None]]


class PeriodicTask:
    """An interval timer with its own lifecycle; the behavior that starts it owns the handle."""

    def __init__(self, name: str, interval: float, tick: Tick, sleeper: SleeperPort) -> None:
        self.name = name
        self.interval = interval
        self.ticks = 0
        self._tick = tick
        self._sleeper = sleeper
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> PeriodicTask:
        if self.running:
            raise RuntimeError(f"{self.name} already running")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    async def _run(self) -> None:
        while True:
            self.ticks += 1
            try:
                if await self._tick() is False:
                    LOG.debug("%s finished after %d ticks", self.name, self.ticks)
                    return
            except asyncio.CancelledError:
                raise
            except Exception:
                LOG.exception("%s tick failed", self.name)
            await self._sleeper.sleep(self.interval)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """Cancel and wait until the task has fully unwound."""
        task = self._task
        if task is None:
            return
        self.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
