# libs/domain/watchdog.py
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Final

from ports.time import SleeperPort
from ports.world import Vec3, WorldPort
from shared.config.sections import WatchdogSettings

from .periodic import PeriodicTask

LOG: Final = logging.getLogger("watchdog")


class StallWatchdog:
    """Nudges a movement/collection loop past local obstructions.

    A stall is more than ``threshold`` consecutive samples that moved less than
    ``epsilon``. Recovery runs once per stall episode and re-arms only after the
    agent is seen moving again; the parent behavior is never aborted.
    """

    def __init__(self, world: WorldPort, sleeper: SleeperPort, settings: WatchdogSettings) -> None:
        self._world = world
        self._sleeper = sleeper
        self._cfg = settings
        self._last: Vec3 | None = None
        self._still = 0
        self._armed = True
        self._paused = 0
        self.recoveries = 0

    def reset(self) -> None:
        self._last = None
        self._still = 0
        self._armed = True

    def observe(self, position: Vec3) -> bool:
        """Feed one sample; True when it completes a stall."""
        last, self._last = self._last, position
        if last is None:
            return False
        if position.distance_to(last) >= self._cfg.epsilon:
            self._still = 0
            self._armed = True
            return False
        self._still += 1
        if self._armed and self._still > self._cfg.threshold:
            self._armed = False
            self._still = 0
            return True
        return False

    async def sample(self) -> None:
        if self._paused:
            return
        if self.observe(self._world.position()):
            await self.recover()

    async def recover(self) -> None:
        self.recoveries += 1
        LOG.warning(
            "%s stalled at %s, recovering (#%d)",
            self._world.username,
            self._last.as_tuple() if self._last else None,
            self.recoveries,
        )
        self._world.stop()
        self._world.clear_control_states()
        await self._sleeper.sleep(self._cfg.tick * self._cfg.recovery_ticks)

    @asynccontextmanager
    async def watching(self) -> AsyncIterator[StallWatchdog]:
        self.reset()
        timer = PeriodicTask("stall-watchdog", self._cfg.tick, self.sample, self._sleeper).start()
        try:
            yield self
        finally:
            await timer.aclose()

    @asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Suspend sampling while the behavior holds controls of its own or stands still on purpose."""
        self._paused += 1
        try:
            yield
        finally:
            self._paused -= 1
            if not self._paused:
                self._last = None
                self._still = 0
