from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Final

from ports.time import SleeperPort
from ports.world import UP, GoalNear, Vec3, WorldPort
from shared.config.sections import BehaviorSettings
from shared.errors import BehaviorError, OutOfResource, PathUnreachable

from ..agent.model import BehaviorRun
from ..delegation.capabilities import ResourceBroker
from ..watchdog import StallWatchdog
from .inventory import count

LOG: Final = logging.getLogger("behavior.build")

Narrate = Callable[[str], Awaitable[None]]


def platform_cells(origin: Vec3, size: int) -> list[Vec3]:
    """Cells of a size x size platform, far row first, each row walked along +x."""
    return [origin.offset(dx, 0, dz) for dz in reversed(range(size)) for dx in range(size)]


def quartiles(required: int) -> set[int]:
    return {math.ceil(required * q / 4) for q in (1, 2, 3)}


class Builder:
    def __init__(
        self,
        world: WorldPort,
        sleeper: SleeperPort,
        settings: BehaviorSettings,
        narrate: Narrate,
        watchdog: StallWatchdog | None = None,
    ) -> None:
        self._world = world
        self._sleeper = sleeper
        self._cfg = settings
        self._narrate = narrate
        self._watchdog = watchdog

    def _hold(self) -> AbstractAsyncContextManager[None]:
        # standing still on purpose is not a stall
        if self._watchdog is None:
            return nullcontext()
        return self._watchdog.paused()

    async def _gather(self, shortfall: int, broker: ResourceBroker | None, run: BehaviorRun) -> None:
        label = self._cfg.resource_label
        if broker is None:
            raise OutOfResource(f"Need {shortfall} more {label} and nobody to ask")
        await self._narrate(f"Need {shortfall} more {label}, asking for help")
        async with self._hold():
            await run.guard(broker.request(shortfall))
        await self._pick_up_drops()

    async def _pick_up_drops(self) -> None:
        for drop in self._world.dropped_items(self._cfg.pickup_radius):
            if drop.name != self._cfg.resource:
                continue
            try:
                await self._world.path_to(GoalNear(drop.position, 0.0))
            except PathUnreachable:
                LOG.warning("could not reach dropped %s at %s", drop.name, drop.position.as_tuple())

    async def _place(self, cell: Vec3) -> None:
        reference = self._world.block_at(cell - UP)
        if reference is None:
            raise BehaviorError(f"Nothing to build on at {cell.as_tuple()}")
        await self._world.equip(self._cfg.resource)
        if self._world.position().floored() == cell:
            # standing in the target cell: jump and place underneath
            async with self._hold():
                self._world.set_control_state("jump", True)
                try:
                    await self._sleeper.sleep(self._cfg.jump_delay)
                    await self._world.place(reference, UP)
                finally:
                    self._world.set_control_state("jump", False)
        else:
            await self._world.place(reference, UP)

    async def run(
        self, size: int, requester: str, run: BehaviorRun, broker: ResourceBroker | None = None
    ) -> int:
        """Build a size x size platform next to ``requester``; returns blocks placed."""
        if size <= 1:
            raise BehaviorError("Platform size must be greater than 1")
        resource, label = self._cfg.resource, self._cfg.resource_label
        required = size * size

        anchor = self._world.player_position(requester)
        if anchor is None:
            raise PathUnreachable(f"I can't see {requester}")

        have = count(self._world, resource)
        if have < required:
            await self._gather(required - have, broker, run)
            run.check()

        await self._narrate(f"Building a {size}x{size} platform ({required} {label})")
        origin = anchor.floored().offset(self._cfg.build_offset, 0, 0)
        await self._world.path_to(GoalNear(origin.offset(0.5, 0, 0.5), 0.0))

        marks = quartiles(required)
        placed = 0
        for cell in platform_cells(origin, size):
            run.check()
            if self._world.block_at(cell) is not None:
                LOG.debug("cell %s already occupied", cell.as_tuple())
                continue
            if count(self._world, resource) == 0:
                raise OutOfResource(
                    f"Ran out of {label} after placing {placed}/{required}", placed=placed
                )
            center = cell.offset(0.5, 0, 0.5)
            if self._world.position().distance_to(center) > self._cfg.reach:
                await self._world.path_to(GoalNear(center, self._cfg.reach - 1))
            await self._place(cell)
            placed += 1
            if placed in marks:
                await self._narrate(f"Progress: {placed}/{required} blocks placed")

        await self._narrate(f"Platform {size}x{size} complete, used {placed} {label}")
        return placed
