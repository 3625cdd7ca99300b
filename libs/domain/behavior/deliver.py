from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Final

from ports.time import SleeperPort
from ports.world import GoalNear, WorldPort
from shared.config.sections import BehaviorSettings
from shared.errors import OutOfResource, PathUnreachable

from ..agent.model import BehaviorRun
from .inventory import count

LOG: Final = logging.getLogger("behavior.deliver")

Narrate = Callable[[str], Awaitable[None]]


class Deliverer:
    def __init__(
        self, world: WorldPort, sleeper: SleeperPort, settings: BehaviorSettings, narrate: Narrate
    ) -> None:
        self._world = world
        self._sleeper = sleeper
        self._cfg = settings
        self._narrate = narrate

    async def run(self, requester: str, run: BehaviorRun, amount: int | None = None) -> int:
        """Throw ``amount`` units (every carried unit when None) at ``requester``, then send the handoff token."""
        resource, label = self._cfg.resource, self._cfg.resource_label
        target = self._world.player_position(requester)
        if target is None:
            raise PathUnreachable(f"I can't see {requester}")
        have = count(self._world, resource)
        if have == 0:
            raise OutOfResource(f"I have no {label} to give")
        give = have if amount is None else min(amount, have)
        if give < (amount or 0):
            LOG.warning("%s asked for %d %s, only have %d", requester, amount, resource, have)

        await self._narrate(f"Bringing {give} {label} to {requester}")
        await self._world.path_to(GoalNear(target, self._cfg.deliver_distance))
        await self._world.look_at(target.offset(dy=self._cfg.aim_height))

        thrown = 0
        while thrown < give and count(self._world, resource) > 0:
            run.check()
            await self._world.toss(resource, 1)
            thrown += 1
            await self._sleeper.sleep(self._cfg.throw_delay)

        LOG.info("%s threw %d %s to %s", self._world.username, thrown, resource, requester)
        await self._world.send_chat(self._cfg.handoff_token)
        return thrown
