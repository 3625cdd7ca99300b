from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Final

from ports.time import SleeperPort
from ports.world import GoalNear, WorldPort
from shared.config.sections import BehaviorSettings, WatchdogSettings
from shared.errors import AgentError, ConnectionLost, PathUnreachable

from ..agent.model import AgentState, Behavior, BehaviorRun
from ..delegation.capabilities import ResourceBroker
from ..periodic import PeriodicTask
from ..watchdog import StallWatchdog
from .build import Builder
from .deliver import Deliverer
from .harvest import Harvester, HarvestResult
from .inventory import count

LOG: Final = logging.getLogger("executor")


class BehaviorExecutor:
    """Sole owner of AgentState. Runs one long behavior at a time.

    Harvest, Build, Deliver and Come queue on a single slot. Follow is a
    ticker that does not hold the slot: starting it clears the running
    behavior's continuation flag, and any other behavior tears it down first.
    """

    def __init__(
        self,
        world: WorldPort,
        sleeper: SleeperPort,
        behavior: BehaviorSettings,
        watchdog: WatchdogSettings,
        broker: ResourceBroker | None = None,
    ) -> None:
        self.world = world
        self.settings = behavior
        self.state = AgentState()
        self.broker = broker
        self.watchdog = StallWatchdog(world, sleeper, watchdog)
        self._sleeper = sleeper
        self._slot = asyncio.Lock()
        self._run: BehaviorRun | None = None
        self._follow: PeriodicTask | None = None
        # units harvested for remote requesters and not thrown yet
        self.reserved = 0
        self._harvester = Harvester(world, behavior, self.narrate)
        self._builder = Builder(world, sleeper, behavior, self.narrate, self.watchdog)
        self._deliverer = Deliverer(world, sleeper, behavior, self.narrate)

    @property
    def busy(self) -> bool:
        return self._slot.locked()

    @property
    def follow_task(self) -> PeriodicTask | None:
        return self._follow

    async def narrate(self, text: str) -> None:
        LOG.info("[%s] %s", self.world.username, text)
        if not self.world.is_connected():
            return
        try:
            await self.world.send_chat(text)
        except ConnectionLost:
            LOG.warning("could not say %r, connection lost", text)

    def sync_state(self) -> AgentState:
        if self.world.is_connected():
            self.state.position = self.world.position()
            self.state.inventory = self.world.inventory()
        return self.state

    @asynccontextmanager
    async def _behavior(self, behavior: Behavior | None, label: str) -> AsyncIterator[BehaviorRun]:
        async with self._slot:
            await self.stop_follow()
            run = BehaviorRun(behavior)
            self._run = run
            if behavior is not None:
                self.state.current_behavior = behavior
            LOG.info("%s: %s started", self.world.username, label)
            try:
                yield run
            except AgentError as e:
                LOG.warning("%s: %s failed: %s", self.world.username, label, e)
                await self.narrate(str(e))
                raise
            else:
                LOG.info("%s: %s finished", self.world.username, label)
            finally:
                self._run = None
                self.state.current_behavior = Behavior.IDLE
                self.sync_state()

    # --- behaviors ---

    async def harvest(self, amount: int) -> HarvestResult:
        async with self._behavior(Behavior.HARVESTING, f"harvest {amount}") as run:
            async with self.watchdog.watching():
                return await self._harvester.run(amount, run)

    async def build(self, size: int, requester: str) -> int:
        async with self._behavior(Behavior.BUILDING, f"platform {size}") as run:
            async with self.watchdog.watching():
                return await self._builder.run(size, requester, run, self.broker)

    async def fulfil(self, amount: int) -> HarvestResult:
        """Harvest ``amount`` on top of what is already held for others, and hold it too."""
        async with self._behavior(Behavior.HARVESTING, f"harvest {amount} on request") as run:
            async with self.watchdog.watching():
                result = await self._harvester.run(self.reserved + amount, run)
            self.reserved += amount
            LOG.info("%s holding %d for requesters", self.world.username, self.reserved)
            return result

    async def deliver(self, requester: str, amount: int | None = None) -> int:
        async with self._behavior(Behavior.DELIVERING, f"throw to {requester}") as run:
            before = count(self.world, self.settings.resource)
            try:
                return await self._deliverer.run(requester, run, amount)
            finally:
                thrown = before - count(self.world, self.settings.resource)
                self.reserved = max(0, self.reserved - thrown)

    async def come(self, requester: str) -> None:
        async with self._behavior(None, f"come to {requester}") as run:
            target = self.world.player_position(requester)
            if target is None:
                raise PathUnreachable(f"I can't see {requester}")
            await self.narrate(f"Coming to {requester}")
            run.check()
            await self.world.path_to(GoalNear(target, self.settings.follow_distance))

    async def follow(self, target: str) -> None:
        if self._run is not None:
            self._run.cancel()
            self.world.stop()
        async with self._slot:
            await self.stop_follow()
            if self.world.player_position(target) is None:
                await self.narrate(f"I can't see {target}")
                return
            self.state.current_behavior = Behavior.FOLLOWING
            self.state.follow_target = target
            self._follow = PeriodicTask(
                f"follow-{target}", self.settings.follow_interval, self._pursue, self._sleeper
            ).start()
            await self.narrate(f"Following {target}")

    async def _pursue(self) -> None:
        target = self.state.follow_target
        if target is None or not self.world.is_connected():
            return
        pos = self.world.player_position(target)
        if pos is None:
            LOG.debug("lost sight of %s", target)
            return
        self.world.set_goal(GoalNear(pos, self.settings.follow_distance))
        self.state.position = self.world.position()

    async def stop_follow(self) -> bool:
        """Tear down the pursuit ticker; True when one was running."""
        ticker, self._follow = self._follow, None
        if ticker is None:
            return False
        await ticker.aclose()
        self.world.set_goal(None)
        LOG.info("%s stopped following %s", self.world.username, self.state.follow_target)
        self.state.follow_target = None
        if self.state.current_behavior is Behavior.FOLLOWING:
            self.state.current_behavior = Behavior.IDLE
        return True

    async def abandon(self) -> None:
        """Drop whatever is running and return to Idle; used when the connection goes away."""
        if self._run is not None:
            self._run.cancel()
        await self.stop_follow()
        self.state.current_behavior = Behavior.IDLE
        self.state.follow_target = None
