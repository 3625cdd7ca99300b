from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from ports.world import Vec3
from shared.errors import BehaviorCancelled

T = TypeVar("T")


class Behavior(str, Enum):
    IDLE = "Idle"
    HARVESTING = "Harvesting"
    BUILDING = "Building"
    FOLLOWING = "Following"
    DELIVERING = "Delivering"


@dataclass
class AgentState:
    position: Vec3 | None = None
    inventory: dict[str, int] = field(default_factory=dict)
    current_behavior: Behavior = Behavior.IDLE
    follow_target: str | None = None


@dataclass
class BehaviorRun:
    """Continuation flag for one behavior invocation, checked at the top of every loop step."""

    behavior: Behavior | None
    active: bool = True
    _stopped: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    def cancel(self) -> None:
        self.active = False
        self._stopped.set()

    def check(self) -> None:
        if not self.active:
            name = self.behavior.value if self.behavior else "Action"
            raise BehaviorCancelled(f"{name} interrupted")

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless this run is cancelled first, in which case ``aw`` is cancelled too."""
        work = asyncio.ensure_future(aw)
        stop = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not work.done():
                work.cancel()
        if not work.done():
            # let the cancelled work unwind before reporting the interruption
            await asyncio.gather(work, return_exceptions=True)
            self.check()
        return work.result()


@dataclass
class AgentContext:
    agent_id: str
    state: AgentState
    connected: bool = False
    last_ts: float | None = None
