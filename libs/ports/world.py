# libs/ports/world.py
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

WorldEvent = Literal["chat", "spawn", "connection_lost"]


@dataclass(frozen=True)
class Vec3:
    x: float
    y: float
    z: float

    def __add__(self, other: Vec3) -> Vec3:
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vec3) -> Vec3:
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def offset(self, dx: float = 0.0, dy: float = 0.0, dz: float = 0.0) -> Vec3:
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def distance_to(self, other: Vec3) -> float:
        return math.dist((self.x, self.y, self.z), (other.x, other.y, other.z))

    def floored(self) -> Vec3:
        return Vec3(math.floor(self.x), math.floor(self.y), math.floor(self.z))

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)


UP = Vec3(0, 1, 0)


@dataclass(frozen=True)
class Block:
    name: str
    position: Vec3


@dataclass(frozen=True)
class ItemStack:
    slot: int
    name: str
    count: int


@dataclass(frozen=True)
class DroppedItem:
    entity_id: int
    name: str
    count: int
    position: Vec3


@dataclass(frozen=True)
class GoalNear:
    """Reach any point within ``range`` blocks of ``target``."""

    target: Vec3
    range: float = 1.0


class WorldPort(ABC):
    """What the agent needs from the simulated world; the domain never talks to a server directly.

    Coroutines are the suspension points of a behavior. Plain methods are cheap
    reads of the locally mirrored world state.
    """

    username: str

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    def on(self, event: WorldEvent, callback: Callable[..., Any]) -> None: ...

    # --- reads ---

    @abstractmethod
    def position(self) -> Vec3: ...

    @abstractmethod
    def inventory(self) -> dict[str, int]: ...

    @abstractmethod
    def slots(self) -> list[ItemStack]: ...

    @abstractmethod
    def block_at(self, position: Vec3) -> Block | None:
        """None for air."""

    @abstractmethod
    def find_block(self, matching: Callable[[Block], bool], max_distance: float) -> Block | None:
        """Nearest block satisfying ``matching`` within ``max_distance``."""

    @abstractmethod
    def player_position(self, name: str) -> Vec3 | None:
        """Position of a visible player, None when absent or out of sight."""

    @abstractmethod
    def dropped_items(self, radius: float) -> list[DroppedItem]: ...

    # --- actions ---

    @abstractmethod
    async def path_to(self, goal: GoalNear) -> None:
        """Walk until the goal is satisfied; raises PathUnreachable."""

    @abstractmethod
    def set_goal(self, goal: GoalNear | None) -> None:
        """Continuous pursuit goal that is re-planned by the world; None clears it."""

    @abstractmethod
    async def send_chat(self, text: str) -> None: ...

    @abstractmethod
    async def collect(self, block: Block) -> None: ...

    @abstractmethod
    async def place(self, reference: Block, face: Vec3) -> None: ...

    @abstractmethod
    async def equip(self, item: str) -> None: ...

    @abstractmethod
    async def toss(self, item: str, count: int = 1) -> None: ...

    @abstractmethod
    async def look_at(self, point: Vec3) -> None: ...

    @abstractmethod
    async def transfer(self, src_slot: int, dst_slot: int, count: int) -> None: ...

    @abstractmethod
    def set_control_state(self, control: str, active: bool) -> None: ...

    @abstractmethod
    def clear_control_states(self) -> None: ...

    @abstractmethod
    def stop(self) -> None:
        """Halt the current micro-action (digging, pathing)."""
