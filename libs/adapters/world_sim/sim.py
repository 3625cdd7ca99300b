from __future__ import annotations

import asyncio
import logging
import math
from collections import defaultdict
from collections.abc import Callable, Iterator
from typing import Any, Final

from ports.world import Block, DroppedItem, GoalNear, ItemStack, Vec3, WorldEvent, WorldPort
from shared.errors import ConnectionLost, OutOfResource, PathUnreachable, PlacementFailed, ResourceNotFound

LOG: Final = logging.getLogger("world.sim")

STACK_SIZE: Final = 64
INVENTORY_SLOTS: Final = 36
PICKUP_RANGE: Final = 1.5

Key = tuple[int, int, int]


def _key(pos: Vec3) -> Key:
    return (math.floor(pos.x), math.floor(pos.y), math.floor(pos.z))


def _vec(key: Key) -> Vec3:
    return Vec3(key[0], key[1], key[2])


class SimServer:
    """Shared in-memory world: explicit blocks above ``ground_y``, solid ground below it."""

    def __init__(self, ground_y: int = 0, ground_block: str = "grass_block", view_distance: float = 64.0) -> None:
        self.ground_y = ground_y
        self.ground_block = ground_block
        self.view_distance = view_distance
        self.blocks: dict[Key, str] = {}
        self.players: dict[str, Vec3] = {}
        self.drops: dict[int, DroppedItem] = {}
        self.unreachable: set[Key] = set()
        self.chat_log: list[tuple[str, str]] = []
        self._bots: dict[str, SimWorldPort] = {}
        self._next_entity = 1

    # --- terrain ---

    def block_name(self, pos: Vec3) -> str | None:
        key = _key(pos)
        name = self.blocks.get(key)
        if name is None and key[1] < self.ground_y:
            return self.ground_block
        return name

    def set_block(self, pos: Vec3, name: str) -> None:
        self.blocks[_key(pos)] = name

    def remove_block(self, pos: Vec3) -> None:
        self.blocks.pop(_key(pos), None)

    def plant_tree(
        self, base: Vec3, height: int = 4, log: str = "oak_log", leaves: str = "oak_leaves"
    ) -> list[Vec3]:
        """Vertical trunk with a leaf canopy around the two top logs and one above."""
        trunk = [base.floored().offset(dy=dy) for dy in range(height)]
        for pos in trunk:
            self.set_block(pos, log)
        top = trunk[-1]
        for dy in (-1, 0):
            for dx in (-1, 0, 1):
                for dz in (-1, 0, 1):
                    if dx or dz:
                        self.set_block(top.offset(dx, dy, dz), leaves)
        self.set_block(top.offset(dy=1), leaves)
        return trunk

    def iter_blocks(self) -> Iterator[Block]:
        for key, name in list(self.blocks.items()):
            yield Block(name=name, position=_vec(key))

    # --- entities ---

    def add_player(self, name: str, pos: Vec3) -> None:
        self.players[name] = pos

    def remove_player(self, name: str) -> None:
        self.players.pop(name, None)

    def spawn_drop(self, name: str, count: int, pos: Vec3) -> DroppedItem:
        drop = DroppedItem(entity_id=self._next_entity, name=name, count=count, position=pos)
        self._next_entity += 1
        self.drops[drop.entity_id] = drop
        return drop

    # --- bots & chat ---

    def create_bot(self, username: str, spawn: Vec3 | None = None) -> SimWorldPort:
        bot = SimWorldPort(self, username, spawn or Vec3(0.5, self.ground_y, 0.5))
        self._bots[username] = bot
        return bot

    def broadcast(self, sender: str, text: str) -> None:
        self.chat_log.append((sender, text))
        for bot in list(self._bots.values()):
            if bot.is_connected():
                bot.emit("chat", sender, text)


class SimWorldPort(WorldPort):
    """One bot's view of a SimServer. Records every world interaction in ``calls``."""

    def __init__(self, server: SimServer, username: str, spawn: Vec3) -> None:
        self.username = username
        self._server = server
        self._spawn = spawn
        self._connected = False
        self._slots: list[tuple[str, int] | None] = [None] * INVENTORY_SLOTS
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.calls: list[str] = []
        self.sent_chat: list[str] = []
        self.goal: GoalNear | None = None
        self.goals: list[GoalNear | None] = []
        self.controls: dict[str, bool] = {}
        self.held: str | None = None
        self.looking_at: Vec3 | None = None
        self.connect_failures = 0

    # --- lifecycle ---

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise ConnectionError(f"{self.username}: connection refused")
        self._connected = True
        self._server.players.setdefault(self.username, self._spawn)
        LOG.info("%s spawned at %s", self.username, self.position())
        self.emit("spawn")

    def drop_connection(self, reason: str = "kicked") -> None:
        self._connected = False
        self.goal = None
        self.emit("connection_lost", reason)

    def is_connected(self) -> bool:
        return self._connected

    def on(self, event: WorldEvent, callback: Callable[..., Any]) -> None:
        self._handlers[event].append(callback)

    def emit(self, event: str, *args: Any) -> None:
        for cb in list(self._handlers[event]):
            cb(*args)

    def _require_connected(self) -> None:
        if not self._connected:
            raise ConnectionLost(f"{self.username} is not connected")

    # --- inventory helpers ---

    def give(self, item: str, count: int, slot: int | None = None) -> None:
        """Test/setup helper: add items, filling existing stacks first unless a slot is forced."""
        if slot is not None:
            current = self._slots[slot]
            have = current[1] if current and current[0] == item else 0
            self._slots[slot] = (item, have + count)
            return
        remaining = count
        for i, entry in enumerate(self._slots):
            if remaining == 0:
                break
            if entry and entry[0] == item and entry[1] < STACK_SIZE:
                add = min(STACK_SIZE - entry[1], remaining)
                self._slots[i] = (item, entry[1] + add)
                remaining -= add
        for i, entry in enumerate(self._slots):
            if remaining == 0:
                break
            if entry is None:
                add = min(STACK_SIZE, remaining)
                self._slots[i] = (item, add)
                remaining -= add
        if remaining:
            LOG.warning("%s inventory full, dropped %d %s", self.username, remaining, item)

    def _take(self, item: str, count: int) -> None:
        remaining = count
        for i, entry in enumerate(self._slots):
            if remaining == 0:
                break
            if entry and entry[0] == item:
                used = min(entry[1], remaining)
                left = entry[1] - used
                self._slots[i] = (item, left) if left else None
                remaining -= used

    # --- reads ---

    def position(self) -> Vec3:
        return self._server.players.get(self.username, self._spawn)

    def _move(self, pos: Vec3) -> None:
        self._server.players[self.username] = pos

    def inventory(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for entry in self._slots:
            if entry:
                totals[entry[0]] = totals.get(entry[0], 0) + entry[1]
        return totals

    def slots(self) -> list[ItemStack]:
        return [ItemStack(slot=i, name=e[0], count=e[1]) for i, e in enumerate(self._slots) if e]

    def block_at(self, position: Vec3) -> Block | None:
        name = self._server.block_name(position)
        return Block(name=name, position=position.floored()) if name else None

    def find_block(self, matching: Callable[[Block], bool], max_distance: float) -> Block | None:
        self.calls.append("find_block")
        me = self.position()
        in_range = [b for b in self._server.iter_blocks() if b.position.distance_to(me) <= max_distance]
        in_range.sort(key=lambda b: b.position.distance_to(me))
        for block in in_range:
            if matching(block):
                return block
        return None

    def player_position(self, name: str) -> Vec3 | None:
        if not self._connected or name == self.username:
            return None
        pos = self._server.players.get(name)
        if pos is None or pos.distance_to(self.position()) > self._server.view_distance:
            return None
        return pos

    def dropped_items(self, radius: float) -> list[DroppedItem]:
        me = self.position()
        return [d for d in self._server.drops.values() if d.position.distance_to(me) <= radius]

    # --- actions ---

    def _approach(self, goal: GoalNear) -> Vec3:
        me = self.position()
        dist = me.distance_to(goal.target)
        if dist <= goal.range:
            return me
        if goal.range <= 0 or dist == 0:
            return goal.target
        scale = goal.range / dist
        delta = me - goal.target
        return goal.target.offset(delta.x * scale, delta.y * scale, delta.z * scale)

    def _pickup_nearby(self) -> None:
        me = self.position()
        for drop in list(self._server.drops.values()):
            if drop.position.distance_to(me) <= PICKUP_RANGE:
                del self._server.drops[drop.entity_id]
                self.give(drop.name, drop.count)

    async def path_to(self, goal: GoalNear) -> None:
        self.calls.append("path_to")
        self._require_connected()
        if _key(goal.target) in self._server.unreachable:
            raise PathUnreachable(f"No path to {goal.target.as_tuple()}")
        self._move(self._approach(goal))
        self._pickup_nearby()
        await asyncio.sleep(0)

    def set_goal(self, goal: GoalNear | None) -> None:
        self.calls.append("set_goal")
        self.goal = goal
        self.goals.append(goal)

    async def send_chat(self, text: str) -> None:
        self._require_connected()
        self.sent_chat.append(text)
        self._server.broadcast(self.username, text)
        await asyncio.sleep(0)

    async def collect(self, block: Block) -> None:
        self.calls.append("collect")
        self._require_connected()
        if self._server.block_name(block.position) != block.name:
            raise ResourceNotFound(f"{block.name} at {block.position.as_tuple()} is gone")
        self._server.remove_block(block.position)
        self.give(block.name, 1)
        await asyncio.sleep(0)

    async def place(self, reference: Block, face: Vec3) -> None:
        self.calls.append("place")
        self._require_connected()
        target = (reference.position + face).floored()
        if self._server.block_name(reference.position) is None:
            raise PlacementFailed(f"Nothing to place against at {reference.position.as_tuple()}")
        if self._server.block_name(target) is not None:
            raise PlacementFailed(f"Cell {target.as_tuple()} is occupied")
        item = self.held
        if item is None or self.inventory().get(item, 0) == 0:
            raise OutOfResource("Nothing in hand to place")
        standing = self.position().floored() == target
        if standing and not self.controls.get("jump"):
            raise PlacementFailed(f"{self.username} is standing in {target.as_tuple()}")
        self._take(item, 1)
        self._server.set_block(target, item)
        if standing:
            self._move(self.position().offset(dy=1))
        await asyncio.sleep(0)

    async def equip(self, item: str) -> None:
        self.calls.append("equip")
        if self.inventory().get(item, 0) == 0:
            raise OutOfResource(f"No {item} to equip")
        self.held = item

    async def toss(self, item: str, count: int = 1) -> None:
        self.calls.append("toss")
        self._require_connected()
        if self.inventory().get(item, 0) < count:
            raise OutOfResource(f"Not enough {item} to toss")
        self._take(item, count)
        me = self.position()
        at = me
        if self.looking_at is not None and self.looking_at.distance_to(me) > 0:
            delta = self.looking_at - me
            norm = self.looking_at.distance_to(me)
            at = me.offset(delta.x / norm, 0.0, delta.z / norm)
        self._server.spawn_drop(item, count, at)
        await asyncio.sleep(0)

    async def look_at(self, point: Vec3) -> None:
        self.calls.append("look_at")
        self.looking_at = point

    async def transfer(self, src_slot: int, dst_slot: int, count: int) -> None:
        self.calls.append("transfer")
        src = self._slots[src_slot]
        dst = self._slots[dst_slot]
        if src is None or src[1] < count:
            raise ValueError(f"slot {src_slot} holds fewer than {count} items")
        if dst is not None and (dst[0] != src[0] or dst[1] + count > STACK_SIZE):
            raise ValueError(f"slot {dst_slot} cannot take {count} {src[0]}")
        left = src[1] - count
        self._slots[src_slot] = (src[0], left) if left else None
        self._slots[dst_slot] = (src[0], (dst[1] if dst else 0) + count)

    def set_control_state(self, control: str, active: bool) -> None:
        self.controls[control] = active

    def clear_control_states(self) -> None:
        self.calls.append("clear_control_states")
        self.controls.clear()

    def stop(self) -> None:
        self.calls.append("stop")
        self.goal = None
