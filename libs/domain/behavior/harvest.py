from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final

from ports.world import Block, GoalNear, Vec3, WorldPort
from shared.config.sections import BehaviorSettings
from shared.errors import ResourceNotFound

from ..agent.model import BehaviorRun
from .inventory import compact, count

LOG: Final = logging.getLogger("behavior.harvest")

Narrate = Callable[[str], Awaitable[None]]

_NEIGHBOURS: Final = [
    (dx, dy, dz)
    for dx in (-1, 0, 1)
    for dy in (-1, 0, 1)
    for dz in (-1, 0, 1)
    if (dx, dy, dz) != (0, 0, 0)
]


@dataclass(frozen=True)
class HarvestResult:
    collected: int
    total: int


def _key(pos: Vec3) -> tuple[int, int, int]:
    p = pos.floored()
    return (int(p.x), int(p.y), int(p.z))


class Harvester:
    def __init__(self, world: WorldPort, settings: BehaviorSettings, narrate: Narrate) -> None:
        self._world = world
        self._cfg = settings
        self._narrate = narrate

    def _has_marker(self, block: Block) -> bool:
        r = self._cfg.marker_radius
        for dx in range(-r, r + 1):
            for dy in range(-r, r + 1):
                for dz in range(-r, r + 1):
                    near = self._world.block_at(block.position.offset(dx, dy, dz))
                    if near is not None and near.name == self._cfg.marker:
                        return True
        return False

    def _vein(self, source: Block) -> list[Block]:
        """Connected blocks of the source's type, nearest to the source first."""
        seen = {_key(source.position)}
        queue = deque([source])
        out: list[Block] = []
        while queue and len(out) < self._cfg.max_vein:
            block = queue.popleft()
            out.append(block)
            for dx, dy, dz in _NEIGHBOURS:
                pos = block.position.offset(dx, dy, dz)
                if _key(pos) in seen:
                    continue
                seen.add(_key(pos))
                near = self._world.block_at(pos)
                if near is not None and near.name == source.name:
                    queue.append(near)
        return out

    async def run(self, amount: int, run: BehaviorRun) -> HarvestResult:
        resource, label = self._cfg.resource, self._cfg.resource_label
        have = count(self._world, resource)
        if have >= amount:
            await self._narrate(f"I already have {have} {label}")
            return HarvestResult(collected=0, total=have)

        await self._narrate(f"Harvesting {amount - have} {label} ({have}/{amount})")
        exhausted: set[tuple[int, int, int]] = set()
        collected = 0

        def _source(block: Block) -> bool:
            return (
                block.name == resource
                and _key(block.position) not in exhausted
                and self._has_marker(block)
            )

        while True:
            run.check()
            source = self._world.find_block(_source, self._cfg.search_radius)
            if source is None:
                total = count(self._world, resource)
                raise ResourceNotFound(
                    f"Couldn't find any more trees within {self._cfg.search_radius:g} blocks "
                    f"({total}/{amount} {label})"
                )
            LOG.info("%s harvesting vein at %s", self._world.username, source.position.as_tuple())

            for block in self._vein(source):
                run.check()
                exhausted.add(_key(block.position))
                current = self._world.block_at(block.position)
                if current is None or current.name != resource:
                    continue
                await self._world.path_to(GoalNear(block.position.offset(0.5, 0.0, 0.5), 2.0))
                await self._world.collect(current)
                collected += 1
                await compact(self._world, resource)

                total = count(self._world, resource)
                if total >= amount:
                    await self._narrate(f"Harvested {collected} {label}, now have {total}")
                    return HarvestResult(collected=collected, total=total)
                if collected % self._cfg.progress_every == 0:
                    await self._narrate(f"Progress: {total}/{amount} {label}")
