from __future__ import annotations

from ports.world import WorldPort

STACK_SIZE = 64


def count(world: WorldPort, item: str) -> int:
    return world.inventory().get(item, 0)


async def compact(world: WorldPort, item: str, stack_size: int = STACK_SIZE) -> int:
    """Top up the fullest stack of ``item`` from the smaller ones. Returns items moved."""
    stacks = sorted(
        (s for s in world.slots() if s.name == item), key=lambda s: (-s.count, s.slot)
    )
    if len(stacks) < 2:
        return 0
    target, rest = stacks[0], stacks[1:]
    room = stack_size - target.count
    moved = 0
    for src in reversed(rest):
        if room <= 0:
            break
        n = min(room, src.count)
        await world.transfer(src.slot, target.slot, n)
        room -= n
        moved += n
    return moved
