from __future__ import annotations

import asyncio

import pytest
from adapters.ledger_mem import MemoryLedgerService
from adapters.registry_json import InMemoryCollaboratorRepository
from adapters.time import AsyncioSleeper
from adapters.world_sim import SimServer, SimWorldPort
from domain.agent import Behavior
from domain.behavior import BehaviorExecutor, platform_cells
from domain.behavior.inventory import count
from domain.delegation import TaskDelegationClient
from ports.world import Vec3
from shared.config.sections import BehaviorSettings, DelegationSettings, WatchdogSettings
from shared.errors import BehaviorCancelled, BehaviorError, NoCollaboratorAvailable, OutOfResource

OPERATOR = "operator"

# operator stands at (0.5, 0, -2.5); the platform starts two blocks east of them
ORIGIN = Vec3(2, 0, -3)


class _EmptyHandedBroker:
    """Agrees to help and then delivers nothing."""

    def __init__(self) -> None:
        self.requests: list[int] = []

    async def request(self, shortfall: int) -> None:
        self.requests.append(shortfall)


class _StalledBroker:
    """Accepts the request and never comes back."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def request(self, shortfall: int) -> None:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class _GenerousBroker:
    def __init__(self, server: SimServer, world: SimWorldPort) -> None:
        self.server = server
        self.world = world

    async def request(self, shortfall: int) -> None:
        at = self.world.position().offset(3, 0, 0)
        for _ in range(shortfall):
            self.server.spawn_drop("oak_log", 1, at)


def _placed(server: SimServer, size: int) -> int:
    return sum(server.block_name(c) == "oak_log" for c in platform_cells(ORIGIN, size))


def test_platform_cells_start_at_the_far_row():
    cells = platform_cells(Vec3(0, 0, 0), 2)
    assert cells == [Vec3(0, 0, 1), Vec3(1, 0, 1), Vec3(0, 0, 0), Vec3(1, 0, 0)]


async def test_exact_inventory_builds_without_delegation(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    broker = _EmptyHandedBroker()
    executor.broker = broker
    world.give("oak_log", 9)

    placed = await executor.build(3, OPERATOR)

    assert placed == 9
    assert broker.requests == []
    assert _placed(server, 3) == 9
    assert count(world, "oak_log") == 0
    assert world.sent_chat[-1] == "Platform 3x3 complete, used 9 logs"
    assert executor.state.current_behavior is Behavior.IDLE


async def test_quartile_progress_is_narrated(world: SimWorldPort, executor: BehaviorExecutor):
    world.give("oak_log", 16)

    await executor.build(4, OPERATOR)

    progress = [m for m in world.sent_chat if m.startswith("Progress:")]
    assert progress == [
        "Progress: 4/16 blocks placed",
        "Progress: 8/16 blocks placed",
        "Progress: 12/16 blocks placed",
    ]


async def test_standing_cell_uses_a_jump(server: SimServer, world: SimWorldPort, executor: BehaviorExecutor):
    world.give("oak_log", 4)

    await executor.build(2, OPERATOR)

    # the bot walks onto the origin cell and ends up on top of it
    assert server.block_name(ORIGIN) == "oak_log"
    assert world.position().y == pytest.approx(1.0)
    assert world.controls.get("jump") is False
    assert world.calls.count("equip") == 4


async def test_occupied_cells_are_skipped(server: SimServer, world: SimWorldPort, executor: BehaviorExecutor):
    server.set_block(ORIGIN.offset(1, 0, 1), "stone")
    world.give("oak_log", 9)

    placed = await executor.build(3, OPERATOR)

    assert placed == 8
    assert count(world, "oak_log") == 1
    assert world.sent_chat[-1] == "Platform 3x3 complete, used 8 logs"


async def test_shortfall_without_collaborator_fails_before_moving(
    world: SimWorldPort, executor: BehaviorExecutor
):
    executor.broker = TaskDelegationClient(
        world,
        MemoryLedgerService().port("Builder"),
        InMemoryCollaboratorRepository(),
        DelegationSettings(),
        executor.narrate,
        handoff_token="handoff:ready",
    )
    world.give("oak_log", 5)

    with pytest.raises(NoCollaboratorAvailable):
        await executor.build(4, OPERATOR)

    assert "path_to" not in world.calls
    assert "place" not in world.calls
    assert count(world, "oak_log") == 5
    assert world.sent_chat[-1] == "No merchant around to help"


async def test_runs_out_mid_build_without_over_consuming(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    broker = _EmptyHandedBroker()
    executor.broker = broker
    world.give("oak_log", 5)

    with pytest.raises(OutOfResource) as exc:
        await executor.build(3, OPERATOR)

    assert broker.requests == [4]
    assert exc.value.placed == 5
    assert _placed(server, 3) == 5
    assert count(world, "oak_log") == 0
    assert executor.state.current_behavior is Behavior.IDLE


async def test_delegated_units_are_picked_up_before_building(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    executor.broker = _GenerousBroker(server, world)
    world.give("oak_log", 1)

    placed = await executor.build(2, OPERATOR)

    assert placed == 4
    assert server.drops == {}
    assert _placed(server, 2) == 4


async def test_size_must_exceed_one(world: SimWorldPort, executor: BehaviorExecutor):
    world.give("oak_log", 4)
    with pytest.raises(BehaviorError):
        await executor.build(1, OPERATOR)
    assert "place" not in world.calls


async def test_without_broker_a_shortfall_is_out_of_resource(
    world: SimWorldPort, executor: BehaviorExecutor
):
    with pytest.raises(OutOfResource):
        await executor.build(2, OPERATOR)
    assert "path_to" not in world.calls


async def test_jump_placement_survives_a_live_watchdog(server: SimServer, world: SimWorldPort):
    # the jump delay spans many stalled ticks; none of them may clear the jump
    executor = BehaviorExecutor(
        world,
        AsyncioSleeper(),
        BehaviorSettings(jump_delay=0.2, throw_delay=0.0),
        WatchdogSettings(tick=0.02, threshold=1, recovery_ticks=1),
    )
    world.give("oak_log", 4)

    placed = await executor.build(2, OPERATOR)

    assert placed == 4
    assert _placed(server, 2) == 4
    assert world.controls.get("jump") is False
    assert world.sent_chat[-1] == "Platform 2x2 complete, used 4 logs"


async def test_follow_interrupts_a_build_waiting_for_help(world: SimWorldPort, executor: BehaviorExecutor):
    broker = _StalledBroker()
    executor.broker = broker
    build = asyncio.get_running_loop().create_task(executor.build(3, OPERATOR))
    await asyncio.wait_for(broker.started.wait(), 1.0)

    await asyncio.wait_for(executor.follow(OPERATOR), 1.0)

    with pytest.raises(BehaviorCancelled):
        await build
    assert broker.cancelled
    assert "Building interrupted" in world.sent_chat
    assert "place" not in world.calls
    assert executor.state.current_behavior is Behavior.FOLLOWING
    await executor.stop_follow()
