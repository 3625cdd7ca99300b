from __future__ import annotations

import asyncio

import pytest
from adapters.world_sim import SimServer, SimWorldPort
from domain.agent import Behavior
from domain.behavior import BehaviorExecutor
from ports.world import Vec3
from shared.errors import BehaviorCancelled, OutOfResource, PathUnreachable

OPERATOR = "operator"


async def _spin(n: int = 20) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


async def test_follow_sets_goals_until_stopped(world: SimWorldPort, executor: BehaviorExecutor):
    await executor.follow(OPERATOR)
    await _spin()

    assert executor.state.current_behavior is Behavior.FOLLOWING
    assert executor.state.follow_target == OPERATOR
    assert world.sent_chat[-1] == f"Following {OPERATOR}"
    assert len([g for g in world.goals if g is not None]) > 1

    assert await executor.stop_follow() is True
    issued = len(world.goals)
    await _spin()

    assert world.goals[-1] is None
    assert len(world.goals) == issued  # no pursuit after stop
    assert executor.state.current_behavior is Behavior.IDLE
    assert executor.state.follow_target is None
    assert await executor.stop_follow() is False


async def test_second_follow_replaces_the_ticker(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    server.add_player("alice", Vec3(3.5, 0, 3.5))
    await executor.follow(OPERATOR)
    first = executor.follow_task

    await executor.follow("alice")
    second = executor.follow_task
    await _spin()

    assert first is not None and not first.running
    assert second is not None and second.running
    assert executor.state.follow_target == "alice"
    assert world.goal is not None
    assert world.goal.target == Vec3(3.5, 0, 3.5)
    await executor.stop_follow()


async def test_follow_unseen_player_narrates_and_stays_idle(
    world: SimWorldPort, executor: BehaviorExecutor
):
    await executor.follow("ghost")

    assert executor.follow_task is None
    assert executor.state.current_behavior is Behavior.IDLE
    assert world.sent_chat[-1] == "I can't see ghost"


async def test_follow_interrupts_a_running_harvest(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    server.plant_tree(Vec3(6, 0, 0), height=5)
    harvest = asyncio.get_running_loop().create_task(executor.harvest(5))
    for _ in range(200):
        if "collect" in world.calls:
            break
        await asyncio.sleep(0)
    assert executor.busy

    await executor.follow(OPERATOR)

    with pytest.raises(BehaviorCancelled):
        await harvest
    assert "stop" in world.calls
    assert world.calls.count("collect") < 5
    assert "Harvesting interrupted" in world.sent_chat
    assert executor.state.current_behavior is Behavior.FOLLOWING
    await executor.stop_follow()


async def test_harvest_stops_an_active_follow(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    server.plant_tree(Vec3(6, 0, 0), height=4)
    await executor.follow(OPERATOR)

    await executor.harvest(2)

    assert executor.follow_task is None
    assert executor.state.follow_target is None
    assert executor.state.current_behavior is Behavior.IDLE


async def test_deliver_throws_everything_then_sends_token(
    server: SimServer, world: SimWorldPort, executor: BehaviorExecutor
):
    world.give("oak_log", 3)

    thrown = await executor.deliver(OPERATOR)

    assert thrown == 3
    assert world.calls.count("toss") == 3
    assert executor.state.inventory.get("oak_log", 0) == 0
    assert sum(d.count for d in server.drops.values()) == 3
    assert world.sent_chat[0] == f"Bringing 3 logs to {OPERATOR}"
    assert world.sent_chat[-1] == "handoff:ready"
    assert executor.state.current_behavior is Behavior.IDLE


async def test_deliver_with_nothing_to_give(world: SimWorldPort, executor: BehaviorExecutor):
    with pytest.raises(OutOfResource):
        await executor.deliver(OPERATOR)

    assert "handoff:ready" not in world.sent_chat
    assert world.sent_chat[-1] == "I have no logs to give"
    assert "toss" not in world.calls


async def test_come_walks_within_follow_distance(world: SimWorldPort, executor: BehaviorExecutor):
    await executor.come(OPERATOR)

    target = Vec3(0.5, 0, -2.5)
    assert world.position().distance_to(target) == pytest.approx(2.0)
    assert world.sent_chat[-1] == f"Coming to {OPERATOR}"


async def test_come_to_unseen_player(world: SimWorldPort, executor: BehaviorExecutor):
    with pytest.raises(PathUnreachable):
        await executor.come("ghost")

    assert world.sent_chat[-1] == "I can't see ghost"
    assert "path_to" not in world.calls


async def test_narrate_is_silent_while_disconnected(world: SimWorldPort, executor: BehaviorExecutor):
    world.drop_connection()

    await executor.narrate("hello")

    assert world.sent_chat == []
