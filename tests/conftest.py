from __future__ import annotations

import pytest
from adapters.registry_json import InMemoryCollaboratorRepository
from adapters.time import FakeSleeperPort
from adapters.world_sim import SimServer, SimWorldPort
from domain.behavior import BehaviorExecutor
from ports.world import Vec3
from shared.config.sections import BehaviorSettings, WatchdogSettings

OPERATOR = "operator"


@pytest.fixture
def server() -> SimServer:
    s = SimServer()
    s.add_player(OPERATOR, Vec3(0.5, 0, -2.5))
    return s


@pytest.fixture
async def world(server: SimServer) -> SimWorldPort:
    bot = server.create_bot("Builder", Vec3(0.5, 0, 0.5))
    await bot.connect()
    return bot


@pytest.fixture
def sleeper() -> FakeSleeperPort:
    return FakeSleeperPort()


@pytest.fixture
def behavior() -> BehaviorSettings:
    return BehaviorSettings(jump_delay=0.0, throw_delay=0.0)


@pytest.fixture
def quiet_watchdog() -> WatchdogSettings:
    # never fires on its own; watchdog tests drive it directly
    return WatchdogSettings(threshold=10_000)


@pytest.fixture
def registry() -> InMemoryCollaboratorRepository:
    return InMemoryCollaboratorRepository()


@pytest.fixture
def executor(
    world: SimWorldPort,
    sleeper: FakeSleeperPort,
    behavior: BehaviorSettings,
    quiet_watchdog: WatchdogSettings,
) -> BehaviorExecutor:
    return BehaviorExecutor(world, sleeper, behavior, quiet_watchdog)
