from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Final

from adapters.ledger_mem import MemoryLedgerService
from adapters.registry_json import InMemoryCollaboratorRepository, JsonFileCollaboratorRepository
from adapters.telemetry import FakeTelemetryPort
from adapters.time import AsyncioSleeper, MonotonicClock
from adapters.world_sim import SimServer
from domain.agent import AgentService
from domain.behavior import BehaviorExecutor
from domain.commands import strip_address
from domain.delegation import StepProcessor, TaskDelegationClient
from domain.dispatcher import CommandDispatcher
from domain.periodic import PeriodicTask
from ports.ipc import CommandServerPort, StatusPubPort
from ports.ledger import LedgerPort
from ports.registry import CollaboratorRepository
from ports.telemetry import TelemetryPort
from ports.time import ClockPort, SleeperPort
from ports.world import Vec3, WorldPort
from shared.contracts.v1.registry import CollaboratorRecord

from apps.agent.settings import AgentSettings

LOG: Final = logging.getLogger("agent.app")


def build_ipc(settings: AgentSettings) -> tuple[CommandServerPort, StatusPubPort]:
    cmd_server: CommandServerPort
    status_pub: StatusPubPort

    if settings.ipc_impl == "zmq":
        from adapters.ipc_zmq import ZmqCommandServer, ZmqStatusPublisher

        cmd_server = ZmqCommandServer(addr=settings.cmd_bind)
        status_pub = ZmqStatusPublisher.bind_pub(settings.telem_bind)
    else:
        from adapters.ipc_inproc import InprocCommandServer, InprocStatusPublisher

        cmd_server = InprocCommandServer.create(settings.cmd_bind)
        status_pub = InprocStatusPublisher.create(settings.telem_bind)

    return cmd_server, status_pub


class AgentApp:
    """Composition root for one agent: every component gets its collaborators from here."""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        world: WorldPort | None = None,
        ledger: LedgerPort | None = None,
        registry: CollaboratorRepository | None = None,
        telemetry: TelemetryPort | None = None,
        clock: ClockPort | None = None,
        sleeper: SleeperPort | None = None,
    ) -> None:
        self.settings = settings
        name = settings.username
        self.world: WorldPort = world or SimServer().create_bot(name)
        self.ledger: LedgerPort = ledger or MemoryLedgerService().port(name)
        self.registry: CollaboratorRepository = registry or InMemoryCollaboratorRepository()
        self.telemetry = telemetry or FakeTelemetryPort()
        self.clock = clock or MonotonicClock()
        self.sleeper = sleeper or AsyncioSleeper()

        b = settings.behavior
        self.executor = BehaviorExecutor(self.world, self.sleeper, b, settings.watchdog)
        self.delegation = TaskDelegationClient(
            self.world,
            self.ledger,
            self.registry,
            settings.delegation,
            self.executor.narrate,
            handoff_token=b.handoff_token,
            resource_label=b.resource_label,
        )
        self.executor.broker = self.delegation
        self.dispatcher = CommandDispatcher(name, self.executor)
        self.steps = StepProcessor(
            self.ledger,
            self.executor,
            self.executor.narrate,
            step_cost=settings.delegation.step_cost,
            resource_label=b.resource_label,
        )
        self.service = AgentService(
            self.world,
            self.clock,
            self.sleeper,
            self.telemetry,
            self.executor,
            agent_id=name,
            heartbeat_hz=settings.heartbeat_hz,
            reconnect=settings.reconnect,
            on_abandon=self.dispatcher.cancel_all,
        )

        self.agent_id = settings.ledger_agent_id
        self.plan_id = settings.ledger_plan_id
        self._heartbeat: PeriodicTask | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self.world.on("chat", self._on_chat)
        self.world.on("spawn", self._on_spawn)
        self.service.watch_connection()

    @property
    def name(self) -> str:
        return self.settings.username

    # --- world events ---

    def _spawn_task(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_chat(self, sender: str, text: str) -> None:
        if sender == self.name:
            return
        if self.delegation.on_chat(sender, text):
            return
        self.dispatcher.submit(sender, text)

    def _on_spawn(self) -> None:
        self._spawn_task(self.executor.narrate(f"{self.name} is ready"))

    # --- lifecycle ---

    async def provision(self) -> CollaboratorRecord:
        """Make sure this agent has a plan and agent id on the ledger and in the registry."""
        record = self.registry.get(self.name)
        if record is not None:
            try:
                await self.ledger.get_balance(record.plan_id)
            except (KeyError, ValueError):
                LOG.warning("registry entry for %s is stale, provisioning again", self.name)
                record = None
        if record is None and self.agent_id and self.plan_id:
            record = CollaboratorRecord(
                identity=self.name, agent_id=self.agent_id, plan_id=self.plan_id, role=self.settings.role
            )
            self.registry.upsert(record)
        if record is None:
            plan_id = await self.ledger.create_plan(
                f"{self.name} credits", self.settings.delegation.plan_credits
            )
            agent_id = await self.ledger.create_agent(self.name, plan_id)
            record = CollaboratorRecord(
                identity=self.name, agent_id=agent_id, plan_id=plan_id, role=self.settings.role
            )
            self.registry.upsert(record)
            LOG.info("provisioned %s as %s on plan %s", self.name, agent_id, plan_id)
        self.agent_id, self.plan_id = record.agent_id, record.plan_id
        return record

    async def start(self) -> None:
        await self.world.connect()
        record = await self.provision()
        await self.ledger.subscribe(record.agent_id, self.steps.handle)
        self._heartbeat = PeriodicTask(
            f"heartbeat-{self.name}", self.service.period, self._beat, self.sleeper
        ).start()

    async def _beat(self) -> None:
        self.heartbeat_once()

    def heartbeat_once(self) -> None:
        self.service.tick()

    async def stop(self) -> None:
        if self._heartbeat is not None:
            await self._heartbeat.aclose()
            self._heartbeat = None
        await self.dispatcher.cancel_all()
        await self.executor.abandon()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

    # --- operator surface ---

    def say(self, text: str) -> None:
        self._spawn_task(self.world.send_chat(text))

    def submit_command(self, sender: str, text: str) -> bool:
        """Feed a chat-equivalent line into the dispatcher, adding our address when missing."""
        if strip_address(text, self.name) is None:
            text = f"@{self.name} {text}"
        return self.dispatcher.submit(sender, text) is not None

    def status(self) -> dict[str, Any]:
        state = self.executor.sync_state()
        return {
            "agent": self.name,
            "agent_id": self.agent_id,
            "plan_id": self.plan_id,
            "connected": self.world.is_connected(),
            "behavior": state.current_behavior.value,
            "follow_target": state.follow_target,
            "position": state.position.as_tuple() if state.position else None,
            "inventory": dict(state.inventory),
            "pending_commands": self.dispatcher.pending,
        }


# --- simulated world wiring ---------------------------------------------------


@dataclass
class Simulation:
    server: SimServer
    ledger: MemoryLedgerService
    registry: CollaboratorRepository
    apps: list[AgentApp] = field(default_factory=list)

    def app(self, name: str) -> AgentApp:
        for a in self.apps:
            if a.name == name:
                return a
        raise KeyError(name)


def plant_forest(server: SimServer, settings: AgentSettings) -> list[Vec3]:
    sim, b = settings.sim, settings.behavior
    rng = random.Random(sim.seed)
    bases: list[Vec3] = []
    while len(bases) < sim.trees:
        x = rng.randint(-sim.spread, sim.spread)
        z = rng.randint(-sim.spread, sim.spread)
        # keep the spawn area clear for building
        if abs(x) < 6 and abs(z) < 6:
            continue
        base = Vec3(x, server.ground_y, z)
        if any(base.distance_to(other) < 4 for other in bases):
            continue
        server.plant_tree(base, sim.tree_height, log=b.resource, leaves=b.marker)
        bases.append(base)
    return bases


def build_simulation(
    settings: AgentSettings, telemetry: TelemetryPort | None = None, registry: CollaboratorRepository | None = None
) -> Simulation:
    server = SimServer()
    plant_forest(server, settings)
    server.add_player(settings.sim.operator_name, Vec3(0.5, server.ground_y, -2.5))
    sim = Simulation(
        server=server,
        ledger=MemoryLedgerService(),
        registry=registry or JsonFileCollaboratorRepository(settings.registry_path),
    )

    def _add(agent_settings: AgentSettings, spawn: Vec3) -> AgentApp:
        name = agent_settings.username
        app = AgentApp(
            agent_settings,
            world=server.create_bot(name, spawn),
            ledger=sim.ledger.port(name),
            registry=sim.registry,
            telemetry=telemetry,
        )
        sim.apps.append(app)
        return app

    _add(settings, Vec3(0.5, server.ground_y, 0.5))
    if settings.sim.with_merchant:
        merchant = settings.model_copy(
            update={
                "username": settings.sim.merchant_name,
                "role": settings.delegation.collaborator_role,
                "ledger_agent_id": None,
                "ledger_plan_id": None,
            }
        )
        _add(merchant, Vec3(4.5, server.ground_y, 4.5))
    return sim
