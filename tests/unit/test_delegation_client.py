from __future__ import annotations

import asyncio

import pytest
from adapters.ledger_mem import MemoryLedgerService
from adapters.registry_json import InMemoryCollaboratorRepository
from adapters.world_sim import SimServer, SimWorldPort
from domain.delegation import StepProcessor, TaskDelegationClient
from ports.world import Vec3
from shared.config.sections import DelegationSettings
from shared.contracts.v1.ledger import TaskUpdate
from shared.contracts.v1.registry import CollaboratorRecord
from shared.errors import (
    DelegationFailed,
    DelegationTimedOut,
    InsufficientCredit,
    NoCollaboratorAvailable,
    ResourceNotFound,
)

TOKEN = "handoff:ready"


class FakeActions:
    def __init__(self, error: Exception | None = None) -> None:
        self.harvested: list[int] = []
        self._error = error

    async def fulfil(self, amount: int) -> object:
        self.harvested.append(amount)
        if self._error is not None:
            raise self._error
        return amount

    async def deliver(self, requester: str, amount: int | None = None) -> int:
        return 0


class Said:
    def __init__(self) -> None:
        self.lines: list[str] = []

    async def __call__(self, text: str) -> None:
        self.lines.append(text)


@pytest.fixture
def ledger() -> MemoryLedgerService:
    return MemoryLedgerService()


@pytest.fixture
async def merchant_bot(server: SimServer) -> SimWorldPort:
    bot = server.create_bot("Merchant", Vec3(4.5, 0, 4.5))
    await bot.connect()
    return bot


def _provision(
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    name: str,
    credits: int = 10,
    role: str = "merchant",
) -> CollaboratorRecord:
    plan_id = ledger.create_plan(name, f"{name} credits", credits)
    agent_id = ledger.create_agent(name, name, plan_id)
    record = CollaboratorRecord(identity=name, agent_id=agent_id, plan_id=plan_id, role=role)
    registry.upsert(record)
    return record


@pytest.fixture
def merchant(
    merchant_bot: SimWorldPort, ledger: MemoryLedgerService, registry: InMemoryCollaboratorRepository
) -> CollaboratorRecord:
    return _provision(ledger, registry, "Merchant")


@pytest.fixture
def said() -> Said:
    return Said()


def _client(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    said: Said,
    **cfg: float,
) -> TaskDelegationClient:
    client = TaskDelegationClient(
        world,
        ledger.port(world.username),
        registry,
        DelegationSettings(**cfg),
        said,
        handoff_token=TOKEN,
    )
    world.on("chat", client.on_chat)
    return client


def _serve(ledger: MemoryLedgerService, record: CollaboratorRecord, actions: FakeActions) -> StepProcessor:
    steps = StepProcessor(ledger.port(record.identity), actions, Said())
    ledger.subscribe(record.agent_id, steps.handle)
    return steps


def _answer_throws(bot: SimWorldPort) -> None:
    pending: set[asyncio.Task[None]] = set()

    def _on_chat(sender: str, text: str) -> None:
        if text.startswith(f"@{bot.username} !throw"):
            task = asyncio.get_running_loop().create_task(bot.send_chat(TOKEN))
            pending.add(task)
            task.add_done_callback(pending.discard)

    bot.on("chat", _on_chat)


# --- discovery ---------------------------------------------------------------


async def test_discover_picks_nearest_visible_merchant(
    server: SimServer,
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    server.add_player("Trader", Vec3(10.5, 0, 10.5))
    server.add_player("Faraway", Vec3(200.5, 0, 0.5))
    server.add_player("Mason", Vec3(1.5, 0, 1.5))
    _provision(ledger, registry, "Trader")
    _provision(ledger, registry, "Faraway")
    _provision(ledger, registry, "Mason", role="builder")
    _provision(ledger, registry, "Builder")  # ourselves
    _provision(ledger, registry, "Offline")  # no player in the world

    client = _client(world, ledger, registry, said)

    assert client.discover().identity == "Merchant"


async def test_discover_without_candidates(
    world: SimWorldPort, ledger: MemoryLedgerService, registry: InMemoryCollaboratorRepository, said: Said
):
    client = _client(world, ledger, registry, said)

    with pytest.raises(NoCollaboratorAvailable, match="No merchant around to help"):
        client.discover()


# --- credit ------------------------------------------------------------------


async def test_ensure_credit_buys_once(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    client = _client(world, ledger, registry, said)

    assert await client.ensure_credit(merchant) == 10
    assert await client.ensure_credit(merchant) == 10
    assert ledger.orders == [("Builder", merchant.plan_id)]


async def test_zero_credit_plan_never_submits(
    world: SimWorldPort,
    merchant_bot: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    said: Said,
):
    broke = _provision(ledger, registry, "Merchant", credits=0)
    client = _client(world, ledger, registry, said)

    with pytest.raises(InsufficientCredit):
        await client.request(3)

    assert ledger.submissions == []
    assert ledger.orders == [("Builder", broke.plan_id)]


# --- full exchange -----------------------------------------------------------


async def test_request_waits_for_completion_and_handoff(
    world: SimWorldPort,
    merchant_bot: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    actions = FakeActions()
    _serve(ledger, merchant, actions)
    _answer_throws(merchant_bot)
    client = _client(world, ledger, registry, said, task_timeout=2.0, handoff_timeout=2.0)

    await client.request(3)

    assert actions.harvested == [3]
    assert ledger.submissions == [("Builder", merchant.agent_id, "!harvest 3")]
    assert ledger.balances[("Builder", merchant.plan_id)] == 9
    assert "@Merchant !throw 3" in world.sent_chat
    assert "Merchant is working on it, waiting" in said.lines
    assert said.lines[-1] == "Waiting for Merchant to hand over the logs"
    assert client.active is None


async def test_provider_failure_raises_delegation_failed(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    _serve(ledger, merchant, FakeActions(error=ResourceNotFound("no trees")))
    client = _client(world, ledger, registry, said, task_timeout=2.0)

    with pytest.raises(DelegationFailed, match="no trees"):
        await client.request(3)

    assert said.lines[-1] == "Merchant could not do it: Harvest failed: no trees"
    assert not any("!throw" in line for line in world.sent_chat)


async def test_task_timeout(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    # nobody subscribed for the merchant, so the task never moves
    client = _client(world, ledger, registry, said, task_timeout=0.01)

    with pytest.raises(DelegationTimedOut, match="did not finish"):
        await client.request(3)
    assert client.active is None


async def test_handoff_timeout(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    _serve(ledger, merchant, FakeActions())
    client = _client(world, ledger, registry, said, task_timeout=2.0, handoff_timeout=0.01)

    with pytest.raises(DelegationTimedOut, match="never handed over"):
        await client.request(3)

    # the waiter is gone; a late token is not ours anymore
    assert client.on_chat("Merchant", TOKEN) is False


async def test_late_completion_after_timeout_is_ignored(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    client = _client(world, ledger, registry, said, task_timeout=0.01)
    with pytest.raises(DelegationTimedOut):
        await client.request(3)
    (record,) = ledger.tasks.values()

    await record.on_update(TaskUpdate(task_id=record.task.task_id, task_status="Completed"))

    assert not any("!throw" in line for line in world.sent_chat)
    assert not any(line.startswith("Waiting for") for line in said.lines)
    assert client.on_chat("Merchant", TOKEN) is False


async def test_cancelled_request_ignores_later_updates(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    client = _client(world, ledger, registry, said)
    pending = asyncio.get_running_loop().create_task(client.request(3))
    for _ in range(50):
        if ledger.tasks:
            break
        await asyncio.sleep(0)
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    (record,) = ledger.tasks.values()

    await record.on_update(TaskUpdate(task_id=record.task.task_id, task_status="Completed"))

    assert client.active is None
    assert not any("!throw" in line for line in world.sent_chat)


# --- updates and tokens ------------------------------------------------------


async def test_stale_and_repeated_updates_are_ignored(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    client = _client(world, ledger, registry, said)
    await client.ensure_credit(merchant)
    job = await client.submit(merchant, 2)
    on_update = ledger.tasks[job.task.task_id].on_update
    task_id = job.task.task_id

    await on_update(TaskUpdate(task_id=task_id, task_status="Completed"))
    await on_update(TaskUpdate(task_id=task_id, task_status="InProgress"))
    await on_update(TaskUpdate(task_id=task_id, task_status="Completed"))
    await on_update(TaskUpdate(task_id=task_id, task_status="Failed", output="late"))

    assert job.task.status == "Completed"
    assert job.done.done() and job.done.exception() is None
    assert world.sent_chat.count("@Merchant !throw 2") == 1
    assert not any("working on it" in line for line in said.lines)
    assert not any("could not do it" in line for line in said.lines)
    job.handoff.cancel()


async def test_on_chat_only_accepts_the_expected_sender(
    world: SimWorldPort,
    ledger: MemoryLedgerService,
    registry: InMemoryCollaboratorRepository,
    merchant: CollaboratorRecord,
    said: Said,
):
    client = _client(world, ledger, registry, said)
    await client.ensure_credit(merchant)
    job = await client.submit(merchant, 2)
    await ledger.tasks[job.task.task_id].on_update(
        TaskUpdate(task_id=job.task.task_id, task_status="Completed")
    )

    assert client.on_chat("Merchant", "hello") is False
    assert client.on_chat("Stranger", TOKEN) is False
    assert not job.handoff.done()
    assert client.on_chat("Merchant", f"  {TOKEN} ") is True
    assert job.handoff.done()
