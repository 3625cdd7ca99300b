from __future__ import annotations

import pytest
from adapters.ledger_mem import FIRST_STEP_NAME, MemoryLedgerService
from ports.ledger import LedgerPort
from shared.contracts.v1.ledger import Step, StepEvent, TaskUpdate
from shared.errors import InsufficientCredit


class Recorder:
    def __init__(self) -> None:
        self.events: list[str] = []
        self.updates: list[TaskUpdate] = []

    async def on_step(self, event: StepEvent) -> None:
        self.events.append(event.step_id)

    async def on_update(self, update: TaskUpdate) -> None:
        self.updates.append(update)


@pytest.fixture
def svc() -> MemoryLedgerService:
    return MemoryLedgerService()


async def _provider(svc: MemoryLedgerService, credits: int = 2) -> tuple[LedgerPort, str, str]:
    port = svc.port("Merchant")
    plan_id = await port.create_plan("Merchant credits", credits)
    agent_id = await port.create_agent("Merchant", plan_id)
    return port, plan_id, agent_id


async def test_balance_and_purchase(svc: MemoryLedgerService):
    _, plan_id, _ = await _provider(svc, credits=2)
    buyer = svc.port("Builder")

    before = await buyer.get_balance(plan_id)
    assert not before.subscribed and before.amount == 0

    await buyer.ensure_subscribed(plan_id)
    after = await buyer.get_balance(plan_id)
    assert after.subscribed and after.amount == 2
    with pytest.raises(ValueError):
        await buyer.get_balance("plan-missing")


async def test_submit_charges_one_credit_and_needs_credit(svc: MemoryLedgerService):
    _, plan_id, agent_id = await _provider(svc, credits=1)
    buyer = svc.port("Builder")
    rec = Recorder()

    with pytest.raises(InsufficientCredit):
        await buyer.submit_task(agent_id, plan_id, "!harvest 1", rec.on_update)

    await buyer.ensure_subscribed(plan_id)
    await buyer.submit_task(agent_id, plan_id, "!harvest 1", rec.on_update)
    assert (await buyer.get_balance(plan_id)).amount == 0
    assert svc.submissions == [("Builder", agent_id, "!harvest 1")]

    with pytest.raises(ValueError):
        await buyer.submit_task("agent-missing", plan_id, "!harvest 1", rec.on_update)


async def test_step_events_are_delivered_off_the_caller(svc: MemoryLedgerService):
    provider, plan_id, agent_id = await _provider(svc)
    rec = Recorder()
    await provider.subscribe(agent_id, rec.on_step)
    buyer = svc.port("Builder")
    await buyer.ensure_subscribed(plan_id)

    task_id = await buyer.submit_task(agent_id, plan_id, "!harvest 2", rec.on_update)
    assert rec.events == []

    await svc.drain()
    (step_id,) = rec.events
    first = await provider.get_step(step_id)
    assert first.name == FIRST_STEP_NAME
    assert first.task_id == task_id
    assert first.input_query == "!harvest 2"
    assert first.predecessor_id is None


async def test_chain_progress_reaches_the_requester(svc: MemoryLedgerService):
    provider, plan_id, agent_id = await _provider(svc)
    rec = Recorder()
    await provider.subscribe(agent_id, rec.on_step)
    buyer = svc.port("Builder")
    await buyer.ensure_subscribed(plan_id)
    task_id = await buyer.submit_task(agent_id, plan_id, "!harvest 2", rec.on_update)
    await svc.drain()
    first = await provider.get_step(rec.events[0])

    work = Step(step_id="s-work", task_id=task_id, predecessor_id=first.step_id, name="harvest", is_last=True)
    await provider.create_steps(task_id, [work])
    await provider.update_step(first.model_copy(update={"status": "Completed"}))
    await svc.drain()

    assert rec.events[-1] == "s-work"
    assert [u.task_status for u in rec.updates] == ["InProgress"]

    await provider.update_step(work.model_copy(update={"status": "Completed", "output": "done"}))
    await svc.drain()

    assert rec.updates[-1].task_status == "Completed"
    assert rec.updates[-1].output == "done"
    with pytest.raises(ValueError):
        await provider.update_step(work.model_copy(update={"status": "Failed"}))


async def test_create_steps_keeps_the_chain_linear(svc: MemoryLedgerService):
    provider, plan_id, agent_id = await _provider(svc)
    buyer = svc.port("Builder")
    await buyer.ensure_subscribed(plan_id)
    task_id = await buyer.submit_task(agent_id, plan_id, "!harvest 2", Recorder().on_update)
    (first_id,) = svc.tasks[task_id].step_ids

    await provider.create_steps(
        task_id, [Step(step_id="a", task_id=task_id, predecessor_id=first_id, name="harvest")]
    )
    with pytest.raises(ValueError):
        await provider.create_steps(
            task_id, [Step(step_id="b", task_id=task_id, predecessor_id=first_id, name="harvest")]
        )
    with pytest.raises(ValueError):
        await provider.create_steps(
            task_id, [Step(step_id="c", task_id=task_id, predecessor_id="nope", name="harvest")]
        )


async def test_task_log_is_recorded(svc: MemoryLedgerService):
    provider, _, _ = await _provider(svc)
    await provider.log_task("t1", "warning", "careful")
    assert svc.logs[-1].task_id == "t1"
    assert svc.logs[-1].level == "warning"
    assert svc.logs[-1].message == "careful"
