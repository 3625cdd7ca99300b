from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Coroutine, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from ports.ledger import LedgerPort, StepEventHandler, TaskUpdateHandler
from shared.contracts.v1.ledger import (
    CreditBalance,
    LogLevel,
    Step,
    StepEvent,
    Task,
    TaskLogEntry,
    TaskStatus,
    TaskUpdate,
)
from shared.errors import InsufficientCredit

LOG: Final = logging.getLogger("ledger.mem")

FIRST_STEP_NAME: Final = "init"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass
class _Plan:
    plan_id: str
    name: str
    credits: int
    owner: str


@dataclass
class _Agent:
    agent_id: str
    name: str
    plan_id: str
    owner: str


@dataclass
class _TaskRecord:
    task: Task
    requester: str
    on_update: TaskUpdateHandler
    step_ids: list[str] = field(default_factory=list)


class MemoryLedgerService:
    """Single-process stand-in for the payments service shared by every agent in a test or demo.

    Accounts are agent usernames. Submitting a task charges one credit of the
    requester's balance on the provider's plan. Events and status updates are
    delivered on their own asyncio tasks, never inline.
    """

    def __init__(self) -> None:
        self.plans: dict[str, _Plan] = {}
        self.agents: dict[str, _Agent] = {}
        self.balances: dict[tuple[str, str], int] = {}
        self.subscriptions: set[tuple[str, str]] = set()
        self.orders: list[tuple[str, str]] = []
        self.submissions: list[tuple[str, str, str]] = []
        self.tasks: dict[str, _TaskRecord] = {}
        self.steps: dict[str, Step] = {}
        self.logs: list[TaskLogEntry] = []
        self._subscribers: dict[str, StepEventHandler] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def port(self, account: str) -> MemoryLedgerPort:
        return MemoryLedgerPort(self, account)

    # --- background delivery ---

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every queued event and update (and whatever they trigger) has been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver_step(self, agent_id: str, step_id: str) -> None:
        handler = self._subscribers.get(agent_id)
        if handler is None:
            LOG.warning("No subscriber for agent %s; step %s not delivered", agent_id, step_id)
            return
        try:
            await handler(StepEvent(step_id=step_id))
        except Exception:
            LOG.exception("Step handler for %s raised on step %s", agent_id, step_id)

    async def _deliver_update(self, record: _TaskRecord, update: TaskUpdate) -> None:
        try:
            await record.on_update(update)
        except Exception:
            LOG.exception("Update handler for task %s raised", update.task_id)

    def _notify(self, record: _TaskRecord, status: TaskStatus, output: str | None = None) -> None:
        if not record.task.advance(status):
            return
        LOG.info("Task %s -> %s", record.task.task_id, status)
        update = TaskUpdate(task_id=record.task.task_id, task_status=status, output=output)
        self._spawn(self._deliver_update(record, update))

    # --- provisioning ---

    def create_plan(self, owner: str, name: str, credits: int) -> str:
        plan = _Plan(plan_id=_new_id("plan"), name=name, credits=credits, owner=owner)
        self.plans[plan.plan_id] = plan
        return plan.plan_id

    def create_agent(self, owner: str, name: str, plan_id: str) -> str:
        if plan_id not in self.plans:
            raise ValueError(f"Unknown plan {plan_id}")
        agent = _Agent(agent_id=_new_id("agent"), name=name, plan_id=plan_id, owner=owner)
        self.agents[agent.agent_id] = agent
        return agent.agent_id

    # --- requester side ---

    def get_balance(self, account: str, plan_id: str) -> CreditBalance:
        if plan_id not in self.plans:
            raise ValueError(f"Unknown plan {plan_id}")
        return CreditBalance(
            subscribed=(account, plan_id) in self.subscriptions,
            amount=self.balances.get((account, plan_id), 0),
        )

    def ensure_subscribed(self, account: str, plan_id: str) -> str:
        plan = self.plans.get(plan_id)
        if plan is None:
            raise ValueError(f"Unknown plan {plan_id}")
        key = (account, plan_id)
        self.orders.append(key)
        self.subscriptions.add(key)
        self.balances[key] = self.balances.get(key, 0) + plan.credits
        return _new_id("agreement")

    def submit_task(
        self, account: str, agent_id: str, plan_id: str, query: str, on_update: TaskUpdateHandler
    ) -> str:
        agent = self.agents.get(agent_id)
        if agent is None or agent.plan_id != plan_id:
            raise ValueError(f"Agent {agent_id} is not sold under plan {plan_id}")
        key = (account, plan_id)
        if self.balances.get(key, 0) <= 0:
            raise InsufficientCredit(f"{account} has no credit on plan {plan_id}")
        self.balances[key] -= 1
        self.submissions.append((account, agent_id, query))

        task = Task(task_id=_new_id("task"), agent_id=agent_id, plan_id=plan_id, query=query)
        record = _TaskRecord(task=task, requester=account, on_update=on_update)
        self.tasks[task.task_id] = record
        first = Step(step_id=_new_id("step"), task_id=task.task_id, name=FIRST_STEP_NAME, input_query=query)
        self.steps[first.step_id] = first
        record.step_ids.append(first.step_id)
        self._spawn(self._deliver_step(agent_id, first.step_id))
        return task.task_id

    # --- provider side ---

    def subscribe(self, agent_id: str, handler: StepEventHandler) -> None:
        self._subscribers[agent_id] = handler

    def get_step(self, step_id: str) -> Step:
        step = self.steps.get(step_id)
        if step is None:
            raise KeyError(f"Unknown step {step_id}")
        return step.model_copy()

    def create_steps(self, task_id: str, steps: Sequence[Step]) -> None:
        record = self.tasks.get(task_id)
        if record is None:
            raise KeyError(f"Unknown task {task_id}")
        known = set(record.step_ids)
        linked = {s.predecessor_id for s in self.steps.values() if s.task_id == task_id}
        for step in steps:
            if step.task_id != task_id:
                raise ValueError(f"Step {step.step_id} belongs to task {step.task_id}")
            if step.step_id in self.steps:
                raise ValueError(f"Step {step.step_id} already exists")
            if step.predecessor_id not in known:
                raise ValueError(f"Step {step.step_id} has no known predecessor")
            if step.predecessor_id in linked:
                raise ValueError(f"Step {step.predecessor_id} already has a successor")
            self.steps[step.step_id] = step.model_copy()
            record.step_ids.append(step.step_id)
            known.add(step.step_id)
            linked.add(step.predecessor_id)

    def update_step(self, step: Step) -> None:
        stored = self.steps.get(step.step_id)
        if stored is None:
            raise KeyError(f"Unknown step {step.step_id}")
        if stored.terminal:
            raise ValueError(f"Step {step.step_id} is already {stored.status}")
        record = self.tasks[stored.task_id]
        if record.task.terminal:
            raise ValueError(f"Task {stored.task_id} is already {record.task.status}")
        self.steps[step.step_id] = step.model_copy()

        if step.status == "InProgress":
            self._notify(record, "InProgress")
        elif step.status == "Failed":
            self._notify(record, "Failed", step.output)
        elif step.status == "Completed":
            successors = [s for s in self.steps.values() if s.predecessor_id == step.step_id]
            if step.is_last or not successors:
                self._notify(record, "Completed", step.output)
                return
            self._notify(record, "InProgress")
            for nxt in successors:
                self._spawn(self._deliver_step(record.task.agent_id, nxt.step_id))

    def log_task(self, task_id: str, level: LogLevel, message: str) -> None:
        self.logs.append(TaskLogEntry(task_id=task_id, level=level, message=message))


class MemoryLedgerPort(LedgerPort):
    """One account's view of a MemoryLedgerService."""

    def __init__(self, service: MemoryLedgerService, account: str) -> None:
        self._svc = service
        self.account = account

    async def create_plan(self, name: str, credits: int) -> str:
        return self._svc.create_plan(self.account, name, credits)

    async def create_agent(self, name: str, plan_id: str) -> str:
        return self._svc.create_agent(self.account, name, plan_id)

    async def get_balance(self, plan_id: str) -> CreditBalance:
        return self._svc.get_balance(self.account, plan_id)

    async def ensure_subscribed(self, plan_id: str) -> str:
        return self._svc.ensure_subscribed(self.account, plan_id)

    async def submit_task(
        self, agent_id: str, plan_id: str, query: str, on_update: TaskUpdateHandler
    ) -> str:
        return self._svc.submit_task(self.account, agent_id, plan_id, query, on_update)

    async def subscribe(self, agent_id: str, handler: StepEventHandler) -> None:
        self._svc.subscribe(agent_id, handler)

    async def get_step(self, step_id: str) -> Step:
        return self._svc.get_step(step_id)

    async def create_steps(self, task_id: str, steps: Sequence[Step]) -> None:
        self._svc.create_steps(task_id, steps)

    async def update_step(self, step: Step) -> None:
        self._svc.update_step(step)

    async def log_task(self, task_id: str, level: LogLevel, message: str) -> None:
        self._svc.log_task(task_id, level, message)
