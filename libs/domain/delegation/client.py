from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Final

from ports.ledger import LedgerPort
from ports.registry import CollaboratorRepository
from ports.world import WorldPort
from shared.config.sections import DelegationSettings
from shared.contracts.v1.ledger import Task, TaskUpdate
from shared.contracts.v1.registry import CollaboratorRecord
from shared.errors import (
    DelegationFailed,
    DelegationTimedOut,
    InsufficientCredit,
    NoCollaboratorAvailable,
)

LOG: Final = logging.getLogger("delegation")

Narrate = Callable[[str], Awaitable[None]]


@dataclass
class Delegation:
    """One outstanding request to a collaborator; discarded once it resolves."""

    collaborator: CollaboratorRecord
    task: Task
    amount: int
    done: asyncio.Future[None] = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    handoff: asyncio.Future[None] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )
    closed: bool = False


class TaskDelegationClient:
    """Buys work from the nearest visible collaborator and waits for the physical handoff.

    Submission is never retried; a failed or timed-out delegation is raised to
    the calling behavior.
    """

    def __init__(
        self,
        world: WorldPort,
        ledger: LedgerPort,
        registry: CollaboratorRepository,
        settings: DelegationSettings,
        narrate: Narrate,
        *,
        handoff_token: str,
        resource_label: str = "logs",
    ) -> None:
        self._world = world
        self._ledger = ledger
        self._registry = registry
        self._cfg = settings
        self._narrate = narrate
        self._token = handoff_token
        self._label = resource_label
        self._handoffs: dict[str, asyncio.Future[None]] = {}
        self.active: Delegation | None = None

    # --- stages ---

    def discover(self) -> CollaboratorRecord:
        role = self._cfg.collaborator_role
        me = self._world.position()
        best: tuple[float, CollaboratorRecord] | None = None
        for record in self._registry.all():
            if record.role != role or record.identity == self._world.username:
                continue
            pos = self._world.player_position(record.identity)
            if pos is None:
                continue
            dist = pos.distance_to(me)
            if best is None or dist < best[0]:
                best = (dist, record)
        if best is None:
            raise NoCollaboratorAvailable(f"No {role} around to help")
        LOG.info("selected %s (%.1f blocks away)", best[1].identity, best[0])
        return best[1]

    async def ensure_credit(self, collaborator: CollaboratorRecord) -> int:
        plan_id = collaborator.plan_id
        balance = await self._ledger.get_balance(plan_id)
        if not balance.subscribed or balance.amount <= 0:
            LOG.info("buying plan %s (subscribed=%s, credits=%d)", plan_id, balance.subscribed, balance.amount)
            await self._ledger.ensure_subscribed(plan_id)
            balance = await self._ledger.get_balance(plan_id)
        if balance.amount <= 0:
            raise InsufficientCredit(f"No credit left to pay {collaborator.identity}")
        return balance.amount

    async def submit(self, collaborator: CollaboratorRecord, shortfall: int) -> Delegation:
        query = f"!harvest {shortfall}"
        job = Delegation(
            collaborator=collaborator,
            task=Task(
                task_id="",
                agent_id=collaborator.agent_id,
                plan_id=collaborator.plan_id,
                query=query,
            ),
            amount=shortfall,
        )

        async def _on_update(update: TaskUpdate) -> None:
            await self._on_update(job, update)

        job.task.task_id = await self._ledger.submit_task(
            collaborator.agent_id, collaborator.plan_id, query, _on_update
        )
        LOG.info("submitted %r to %s as %s", query, collaborator.identity, job.task.task_id)
        return job

    async def _on_update(self, job: Delegation, update: TaskUpdate) -> None:
        if job.closed:
            LOG.info("ignoring %s update for %s, no longer waiting", update.task_status, job.task.task_id)
            return
        if not job.task.advance(update.task_status):
            LOG.debug("ignoring %s update for %s in state %s", update.task_status, job.task.task_id, job.task.status)
            return
        who = job.collaborator.identity
        LOG.info("task %s is %s", job.task.task_id, update.task_status)
        try:
            if update.task_status == "InProgress":
                await self._narrate(f"{who} is working on it, waiting")
            elif update.task_status == "Completed":
                # register before asking, the token may come back immediately
                self._handoffs[who] = job.handoff
                await self._world.send_chat(f"@{who} !throw {job.amount}")
                await self._narrate(f"Waiting for {who} to hand over the {self._label}")
                _resolve(job.done)
            elif update.task_status == "Failed":
                detail = f": {update.output}" if update.output else ""
                await self._narrate(f"{who} could not do it{detail}")
                _fail(job.done, DelegationFailed(f"{who} failed the task{detail}"))
        except Exception as e:
            _fail(job.done, e)

    # --- public API ---

    async def request(self, shortfall: int) -> None:
        """Discover, pay, submit and wait until the collaborator has thrown ``shortfall`` units."""
        collaborator = self.discover()
        await self.ensure_credit(collaborator)
        job = await self.submit(collaborator, shortfall)
        self.active = job
        who = collaborator.identity
        try:
            try:
                await asyncio.wait_for(asyncio.shield(job.done), self._cfg.task_timeout)
            except TimeoutError:
                raise DelegationTimedOut(
                    f"{who} did not finish within {self._cfg.task_timeout:g}s"
                ) from None
            try:
                await asyncio.wait_for(asyncio.shield(job.handoff), self._cfg.handoff_timeout)
            except TimeoutError:
                raise DelegationTimedOut(
                    f"{who} never handed over within {self._cfg.handoff_timeout:g}s"
                ) from None
            LOG.info("handoff from %s received", who)
        finally:
            job.closed = True
            self.active = None
            if self._handoffs.get(who) is job.handoff:
                del self._handoffs[who]
            for fut in (job.done, job.handoff):
                if not fut.done():
                    fut.cancel()

    def on_chat(self, sender: str, text: str) -> bool:
        """Feed world chat; True when the line was a handoff token this client was waiting for."""
        if text.strip() != self._token:
            return False
        waiter = self._handoffs.pop(sender, None)
        if waiter is None:
            return False
        _resolve(waiter)
        return True


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


def _fail(fut: asyncio.Future[None], exc: BaseException) -> None:
    if not fut.done():
        fut.set_exception(exc)
