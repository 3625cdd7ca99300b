from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Final

from ports.ledger import LedgerPort
from shared.contracts.v1.ledger import LogLevel, Step, StepEvent
from shared.errors import AgentError, CommandSyntaxError, StepNotRecognized

from ..commands import Command, Verb, parse_body
from .capabilities import ActionProvider

LOG: Final = logging.getLogger("steps")

Narrate = Callable[[str], Awaitable[None]]

FIRST_STEP: Final = "init"
HARVEST_STEP: Final = "harvest"

# work steps synthesized for each remotely accepted command
CHAINS: Final[dict[Verb, tuple[str, ...]]] = {
    Verb.HARVEST: (HARVEST_STEP,),
}


def build_chain(first: Step, names: Sequence[str]) -> list[Step]:
    """Successor steps linked one after another behind ``first``."""
    chain: list[Step] = []
    previous = first.step_id
    for i, name in enumerate(names):
        step = Step(
            step_id=f"step-{uuid.uuid4().hex[:12]}",
            task_id=first.task_id,
            predecessor_id=previous,
            name=name,
            input_query=first.input_query,
            is_last=i == len(names) - 1,
        )
        chain.append(step)
        previous = step.step_id
    return chain


class StepProcessor:
    """Provider side of the task protocol. Each inbound event is handled on its own and never raises.

    Steps already terminal, steps of a task this processor has closed, and steps
    currently being processed are skipped, so redelivered events are harmless.
    """

    def __init__(
        self,
        ledger: LedgerPort,
        actions: ActionProvider,
        narrate: Narrate,
        *,
        step_cost: int = 1,
        resource_label: str = "logs",
    ) -> None:
        self._ledger = ledger
        self._actions = actions
        self._narrate = narrate
        self._cost = step_cost
        self._label = resource_label
        self._inflight: set[str] = set()
        self._closed: set[str] = set()
        self.processed: list[str] = []

    async def handle(self, event: StepEvent) -> None:
        step_id = event.step_id
        if step_id in self._inflight:
            LOG.debug("step %s already in flight", step_id)
            return
        self._inflight.add(step_id)
        step: Step | None = None
        try:
            step = await self._ledger.get_step(step_id)
            if step.terminal or step.task_id in self._closed:
                LOG.debug("skipping step %s (%s)", step_id, step.status)
                return
            await self._log(step.task_id, "info", f"Processing step {step.name} ({step.step_id})")
            self.processed.append(step_id)
            if step.name == FIRST_STEP:
                await self._plan(step)
            elif step.name == HARVEST_STEP:
                await self._harvest(step)
            else:
                raise StepNotRecognized(f"Unrecognized step name {step.name!r}")
        except StepNotRecognized as e:
            LOG.warning("%s, skipped", e)
            if step is not None:
                await self._log(step.task_id, "warning", f"{e}, skipped")
        except Exception as e:
            LOG.exception("step %s could not be processed", step_id)
            if step is not None:
                await self._abort(step, e)
        finally:
            self._inflight.discard(step_id)

    async def _abort(self, step: Step, error: Exception) -> None:
        """Fail a step whose processing blew up, unless it already reached a terminal state."""
        try:
            current = await self._ledger.get_step(step.step_id)
            if current.terminal:
                return
            await self._finish(current, "Failed", f"Step {step.name} failed: {error}", last=True)
        except Exception:
            LOG.exception("could not mark step %s failed", step.step_id)

    async def _log(self, task_id: str, level: LogLevel, message: str) -> None:
        try:
            await self._ledger.log_task(task_id, level, message)
        except Exception:
            LOG.exception("could not write task log for %s", task_id)

    async def _finish(self, step: Step, status: str, output: str, *, cost: int = 0, last: bool | None = None) -> None:
        done = step.model_copy(
            update={
                "status": status,
                "output": output,
                "cost": cost,
                "is_last": step.is_last if last is None else last,
            }
        )
        await self._ledger.update_step(done)
        if status == "Failed" or done.is_last:
            self._closed.add(step.task_id)
        level: LogLevel = "error" if status == "Failed" else "info"
        await self._log(step.task_id, level, f"Step {step.name} {status}: {output}")

    def _command(self, step: Step) -> Command | None:
        try:
            return parse_body(step.input_query, requester="remote")
        except CommandSyntaxError:
            return None

    async def _plan(self, step: Step) -> None:
        command = self._command(step)
        names = CHAINS.get(command.verb) if command is not None else None
        if not names:
            await self._finish(step, "Failed", "Command not recognized", last=True)
            return
        chain = build_chain(step, names)
        await self._ledger.create_steps(step.task_id, chain)
        await self._log(
            step.task_id, "info", f"Planned steps: {', '.join(s.name for s in chain)}"
        )
        await self._finish(step, "Completed", step.input_query)

    async def _harvest(self, step: Step) -> None:
        command = self._command(step)
        if command is None or command.verb is not Verb.HARVEST or command.amount is None:
            await self._finish(step, "Failed", f"Bad harvest query {step.input_query!r}", last=True)
            return
        amount = command.amount
        await self._ledger.update_step(step.model_copy(update={"status": "InProgress"}))
        await self._log(step.task_id, "info", f"Step {step.name} InProgress")
        await self._narrate(f"Received request to harvest {amount} {self._label}")
        try:
            await self._actions.fulfil(amount)
        except AgentError as e:
            await self._finish(step, "Failed", f"Harvest failed: {e}", last=True)
            return
        await self._finish(
            step, "Completed", f"Harvested {amount} {self._label}", cost=self._cost
        )
