from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from shared.contracts.v1.ledger import CreditBalance, LogLevel, Step, StepEvent, TaskUpdate

TaskUpdateHandler = Callable[[TaskUpdate], Awaitable[None]]
StepEventHandler = Callable[[StepEvent], Awaitable[None]]


class LedgerPort(ABC):
    """Credit plans, task submission and the step-event feed."""

    # --- identity provisioning ---

    @abstractmethod
    async def create_plan(self, name: str, credits: int) -> str: ...

    @abstractmethod
    async def create_agent(self, name: str, plan_id: str) -> str: ...

    # --- requester side ---

    @abstractmethod
    async def get_balance(self, plan_id: str) -> CreditBalance: ...

    @abstractmethod
    async def ensure_subscribed(self, plan_id: str) -> str:
        """Purchase the plan; returns the agreement id."""

    @abstractmethod
    async def submit_task(
        self, agent_id: str, plan_id: str, query: str, on_update: TaskUpdateHandler
    ) -> str:
        """Returns the task id; ``on_update`` receives asynchronous status updates."""

    # --- provider side ---

    @abstractmethod
    async def subscribe(self, agent_id: str, handler: StepEventHandler) -> None: ...

    @abstractmethod
    async def get_step(self, step_id: str) -> Step: ...

    @abstractmethod
    async def create_steps(self, task_id: str, steps: Sequence[Step]) -> None: ...

    @abstractmethod
    async def update_step(self, step: Step) -> None: ...

    @abstractmethod
    async def log_task(self, task_id: str, level: LogLevel, message: str) -> None: ...
