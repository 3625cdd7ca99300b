from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

TaskStatus = Literal["Submitted", "InProgress", "Completed", "Failed"]
StepStatus = Literal["Pending", "InProgress", "Completed", "Failed"]
LogLevel = Literal["info", "warning", "error"]

TERMINAL_TASK_STATUSES: frozenset[str] = frozenset({"Completed", "Failed"})
TERMINAL_STEP_STATUSES: frozenset[str] = frozenset({"Completed", "Failed"})

# Submitted -> InProgress* -> {Completed | Failed}
_TASK_RANK: dict[str, int] = {"Submitted": 0, "InProgress": 1, "Completed": 2, "Failed": 2}


def task_status_rank(status: str) -> int:
    return _TASK_RANK[status]


def utc_now() -> datetime:
    return datetime.now(UTC)


class CreditBalance(BaseModel):
    subscribed: bool = False
    amount: int = 0


class Task(BaseModel):
    task_id: str
    agent_id: str
    plan_id: str
    query: str
    status: TaskStatus = "Submitted"

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def advance(self, status: TaskStatus) -> bool:
        """Move forward along the status order. Returns False for stale or repeated updates."""
        if self.terminal:
            return False
        if status == self.status and status != "InProgress":
            return False
        if task_status_rank(status) < task_status_rank(self.status):
            return False
        self.status = status
        return True


class Step(BaseModel):
    step_id: str
    task_id: str
    predecessor_id: str | None = None
    name: str
    status: StepStatus = "Pending"
    input_query: str = ""
    output: str | None = None
    cost: int = 0
    is_last: bool = False

    @model_validator(mode="after")
    def _not_own_predecessor(self) -> Step:
        if self.predecessor_id is not None and self.predecessor_id == self.step_id:
            raise ValueError(f"step {self.step_id} cannot be its own predecessor")
        return self

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES


class StepEvent(BaseModel):
    """Inbound notification; the provider fetches the step by id."""

    step_id: str


class TaskSubmission(BaseModel):
    task_id: str


class TaskUpdate(BaseModel):
    task_id: str
    task_status: TaskStatus
    output: str | None = None


class TaskLogEntry(BaseModel):
    task_id: str
    level: LogLevel = "info"
    message: str
    ts: datetime = Field(default_factory=utc_now)
