from .commands import OperatorCommand
from .ledger import (
    CreditBalance,
    Step,
    StepEvent,
    Task,
    TaskLogEntry,
    TaskSubmission,
    TaskUpdate,
)
from .registry import CollaboratorRecord
from .telemetry import AgentStatus

__all__ = [
    "OperatorCommand",
    "CreditBalance",
    "Step",
    "StepEvent",
    "Task",
    "TaskLogEntry",
    "TaskSubmission",
    "TaskUpdate",
    "CollaboratorRecord",
    "AgentStatus",
]
