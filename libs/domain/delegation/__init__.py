from .capabilities import ActionProvider, ResourceBroker
from .client import Delegation, TaskDelegationClient
from .steps import FIRST_STEP, HARVEST_STEP, StepProcessor, build_chain

__all__ = [
    "ActionProvider",
    "ResourceBroker",
    "Delegation",
    "TaskDelegationClient",
    "StepProcessor",
    "build_chain",
    "FIRST_STEP",
    "HARVEST_STEP",
]
