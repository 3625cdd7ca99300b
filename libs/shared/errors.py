from __future__ import annotations


class AgentError(Exception):
    """Root of every failure the agent narrates or reports."""


# --- behaviors ----------------------------------------------------------------


class BehaviorError(AgentError):
    pass


class ResourceNotFound(BehaviorError):
    pass


class OutOfResource(BehaviorError):
    def __init__(self, message: str, placed: int = 0) -> None:
        super().__init__(message)
        self.placed = placed


class PathUnreachable(BehaviorError):
    pass


class PlacementFailed(BehaviorError):
    pass


class BehaviorCancelled(BehaviorError):
    """The running behavior's continuation flag was cleared."""


# --- delegation ---------------------------------------------------------------


class DelegationError(AgentError):
    pass


class NoCollaboratorAvailable(DelegationError):
    pass


class InsufficientCredit(DelegationError):
    pass


class DelegationFailed(DelegationError):
    pass


class DelegationTimedOut(DelegationError):
    pass


# --- protocol / transport -----------------------------------------------------


class StepNotRecognized(AgentError):
    pass


class ConnectionLost(AgentError):
    pass


class CommandSyntaxError(AgentError):
    """Known verb with a missing or invalid argument; message is the usage line."""


__all__ = [
    "AgentError",
    "BehaviorError",
    "ResourceNotFound",
    "OutOfResource",
    "PathUnreachable",
    "PlacementFailed",
    "BehaviorCancelled",
    "DelegationError",
    "NoCollaboratorAvailable",
    "InsufficientCredit",
    "DelegationFailed",
    "DelegationTimedOut",
    "StepNotRecognized",
    "ConnectionLost",
    "CommandSyntaxError",
]
