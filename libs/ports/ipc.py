from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from shared.contracts.v1.commands import OperatorCommand

CommandHandler = Callable[[OperatorCommand], dict[str, Any]]


class OperatorCommandPort(ABC):
    """Coordinator -> agent requests (REQ client)."""

    @abstractmethod
    def send(self, addr: str, cmd: OperatorCommand) -> dict[str, Any]: ...


class StatusSubPort(ABC):
    """Coordinator side of the status feed (SUB)."""

    @abstractmethod
    def subscribe(self, addr: str) -> None: ...

    @abstractmethod
    def recv(self, timeout_ms: int = 100) -> dict[str, Any] | None: ...


class StatusPubPort(ABC):
    """Agent side of the status feed (PUB)."""

    @abstractmethod
    def publish(self, topic: str, payload: Mapping[str, Any]) -> None: ...


@runtime_checkable
class CommandServerPort(Protocol):
    """Agent-side REP server: non-blocking poll and close."""

    def poll_once(self, handler: CommandHandler, timeout_ms: int = 0) -> bool: ...
    def close(self) -> None: ...


__all__ = [
    "CommandHandler",
    "OperatorCommandPort",
    "StatusSubPort",
    "StatusPubPort",
    "CommandServerPort",
]
