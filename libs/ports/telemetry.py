from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol


class StatusRecord(Protocol):
    agent_id: str
    behavior: str
    ts: float


class TelemetryPort(ABC):
    @abstractmethod
    def publish(self, record: StatusRecord) -> None: ...
