from __future__ import annotations

from abc import ABC, abstractmethod


class ClockPort(ABC):
    @abstractmethod
    def now(self) -> float: ...


class SleeperPort(ABC):
    """Cooperative delay; every timed wait in the domain goes through here."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None: ...
