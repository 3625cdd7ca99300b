from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ActionProvider(Protocol):
    """The slice of the executor that remote steps are allowed to drive."""

    async def fulfil(self, amount: int) -> object:
        """Harvest ``amount`` more units and hold them for whoever asked."""

    async def deliver(self, requester: str, amount: int | None = None) -> int: ...


@runtime_checkable
class ResourceBroker(Protocol):
    """Gets ``shortfall`` units of the resource dropped at the agent's feet."""

    async def request(self, shortfall: int) -> None: ...
