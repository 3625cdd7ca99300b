from __future__ import annotations

from queue import Empty, SimpleQueue
from typing import Any

from ports.ipc import OperatorCommandPort, StatusSubPort
from shared.contracts.v1.commands import OperatorCommand


class FakeOperatorCommandPort(OperatorCommandPort):
    """Records the last command per addr and returns a canned ok-dict."""

    def __init__(self) -> None:
        self.sent: dict[str, dict[str, Any]] = {}

    def send(self, addr: str, cmd: OperatorCommand) -> dict[str, Any]:
        payload = cmd.model_dump()
        self.sent[addr] = payload
        return {"ok": True, "correlates_to": "fake", "data": {"echo": payload}}


class FakeStatusSubPort(StatusSubPort):
    """Local queue-based status channel suitable for tests."""

    def __init__(self) -> None:
        self._subs: set[str] = set()
        self._q: SimpleQueue[dict[str, Any]] = SimpleQueue()

    def subscribe(self, addr: str) -> None:
        self._subs.add(addr)

    def recv(self, timeout_ms: int = 100) -> dict[str, Any] | None:
        try:
            return self._q.get(timeout=timeout_ms / 1000.0)
        except Empty:
            return None

    # Test/helper API: inject a status record
    def inject(self, record: dict[str, Any]) -> None:
        self._q.put(record)
