from __future__ import annotations

import uuid
from collections import defaultdict, deque
from collections.abc import Mapping
from typing import Any

from ports.ipc import CommandHandler, OperatorCommandPort, StatusPubPort, StatusSubPort
from shared.contracts.v1.commands import OperatorCommand
from shared.contracts.v1.ipc_wire import ResponseEnvelope, StatusEnvelope


class InprocHub:
    """Address book shared by the in-process endpoints of one process."""

    def __init__(self) -> None:
        self.servers: dict[str, InprocCommandServer] = {}
        self.subscribers: dict[str, list[deque[dict[str, Any]]]] = defaultdict(list)


_default_hub = InprocHub()


class InprocOperatorCommandClient(OperatorCommandPort):
    """Calls the bound server's handler directly; same envelope shape as the zmq client."""

    def __init__(self, hub: InprocHub | None = None) -> None:
        self._hub = hub or _default_hub

    @classmethod
    def create(cls, hub: InprocHub | None = None) -> InprocOperatorCommandClient:
        return cls(hub)

    def send(self, addr: str, cmd: OperatorCommand) -> dict[str, Any]:
        msg_id = str(uuid.uuid4())
        server = self._hub.servers.get(addr)
        if server is None or server.handler is None:
            return ResponseEnvelope.failure(msg_id, "timeout", f"nothing serving {addr}").model_dump()
        try:
            data = server.handler(cmd) or {}
        except Exception as ex:
            return ResponseEnvelope.failure(msg_id, "internal", repr(ex)).model_dump()
        server.handled += 1
        return ResponseEnvelope(ok=True, correlates_to=msg_id, data=data).model_dump()


class InprocCommandServer:
    """Answers requests synchronously with the handler last passed to ``poll_once``."""

    def __init__(self, addr: str, hub: InprocHub | None = None) -> None:
        self.addr = addr
        self.handler: CommandHandler | None = None
        self.handled = 0
        self._hub = hub or _default_hub
        self._hub.servers[addr] = self

    @classmethod
    def create(cls, addr: str = "inproc://agent", hub: InprocHub | None = None) -> InprocCommandServer:
        return cls(addr, hub)

    def poll_once(self, handler: CommandHandler, timeout_ms: int = 0) -> bool:
        self.handler = handler
        return False

    def close(self) -> None:
        if self._hub.servers.get(self.addr) is self:
            del self._hub.servers[self.addr]
        self.handler = None


class InprocStatusPublisher(StatusPubPort):
    def __init__(self, addr: str, hub: InprocHub | None = None) -> None:
        self.addr = addr
        self._hub = hub or _default_hub

    @classmethod
    def create(cls, addr: str = "inproc://status", hub: InprocHub | None = None) -> InprocStatusPublisher:
        return cls(addr, hub)

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        env = StatusEnvelope(msg_id=str(uuid.uuid4()), topic=topic, data=dict(payload))
        message = {"topic": topic, "data": dict(payload), "envelope": env.model_dump(mode="json")}
        for queue in self._hub.subscribers.get(self.addr, []):
            queue.append(message)


class InprocStatusSubscriber(StatusSubPort):
    """Queue-backed subscriber; ``recv`` never blocks."""

    def __init__(self, hub: InprocHub | None = None, maxlen: int = 1000) -> None:
        self._hub = hub or _default_hub
        self._queue: deque[dict[str, Any]] = deque(maxlen=maxlen)

    @classmethod
    def create(cls, hub: InprocHub | None = None) -> InprocStatusSubscriber:
        return cls(hub)

    def subscribe(self, addr: str) -> None:
        subs = self._hub.subscribers[addr]
        if self._queue not in subs:
            subs.append(self._queue)

    def recv(self, timeout_ms: int = 100) -> dict[str, Any] | None:
        return self._queue.popleft() if self._queue else None
