from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from time import monotonic
from typing import Any, Final, cast

import zmq
from pydantic import ValidationError

from ports.ipc import CommandHandler, OperatorCommandPort, StatusPubPort, StatusSubPort
from shared.contracts.v1.commands import OperatorCommand
from shared.contracts.v1.ipc_wire import (
    SCHEMA_V1,
    CommandEnvelope,
    ResponseEnvelope,
    StatusEnvelope,
)

LOG: Final = logging.getLogger("ipc.zmq")

# --------- Common helpers ---------


def _new_ctx() -> zmq.Context:
    # Using the global instance avoids thread-happy leaks and is cheap.
    return zmq.Context.instance()


def _set_common(sock: zmq.Socket, rcv_ms: int = 500, snd_ms: int = 500) -> None:
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, rcv_ms)
    sock.setsockopt(zmq.SNDTIMEO, snd_ms)


# --------- Operator commands (REQ client + REP server) ---------


class ZmqOperatorCommandClient(OperatorCommandPort):
    """Coordinator-side REQ client. One cached socket per agent address."""

    def __init__(self, timeout_ms: int = 500) -> None:
        self._ctx = _new_ctx()
        self._timeout_ms = timeout_ms
        self._req_cache: dict[str, zmq.Socket] = {}

    @classmethod
    def bind_rep(cls, addr: str) -> ZmqCommandServer:
        return ZmqCommandServer(addr=addr)

    def _get_req(self, addr: str) -> zmq.Socket:
        s = self._req_cache.get(addr)
        if s is None:
            s = self._ctx.socket(zmq.REQ)
            _set_common(s, self._timeout_ms, self._timeout_ms)
            s.connect(addr)
            self._req_cache[addr] = s
        return s

    def _drop(self, addr: str) -> None:
        s = self._req_cache.pop(addr, None)
        if s is not None:
            s.close(0)

    def send(self, addr: str, cmd: OperatorCommand) -> dict[str, Any]:
        """Send one command and return the response envelope as a dict. Retries once on timeout."""
        msg_id = str(uuid.uuid4())
        env = CommandEnvelope(msg_id=msg_id, command=cmd.model_dump(mode="json"))
        payload = env.model_dump(mode="json")

        for attempt in (1, 2):
            s = self._get_req(addr)
            try:
                s.send_json(payload)
                return cast(dict[str, Any], s.recv_json())
            except zmq.error.Again:
                # a REQ socket that missed its reply is stuck; start over with a fresh one
                self._drop(addr)
                if attempt == 2:
                    return ResponseEnvelope.failure(msg_id, "timeout", "REQ timeout").model_dump()
            except zmq.ZMQError as ex:
                self._drop(addr)
                return ResponseEnvelope.failure(msg_id, "internal", repr(ex)).model_dump()
        return ResponseEnvelope.failure(msg_id, "internal", "unreachable").model_dump()

    def close(self) -> None:
        for addr in list(self._req_cache):
            self._drop(addr)


@dataclass
class ZmqCommandServer:
    """Agent-side REP server. Call ``poll_once(handler)`` from the agent loop."""

    addr: str

    def __post_init__(self) -> None:
        self._ctx = _new_ctx()
        self._sock = self._ctx.socket(zmq.REP)
        _set_common(self._sock)
        self._sock.bind(self.addr)

    def close(self) -> None:
        self._sock.close(0)

    def _reply(self, envelope: ResponseEnvelope) -> None:
        self._sock.send_json(envelope.model_dump(mode="json"))

    def poll_once(self, handler: CommandHandler, timeout_ms: int = 0) -> bool:
        """Process at most one request. Returns True if a message was handled."""
        try:
            if not self._sock.poll(timeout=timeout_ms):
                return False

            raw = self._sock.recv()
            try:
                req = json.loads(raw.decode("utf-8"))
                if not isinstance(req, dict):
                    raise ValueError("envelope must be an object")
            except (UnicodeDecodeError, ValueError):
                self._reply(ResponseEnvelope.failure("<unknown>", "bad-json", "Invalid JSON"))
                return True

            msg_id = str(req.get("msg_id", "<unknown>"))
            try:
                version = int(req.get("schema_version", 0))
            except (TypeError, ValueError):
                version = 0
            if version != SCHEMA_V1:
                self._reply(
                    ResponseEnvelope.failure(msg_id, "api-mismatch", f"schema_version != {SCHEMA_V1}")
                )
                return True

            try:
                cmd = OperatorCommand.model_validate(req.get("command") or {})
            except ValidationError as ex:
                self._reply(ResponseEnvelope.failure(msg_id, "bad-command", str(ex)))
                return True

            try:
                result = handler(cmd) or {}
            except Exception as ex:
                LOG.exception("command %s failed", cmd.type)
                self._reply(ResponseEnvelope.failure(msg_id, "internal", repr(ex)))
                return True
            self._reply(ResponseEnvelope(ok=True, correlates_to=msg_id, data=result))
            return True

        except zmq.error.Again:
            return False

    def serve_for(self, seconds: float, handler: CommandHandler) -> None:
        deadline = monotonic() + seconds
        while monotonic() < deadline:
            self.poll_once(handler, timeout_ms=10)


# --------- Status feed (PUB/SUB) ---------


class ZmqStatusPublisher(StatusPubPort):
    def __init__(self, addr: str) -> None:
        self._ctx = _new_ctx()
        self._pub = self._ctx.socket(zmq.PUB)
        _set_common(self._pub)
        self._pub.bind(addr)

    @classmethod
    def bind_pub(cls, addr: str) -> ZmqStatusPublisher:
        return cls(addr)

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        env = StatusEnvelope(msg_id=str(uuid.uuid4()), topic=topic, data=dict(payload))
        self._pub.send_multipart(
            [
                topic.encode("utf-8"),
                json.dumps(env.model_dump(mode="json")).encode("utf-8"),
            ]
        )

    def close(self) -> None:
        self._pub.close(0)


class ZmqStatusSubscriber(StatusSubPort):
    def __init__(self) -> None:
        self._ctx = _new_ctx()
        self._sub = self._ctx.socket(zmq.SUB)
        _set_common(self._sub)
        # Allow all topics by default
        self._sub.setsockopt(zmq.SUBSCRIBE, b"")
        # Prevent unbounded growth
        self._sub.setsockopt(zmq.RCVHWM, 1000)

    def subscribe(self, addr: str) -> None:
        self._sub.connect(addr)

    def recv(self, timeout_ms: int = 100) -> dict[str, Any] | None:
        if not self._sub.poll(timeout=timeout_ms):
            return None
        topic, data = self._sub.recv_multipart()
        try:
            decoded = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return {"topic": topic.decode("utf-8"), "error": {"code": "bad-json"}}
        return {
            "topic": topic.decode("utf-8"),
            "data": decoded.get("data", {}),
            "envelope": decoded,
        }

    def close(self) -> None:
        self._sub.close(0)
