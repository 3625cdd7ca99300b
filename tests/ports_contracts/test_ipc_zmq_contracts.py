from __future__ import annotations

import socket
import threading
import time
from contextlib import closing
from time import perf_counter

import pytest

try:
    import zmq  # noqa: F401
except Exception:
    pytest.skip("pyzmq not installed", allow_module_level=True)

from adapters.ipc_zmq import (
    ZmqCommandServer,
    ZmqOperatorCommandClient,
    ZmqStatusPublisher,
    ZmqStatusSubscriber,
)
from shared.contracts.v1.commands import OperatorCommand


def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])  # explicit int()


def _cmd_handler(cmd: OperatorCommand) -> dict:
    if cmd.type == "PING":
        return {"pong": True}
    if cmd.type == "COMMAND":
        return {"accepted": cmd.message, "sender": cmd.sender}
    return {"echo": cmd.type}


def _run_rep_server(addr: str, stop_event: threading.Event, ready: threading.Event):
    rep = ZmqCommandServer(addr=addr)
    ready.set()
    try:
        while not stop_event.is_set():
            rep.poll_once(_cmd_handler, timeout_ms=5)
    finally:
        rep.close()


def _endpoints() -> tuple[str, str]:
    a = f"tcp://127.0.0.1:{_free_port()}"
    b = f"tcp://127.0.0.1:{_free_port()}"
    return a, b


@pytest.fixture
def cmd_ep():
    ep, _ = _endpoints()
    stop, ready = threading.Event(), threading.Event()
    th = threading.Thread(target=_run_rep_server, args=(ep, stop, ready), daemon=True)
    th.start()
    ready.wait(timeout=1.0)
    yield ep
    stop.set()
    th.join(timeout=1.0)


def _raw_req(ep: str) -> zmq.Socket:
    ctx = zmq.Context.instance()
    s = ctx.socket(zmq.REQ)
    s.setsockopt(zmq.LINGER, 0)
    s.setsockopt(zmq.RCVTIMEO, 500)
    s.setsockopt(zmq.SNDTIMEO, 500)
    s.connect(ep)
    return s


def test_zmq_ping_under_500ms(cmd_ep: str):
    client = ZmqOperatorCommandClient()
    try:
        t0 = perf_counter()
        resp = client.send(cmd_ep, OperatorCommand(type="PING"))
        dt = perf_counter() - t0

        assert isinstance(resp, dict)
        assert resp.get("ok") is True
        assert resp.get("data", {}).get("pong") is True
        assert dt < 0.5, f"Round-trip too slow: {dt:.3f}s"
    finally:
        client.close()


def test_zmq_command_carries_sender_and_message(cmd_ep: str):
    client = ZmqOperatorCommandClient()
    try:
        cmd = OperatorCommand(type="COMMAND", sender="alice", message="@Builder !come")
        resp = client.send(cmd_ep, cmd)
        assert resp["ok"] is True
        assert resp["data"] == {"accepted": "@Builder !come", "sender": "alice"}
    finally:
        client.close()


def test_zmq_bad_json_error(cmd_ep: str):
    s = _raw_req(cmd_ep)
    try:
        # Send non-JSON bytes to simulate malformed message
        s.send(b"\x80\x81\x82")
        resp = s.recv_json()
        assert resp.get("ok") is False
        assert resp.get("error", {}).get("code") == "bad-json"
    finally:
        s.close(0)


def test_zmq_api_mismatch_error(cmd_ep: str):
    s = _raw_req(cmd_ep)
    try:
        bad = {"schema_version": 999, "msg_id": "x", "command": {"type": "PING"}}
        s.send_json(bad)
        resp = s.recv_json()
        assert resp.get("ok") is False
        assert resp.get("error", {}).get("code") == "api-mismatch"
        assert resp.get("correlates_to") == "x"
    finally:
        s.close(0)


def test_zmq_bad_command_error(cmd_ep: str):
    s = _raw_req(cmd_ep)
    try:
        s.send_json({"schema_version": 1, "msg_id": "y", "command": {"type": "CHAT"}})
        resp = s.recv_json()
        assert resp.get("ok") is False
        assert resp.get("error", {}).get("code") == "bad-command"
    finally:
        s.close(0)


def test_zmq_timeout_when_nobody_listens():
    ep, _ = _endpoints()
    client = ZmqOperatorCommandClient(timeout_ms=50)
    try:
        resp = client.send(ep, OperatorCommand(type="PING"))
        assert resp["ok"] is False
        assert resp["error"]["code"] == "timeout"
    finally:
        client.close()


def test_zmq_status_receive():
    _, status_ep = _endpoints()

    pub = ZmqStatusPublisher.bind_pub(status_ep)
    sub = ZmqStatusSubscriber()
    sub.subscribe(status_ep)
    try:
        # Give SUB a moment to connect (classic PUB/SUB pattern)
        time.sleep(0.05)

        pub.publish("status", {"agent_id": "Builder", "behavior": "Following"})

        # Allow up to 500 ms for delivery
        end = time.time() + 0.5
        got = None
        while time.time() < end and got is None:
            got = sub.recv(timeout_ms=50)

        assert got is not None, "Did not receive status within timeout"
        assert got.get("topic") == "status"
        assert got.get("data", {}).get("agent_id") == "Builder"
        assert got.get("data", {}).get("behavior") == "Following"
        assert got["envelope"]["schema_version"] == 1
    finally:
        pub.close()
        sub.close()
