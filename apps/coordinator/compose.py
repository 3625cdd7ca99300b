from __future__ import annotations

from typing import Any

from ports.ipc import OperatorCommandPort, StatusSubPort
from shared.contracts.v1.commands import OperatorCommand

from apps.coordinator.settings import CoordinatorSettings


def build_ipc(settings: CoordinatorSettings) -> tuple[OperatorCommandPort, StatusSubPort]:
    cmd_port: OperatorCommandPort
    status_sub: StatusSubPort

    if settings.ipc_impl == "zmq":
        from adapters.ipc_zmq import ZmqOperatorCommandClient, ZmqStatusSubscriber

        cmd_port = ZmqOperatorCommandClient()
        status_sub = ZmqStatusSubscriber()
    else:
        from adapters.ipc_inproc import InprocOperatorCommandClient, InprocStatusSubscriber

        cmd_port = InprocOperatorCommandClient.create()
        status_sub = InprocStatusSubscriber.create()

    for ep in settings.telem_subs:
        status_sub.subscribe(ep)
    return cmd_port, status_sub


def agent_command(agent: str, text: str, sender: str = "operator") -> OperatorCommand:
    """COMMAND addressed to one agent, as if ``sender`` had typed ``@agent text`` in chat."""
    return OperatorCommand(type="COMMAND", sender=sender, message=f"@{agent} {text}")


def send_to(
    settings: CoordinatorSettings, cmd_port: OperatorCommandPort, agent: str, cmd: OperatorCommand
) -> dict[str, Any] | None:
    """None when the agent has no configured endpoint."""
    ep = settings.agents_cmd.get(agent)
    if not ep:
        return None
    return cmd_port.send(ep, cmd)
