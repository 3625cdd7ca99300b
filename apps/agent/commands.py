from __future__ import annotations

from collections.abc import Callable
from typing import Any

from shared.contracts.v1.commands import OperatorCommand

from apps.agent.compose import AgentApp

Route = Callable[[OperatorCommand], dict[str, Any]]


class AgentCommandDispatcher:
    def __init__(self) -> None:
        self._routes: dict[str, Route] = {}

    def route(self, cmd_type: str) -> Callable[[Route], Route]:
        def deco(fn: Route) -> Route:
            self._routes[cmd_type.upper()] = fn
            return fn

        return deco

    def handle(self, cmd: OperatorCommand) -> dict[str, Any]:
        fn = self._routes.get(cmd.type.upper())
        if not fn:
            return {"echo": cmd.type}
        return fn(cmd)


def operator_routes(apps: list[AgentApp]) -> AgentCommandDispatcher:
    """PING/CHAT/COMMAND/STATUS for the agents hosted by this process.

    CHAT and COMMAND go to the first agent unless the message starts with
    ``@<name>`` of another hosted agent.
    """
    by_name = {a.name.lower(): a for a in apps}
    disp = AgentCommandDispatcher()

    def _target(message: str) -> AgentApp:
        first = message.split(maxsplit=1)[0] if message.strip() else ""
        if first.startswith("@") and first[1:].lower() in by_name:
            return by_name[first[1:].lower()]
        return apps[0]

    @disp.route("PING")
    def _ping(cmd: OperatorCommand) -> dict[str, Any]:
        return {"pong": True, "agents": [a.name for a in apps]}

    @disp.route("CHAT")
    def _chat(cmd: OperatorCommand) -> dict[str, Any]:
        app = apps[0]
        app.say(cmd.message or "")
        return {"ok": True, "agent": app.name}

    @disp.route("COMMAND")
    def _command(cmd: OperatorCommand) -> dict[str, Any]:
        text = cmd.message or ""
        app = _target(text)
        accepted = app.submit_command(cmd.sender, text)
        return {"ok": accepted, "agent": app.name}

    @disp.route("STATUS")
    def _status(cmd: OperatorCommand) -> dict[str, Any]:
        return {"agents": [a.status() for a in apps]}

    return disp
