from __future__ import annotations

import argparse
import time

from shared.config.loader import load_coordinator_settings
from shared.contracts.v1.commands import OperatorCommand

from apps.coordinator.compose import agent_command, build_ipc, send_to


def main() -> int:
    ap = argparse.ArgumentParser(prog="blockwright-coordinator")
    ap.add_argument("--ping", metavar="AGENT", help="Agent name to ping once and exit.")
    ap.add_argument("--status", metavar="AGENT", help="Print the STATUS reply of an agent and exit.")
    ap.add_argument(
        "--say", nargs=2, metavar=("AGENT", "TEXT"), help="Make the agent speak in world chat."
    )
    ap.add_argument(
        "--command",
        nargs=2,
        metavar=("AGENT", "TEXT"),
        help="Send a chat command as the operator, e.g. --command Builder '!platform 3'.",
    )
    ap.add_argument("--watch", action="store_true", help="Print status messages until Ctrl+C.")
    ap.add_argument("--quiet", action="store_true", help="Reduce console output.")
    ap.add_argument(
        "--connect-wait-ms", type=int, default=100, help="PUB/SUB settle time before first recv."
    )
    ap.add_argument("--tui", action="store_true", help="Run the Textual TUI.")
    args = ap.parse_args()

    if args.tui:
        # Launch the TUI app; it builds its own IPC via the loader.
        from apps.coordinator.tui import CoordinatorTUI

        CoordinatorTUI().run()
        return 0

    settings = load_coordinator_settings()  # uses your loader/env/profile
    cmd_port, status_sub = build_ipc(settings)

    if not args.quiet:
        print(
            f"[coord] ipc_impl={settings.ipc_impl} "
            f"agents_cmd={settings.agents_cmd} "
            f"telem_subs={settings.telem_subs}"
        )

    # Give SUB a brief moment to connect before first publish/receive
    time.sleep(max(args.connect_wait_ms, 0) / 1000.0)

    def _one_shot(agent: str, cmd: OperatorCommand, label: str) -> int:
        resp = send_to(settings, cmd_port, agent, cmd)
        if resp is None:
            print(f"[coord] unknown agent '{agent}'. Known: {sorted(settings.agents_cmd.keys())}")
            return 2
        print(f"[coord] {label}->{agent} :: {resp}" if not args.quiet else resp)
        return 0 if resp.get("ok") else 1

    rc = 0
    if args.ping:
        rc = _one_shot(args.ping, OperatorCommand(type="PING"), "PING")
    elif args.status:
        rc = _one_shot(args.status, OperatorCommand(type="STATUS"), "STATUS")
    elif args.say:
        agent, text = args.say
        rc = _one_shot(agent, OperatorCommand(type="CHAT", message=text), "CHAT")
    elif args.command:
        agent, text = args.command
        rc = _one_shot(agent, agent_command(agent, text, settings.operator_name), "COMMAND")

    if not args.watch:
        return rc

    try:
        while True:
            msg = status_sub.recv(timeout_ms=250)
            if not msg:
                continue
            data = msg.get("data", {})
            if args.quiet:
                print(data)
            else:
                print(
                    f"[coord] {msg.get('topic')} <- {data.get('agent_id')} "
                    f"behavior={data.get('behavior')} position={data.get('position')} "
                    f"connected={data.get('connected')}"
                )
    except KeyboardInterrupt:
        if not args.quiet:
            print("\n[coord] exiting.")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
