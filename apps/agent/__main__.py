from __future__ import annotations

import argparse
import asyncio
import logging

from adapters.telemetry import StatusFeedTelemetryPort
from shared.config.loader import load_agent_settings

from apps.agent.commands import operator_routes
from apps.agent.compose import build_ipc, build_simulation

LOG = logging.getLogger("agent.main")


async def _serve(args: argparse.Namespace) -> int:
    settings = load_agent_settings()  # uses your loader/env/profile
    if args.with_merchant:
        settings.sim.with_merchant = True

    cmd_server, status_pub = build_ipc(settings)
    telemetry = StatusFeedTelemetryPort(status_pub)
    sim = build_simulation(settings, telemetry=telemetry)
    routes = operator_routes(sim.apps)

    LOG.info(
        "ipc_impl=%s cmd_bind=%s telem_bind=%s agents=%s",
        settings.ipc_impl,
        settings.cmd_bind,
        settings.telem_bind,
        [a.name for a in sim.apps],
    )

    for app in sim.apps:
        await app.start()

    tick_s = max(args.tick_ms, 1) / 1000.0
    try:
        while True:
            cmd_server.poll_once(routes.handle)
            await asyncio.sleep(tick_s)
    finally:
        for app in sim.apps:
            await app.stop()
        cmd_server.close()


def main() -> int:
    ap = argparse.ArgumentParser(prog="blockwright-agent")
    ap.add_argument("--tick-ms", type=int, default=10, help="Loop sleep between polls.")
    ap.add_argument("--with-merchant", action="store_true", help="Also host a merchant peer.")
    ap.add_argument("--quiet", action="store_true", help="Reduce console output.")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_serve(args))
    except KeyboardInterrupt:
        LOG.info("shutting down")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
