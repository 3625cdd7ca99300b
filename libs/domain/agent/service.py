# libs/domain/agent/service.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Final

from ports.telemetry import TelemetryPort
from ports.time import ClockPort, SleeperPort
from ports.world import WorldPort
from shared.config.sections import ReconnectSettings
from shared.contracts.v1.telemetry import AgentStatus

from .model import AgentContext

if TYPE_CHECKING:
    from ..behavior.executor import BehaviorExecutor

LOG: Final = logging.getLogger("agent")


class AgentService:
    """Heartbeat telemetry and connection supervision for one agent (no OS calls)."""

    def __init__(
        self,
        world: WorldPort,
        clock: ClockPort,
        sleep: SleeperPort,
        telem: TelemetryPort,
        executor: BehaviorExecutor,
        agent_id: str,
        heartbeat_hz: float = 1.0,
        reconnect: ReconnectSettings | None = None,
        on_abandon: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.world: Final = world
        self.clock: Final = clock
        self.sleep: Final = sleep
        self.telem: Final = telem
        self.executor: Final = executor
        self.reconnect = reconnect or ReconnectSettings()
        self.ctx = AgentContext(agent_id=agent_id, state=executor.state)
        self._period = 1.0 / max(0.1, heartbeat_hz)
        self._on_abandon = on_abandon
        self._recovery: asyncio.Task[bool] | None = None

    def tick(self) -> None:
        """One heartbeat: refresh the context and publish status."""
        now = self.clock.now()
        self.ctx.connected = self.world.is_connected()
        state = self.executor.sync_state()
        pos = state.position
        self.telem.publish(
            AgentStatus(
                agent_id=self.ctx.agent_id,
                behavior=state.current_behavior.value,
                connected=self.ctx.connected,
                position=pos.as_tuple() if pos is not None else None,
                follow_target=state.follow_target,
                ts=now,
            )
        )
        self.ctx.last_ts = now

    @property
    def period(self) -> float:
        return self._period

    # --- connection supervision ---

    def watch_connection(self) -> None:
        self.world.on("connection_lost", self._connection_lost)

    def _connection_lost(self, reason: str = "") -> None:
        if self._recovery is not None and not self._recovery.done():
            return
        LOG.warning("%s lost connection: %s", self.world.username, reason or "unknown")
        self._recovery = asyncio.get_running_loop().create_task(self.recover())

    @property
    def recovery(self) -> asyncio.Task[bool] | None:
        return self._recovery

    async def recover(self) -> bool:
        """Abandon in-flight work, then reconnect with 2^n backoff. False once attempts run out."""
        self.ctx.connected = False
        if self._on_abandon is not None:
            await self._on_abandon()
        await self.executor.abandon()

        for attempt in range(1, self.reconnect.max_attempts + 1):
            delay = self.reconnect.backoff_base**attempt
            LOG.info(
                "%s reconnect attempt %d/%d in %.0fs",
                self.world.username,
                attempt,
                self.reconnect.max_attempts,
                delay,
            )
            await self.sleep.sleep(delay)
            try:
                await self.world.connect()
            except (ConnectionError, OSError) as e:
                LOG.warning("%s reconnect attempt %d failed: %s", self.world.username, attempt, e)
                continue
            self.ctx.connected = True
            LOG.info("%s reconnected", self.world.username)
            return True

        LOG.error("%s gave up after %d attempts", self.world.username, self.reconnect.max_attempts)
        return False
