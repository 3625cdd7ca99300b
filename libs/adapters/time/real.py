from __future__ import annotations

import asyncio
import time

from ports.time import ClockPort, SleeperPort


class MonotonicClock(ClockPort):
    def now(self) -> float:
        return time.monotonic()


class AsyncioSleeper(SleeperPort):
    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
