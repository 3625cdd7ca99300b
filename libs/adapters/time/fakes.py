from __future__ import annotations

import asyncio

from ports.time import ClockPort, SleeperPort


class FakeClockPort(ClockPort):
    """Manually advanced clock."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


class FakeSleeperPort(SleeperPort):
    """Records requested delays and only yields to the loop."""

    def __init__(self, clock: FakeClockPort | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def sleep(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)
        await asyncio.sleep(0)
