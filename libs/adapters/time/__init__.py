from .fakes import FakeClockPort, FakeSleeperPort
from .real import AsyncioSleeper, MonotonicClock

__all__ = ["FakeClockPort", "FakeSleeperPort", "AsyncioSleeper", "MonotonicClock"]
