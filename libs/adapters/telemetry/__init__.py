from .fakes import FakeTelemetryPort
from .pub import StatusFeedTelemetryPort

__all__ = ["FakeTelemetryPort", "StatusFeedTelemetryPort"]
