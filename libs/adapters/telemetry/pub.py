from __future__ import annotations

from typing import Any

from ports.ipc import StatusPubPort
from ports.telemetry import TelemetryPort

from .fakes import _as_dict


class StatusFeedTelemetryPort(TelemetryPort):
    """Forwards status records onto the operator status feed under one topic."""

    def __init__(self, pub: StatusPubPort, topic: str = "status") -> None:
        self._pub = pub
        self._topic = topic

    def publish(self, record: Any) -> None:
        self._pub.publish(self._topic, _as_dict(record))
