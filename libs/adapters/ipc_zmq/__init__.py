from .fakes import FakeOperatorCommandPort, FakeStatusSubPort
from .zmq import (
    ZmqCommandServer,
    ZmqOperatorCommandClient,
    ZmqStatusPublisher,
    ZmqStatusSubscriber,
)

__all__ = [
    "ZmqOperatorCommandClient",
    "ZmqCommandServer",
    "ZmqStatusPublisher",
    "ZmqStatusSubscriber",
    "FakeOperatorCommandPort",
    "FakeStatusSubPort",
]
