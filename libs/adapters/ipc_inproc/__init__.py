from .inproc import (
    InprocCommandServer,
    InprocHub,
    InprocOperatorCommandClient,
    InprocStatusPublisher,
    InprocStatusSubscriber,
)

__all__ = [
    "InprocHub",
    "InprocOperatorCommandClient",
    "InprocCommandServer",
    "InprocStatusPublisher",
    "InprocStatusSubscriber",
]
