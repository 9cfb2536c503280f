"""
Transport layer for mpbench.

The benchmarking core only depends on ``MiddlewareTransport``; the
in-process implementation lets whole topologies run inside one process.
"""

from .inprocess import InProcessTransport, copy_message
from .interfaces import (
    MessageCallback,
    MiddlewareTransport,
    ServiceHandler,
    TransportError,
    TransportHandle,
)

__all__ = [
    "InProcessTransport",
    "MessageCallback",
    "MiddlewareTransport",
    "ServiceHandler",
    "TransportError",
    "TransportHandle",
    "copy_message",
]
