"""
mpbench datastructures.

Shared semantic type aliases used across the benchmarking core.
"""

from __future__ import annotations

from .type_aliases import (
    ByteSize,
    DurationMicroseconds,
    DurationSeconds,
    EndpointName,
    ExecutorId,
    FrequencyHz,
    JsonDict,
    LatencyMicroseconds,
    NodeName,
    NodeNamespace,
    ServiceName,
    TimestampNanoseconds,
    TopicName,
    TrackingNumber,
    TypeName,
)

__all__ = [
    "ByteSize",
    "DurationMicroseconds",
    "DurationSeconds",
    "EndpointName",
    "ExecutorId",
    "FrequencyHz",
    "JsonDict",
    "LatencyMicroseconds",
    "NodeName",
    "NodeNamespace",
    "ServiceName",
    "TimestampNanoseconds",
    "TopicName",
    "TrackingNumber",
    "TypeName",
]
