"""
Core data model for mpbench.

Messages, headers, endpoint descriptors, quality-of-service profiles and the
exception taxonomy shared by every layer of the harness.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from mpbench.datastructures.type_aliases import (
    ByteSize,
    EndpointName,
    FrequencyHz,
    NodeName,
    ServiceName,
    TimestampNanoseconds,
    TopicName,
    TrackingNumber,
    TypeName,
)


class EndpointRole(StrEnum):
    """Role an endpoint plays on its node."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"
    CLIENT = "client"
    SERVER = "server"


class PassBy(StrEnum):
    """How a message is handed over between transport and endpoint."""

    SHARED = "shared"  # every receiver sees the same object
    UNIQUE = "unique"  # every receiver owns its own copy

    @classmethod
    def parse(cls, value: str) -> PassBy:
        normalized = value.strip().lower()
        # "shared_ptr" / "unique_ptr" are accepted too
        if normalized.endswith("_ptr"):
            normalized = normalized[: -len("_ptr")]
        return cls(normalized)


class Reliability(StrEnum):
    RELIABLE = "reliable"
    BEST_EFFORT = "best_effort"


class Durability(StrEnum):
    VOLATILE = "volatile"
    TRANSIENT_LOCAL = "transient_local"


@dataclass(frozen=True, slots=True)
class QoSProfile:
    """Transport delivery configuration, opaque to the statistics core."""

    reliability: Reliability = Reliability.RELIABLE
    durability: Durability = Durability.VOLATILE
    history_depth: int = 10

    def __post_init__(self) -> None:
        if self.history_depth <= 0:
            raise ValueError("QoS history depth must be positive")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> QoSProfile:
        """Build a profile from a configuration mapping.

        Both the short keys (``reliability``) and the flat prefixed keys of
        endpoint entries (``qos_reliability``) are accepted.
        """

        def _get(key: str) -> Any:
            if key in payload:
                return payload[key]
            return payload.get(f"qos_{key}")

        reliability = _get("reliability")
        durability = _get("durability")
        depth = _get("history_depth")
        return cls(
            reliability=Reliability(reliability)
            if reliability is not None
            else Reliability.RELIABLE,
            durability=Durability(durability)
            if durability is not None
            else Durability.VOLATILE,
            history_depth=int(depth) if depth is not None else 10,
        )


DEFAULT_QOS = QoSProfile()


@dataclass(frozen=True, slots=True)
class TopicDescriptor:
    """A publish/subscribe channel."""

    name: TopicName
    type_name: TypeName


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    """A request/response channel."""

    name: ServiceName
    type_name: TypeName


@dataclass(slots=True)
class PerformanceHeader:
    """Header carried as the first field of every benchmark message."""

    tracking_number: TrackingNumber = 0
    frequency: FrequencyHz = 0.0
    size: ByteSize = 0
    stamp: TimestampNanoseconds = 0


@dataclass(slots=True)
class Message:
    """A benchmark message: header plus a payload of some declared layout."""

    header: PerformanceHeader = field(default_factory=PerformanceHeader)
    data: Any = None


@dataclass(slots=True)
class ServiceRequest:
    header: PerformanceHeader = field(default_factory=PerformanceHeader)
    data: Any = None


@dataclass(slots=True)
class ServiceResponse:
    header: PerformanceHeader = field(default_factory=PerformanceHeader)
    data: Any = None


class BenchmarkError(Exception):
    """Base exception for every mpbench error."""

    pass


class UnknownTypeError(BenchmarkError):
    """Raised when a type name cannot be resolved by a type registry."""

    def __init__(
        self,
        type_name: TypeName,
        kind: str = "message",
        *,
        node: NodeName | None = None,
        endpoint: EndpointName | None = None,
    ) -> None:
        self.type_name = type_name
        self.kind = kind
        self.node = node
        self.endpoint = endpoint
        message = f"Unknown {kind} type: '{type_name}'"
        if node is not None and endpoint is not None:
            message = f"{message} (node '{node}', endpoint '{endpoint}')"
        super().__init__(message)


class DuplicateTypeError(BenchmarkError):
    """Raised when a type name is registered twice in the same registry."""

    def __init__(self, type_name: TypeName, kind: str = "message") -> None:
        self.type_name = type_name
        self.kind = kind
        super().__init__(f"{kind.capitalize()} type '{type_name}' already registered")


class ConfigParseError(BenchmarkError):
    """Raised when a topology document is malformed.

    The node, endpoint and type that caused the failure are carried along so
    the operator can locate the faulty entry.
    """

    def __init__(
        self,
        message: str,
        *,
        node: NodeName | None = None,
        endpoint: EndpointName | None = None,
        type_name: TypeName | None = None,
    ) -> None:
        self.node = node
        self.endpoint = endpoint
        self.type_name = type_name

        context = []
        if node is not None:
            context.append(f"node '{node}'")
        if endpoint is not None:
            context.append(f"endpoint '{endpoint}'")
        if type_name is not None:
            context.append(f"type '{type_name}'")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class ServiceUnavailableError(BenchmarkError):
    """Raised when a service does not become available within the probe timeout."""

    def __init__(self, service: ServiceName, timeout: float) -> None:
        self.service = service
        self.timeout = timeout
        super().__init__(f"[service] '{service}' unavailable after {timeout:g}s")
