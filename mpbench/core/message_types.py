"""
Message and service type definitions.

A message type describes the payload that follows the ``PerformanceHeader``.
Two payload kinds exist and the difference matters for size reporting:

- fixed-layout payloads (arrays of a fixed number of elements) ignore any
  size hint and always report their fixed byte size
- variable-length payloads are resized to exactly the size hint and report
  that size

The built-in catalog mirrors the stamped message set commonly used for
middleware benchmarks.
"""

from __future__ import annotations

from array import array
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from mpbench.datastructures.type_aliases import ByteSize, TypeName

from .model import Message, PerformanceHeader, ServiceRequest, ServiceResponse


class PayloadKind(StrEnum):
    FIXED = "fixed"
    VARIABLE = "variable"


@dataclass(frozen=True, slots=True)
class MessageType:
    """Payload layout of one message type."""

    name: TypeName
    kind: PayloadKind
    factory: Callable[[], Any]
    fixed_size: ByteSize = 0
    description: str = ""

    def create_payload(self, size_hint: ByteSize = 0) -> tuple[Any, ByteSize]:
        """Return a fresh payload and the number of payload bytes it carries."""
        if self.kind is PayloadKind.VARIABLE:
            return resize_payload(self.factory(), size_hint), size_hint
        return self.factory(), self.fixed_size

    def create_message(self, size_hint: ByteSize = 0) -> Message:
        data, size = self.create_payload(size_hint)
        return Message(header=PerformanceHeader(size=size), data=data)


@dataclass(frozen=True, slots=True)
class ServiceType:
    """Request and response layouts of one service type."""

    name: TypeName
    request: MessageType
    response: MessageType
    description: str = ""

    def create_request(self, size_hint: ByteSize = 0) -> ServiceRequest:
        data, size = self.request.create_payload(size_hint)
        return ServiceRequest(header=PerformanceHeader(size=size), data=data)

    def create_response(self, size_hint: ByteSize = 0) -> ServiceResponse:
        data, size = self.response.create_payload(size_hint)
        return ServiceResponse(header=PerformanceHeader(size=size), data=data)


def resize_payload(data: bytearray, size: ByteSize) -> bytearray:
    """Grow or shrink a variable-length payload to exactly ``size`` bytes."""
    if size < 0:
        raise ValueError(f"Payload size must not be negative, got {size}")
    current = len(data)
    if size > current:
        data.extend(bytes(size - current))
    elif size < current:
        del data[size:]
    return data


def fixed_array_type(name: TypeName, typecode: str, length: int) -> MessageType:
    """A fixed number of numeric elements (``array`` typecode semantics)."""
    prototype = array(typecode, [0]) * length
    return MessageType(
        name=name,
        kind=PayloadKind.FIXED,
        factory=lambda: array(typecode, prototype),
        fixed_size=prototype.itemsize * length,
        description=f"{length} x {typecode!r}",
    )


def byte_array_type(name: TypeName, nbytes: ByteSize) -> MessageType:
    return MessageType(
        name=name,
        kind=PayloadKind.FIXED,
        factory=lambda: bytearray(nbytes),
        fixed_size=nbytes,
        description=f"{nbytes} bytes",
    )


def variable_type(name: TypeName) -> MessageType:
    return MessageType(
        name=name,
        kind=PayloadKind.VARIABLE,
        factory=bytearray,
        description="variable-length bytes",
    )


KB = 1024
MB = 1024 * KB

BUILTIN_MESSAGE_TYPES: tuple[MessageType, ...] = (
    fixed_array_type("stamped3_float32", "f", 3),
    fixed_array_type("stamped4_float32", "f", 4),
    fixed_array_type("stamped4_int32", "i", 4),
    fixed_array_type("stamped9_float32", "f", 9),
    fixed_array_type("stamped12_float32", "f", 12),
    fixed_array_type("stamped_int64", "q", 1),
    byte_array_type("stamped10b", 10),
    byte_array_type("stamped100b", 100),
    byte_array_type("stamped250b", 250),
    byte_array_type("stamped1kb", KB),
    byte_array_type("stamped10kb", 10 * KB),
    byte_array_type("stamped100kb", 100 * KB),
    byte_array_type("stamped250kb", 250 * KB),
    byte_array_type("stamped1mb", MB),
    byte_array_type("stamped4mb", 4 * MB),
    byte_array_type("stamped8mb", 8 * MB),
    variable_type("stamped_vector"),
)

BUILTIN_SERVICE_TYPES: tuple[ServiceType, ...] = (
    ServiceType(
        name="stamped10b",
        request=byte_array_type("stamped10b_request", 10),
        response=byte_array_type("stamped10b_response", 10),
    ),
    ServiceType(
        name="stamped1kb",
        request=byte_array_type("stamped1kb_request", KB),
        response=byte_array_type("stamped1kb_response", KB),
    ),
    ServiceType(
        name="stamped_vector",
        request=variable_type("stamped_vector_request"),
        response=variable_type("stamped_vector_response"),
    ),
)
