"""
Transport interface consumed by the benchmarking core.

The core never talks to a middleware directly. Everything it needs from the
pub/sub layer (creating endpoints, publishing, sending requests, waiting for
a service to come up) goes through ``MiddlewareTransport``, so that any
middleware binding can be plugged under the same topologies.

Example Usage:
    transport = InProcessTransport()
    pub = transport.create_publisher(TopicDescriptor("chatter", "stamped10b"), qos)
    sub = transport.create_subscription(topic, qos, callback, PassBy.SHARED)
    transport.publish(pub, message, PassBy.SHARED)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..model import (
    BenchmarkError,
    EndpointRole,
    Message,
    PassBy,
    QoSProfile,
    ServiceDescriptor,
    ServiceRequest,
    ServiceResponse,
    TopicDescriptor,
)

type MessageCallback = Callable[[Message], None]
type ServiceHandler = Callable[[ServiceRequest], ServiceResponse]


class TransportError(BenchmarkError):
    """Base exception for transport-related errors."""

    pass


@dataclass(frozen=True, slots=True)
class TransportHandle:
    """Opaque reference to an entity created by a transport."""

    handle_id: int
    role: EndpointRole
    name: str
    type_name: str
    qos: QoSProfile


class MiddlewareTransport(ABC):
    """Abstract interface every middleware binding implements."""

    @abstractmethod
    def create_publisher(
        self, topic: TopicDescriptor, qos: QoSProfile
    ) -> TransportHandle:
        """Create a publisher on ``topic``."""
        pass

    @abstractmethod
    def create_subscription(
        self,
        topic: TopicDescriptor,
        qos: QoSProfile,
        callback: MessageCallback,
        pass_by: PassBy = PassBy.SHARED,
    ) -> TransportHandle:
        """Create a subscription delivering every message on ``topic`` to ``callback``."""
        pass

    @abstractmethod
    def create_client(
        self, service: ServiceDescriptor, qos: QoSProfile
    ) -> TransportHandle:
        pass

    @abstractmethod
    def create_server(
        self,
        service: ServiceDescriptor,
        qos: QoSProfile,
        handler: ServiceHandler,
    ) -> TransportHandle:
        pass

    @abstractmethod
    def publish(
        self, handle: TransportHandle, message: Message, pass_by: PassBy
    ) -> None:
        """Hand ``message`` over to the middleware.

        With ``PassBy.UNIQUE`` the caller gives up ownership of the message and
        must not touch it afterwards.

        Raises:
            TransportError: If the handle is not a live publisher
        """
        pass

    @abstractmethod
    def send_request(
        self, handle: TransportHandle, request: ServiceRequest
    ) -> asyncio.Future[ServiceResponse]:
        """Send ``request`` without blocking; the future resolves with the response."""
        pass

    @abstractmethod
    async def wait_for_service(self, handle: TransportHandle, timeout: float) -> bool:
        """Wait at most ``timeout`` seconds for the client's service to be served."""
        pass

    @abstractmethod
    def destroy(self, handle: TransportHandle) -> None:
        """Release the entity behind ``handle``. Unknown handles are ignored."""
        pass

    def close(self) -> None:
        """Release every remaining entity."""
        return None
