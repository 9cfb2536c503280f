"""
Benchmark endpoints.

Each endpoint binds one transport entity to one ``Tracker``:

- PublisherEndpoint: stamps and publishes messages, tracks publish duration
- SubscriberEndpoint: scans every received header
- ClientEndpoint: periodic requests with a single request in flight
- ServerEndpoint: answers requests and scans their headers
"""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, ClassVar

from loguru import logger

from mpbench.datastructures.type_aliases import (
    ByteSize,
    DurationSeconds,
    FrequencyHz,
)

from .events import Event
from .message_types import MessageType, ServiceType
from .model import (
    EndpointRole,
    Message,
    PassBy,
    QoSProfile,
    ServiceDescriptor,
    ServiceRequest,
    ServiceResponse,
    ServiceUnavailableError,
    TopicDescriptor,
)
from .statistics import TrackerSnapshot
from .tracker import Tracker
from .transport.interfaces import TransportHandle

if TYPE_CHECKING:
    from .node import PerformanceNode

DEFAULT_SERVICE_TIMEOUT: DurationSeconds = 1.0


def period_to_frequency(period: DurationSeconds | None) -> FrequencyHz:
    if not period:
        return 0.0
    return 1.0 / period


class Endpoint:
    """Common state of every endpoint kind."""

    role: ClassVar[EndpointRole]

    def __init__(
        self,
        node: PerformanceNode,
        name: str,
        type_name: str,
        tracker: Tracker,
        qos: QoSProfile,
    ) -> None:
        self.node = node
        self.name = name
        self.type_name = type_name
        self.tracker = tracker
        self.qos = qos
        self.handle: TransportHandle | None = None

    def attach(self, handle: TransportHandle) -> None:
        self.handle = handle

    def _require_handle(self) -> TransportHandle:
        if self.handle is None:
            raise RuntimeError(f"{self.role} '{self.name}' is not attached to a transport")
        return self.handle

    def snapshot(self) -> TrackerSnapshot:
        return self.tracker.snapshot()

    def destroy(self) -> None:
        if self.handle is not None:
            self.node.transport.destroy(self.handle)
            self.handle = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, type={self.type_name!r}, "
            f"node={self.node.name!r})"
        )


class PublisherEndpoint(Endpoint):
    role = EndpointRole.PUBLISHER

    def __init__(
        self,
        node: PerformanceNode,
        topic: TopicDescriptor,
        message_type: MessageType,
        tracker: Tracker,
        qos: QoSProfile,
        pass_by: PassBy = PassBy.SHARED,
        size: ByteSize = 0,
        period: DurationSeconds | None = None,
    ) -> None:
        super().__init__(node, topic.name, topic.type_name, tracker, qos)
        self.topic = topic
        self.message_type = message_type
        self.pass_by = pass_by
        self.size = size
        self.period = period

    @property
    def frequency(self) -> FrequencyHz:
        return period_to_frequency(self.period)

    def publish(self) -> Message:
        """Publish one message and record how long the hand-over took (us)."""
        handle = self._require_handle()
        tracking_number = self.tracker.get_and_increment_tracking_number()
        message = self.message_type.create_message(self.size)
        header = message.header
        header.frequency = self.frequency
        header.tracking_number = tracking_number
        # stamping is the last thing done before handing the message over
        publish_time = self.node.now()
        header.stamp = publish_time

        self.node.transport.publish(handle, message, self.pass_by)

        publish_duration = (self.node.now() - publish_time) / 1000.0
        self.tracker.set_frequency(header.frequency)
        self.tracker.set_size(header.size)
        self.tracker.record_latency(publish_duration)

        logger.debug(
            "Publishing to {} msg number {} took {:.1f} us",
            self.name,
            tracking_number,
            publish_duration,
        )
        return message


class SubscriberEndpoint(Endpoint):
    role = EndpointRole.SUBSCRIBER

    def __init__(
        self,
        node: PerformanceNode,
        topic: TopicDescriptor,
        message_type: MessageType,
        tracker: Tracker,
        qos: QoSProfile,
        pass_by: PassBy = PassBy.SHARED,
    ) -> None:
        super().__init__(node, topic.name, topic.type_name, tracker, qos)
        self.topic = topic
        self.message_type = message_type
        self.pass_by = pass_by

    def on_message(self, message: Message) -> None:
        latency = self.tracker.scan(message.header, self.node.now(), self.node.events)
        logger.debug(
            "Received on {} msg number {} after {:.1f} us",
            self.name,
            message.header.tracking_number,
            latency,
        )


class ClientEndpoint(Endpoint):
    """Request side of a service.

    At most one request is outstanding per client: a periodic cycle that finds
    the previous request still pending is a no-op. The in-flight flag is a
    lock only ever acquired without blocking.
    """

    role = EndpointRole.CLIENT

    def __init__(
        self,
        node: PerformanceNode,
        service: ServiceDescriptor,
        service_type: ServiceType,
        tracker: Tracker,
        qos: QoSProfile,
        size: ByteSize = 0,
        period: DurationSeconds | None = None,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
    ) -> None:
        super().__init__(node, service.name, service.type_name, tracker, qos)
        self.service = service
        self.service_type = service_type
        self.size = size
        self.period = period
        self.service_timeout = service_timeout
        self._in_flight = threading.Lock()
        self.requests_sent = 0
        self.responses_received = 0
        self.failed_requests = 0
        self.skipped_cycles = 0
        self.unavailable_cycles = 0
        if period:
            tracker.set_frequency(period_to_frequency(period))

    @property
    def pending(self) -> bool:
        return self._in_flight.locked()

    async def request(self) -> bool:
        """Run one request cycle; return True when a request was sent."""
        if not self._in_flight.acquire(blocking=False):
            self.skipped_cycles += 1
            return False

        sent = False
        try:
            await self._wait_for_service()
            sent = self._send()
        except ServiceUnavailableError as e:
            self.unavailable_cycles += 1
            self.node.write_event(
                Event.service_unavailable(self.tracker.caller_name, str(e))
            )
        finally:
            if not sent:
                self._in_flight.release()
        return sent

    async def _wait_for_service(self) -> None:
        handle = self._require_handle()
        ready = await self.node.transport.wait_for_service(handle, self.service_timeout)
        if not ready:
            raise ServiceUnavailableError(self.name, self.service_timeout)

    def _send(self) -> bool:
        handle = self._require_handle()
        request = self.service_type.create_request(self.size)
        header = request.header
        header.frequency = self.tracker.frequency
        header.tracking_number = self.tracker.get_and_increment_tracking_number()
        header.stamp = self.node.now()

        future = self.node.transport.send_request(handle, request)
        future.add_done_callback(lambda done: self._response_received(request, done))
        self.requests_sent += 1

        logger.debug(
            "Requesting to {} request number {}", self.name, header.tracking_number
        )
        return True

    def _response_received(
        self, request: ServiceRequest, future: asyncio.Future[ServiceResponse]
    ) -> None:
        try:
            if future.cancelled():
                self.failed_requests += 1
                return
            error = future.exception()
            if error is not None:
                self.failed_requests += 1
                logger.warning("Request on {} failed: {}", self.name, error)
                return
            latency = self.tracker.scan(
                request.header, self.node.now(), self.node.events
            )
            self.responses_received += 1
            logger.debug(
                "Response on {} request number {} received after {:.1f} us",
                self.name,
                request.header.tracking_number,
                latency,
            )
        finally:
            self._in_flight.release()


class ServerEndpoint(Endpoint):
    role = EndpointRole.SERVER

    def __init__(
        self,
        node: PerformanceNode,
        service: ServiceDescriptor,
        service_type: ServiceType,
        tracker: Tracker,
        qos: QoSProfile,
    ) -> None:
        super().__init__(node, service.name, service.type_name, tracker, qos)
        self.service = service
        self.service_type = service_type

    def handle_request(self, request: ServiceRequest) -> ServiceResponse:
        response = self.service_type.create_response(request.header.size)
        header = response.header
        header.frequency = request.header.frequency
        header.tracking_number = self.tracker.count
        header.stamp = self.node.now()

        latency = self.tracker.scan(request.header, header.stamp, self.node.events)
        logger.debug(
            "Request on {} request number {} received after {:.1f} us",
            self.name,
            request.header.tracking_number,
            latency,
        )
        return response
