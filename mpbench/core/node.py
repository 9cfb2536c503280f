"""
Benchmark node: the aggregate that owns endpoints and their trackers.

A node is bound to one transport and to the scheduler of its executor. All
endpoint names are unique within their role on a node.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TypeVar

from loguru import logger

from mpbench.datastructures.type_aliases import (
    ByteSize,
    DurationSeconds,
    EndpointName,
    ExecutorId,
    NodeName,
    NodeNamespace,
    TimestampNanoseconds,
    TopicName,
)

from .endpoints import (
    DEFAULT_SERVICE_TIMEOUT,
    ClientEndpoint,
    Endpoint,
    PublisherEndpoint,
    ServerEndpoint,
    SubscriberEndpoint,
)
from .events import Event, EventSink
from .message_types import MessageType, ServiceType
from .model import (
    DEFAULT_QOS,
    PassBy,
    QoSProfile,
    ServiceDescriptor,
    TopicDescriptor,
)
from .scheduler import PeriodicTimer, Scheduler, TimerCallback
from .tracker import Tracker, TrackingOptions
from .transport.interfaces import MiddlewareTransport

E = TypeVar("E", bound=Endpoint)

type Trackers = list[tuple[EndpointName, Tracker]]


class PerformanceNode:
    """A named group of endpoints running on one executor."""

    def __init__(
        self,
        name: NodeName,
        transport: MiddlewareTransport,
        scheduler: Scheduler,
        *,
        namespace: NodeNamespace = "",
        executor_id: ExecutorId = 0,
        events: EventSink | None = None,
    ) -> None:
        self.name = name
        self.namespace = namespace
        self.executor_id = executor_id
        self.transport = transport
        self.scheduler = scheduler
        self.events = events

        self.publishers: dict[EndpointName, PublisherEndpoint] = {}
        self.subscribers: dict[EndpointName, SubscriberEndpoint] = {}
        self.clients: dict[EndpointName, ClientEndpoint] = {}
        self.servers: dict[EndpointName, ServerEndpoint] = {}
        self.timers: list[PeriodicTimer] = []

    @property
    def full_name(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace.rstrip('/')}/{self.name}"

    def now(self) -> TimestampNanoseconds:
        return self.scheduler.now()

    def set_events_logger(self, events: EventSink) -> None:
        self.events = events

    def write_event(self, event: Event) -> None:
        if self.events is not None:
            self.events.write_event(event)

    def _tracker(
        self, name: EndpointName, options: TrackingOptions | None = None
    ) -> Tracker:
        return Tracker(self.full_name, name, options)

    def _insert(self, endpoints: dict[EndpointName, E], endpoint: E) -> E:
        endpoints[endpoint.name] = endpoint
        return endpoint

    def _check_free(
        self, endpoints: Mapping[EndpointName, Endpoint], name: EndpointName
    ) -> None:
        if name in endpoints:
            raise ValueError(
                f"Node '{self.full_name}' already has an endpoint named '{name}' "
                "in that role"
            )

    def add_publisher(
        self,
        topic: TopicDescriptor,
        message_type: MessageType,
        qos: QoSProfile = DEFAULT_QOS,
        pass_by: PassBy = PassBy.SHARED,
        size: ByteSize = 0,
    ) -> PublisherEndpoint:
        self._check_free(self.publishers, topic.name)
        publisher = PublisherEndpoint(
            self,
            topic,
            message_type,
            self._tracker(topic.name),
            qos,
            pass_by=pass_by,
            size=size,
        )
        publisher.attach(self.transport.create_publisher(topic, qos))
        self._insert(self.publishers, publisher)
        logger.info("Publisher to {} created", topic.name)
        return publisher

    def add_periodic_publisher(
        self,
        topic: TopicDescriptor,
        message_type: MessageType,
        period: DurationSeconds,
        pass_by: PassBy = PassBy.SHARED,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
    ) -> PublisherEndpoint:
        publisher = self.add_publisher(topic, message_type, qos, pass_by, size)
        publisher.period = period
        self.add_timer(period, publisher.publish, name=f"{self.full_name}:pub:{topic.name}")
        return publisher

    def add_subscriber(
        self,
        topic: TopicDescriptor,
        message_type: MessageType,
        pass_by: PassBy = PassBy.SHARED,
        tracking_options: TrackingOptions | None = None,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> SubscriberEndpoint:
        self._check_free(self.subscribers, topic.name)
        subscriber = SubscriberEndpoint(
            self,
            topic,
            message_type,
            self._tracker(topic.name, tracking_options),
            qos,
            pass_by=pass_by,
        )
        self._insert(self.subscribers, subscriber)
        try:
            subscriber.attach(
                self.transport.create_subscription(
                    topic, qos, subscriber.on_message, pass_by
                )
            )
        except Exception:
            del self.subscribers[topic.name]
            raise
        logger.info("Subscriber to {} created", topic.name)
        return subscriber

    def add_server(
        self,
        service: ServiceDescriptor,
        service_type: ServiceType,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> ServerEndpoint:
        self._check_free(self.servers, service.name)
        server = ServerEndpoint(
            self, service, service_type, self._tracker(service.name), qos
        )
        server.attach(
            self.transport.create_server(service, qos, server.handle_request)
        )
        self._insert(self.servers, server)
        logger.info("Server to {} created", service.name)
        return server

    def add_client(
        self,
        service: ServiceDescriptor,
        service_type: ServiceType,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
        period: DurationSeconds | None = None,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
    ) -> ClientEndpoint:
        self._check_free(self.clients, service.name)
        client = ClientEndpoint(
            self,
            service,
            service_type,
            self._tracker(service.name),
            qos,
            size=size,
            period=period,
            service_timeout=service_timeout,
        )
        client.attach(self.transport.create_client(service, qos))
        self._insert(self.clients, client)
        logger.info("Client to {} created", service.name)
        return client

    def add_periodic_client(
        self,
        service: ServiceDescriptor,
        service_type: ServiceType,
        period: DurationSeconds,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
    ) -> ClientEndpoint:
        client = self.add_client(
            service, service_type, qos, size, period, service_timeout
        )
        self.add_timer(period, client.request, name=f"{self.full_name}:client:{service.name}")
        return client

    def add_timer(
        self,
        period: DurationSeconds,
        callback: TimerCallback,
        name: str | None = None,
    ) -> PeriodicTimer:
        timer = self.scheduler.schedule_periodic(period, callback, name)
        self.timers.append(timer)
        return timer

    def endpoints(self) -> Iterator[Endpoint]:
        yield from self.publishers.values()
        yield from self.subscribers.values()
        yield from self.clients.values()
        yield from self.servers.values()

    def all_trackers(self) -> Trackers:
        """Trackers measuring delivery: subscribers and clients."""
        trackers: Trackers = [(name, sub.tracker) for name, sub in self.subscribers.items()]
        trackers.extend((name, client.tracker) for name, client in self.clients.items())
        return trackers

    def pub_trackers(self) -> Trackers:
        return [(name, pub.tracker) for name, pub in self.publishers.items()]

    def get_published_topics(self) -> list[TopicName]:
        return list(self.publishers)

    def destroy(self) -> None:
        """Stop the node's timers and release all of its transport entities."""
        for timer in self.timers:
            self.scheduler.cancel(timer)
        self.timers.clear()
        for endpoint in list(self.endpoints()):
            endpoint.destroy()
        self.publishers.clear()
        self.subscribers.clear()
        self.clients.clear()
        self.servers.clear()
        logger.debug("Node {} destroyed", self.full_name)

    def __repr__(self) -> str:
        return (
            f"PerformanceNode(name={self.full_name!r}, executor_id={self.executor_id}, "
            f"publishers={len(self.publishers)}, subscribers={len(self.subscribers)}, "
            f"clients={len(self.clients)}, servers={len(self.servers)})"
        )
