"""
In-process loopback transport.

Delivers messages between endpoints living in the same Python process. When
an asyncio loop is running, deliveries and service calls are scheduled with
``loop.call_soon`` so callbacks run on the loop like they would for a real
middleware; without a running loop, messages are delivered synchronously.

QoS handling:
- TRANSIENT_LOCAL topics keep the last ``history_depth`` messages and replay
  them to late-joining TRANSIENT_LOCAL subscriptions
- an optional ``drop_filter`` emulates a lossy link; RELIABLE subscriptions
  are immune to it, BEST_EFFORT subscriptions lose the dropped messages
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from loguru import logger

from mpbench.datastructures.type_aliases import TopicName

from ..model import (
    Durability,
    EndpointRole,
    Message,
    PassBy,
    QoSProfile,
    Reliability,
    ServiceDescriptor,
    ServiceRequest,
    ServiceResponse,
    TopicDescriptor,
)
from .interfaces import (
    MessageCallback,
    MiddlewareTransport,
    ServiceHandler,
    TransportError,
    TransportHandle,
)

type DropFilter = Callable[[TopicName, Message], bool]

SERVICE_POLL_INTERVAL = 0.01


def copy_message(message: Message) -> Message:
    """Return a message that shares no mutable state with ``message``."""
    return Message(header=replace(message.header), data=copy.copy(message.data))


@dataclass(slots=True)
class _Subscription:
    handle: TransportHandle
    callback: MessageCallback
    pass_by: PassBy


@dataclass(slots=True)
class _TopicState:
    type_name: str
    publishers: set[int] = field(default_factory=set)
    subscriptions: dict[int, _Subscription] = field(default_factory=dict)
    history: deque[Message] | None = None


@dataclass(slots=True)
class _ServiceState:
    type_name: str
    server: TransportHandle | None = None
    handler: ServiceHandler | None = None
    clients: set[int] = field(default_factory=set)


class InProcessTransport(MiddlewareTransport):
    """Loopback topic/service bus for single-process benchmarks."""

    def __init__(self, drop_filter: DropFilter | None = None) -> None:
        self.drop_filter = drop_filter
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._handles: dict[int, TransportHandle] = {}
        self._topics: dict[TopicName, _TopicState] = {}
        self._services: dict[str, _ServiceState] = {}
        self.published_count = 0
        self.dropped_count = 0

    def _new_handle(
        self, role: EndpointRole, name: str, type_name: str, qos: QoSProfile
    ) -> TransportHandle:
        handle = TransportHandle(
            handle_id=next(self._ids),
            role=role,
            name=name,
            type_name=type_name,
            qos=qos,
        )
        self._handles[handle.handle_id] = handle
        return handle

    def _topic(self, topic: TopicDescriptor) -> _TopicState:
        state = self._topics.get(topic.name)
        if state is None:
            state = _TopicState(type_name=topic.type_name)
            self._topics[topic.name] = state
        elif state.type_name != topic.type_name:
            raise TransportError(
                f"Topic '{topic.name}' already carries type '{state.type_name}', "
                f"cannot use it with '{topic.type_name}'"
            )
        return state

    def _service(self, service: ServiceDescriptor) -> _ServiceState:
        state = self._services.get(service.name)
        if state is None:
            state = _ServiceState(type_name=service.type_name)
            self._services[service.name] = state
        elif state.type_name != service.type_name:
            raise TransportError(
                f"Service '{service.name}' already carries type '{state.type_name}', "
                f"cannot use it with '{service.type_name}'"
            )
        return state

    def create_publisher(
        self, topic: TopicDescriptor, qos: QoSProfile
    ) -> TransportHandle:
        with self._lock:
            state = self._topic(topic)
            handle = self._new_handle(
                EndpointRole.PUBLISHER, topic.name, topic.type_name, qos
            )
            state.publishers.add(handle.handle_id)
            if qos.durability is Durability.TRANSIENT_LOCAL and state.history is None:
                state.history = deque(maxlen=qos.history_depth)
            return handle

    def create_subscription(
        self,
        topic: TopicDescriptor,
        qos: QoSProfile,
        callback: MessageCallback,
        pass_by: PassBy = PassBy.SHARED,
    ) -> TransportHandle:
        with self._lock:
            state = self._topic(topic)
            handle = self._new_handle(
                EndpointRole.SUBSCRIBER, topic.name, topic.type_name, qos
            )
            subscription = _Subscription(handle, callback, pass_by)
            state.subscriptions[handle.handle_id] = subscription
            replay = (
                list(state.history)[-qos.history_depth :]
                if state.history and qos.durability is Durability.TRANSIENT_LOCAL
                else []
            )

        for message in replay:
            self._deliver(subscription, copy_message(message))
        return handle

    def create_client(
        self, service: ServiceDescriptor, qos: QoSProfile
    ) -> TransportHandle:
        with self._lock:
            state = self._service(service)
            handle = self._new_handle(
                EndpointRole.CLIENT, service.name, service.type_name, qos
            )
            state.clients.add(handle.handle_id)
            return handle

    def create_server(
        self,
        service: ServiceDescriptor,
        qos: QoSProfile,
        handler: ServiceHandler,
    ) -> TransportHandle:
        with self._lock:
            state = self._service(service)
            if state.server is not None:
                raise TransportError(f"Service '{service.name}' already has a server")
            handle = self._new_handle(
                EndpointRole.SERVER, service.name, service.type_name, qos
            )
            state.server = handle
            state.handler = handler
            return handle

    def _live(self, handle: TransportHandle, role: EndpointRole) -> None:
        if handle.role is not role or handle.handle_id not in self._handles:
            raise TransportError(f"Handle {handle.handle_id} is not a live {role}")

    def publish(
        self, handle: TransportHandle, message: Message, pass_by: PassBy
    ) -> None:
        with self._lock:
            self._live(handle, EndpointRole.PUBLISHER)
            state = self._topics[handle.name]
            subscriptions = list(state.subscriptions.values())
            if state.history is not None:
                state.history.append(copy_message(message))
            self.published_count += 1

        lossy = self.drop_filter is not None and self.drop_filter(handle.name, message)
        # ownership of a unique message can go to one receiver without a copy
        owned = pass_by is PassBy.UNIQUE and all(
            subscription.pass_by is PassBy.UNIQUE for subscription in subscriptions
        )
        for subscription in subscriptions:
            if lossy and subscription.handle.qos.reliability is Reliability.BEST_EFFORT:
                self.dropped_count += 1
                continue
            if subscription.pass_by is PassBy.UNIQUE:
                if owned:
                    delivered = message
                    owned = False
                else:
                    delivered = copy_message(message)
            else:
                delivered = message
            self._deliver(subscription, delivered)

    def _deliver(self, subscription: _Subscription, message: Message) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._invoke(subscription, message)
            return
        loop.call_soon(self._invoke, subscription, message)

    def _invoke(self, subscription: _Subscription, message: Message) -> None:
        # the subscription may have been destroyed while the delivery was queued
        if subscription.handle.handle_id not in self._handles:
            return
        try:
            subscription.callback(message)
        except Exception as e:
            logger.error(
                "Subscription callback on '{}' failed: {}", subscription.handle.name, e
            )

    def send_request(
        self, handle: TransportHandle, request: ServiceRequest
    ) -> asyncio.Future[ServiceResponse]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ServiceResponse] = loop.create_future()
        with self._lock:
            self._live(handle, EndpointRole.CLIENT)
            state = self._services[handle.name]
            handler = state.handler

        if handler is None:
            future.set_exception(
                TransportError(f"Service '{handle.name}' has no server")
            )
            return future

        def _serve() -> None:
            if future.cancelled():
                return
            try:
                response = handler(request)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(response)

        loop.call_soon(_serve)
        return future

    def service_is_ready(self, handle: TransportHandle) -> bool:
        with self._lock:
            state = self._services.get(handle.name)
            return state is not None and state.server is not None

    async def wait_for_service(self, handle: TransportHandle, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.service_is_ready(handle):
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(SERVICE_POLL_INTERVAL, remaining))
        return True

    def destroy(self, handle: TransportHandle) -> None:
        with self._lock:
            if self._handles.pop(handle.handle_id, None) is None:
                return
            if handle.role in (EndpointRole.PUBLISHER, EndpointRole.SUBSCRIBER):
                topic = self._topics.get(handle.name)
                if topic is not None:
                    topic.publishers.discard(handle.handle_id)
                    topic.subscriptions.pop(handle.handle_id, None)
                    if not topic.publishers and not topic.subscriptions:
                        del self._topics[handle.name]
            else:
                service = self._services.get(handle.name)
                if service is not None:
                    service.clients.discard(handle.handle_id)
                    if service.server == handle:
                        service.server = None
                        service.handler = None
                    if service.server is None and not service.clients:
                        del self._services[handle.name]

    def close(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
        for handle in handles:
            self.destroy(handle)

    @property
    def live_handles(self) -> int:
        with self._lock:
            return len(self._handles)

    def topic_names(self) -> list[TopicName]:
        with self._lock:
            return sorted(self._topics)
