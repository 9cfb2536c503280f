"""
Endpoint type registry.

Topologies name their message and service types with plain strings. The
registry maps each name to a builder that knows the concrete payload layout
and can attach a fully wired endpoint (transport entity + tracker) to a node,
so nothing else in the harness needs to know the concrete types.

Two registries are used: one for message types (publishers, subscribers) and
one for service types (clients, servers). Each holds at most one builder per
name; registering a name twice is a startup error.

Registries start with the built-in catalog and can grow through plugins:

- entry points in the ``mpbench.message_types`` / ``mpbench.service_types``
  groups, each loading to a callable ``hook(registry)``
- plugin module names; the module's ``register_message_types(registry)`` or
  ``register_service_types(registry)`` function is called

Discovery runs lazily, the first time a name cannot be resolved, and at most
once per missing name. Each plugin is loaded at most once per registry.
"""

from __future__ import annotations

import importlib
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Generic, TypeVar

from loguru import logger

from mpbench.datastructures.type_aliases import (
    ByteSize,
    DurationSeconds,
    PluginName,
    ServiceName,
    TopicName,
    TypeName,
)

from .endpoints import (
    DEFAULT_SERVICE_TIMEOUT,
    ClientEndpoint,
    PublisherEndpoint,
    ServerEndpoint,
    SubscriberEndpoint,
)
from .message_types import (
    BUILTIN_MESSAGE_TYPES,
    BUILTIN_SERVICE_TYPES,
    MessageType,
    ServiceType,
)
from .model import (
    DEFAULT_QOS,
    DuplicateTypeError,
    PassBy,
    QoSProfile,
    ServiceDescriptor,
    TopicDescriptor,
    UnknownTypeError,
)
from .node import PerformanceNode
from .tracker import TrackingOptions

MESSAGE_ENTRY_POINT_GROUP = "mpbench.message_types"
SERVICE_ENTRY_POINT_GROUP = "mpbench.service_types"

B = TypeVar("B")


@dataclass(frozen=True, slots=True)
class MessageTypeBuilder:
    """Builds publishers and subscribers carrying one message type."""

    message_type: MessageType

    @property
    def type_name(self) -> TypeName:
        return self.message_type.name

    def reported_size(self, size_hint: ByteSize) -> ByteSize:
        """Payload size a publisher of this type reports for ``size_hint``."""
        return self.message_type.create_payload(size_hint)[1]

    def topic(self, topic_name: TopicName) -> TopicDescriptor:
        return TopicDescriptor(name=topic_name, type_name=self.type_name)

    def add_publisher(
        self,
        node: PerformanceNode,
        topic_name: TopicName,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
        pass_by: PassBy = PassBy.SHARED,
    ) -> PublisherEndpoint:
        return node.add_publisher(
            self.topic(topic_name), self.message_type, qos, pass_by, size
        )

    def add_periodic_publisher(
        self,
        node: PerformanceNode,
        topic_name: TopicName,
        period: DurationSeconds,
        pass_by: PassBy = PassBy.SHARED,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
    ) -> PublisherEndpoint:
        return node.add_periodic_publisher(
            self.topic(topic_name), self.message_type, period, pass_by, qos, size
        )

    def add_subscriber(
        self,
        node: PerformanceNode,
        topic_name: TopicName,
        pass_by: PassBy = PassBy.SHARED,
        tracking_options: TrackingOptions | None = None,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> SubscriberEndpoint:
        return node.add_subscriber(
            self.topic(topic_name), self.message_type, pass_by, tracking_options, qos
        )


@dataclass(frozen=True, slots=True)
class ServiceTypeBuilder:
    """Builds clients and servers for one service type."""

    service_type: ServiceType

    @property
    def type_name(self) -> TypeName:
        return self.service_type.name

    def service(self, service_name: ServiceName) -> ServiceDescriptor:
        return ServiceDescriptor(name=service_name, type_name=self.type_name)

    def add_client(
        self,
        node: PerformanceNode,
        service_name: ServiceName,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
    ) -> ClientEndpoint:
        return node.add_client(
            self.service(service_name),
            self.service_type,
            qos,
            size,
            service_timeout=service_timeout,
        )

    def add_periodic_client(
        self,
        node: PerformanceNode,
        service_name: ServiceName,
        period: DurationSeconds,
        qos: QoSProfile = DEFAULT_QOS,
        size: ByteSize = 0,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
    ) -> ClientEndpoint:
        return node.add_periodic_client(
            self.service(service_name),
            self.service_type,
            period,
            qos,
            size,
            service_timeout,
        )

    def add_server(
        self,
        node: PerformanceNode,
        service_name: ServiceName,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> ServerEndpoint:
        return node.add_server(self.service(service_name), self.service_type, qos)


type PluginHook = Callable[[EndpointTypeRegistry], None]
type Plugin = PluginName | PluginHook


class EndpointTypeRegistry(Generic[B]):
    """Thread-safe catalog of type name -> builder."""

    def __init__(
        self,
        kind: str = "message",
        *,
        entry_point_group: str | None = None,
        plugins: Iterable[Plugin] = (),
    ) -> None:
        self.kind = kind
        self.entry_point_group = entry_point_group
        self._lock = threading.RLock()
        self._builders: dict[TypeName, B] = {}
        self._plugins: list[Plugin] = list(plugins)
        self._loaded_plugins: set[str] = set()
        self._discovery_attempted: set[TypeName] = set()

    def register(self, type_name: TypeName, builder: B) -> None:
        """Add a builder; a name can only ever be registered once."""
        with self._lock:
            if type_name in self._builders:
                raise DuplicateTypeError(type_name, self.kind)
            self._builders[type_name] = builder
        logger.debug(f"Registered {self.kind} type: {type_name}")

    def add_plugin(self, plugin: Plugin) -> None:
        """Queue a plugin for the next discovery pass."""
        with self._lock:
            self._plugins.append(plugin)

    def resolve(self, type_name: TypeName) -> B:
        """Return the builder for ``type_name``.

        Raises:
            UnknownTypeError: If neither the catalog nor plugin discovery
                provide the name
        """
        with self._lock:
            builder = self._builders.get(type_name)
            if builder is not None:
                return builder

            if type_name not in self._discovery_attempted:
                self._discovery_attempted.add(type_name)
                self.discover()
                builder = self._builders.get(type_name)
                if builder is not None:
                    logger.info(f"Resolved {self.kind} type {type_name} from plugins")
                    return builder

        raise UnknownTypeError(type_name, self.kind)

    def discover(self) -> int:
        """Load every plugin not loaded yet; return how many were loaded."""
        loaded = 0
        with self._lock:
            for key, hook in self._plugin_hooks():
                if key in self._loaded_plugins:
                    continue
                self._loaded_plugins.add(key)
                if hook is None:
                    continue
                try:
                    hook(self)
                except DuplicateTypeError:
                    raise
                except Exception as e:
                    logger.error(f"{self.kind.capitalize()} type plugin {key} failed: {e}")
                    continue
                loaded += 1
                logger.debug(f"Loaded {self.kind} type plugin {key}")
        return loaded

    def _plugin_hooks(self) -> Iterable[tuple[str, PluginHook | None]]:
        if self.entry_point_group:
            for entry_point in entry_points(group=self.entry_point_group):
                key = f"entry_point:{entry_point.name}"
                if key in self._loaded_plugins:
                    continue
                try:
                    hook = entry_point.load()
                except Exception as e:
                    logger.error(f"Cannot load entry point {entry_point.name}: {e}")
                    hook = None
                yield key, hook

        for plugin in self._plugins:
            if callable(plugin):
                name = getattr(plugin, "__qualname__", repr(plugin))
                yield f"callable:{name}:{id(plugin)}", plugin
                continue

            key = f"module:{plugin}"
            if key in self._loaded_plugins:
                continue
            try:
                module = importlib.import_module(plugin)
            except ImportError as e:
                logger.error(f"Cannot import plugin module {plugin}: {e}")
                yield key, None
                continue
            yield key, getattr(module, f"register_{self.kind}_types", None)

    def names(self) -> list[TypeName]:
        with self._lock:
            return sorted(self._builders)

    def builders(self) -> dict[TypeName, B]:
        with self._lock:
            return dict(self._builders)

    def __contains__(self, type_name: object) -> bool:
        with self._lock:
            return type_name in self._builders

    def __len__(self) -> int:
        with self._lock:
            return len(self._builders)


type MessageTypeRegistry = EndpointTypeRegistry[MessageTypeBuilder]
type ServiceTypeRegistry = EndpointTypeRegistry[ServiceTypeBuilder]


def register_builtin_message_types(registry: MessageTypeRegistry) -> None:
    for message_type in BUILTIN_MESSAGE_TYPES:
        registry.register(message_type.name, MessageTypeBuilder(message_type))


def register_builtin_service_types(registry: ServiceTypeRegistry) -> None:
    for service_type in BUILTIN_SERVICE_TYPES:
        registry.register(service_type.name, ServiceTypeBuilder(service_type))


def create_message_registry(plugins: Iterable[Plugin] = ()) -> MessageTypeRegistry:
    """A message registry holding the built-in catalog."""
    registry: MessageTypeRegistry = EndpointTypeRegistry(
        "message", entry_point_group=MESSAGE_ENTRY_POINT_GROUP, plugins=plugins
    )
    register_builtin_message_types(registry)
    return registry


def create_service_registry(plugins: Iterable[Plugin] = ()) -> ServiceTypeRegistry:
    """A service registry holding the built-in catalog."""
    registry: ServiceTypeRegistry = EndpointTypeRegistry(
        "service", entry_point_group=SERVICE_ENTRY_POINT_GROUP, plugins=plugins
    )
    register_builtin_service_types(registry)
    return registry


_message_registry: MessageTypeRegistry | None = None
_service_registry: ServiceTypeRegistry | None = None


def default_message_registry() -> MessageTypeRegistry:
    """Return the shared message type registry."""
    global _message_registry
    if _message_registry is None:
        _message_registry = create_message_registry()
    return _message_registry


def default_service_registry() -> ServiceTypeRegistry:
    """Return the shared service type registry."""
    global _service_registry
    if _service_registry is None:
        _service_registry = create_service_registry()
    return _service_registry
