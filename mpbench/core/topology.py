"""
Topology construction.

A topology document is a list of node descriptions (or an object with a
``nodes`` list)::

    {
      "nodes": [
        {
          "name": "montreal",
          "executor_id": 0,
          "publishers": [
            {"name": "amazon", "type": "stamped12_float32", "rate_hz": 100}
          ],
          "subscribers": [{"name": "nile", "type": "stamped4_int32"}],
          "clients": [{"name": "lyon", "type": "stamped10b", "period_us": 20000}],
          "servers": [{"name": "paris", "type": "stamped10b"}]
        }
      ]
    }

The long-form keys of older topology files (``node_name``,
``topic_name``, ``msg_type``, ``period_ms``, ``freq_hz``, ``msg_size``, ...)
are accepted as aliases.

Building is all-or-nothing: the whole document is parsed and every type is
resolved before the first node is created, and if construction still fails
every node built so far is destroyed before the error propagates.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from mpbench.datastructures.type_aliases import (
    ByteSize,
    DurationSeconds,
    ExecutorId,
    FrequencyHz,
    NodeName,
    NodeNamespace,
    ServiceName,
    TopicName,
    TypeName,
)

from .endpoints import DEFAULT_SERVICE_TIMEOUT
from .events import EventSink
from .model import (
    DEFAULT_QOS,
    ConfigParseError,
    EndpointRole,
    PassBy,
    QoSProfile,
    UnknownTypeError,
)
from .node import PerformanceNode
from .registry import (
    MessageTypeRegistry,
    ServiceTypeRegistry,
    default_message_registry,
    default_service_registry,
)
from .scheduler import Scheduler
from .tracker import TrackingOptions
from .transport.interfaces import MiddlewareTransport, TransportError

DEFAULT_PERIOD: DurationSeconds = 0.010

ROLE_LISTS: dict[EndpointRole, str] = {
    EndpointRole.PUBLISHER: "publishers",
    EndpointRole.SUBSCRIBER: "subscribers",
    EndpointRole.CLIENT: "clients",
    EndpointRole.SERVER: "servers",
}
PERIODIC_ROLES = frozenset({EndpointRole.PUBLISHER, EndpointRole.CLIENT})
MESSAGE_ROLES = frozenset({EndpointRole.PUBLISHER, EndpointRole.SUBSCRIBER})

type SchedulerFactory = Callable[[ExecutorId], Scheduler]


def id_to_node_name(node_id: int) -> NodeName:
    return f"node_{node_id}"


def id_to_topic_name(topic_id: int) -> TopicName:
    return f"topic_{topic_id}"


def id_to_service_name(service_id: int) -> ServiceName:
    return f"service_{service_id}"


def frequency_to_period(frequency: FrequencyHz) -> DurationSeconds:
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return 1.0 / frequency


@dataclass(frozen=True, slots=True)
class EndpointSpec:
    """One parsed endpoint entry with every default applied."""

    role: EndpointRole
    name: str
    type_name: TypeName
    period: DurationSeconds | None = None
    size: ByteSize = 0
    qos: QoSProfile = DEFAULT_QOS
    pass_by: PassBy = PassBy.SHARED


@dataclass(frozen=True, slots=True)
class NodeSpec:
    """One parsed node entry."""

    name: NodeName
    namespace: NodeNamespace = ""
    executor_id: ExecutorId = 0
    endpoints: tuple[EndpointSpec, ...] = field(default_factory=tuple)


def _first(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def _parse_positive(value: Any, what: str, node: str, endpoint: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigParseError(f"'{what}' must be a number", node=node, endpoint=endpoint)
    if value <= 0:
        raise ConfigParseError(f"'{what}' must be positive", node=node, endpoint=endpoint)
    return float(value)


def _parse_period(entry: Mapping[str, Any], node: str, endpoint: str) -> DurationSeconds:
    given = {
        key: entry[key]
        for key in ("rate_hz", "freq_hz", "period_us", "period_ms")
        if key in entry
    }
    if not given:
        return DEFAULT_PERIOD
    if len(given) > 1:
        raise ConfigParseError(
            f"Conflicting rate/period fields {sorted(given)}", node=node, endpoint=endpoint
        )

    key, value = next(iter(given.items()))
    number = _parse_positive(value, key, node, endpoint)
    if key in ("rate_hz", "freq_hz"):
        return 1.0 / number
    if key == "period_us":
        return number / 1_000_000.0
    return number / 1_000.0


def _parse_endpoint(
    role: EndpointRole, entry: Any, node: str, index: int
) -> EndpointSpec:
    if not isinstance(entry, Mapping):
        raise ConfigParseError(
            f"{role} entry #{index} must be an object", node=node
        )

    name = _first(entry, "name", "topic_name", "service_name")
    if not isinstance(name, str) or not name:
        raise ConfigParseError(f"{role} entry #{index} is missing its name", node=node)

    type_name = _first(entry, "type", "msg_type", "srv_type")
    if not isinstance(type_name, str) or not type_name:
        raise ConfigParseError(
            f"{role} entry is missing its type", node=node, endpoint=name
        )

    size = _first(entry, "size", "msg_size")
    if size is None:
        size = 0
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ConfigParseError(
            "'size' must be a non-negative integer", node=node, endpoint=name
        )

    qos_entry = entry.get("qos")
    try:
        if isinstance(qos_entry, Mapping):
            qos = QoSProfile.from_dict(qos_entry)
        elif qos_entry is not None:
            raise ValueError("'qos' must be an object")
        elif any(key.startswith("qos_") for key in entry):
            qos = QoSProfile.from_dict(entry)
        else:
            qos = DEFAULT_QOS
    except (TypeError, ValueError) as e:
        raise ConfigParseError(
            f"Invalid qos: {e}", node=node, endpoint=name, type_name=type_name
        ) from e

    pass_by_value = _first(entry, "pass_by", "msg_pass_by")
    try:
        pass_by = PassBy.parse(pass_by_value) if pass_by_value is not None else PassBy.SHARED
    except (AttributeError, ValueError) as e:
        raise ConfigParseError(
            f"Invalid pass_by {pass_by_value!r}", node=node, endpoint=name
        ) from e

    period = _parse_period(entry, node, name) if role in PERIODIC_ROLES else None
    return EndpointSpec(
        role=role,
        name=name,
        type_name=type_name,
        period=period,
        size=size,
        qos=qos,
        pass_by=pass_by,
    )


def _parse_node(entry: Any, index: int) -> NodeSpec:
    if not isinstance(entry, Mapping):
        raise ConfigParseError(f"Node entry #{index} must be an object")

    name = _first(entry, "name", "node_name")
    if not isinstance(name, str) or not name:
        raise ConfigParseError(f"Node entry #{index} is missing its name")

    namespace = _first(entry, "namespace", "node_namespace") or ""
    if not isinstance(namespace, str):
        raise ConfigParseError("'namespace' must be a string", node=name)

    executor_id = entry.get("executor_id", 0)
    if isinstance(executor_id, bool) or not isinstance(executor_id, int) or executor_id < 0:
        raise ConfigParseError("'executor_id' must be a non-negative integer", node=name)

    if not any(key in entry for key in ROLE_LISTS.values()):
        raise ConfigParseError(
            "Node declares no publishers, subscribers, clients or servers", node=name
        )

    endpoints: list[EndpointSpec] = []
    for role, key in ROLE_LISTS.items():
        entries = entry.get(key, [])
        if not isinstance(entries, list):
            raise ConfigParseError(f"'{key}' must be a list", node=name)
        seen: set[str] = set()
        for position, endpoint_entry in enumerate(entries):
            spec = _parse_endpoint(role, endpoint_entry, name, position)
            if spec.name in seen:
                raise ConfigParseError(
                    f"Duplicate {role} name", node=name, endpoint=spec.name
                )
            seen.add(spec.name)
            endpoints.append(spec)

    return NodeSpec(
        name=name,
        namespace=namespace,
        executor_id=executor_id,
        endpoints=tuple(endpoints),
    )


def parse_topology(document: Any) -> list[NodeSpec]:
    """Parse a topology document into node specs without side effects.

    Raises:
        ConfigParseError: If the document or any entry is malformed
    """
    if isinstance(document, Mapping):
        if "nodes" not in document:
            raise ConfigParseError("Topology document has no 'nodes' list")
        document = document["nodes"]
    if not isinstance(document, Sequence) or isinstance(document, str | bytes):
        raise ConfigParseError(
            "Topology document must be a list of nodes or an object with a 'nodes' list"
        )

    specs = [_parse_node(entry, index) for index, entry in enumerate(document)]

    seen: set[tuple[str, str]] = set()
    for spec in specs:
        key = (spec.namespace, spec.name)
        if key in seen:
            raise ConfigParseError("Duplicate node name", node=spec.name)
        seen.add(key)
    return specs


class TopologyBuilder:
    """Builds nodes and endpoints from documents, strings or id ranges."""

    def __init__(
        self,
        transport: MiddlewareTransport,
        scheduler_factory: SchedulerFactory,
        *,
        message_registry: MessageTypeRegistry | None = None,
        service_registry: ServiceTypeRegistry | None = None,
        events: EventSink | None = None,
        tracking_options: TrackingOptions | None = None,
        service_timeout: DurationSeconds = DEFAULT_SERVICE_TIMEOUT,
        namespace: NodeNamespace = "",
    ) -> None:
        self.transport = transport
        self.scheduler_factory = scheduler_factory
        self.message_registry = message_registry or default_message_registry()
        self.service_registry = service_registry or default_service_registry()
        self.events = events
        self.tracking_options = tracking_options or TrackingOptions()
        self.service_timeout = service_timeout
        self.namespace = namespace

    # Documents

    def parse(self, document: Any) -> list[NodeSpec]:
        """Parse ``document`` and resolve every type it names."""
        specs = parse_topology(document)
        for spec in specs:
            for endpoint in spec.endpoints:
                self._resolve(endpoint.role, endpoint.type_name, spec.name, endpoint.name)
        return specs

    def build(self, document: Any) -> list[PerformanceNode]:
        """Build every node described by ``document``.

        Raises:
            ConfigParseError: If the document is malformed or cannot be wired
            UnknownTypeError: If a message or service type cannot be resolved
        """
        specs = self.parse(document)
        nodes: list[PerformanceNode] = []
        try:
            for spec in specs:
                nodes.append(self.build_node(spec))
        except Exception:
            logger.error(f"Topology build failed, rolling back {len(nodes)} nodes")
            for node in nodes:
                node.destroy()
            raise

        logger.info(
            f"Built topology: {len(nodes)} nodes, "
            f"{sum(len(spec.endpoints) for spec in specs)} endpoints"
        )
        return nodes

    def build_from_path(self, path: str | Path) -> list[PerformanceNode]:
        path = Path(path)
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigParseError(f"Topology file {path} is not valid JSON: {e}") from e
        return self.build(document)

    def build_node(self, spec: NodeSpec) -> PerformanceNode:
        namespace = spec.namespace or self.namespace
        node = self.create_node(spec.name, namespace, spec.executor_id)
        try:
            for endpoint in spec.endpoints:
                self._add_endpoint(node, endpoint)
        except (TransportError, ValueError) as e:
            node.destroy()
            raise ConfigParseError(str(e), node=spec.name) from e
        except Exception:
            node.destroy()
            raise
        return node

    def _resolve(
        self, role: EndpointRole, type_name: TypeName, node: str, endpoint: str
    ) -> Any:
        registry = (
            self.message_registry if role in MESSAGE_ROLES else self.service_registry
        )
        try:
            return registry.resolve(type_name)
        except UnknownTypeError as e:
            raise UnknownTypeError(
                type_name, e.kind, node=node, endpoint=endpoint
            ) from e

    def _add_endpoint(self, node: PerformanceNode, spec: EndpointSpec) -> None:
        builder = self._resolve(spec.role, spec.type_name, node.name, spec.name)
        match spec.role:
            case EndpointRole.PUBLISHER:
                builder.add_periodic_publisher(
                    node,
                    spec.name,
                    spec.period or DEFAULT_PERIOD,
                    spec.pass_by,
                    spec.qos,
                    spec.size,
                )
            case EndpointRole.SUBSCRIBER:
                builder.add_subscriber(
                    node, spec.name, spec.pass_by, self.tracking_options, spec.qos
                )
            case EndpointRole.CLIENT:
                builder.add_periodic_client(
                    node,
                    spec.name,
                    spec.period or DEFAULT_PERIOD,
                    spec.qos,
                    spec.size,
                    self.service_timeout,
                )
            case EndpointRole.SERVER:
                builder.add_server(node, spec.name, spec.qos)

    # Nodes and string-typed endpoints

    def create_node(
        self,
        name: NodeName,
        namespace: NodeNamespace = "",
        executor_id: ExecutorId = 0,
    ) -> PerformanceNode:
        return PerformanceNode(
            name,
            self.transport,
            self.scheduler_factory(executor_id),
            namespace=namespace or self.namespace,
            executor_id=executor_id,
            events=self.events,
        )

    def add_periodic_publisher_from_strings(
        self,
        node: PerformanceNode,
        msg_type: TypeName,
        topic_name: TopicName,
        pass_by: PassBy = PassBy.SHARED,
        qos: QoSProfile = DEFAULT_QOS,
        period: DurationSeconds = DEFAULT_PERIOD,
        size: ByteSize = 0,
    ) -> None:
        builder = self._resolve(EndpointRole.PUBLISHER, msg_type, node.name, topic_name)
        builder.add_periodic_publisher(node, topic_name, period, pass_by, qos, size)

    def add_subscriber_from_strings(
        self,
        node: PerformanceNode,
        msg_type: TypeName,
        topic_name: TopicName,
        tracking_options: TrackingOptions | None = None,
        pass_by: PassBy = PassBy.SHARED,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> None:
        builder = self._resolve(EndpointRole.SUBSCRIBER, msg_type, node.name, topic_name)
        builder.add_subscriber(
            node, topic_name, pass_by, tracking_options or self.tracking_options, qos
        )

    def add_periodic_client_from_strings(
        self,
        node: PerformanceNode,
        srv_type: TypeName,
        service_name: ServiceName,
        qos: QoSProfile = DEFAULT_QOS,
        period: DurationSeconds = DEFAULT_PERIOD,
        size: ByteSize = 0,
    ) -> None:
        builder = self._resolve(EndpointRole.CLIENT, srv_type, node.name, service_name)
        builder.add_periodic_client(
            node, service_name, period, qos, size, self.service_timeout
        )

    def add_server_from_strings(
        self,
        node: PerformanceNode,
        srv_type: TypeName,
        service_name: ServiceName,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> None:
        builder = self._resolve(EndpointRole.SERVER, srv_type, node.name, service_name)
        builder.add_server(node, service_name, qos)

    # Id ranges. Node names are "node_<id>" for every id in [start_id, end_id];
    # callers must keep the ranges of different calls disjoint.

    def _node_ids(self, start_id: int, end_id: int) -> range:
        if end_id < start_id:
            raise ValueError(f"Empty node id range [{start_id}, {end_id}]")
        return range(start_id, end_id + 1)

    def _build_range(
        self,
        start_id: int,
        end_id: int,
        populate: Callable[[PerformanceNode, int], None],
    ) -> list[PerformanceNode]:
        """Create ``node_<id>`` for each id and let ``populate`` add its endpoints.

        All-or-nothing like ``build``: on failure every node of the range,
        including the one being populated, is destroyed.
        """
        nodes: list[PerformanceNode] = []
        try:
            for node_id in self._node_ids(start_id, end_id):
                node = self.create_node(id_to_node_name(node_id))
                nodes.append(node)
                try:
                    populate(node, node_id)
                except (TransportError, ValueError) as e:
                    raise ConfigParseError(str(e), node=node.name) from e
        except Exception:
            if nodes:
                logger.error(
                    f"Building nodes {start_id}..{end_id} failed, "
                    f"rolling back {len(nodes)} nodes"
                )
            for node in nodes:
                node.destroy()
            raise
        return nodes

    def create_periodic_publisher_nodes(
        self,
        start_id: int,
        end_id: int,
        frequency: FrequencyHz,
        msg_type: TypeName,
        pass_by: PassBy = PassBy.SHARED,
        msg_size: ByteSize = 0,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> list[PerformanceNode]:
        """Each node ``node_<id>`` publishes on ``topic_<id>``."""
        period = frequency_to_period(frequency)

        def populate(node: PerformanceNode, node_id: int) -> None:
            self.add_periodic_publisher_from_strings(
                node, msg_type, id_to_topic_name(node_id), pass_by, qos, period, msg_size
            )

        return self._build_range(start_id, end_id, populate)

    def create_subscriber_nodes(
        self,
        start_id: int,
        end_id: int,
        n_publishers: int,
        msg_type: TypeName,
        pass_by: PassBy = PassBy.SHARED,
        tracking_options: TrackingOptions | None = None,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> list[PerformanceNode]:
        """Each node subscribes to ``topic_0`` .. ``topic_<n_publishers - 1>``."""

        def populate(node: PerformanceNode, node_id: int) -> None:
            for topic_id in range(n_publishers):
                self.add_subscriber_from_strings(
                    node, msg_type, id_to_topic_name(topic_id), tracking_options, pass_by, qos
                )

        return self._build_range(start_id, end_id, populate)

    def create_periodic_client_nodes(
        self,
        start_id: int,
        end_id: int,
        n_services: int,
        frequency: FrequencyHz,
        srv_type: TypeName,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> list[PerformanceNode]:
        """Each node calls ``service_0`` .. ``service_<n_services - 1>``."""
        period = frequency_to_period(frequency)

        def populate(node: PerformanceNode, node_id: int) -> None:
            for service_id in range(n_services):
                self.add_periodic_client_from_strings(
                    node, srv_type, id_to_service_name(service_id), qos, period
                )

        return self._build_range(start_id, end_id, populate)

    def create_server_nodes(
        self,
        start_id: int,
        end_id: int,
        srv_type: TypeName,
        qos: QoSProfile = DEFAULT_QOS,
    ) -> list[PerformanceNode]:
        """Each node ``node_<id>`` serves ``service_<id>``."""

        def populate(node: PerformanceNode, node_id: int) -> None:
            self.add_server_from_strings(node, srv_type, id_to_service_name(node_id), qos)

        return self._build_range(start_id, end_id, populate)
