"""
mpbench Core Module

Statistics, type registries, topology construction, nodes and endpoints,
plus the in-process transport and asyncio scheduler that run them.
"""

from .config import BenchmarkSettings
from .events import (
    Event,
    EventCode,
    EventsLogger,
    EventSink,
    FanOutEventSink,
    MemoryEventSink,
)
from .model import (
    DEFAULT_QOS,
    BenchmarkError,
    ConfigParseError,
    Durability,
    DuplicateTypeError,
    EndpointRole,
    Message,
    PassBy,
    PerformanceHeader,
    QoSProfile,
    Reliability,
    ServiceDescriptor,
    ServiceRequest,
    ServiceResponse,
    ServiceUnavailableError,
    TopicDescriptor,
    UnknownTypeError,
)
from .node import PerformanceNode
from .registry import (
    EndpointTypeRegistry,
    MessageTypeBuilder,
    ServiceTypeBuilder,
    create_message_registry,
    create_service_registry,
    default_message_registry,
    default_service_registry,
)
from .reporting import EndpointReport, RunSummary, collect_reports, total_report
from .scheduler import AsyncioScheduler, ExecutorPool
from .system import BenchmarkSystem
from .topology import TopologyBuilder, parse_topology
from .tracker import Stat, Tracker, TrackingOptions
from .transport import InProcessTransport, MiddlewareTransport, TransportError

__all__ = [
    # Config
    "BenchmarkSettings",
    # Events
    "Event",
    "EventCode",
    "EventSink",
    "EventsLogger",
    "FanOutEventSink",
    "MemoryEventSink",
    # Model
    "DEFAULT_QOS",
    "Durability",
    "EndpointRole",
    "Message",
    "PassBy",
    "PerformanceHeader",
    "QoSProfile",
    "Reliability",
    "ServiceDescriptor",
    "ServiceRequest",
    "ServiceResponse",
    "TopicDescriptor",
    # Model - Exceptions
    "BenchmarkError",
    "ConfigParseError",
    "DuplicateTypeError",
    "ServiceUnavailableError",
    "UnknownTypeError",
    # Node
    "PerformanceNode",
    # Registry
    "EndpointTypeRegistry",
    "MessageTypeBuilder",
    "ServiceTypeBuilder",
    "create_message_registry",
    "create_service_registry",
    "default_message_registry",
    "default_service_registry",
    # Reporting
    "EndpointReport",
    "RunSummary",
    "collect_reports",
    "total_report",
    # Runtime
    "AsyncioScheduler",
    "BenchmarkSystem",
    "ExecutorPool",
    "TopologyBuilder",
    "parse_topology",
    # Statistics
    "Stat",
    "Tracker",
    "TrackingOptions",
    # Transport
    "InProcessTransport",
    "MiddlewareTransport",
    "TransportError",
]
