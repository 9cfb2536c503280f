"""
Semantic type aliases for mpbench datastructures.

These aliases make the benchmarking code self-documenting by replacing raw
types like str, int, float with names that say what the value measures.
"""

from typing import Any

# Time and timestamp types
type Timestamp = float
type TimestampNanoseconds = int
type DurationSeconds = float
type DurationMicroseconds = float
type LatencyMicroseconds = float
type FrequencyHz = float

# Naming types
type NodeName = str
type NodeNamespace = str
type TopicName = str
type ServiceName = str
type EndpointName = str
type TypeName = str
type ExecutorId = int
type PluginName = str

# Tracking and counting types
type TrackingNumber = int
type MessageCount = int
type ByteSize = int
type Percentage = float

# Configuration types
type JsonDict = dict[str, Any]
