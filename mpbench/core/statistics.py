"""
Statistics dataclasses for mpbench.

Well-typed, immutable snapshots returned by the statistics producers in the
harness instead of loose ``dict[str, Any]`` values.
"""

from dataclasses import dataclass

from mpbench.datastructures.type_aliases import (
    ByteSize,
    FrequencyHz,
    LatencyMicroseconds,
    MessageCount,
    Percentage,
    Timestamp,
)


@dataclass(frozen=True, slots=True)
class TrackerSnapshot:
    """Point-in-time view of one endpoint's tracker.

    Latency values are microseconds; ``stdev`` is the population standard
    deviation of the recorded samples.
    """

    count: MessageCount
    mean: LatencyMicroseconds
    stdev: LatencyMicroseconds
    min: LatencyMicroseconds
    max: LatencyMicroseconds
    lost_count: MessageCount
    frequency: FrequencyHz
    size: ByteSize
    received_count: MessageCount = 0
    late_count: MessageCount = 0
    too_late_count: MessageCount = 0
    out_of_order_count: MessageCount = 0


@dataclass(frozen=True, slots=True)
class ResourceUsageSample:
    """Process resource usage at one instant."""

    timestamp: Timestamp
    elapsed_seconds: float
    cpu_percent: Percentage
    rss_bytes: ByteSize
    vms_bytes: ByteSize
    num_threads: int


@dataclass(frozen=True, slots=True)
class ResourceUsageStatistics:
    """Aggregate of all resource samples taken during a run."""

    samples: int
    mean_cpu_percent: Percentage
    max_cpu_percent: Percentage
    max_rss_bytes: ByteSize
    final_rss_bytes: ByteSize
