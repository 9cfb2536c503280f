"""
Per-endpoint online statistics and sequence-gap detection.

Every endpoint owns one ``Tracker``. Publishers use it to stamp outgoing
messages with tracking numbers and to record how long publishing took;
subscribers, clients and servers feed every received header through
``Tracker.scan`` which:

- computes the latency of the sample from the header stamp
- detects gaps in the tracking numbers and counts them as lost messages
- flags duplicate / out-of-order arrivals
- classifies late and too-late messages against the publishing period
- folds the latency into running mean / variance / min / max

Statistics use Welford's single-pass algorithm so long runs do not lose
precision the way a naive sum-of-squares would.

Concurrency: a tracker has one writer (the callback bound to its endpoint)
and any number of readers taking snapshots. Updates and snapshots are
serialized by a per-tracker lock; tracking numbers come from an
``itertools.count`` whose ``next()`` is atomic, so the publish path never
blocks on it.
"""

from __future__ import annotations

import itertools
import math
import threading
from dataclasses import dataclass

from loguru import logger

from mpbench.datastructures.type_aliases import (
    ByteSize,
    EndpointName,
    FrequencyHz,
    LatencyMicroseconds,
    MessageCount,
    NodeName,
    TimestampNanoseconds,
    TrackingNumber,
)

from .events import Event, EventCode, EventSink
from .model import PerformanceHeader
from .statistics import TrackerSnapshot


@dataclass(slots=True)
class Stat:
    """Welford running mean / variance with min, max and last value."""

    n: int = 0
    mean: float = 0.0
    m2: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    last: float = 0.0

    def add_sample(self, value: float) -> None:
        self.n += 1
        delta = value - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (value - self.mean)
        if value < self.min:
            self.min = value
        if value > self.max:
            self.max = value
        self.last = value

    @property
    def variance(self) -> float:
        """Population variance."""
        if self.n == 0:
            return 0.0
        return self.m2 / self.n

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


@dataclass(frozen=True, slots=True)
class TrackingOptions:
    """Thresholds used to classify late and too-late messages.

    A message is late when its latency exceeds
    ``min(late_absolute_us, late_percentage% of the publishing period)`` and
    too late with the same rule on the ``too_late_*`` values. Classification
    only produces events and counters; it never alters the statistics.
    """

    is_enabled: bool = True
    late_percentage: int = 20
    late_absolute_us: int = 5_000
    too_late_percentage: int = 100
    too_late_absolute_us: int = 50_000

    def thresholds(self, frequency: FrequencyHz) -> tuple[float, float] | None:
        """Return (late, too_late) thresholds in microseconds, if applicable."""
        if not self.is_enabled or frequency <= 0:
            return None
        period_us = 1_000_000.0 / frequency
        late = min(float(self.late_absolute_us), self.late_percentage * period_us / 100)
        too_late = min(
            float(self.too_late_absolute_us),
            self.too_late_percentage * period_us / 100,
        )
        return late, too_late


class Tracker:
    """Online statistics and loss detection for a single endpoint."""

    def __init__(
        self,
        node_name: NodeName,
        endpoint_name: EndpointName,
        options: TrackingOptions | None = None,
    ) -> None:
        self.node_name = node_name
        self.endpoint_name = endpoint_name
        self.options = options or TrackingOptions()

        self._lock = threading.Lock()
        self._tracking_numbers = itertools.count()
        self._stat = Stat()
        self._expected_next: TrackingNumber = 0
        self._received = 0
        self._lost = 0
        self._late = 0
        self._too_late = 0
        self._out_of_order = 0
        self._frequency: FrequencyHz = 0.0
        self._size: ByteSize = 0

    @property
    def caller_name(self) -> str:
        return f"{self.endpoint_name}->{self.node_name}"

    def get_and_increment_tracking_number(self) -> TrackingNumber:
        return next(self._tracking_numbers)

    def set_frequency(self, frequency: FrequencyHz) -> None:
        with self._lock:
            self._frequency = frequency

    def set_size(self, size: ByteSize) -> None:
        with self._lock:
            self._size = size

    def record_latency(self, value: LatencyMicroseconds) -> None:
        with self._lock:
            self._stat.add_sample(value)

    def scan(
        self,
        header: PerformanceHeader,
        receive_time: TimestampNanoseconds,
        sink: EventSink | None = None,
    ) -> LatencyMicroseconds:
        """Ingest one received header and return the latency it contributed."""
        latency = (receive_time - header.stamp) / 1000.0
        if latency < 0:
            # sender and receiver clocks disagree
            logger.debug(
                "[{}] negative latency {:.3f}us for msg {}, clamped to 0",
                self.caller_name,
                latency,
                header.tracking_number,
            )
            latency = 0.0

        events: list[Event] = []
        with self._lock:
            tracking_number = header.tracking_number
            if self._received == 0:
                self._expected_next = tracking_number + 1
            elif tracking_number >= self._expected_next:
                gap = tracking_number - self._expected_next
                if gap > 0:
                    self._lost += gap
                    events.append(
                        Event.lost_messages(
                            self.caller_name,
                            gap,
                            f"{gap} msgs lost. Expected tracking number "
                            f"{self._expected_next}, received {tracking_number}",
                        )
                    )
                self._expected_next = tracking_number + 1
            else:
                self._out_of_order += 1
                events.append(
                    Event.out_of_order(
                        self.caller_name,
                        tracking_number,
                        f"msg {tracking_number} arrived out of order. Expected "
                        f"tracking number {self._expected_next}",
                    )
                )

            self._received += 1
            self._frequency = header.frequency
            self._size = header.size

            thresholds = self.options.thresholds(header.frequency)
            if thresholds is not None:
                late_us, too_late_us = thresholds
                if latency > too_late_us:
                    self._too_late += 1
                    events.append(
                        Event(
                            caller_name=self.caller_name,
                            code=EventCode.TOO_LATE_MESSAGE,
                            description=f"msg {tracking_number} too late: "
                            f"{latency:.0f}us > {too_late_us:.0f}us",
                            value=tracking_number,
                        )
                    )
                elif latency > late_us:
                    self._late += 1
                    events.append(
                        Event(
                            caller_name=self.caller_name,
                            code=EventCode.LATE_MESSAGE,
                            description=f"msg {tracking_number} late: "
                            f"{latency:.0f}us > {late_us:.0f}us",
                            value=tracking_number,
                        )
                    )

            self._stat.add_sample(latency)

        if sink is not None:
            for event in events:
                sink.write_event(event)
        return latency

    @property
    def count(self) -> MessageCount:
        with self._lock:
            return self._stat.n

    @property
    def last(self) -> LatencyMicroseconds:
        with self._lock:
            return self._stat.last

    @property
    def frequency(self) -> FrequencyHz:
        with self._lock:
            return self._frequency

    @property
    def lost_count(self) -> MessageCount:
        with self._lock:
            return self._lost

    @property
    def expected_next_tracking_number(self) -> TrackingNumber:
        with self._lock:
            return self._expected_next

    def snapshot(self) -> TrackerSnapshot:
        with self._lock:
            stat = self._stat
            return TrackerSnapshot(
                count=stat.n,
                mean=stat.mean,
                stdev=stat.stddev,
                min=stat.min if stat.n else 0.0,
                max=stat.max if stat.n else 0.0,
                lost_count=self._lost,
                frequency=self._frequency,
                size=self._size,
                received_count=self._received,
                late_count=self._late,
                too_late_count=self._too_late,
                out_of_order_count=self._out_of_order,
            )

    def reset(self) -> None:
        """Forget the statistics gathered so far; tracking numbers continue."""
        with self._lock:
            self._stat = Stat()
            self._expected_next = 0
            self._received = 0
            self._lost = 0
            self._late = 0
            self._too_late = 0
            self._out_of_order = 0
