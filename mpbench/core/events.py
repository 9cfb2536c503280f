"""
Benchmark event reporting.

Run-time anomalies (lost messages, out-of-order arrivals, late messages,
unavailable services) never abort a run. They are reported as ``Event``
objects to an ``EventSink``:

- EventsLogger: appends events to a text file and to the log
- MemoryEventSink: keeps a bounded in-memory history, mostly for tests and
  for end-of-run summaries
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Protocol, TextIO, runtime_checkable

from loguru import logger

from mpbench.datastructures.type_aliases import Timestamp


class EventCode(StrEnum):
    """Types of benchmark events."""

    LOST_MESSAGES = "lost_messages"
    OUT_OF_ORDER = "out_of_order"
    LATE_MESSAGE = "late_message"
    TOO_LATE_MESSAGE = "too_late_message"
    SERVICE_UNAVAILABLE = "service_unavailable"


@dataclass(frozen=True, slots=True)
class Event:
    """A single non-fatal observation made during a run."""

    caller_name: str
    code: EventCode
    description: str
    value: int = 0
    timestamp: Timestamp = field(default_factory=time.time)

    @classmethod
    def lost_messages(cls, caller_name: str, gap: int, description: str) -> Event:
        """Create a loss event; ``value`` is the size of the gap."""
        return cls(
            caller_name=caller_name,
            code=EventCode.LOST_MESSAGES,
            description=description,
            value=gap,
        )

    @classmethod
    def out_of_order(
        cls, caller_name: str, tracking_number: int, description: str
    ) -> Event:
        return cls(
            caller_name=caller_name,
            code=EventCode.OUT_OF_ORDER,
            description=description,
            value=tracking_number,
        )

    @classmethod
    def service_unavailable(cls, caller_name: str, description: str) -> Event:
        return cls(
            caller_name=caller_name,
            code=EventCode.SERVICE_UNAVAILABLE,
            description=description,
        )


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts benchmark events."""

    def write_event(self, event: Event) -> None: ...


class MemoryEventSink:
    """Thread-safe in-memory event history."""

    def __init__(self, max_history: int = 10_000) -> None:
        self._lock = threading.Lock()
        self._events: deque[Event] = deque(maxlen=max_history)
        self._counts: Counter[EventCode] = Counter()

    def write_event(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)
            self._counts[event.code] += 1

    @property
    def events(self) -> list[Event]:
        with self._lock:
            return list(self._events)

    def events_with_code(self, code: EventCode) -> list[Event]:
        with self._lock:
            return [event for event in self._events if event.code == code]

    def count(self, code: EventCode) -> int:
        """Total events seen with ``code``, including ones evicted from history."""
        with self._lock:
            return self._counts[code]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class EventsLogger:
    """Writes events to a text file, one tab-separated line per event.

    Times are milliseconds since the logger was created so that events from a
    run line up with its start.
    """

    HEADER = "time_ms\tcaller\tcode\tvalue\tdescription\n"

    def __init__(self, path: str | Path, *, echo: bool = True) -> None:
        self.path = Path(path)
        self.echo = echo
        self._lock = threading.Lock()
        self._start = time.time()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO | None = self.path.open("w", encoding="utf-8")
        self._file.write(self.HEADER)
        self._file.flush()

    def write_event(self, event: Event) -> None:
        elapsed_ms = (event.timestamp - self._start) * 1000.0
        line = (
            f"{elapsed_ms:.3f}\t{event.caller_name}\t{event.code.value}\t"
            f"{event.value}\t{event.description}\n"
        )
        with self._lock:
            if self._file is None:
                logger.warning(
                    "Event dropped, events file {} already closed: {}",
                    self.path,
                    event.description,
                )
                return
            self._file.write(line)
            self._file.flush()

        if self.echo:
            logger.warning("[{}] {}: {}", event.caller_name, event.code, event.description)

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> EventsLogger:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class FanOutEventSink:
    """Forwards every event to several sinks."""

    def __init__(self, *sinks: EventSink) -> None:
        self.sinks = tuple(sinks)

    def write_event(self, event: Event) -> None:
        for sink in self.sinks:
            sink.write_event(event)
