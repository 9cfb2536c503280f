"""
Benchmark run orchestration.

``BenchmarkSystem`` owns the transport, the executor pool and every node of
a run. ``run()`` starts all executors, logs a report line per endpoint every
``report_interval`` seconds, stops everything after ``duration`` and returns a
``RunSummary``. A system runs once; build a new one for the next run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from typing import Any

from loguru import logger

from mpbench.datastructures.type_aliases import DurationSeconds

from .events import EventCode, EventSink, FanOutEventSink, MemoryEventSink
from .node import PerformanceNode
from .reporting import RunSummary, collect_reports, format_report_line
from .resource_usage import ResourceUsageLogger
from .scheduler import AsyncioScheduler, ExecutorPool
from .topology import TopologyBuilder
from .transport.inprocess import InProcessTransport
from .transport.interfaces import MiddlewareTransport


class BenchmarkSystem:
    def __init__(
        self,
        transport: MiddlewareTransport | None = None,
        *,
        executors: ExecutorPool | None = None,
        events: EventSink | None = None,
        report_interval: DurationSeconds = 1.0,
        resource_usage: ResourceUsageLogger | None = None,
    ) -> None:
        self.transport = transport or InProcessTransport()
        self.executors = executors or ExecutorPool()
        self.memory_events = MemoryEventSink()
        self.events: EventSink = (
            FanOutEventSink(self.memory_events, events) if events else self.memory_events
        )
        self.report_interval = report_interval
        self.resource_usage = resource_usage
        self.nodes: list[PerformanceNode] = []
        self._reporter = AsyncioScheduler(name="reporter", clock=self.executors.clock)
        self._has_run = False

    def topology_builder(self, **kwargs: Any) -> TopologyBuilder:
        """A builder whose nodes run on this system's transport and executors."""
        kwargs.setdefault("events", self.events)
        return TopologyBuilder(self.transport, self.executors, **kwargs)

    def add_node(self, node: PerformanceNode) -> None:
        if any(existing.full_name == node.full_name for existing in self.nodes):
            raise ValueError(f"Node '{node.full_name}' already added")
        if node.events is None:
            node.set_events_logger(self.events)
        self.nodes.append(node)

    def add_nodes(self, nodes: Iterable[PerformanceNode]) -> None:
        for node in nodes:
            self.add_node(node)

    def log_reports(self) -> None:
        for report in collect_reports(self.nodes):
            logger.info(format_report_line(report))

    def event_counts(self) -> dict[str, int]:
        return {code.value: self.memory_events.count(code) for code in EventCode}

    async def run(self, duration: DurationSeconds) -> RunSummary:
        """Run every node for ``duration`` seconds and report the results."""
        if duration <= 0:
            raise ValueError(f"Run duration must be positive, got {duration}")
        if self._has_run:
            raise RuntimeError("A BenchmarkSystem can only run once")
        if not self.nodes:
            raise ValueError("No nodes to run")
        self._has_run = True

        if self.report_interval > 0:
            self._reporter.schedule_periodic(
                self.report_interval, self.log_reports, name="periodic-report"
            )

        logger.info(
            f"Starting run: {len(self.nodes)} nodes on executors "
            f"{self.executors.executor_ids} for {duration:g}s"
        )
        start = time.monotonic()
        self.executors.start()
        self._reporter.start()
        if self.resource_usage is not None:
            self.resource_usage.start()
        try:
            await asyncio.sleep(duration)
        finally:
            await self._reporter.shutdown()
            await self.executors.shutdown()
            usage = (
                await self.resource_usage.stop()
                if self.resource_usage is not None
                else None
            )
        elapsed = time.monotonic() - start

        summary = RunSummary.build(
            elapsed, collect_reports(self.nodes), self.event_counts(), usage
        )
        logger.info(
            f"Run finished after {elapsed:.2f}s: {summary.total.count} samples, "
            f"{summary.total.lost_count} lost"
        )
        return summary

    def destroy(self) -> None:
        """Tear down every node and close the transport."""
        for node in self.nodes:
            node.destroy()
        self.nodes.clear()
        self.transport.close()

    async def __aenter__(self) -> BenchmarkSystem:
        return self

    async def __aexit__(self, *args: object) -> None:
        self.destroy()
