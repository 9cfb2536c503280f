"""
Benchmark reports.

At report time every tracker is snapshotted into an ``EndpointReport`` row.
Rows are pydantic models so they serialize to JSON unchanged; the total row
aggregates every endpoint that measures delivery (subscribers and clients).
"""

from __future__ import annotations

import csv
import math
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import BaseModel, Field
from rich.table import Table

from mpbench.datastructures.type_aliases import (
    ByteSize,
    FrequencyHz,
    LatencyMicroseconds,
    MessageCount,
)

from .model import EndpointRole
from .node import PerformanceNode
from .statistics import ResourceUsageStatistics, TrackerSnapshot

TOTAL_NAME = "total"
DELIVERY_ROLES = frozenset({EndpointRole.SUBSCRIBER, EndpointRole.CLIENT})


class EndpointReport(BaseModel):
    """Statistics of one endpoint (or of the run total) at report time."""

    node: str = Field(description="Full name of the owning node.")
    name: str = Field(description="Topic or service name of the endpoint.")
    role: str = Field(description="Endpoint role, or 'total' for the aggregate.")
    count: MessageCount = Field(default=0, description="Latency samples recorded.")
    mean_latency: LatencyMicroseconds = Field(default=0.0, description="Mean latency, us.")
    stdev_latency: LatencyMicroseconds = Field(
        default=0.0, description="Population standard deviation of latency, us."
    )
    min_latency: LatencyMicroseconds = Field(default=0.0, description="Minimum latency, us.")
    max_latency: LatencyMicroseconds = Field(default=0.0, description="Maximum latency, us.")
    frequency: FrequencyHz = Field(default=0.0, description="Publishing frequency, Hz.")
    size: ByteSize = Field(default=0, description="Payload size, bytes.")
    lost_count: MessageCount = Field(default=0, description="Messages detected as lost.")
    received_count: MessageCount = 0
    late_count: MessageCount = 0
    too_late_count: MessageCount = 0
    out_of_order_count: MessageCount = 0

    @classmethod
    def from_snapshot(
        cls, node: str, name: str, role: EndpointRole | str, snapshot: TrackerSnapshot
    ) -> EndpointReport:
        return cls(
            node=node,
            name=name,
            role=str(role),
            count=snapshot.count,
            mean_latency=snapshot.mean,
            stdev_latency=snapshot.stdev,
            min_latency=snapshot.min,
            max_latency=snapshot.max,
            frequency=snapshot.frequency,
            size=snapshot.size,
            lost_count=snapshot.lost_count,
            received_count=snapshot.received_count,
            late_count=snapshot.late_count,
            too_late_count=snapshot.too_late_count,
            out_of_order_count=snapshot.out_of_order_count,
        )


class RunSummary(BaseModel):
    """Everything a finished run reports."""

    duration: float
    endpoints: list[EndpointReport]
    total: EndpointReport
    events: dict[str, int] = Field(default_factory=dict)
    resource_usage: dict[str, float] | None = None

    @classmethod
    def build(
        cls,
        duration: float,
        reports: Sequence[EndpointReport],
        events: dict[str, int] | None = None,
        resource_usage: ResourceUsageStatistics | None = None,
    ) -> RunSummary:
        usage = None
        if resource_usage is not None:
            usage = {
                "samples": float(resource_usage.samples),
                "mean_cpu_percent": resource_usage.mean_cpu_percent,
                "max_cpu_percent": resource_usage.max_cpu_percent,
                "max_rss_bytes": float(resource_usage.max_rss_bytes),
                "final_rss_bytes": float(resource_usage.final_rss_bytes),
            }
        return cls(
            duration=duration,
            endpoints=list(reports),
            total=total_report(reports),
            events=events or {},
            resource_usage=usage,
        )


def collect_reports(
    nodes: Iterable[PerformanceNode], *, include_publishers: bool = True
) -> list[EndpointReport]:
    """Snapshot every endpoint of every node into a report row."""
    reports: list[EndpointReport] = []
    for node in nodes:
        for endpoint in node.endpoints():
            if endpoint.role is EndpointRole.PUBLISHER and not include_publishers:
                continue
            reports.append(
                EndpointReport.from_snapshot(
                    node.full_name, endpoint.name, endpoint.role, endpoint.snapshot()
                )
            )
    return reports


def total_report(reports: Iterable[EndpointReport]) -> EndpointReport:
    """Aggregate subscriber and client rows into one row.

    Mean and standard deviation are pooled over all samples, as if every
    sample had been recorded by a single tracker.
    """
    rows = [row for row in reports if row.role in DELIVERY_ROLES]
    total = EndpointReport(node=TOTAL_NAME, name=TOTAL_NAME, role=TOTAL_NAME)
    sampled = [row for row in rows if row.count > 0]

    count = sum(row.count for row in sampled)
    if count:
        mean = sum(row.count * row.mean_latency for row in sampled) / count
        # within-group plus between-group sums of squares
        m2 = sum(
            row.count * row.stdev_latency**2 + row.count * (row.mean_latency - mean) ** 2
            for row in sampled
        )
        total.count = count
        total.mean_latency = mean
        total.stdev_latency = math.sqrt(m2 / count)
        total.min_latency = min(row.min_latency for row in sampled)
        total.max_latency = max(row.max_latency for row in sampled)

    total.frequency = sum(row.frequency for row in rows)
    total.size = max((row.size for row in rows), default=0)
    total.lost_count = sum(row.lost_count for row in rows)
    total.received_count = sum(row.received_count for row in rows)
    total.late_count = sum(row.late_count for row in rows)
    total.too_late_count = sum(row.too_late_count for row in rows)
    total.out_of_order_count = sum(row.out_of_order_count for row in rows)
    return total


def format_report_line(report: EndpointReport) -> str:
    return (
        f"{report.node} {report.role} {report.name}: count={report.count} "
        f"mean={report.mean_latency:.1f}us stdev={report.stdev_latency:.1f}us "
        f"min={report.min_latency:.1f}us max={report.max_latency:.1f}us "
        f"lost={report.lost_count} freq={report.frequency:.1f}Hz size={report.size}"
    )


def render_table(
    reports: Sequence[EndpointReport],
    total: EndpointReport | None = None,
    title: str = "Benchmark Results",
) -> Table:
    table = Table(title=title)
    table.add_column("Node", style="cyan", no_wrap=True)
    table.add_column("Role", style="magenta")
    table.add_column("Name", style="green")
    table.add_column("Count", justify="right")
    table.add_column("Mean (us)", justify="right")
    table.add_column("Stdev (us)", justify="right")
    table.add_column("Min (us)", justify="right")
    table.add_column("Max (us)", justify="right")
    table.add_column("Freq (Hz)", justify="right")
    table.add_column("Size (B)", justify="right")
    table.add_column("Lost", justify="right", style="red")
    table.add_column("Late", justify="right", style="yellow")

    def _add(row: EndpointReport, style: str | None = None) -> None:
        table.add_row(
            row.node,
            row.role,
            row.name,
            str(row.count),
            f"{row.mean_latency:.1f}",
            f"{row.stdev_latency:.1f}",
            f"{row.min_latency:.1f}",
            f"{row.max_latency:.1f}",
            f"{row.frequency:.1f}",
            str(row.size),
            str(row.lost_count),
            f"{row.late_count}/{row.too_late_count}",
            style=style,
        )

    for row in reports:
        _add(row)
    if total is not None:
        table.add_section()
        _add(total, style="bold")
    return table


def write_json(summary: RunSummary, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
    return path


def write_csv(reports: Sequence[EndpointReport], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    columns = list(EndpointReport.model_fields)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=columns)
        writer.writeheader()
        for row in reports:
            writer.writerow(row.model_dump())
    return path
