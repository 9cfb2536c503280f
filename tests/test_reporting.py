import csv
import json
import statistics
from pathlib import Path

import pytest
from rich.table import Table

from mpbench.core.model import EndpointRole
from mpbench.core.node import PerformanceNode
from mpbench.core.registry import MessageTypeRegistry
from mpbench.core.reporting import (
    EndpointReport,
    RunSummary,
    collect_reports,
    format_report_line,
    render_table,
    total_report,
    write_csv,
    write_json,
)
from mpbench.core.statistics import ResourceUsageStatistics, TrackerSnapshot


def report(role: str, samples: list[float], **extra) -> EndpointReport:
    return EndpointReport(
        node="n",
        name=f"{role}_endpoint",
        role=role,
        count=len(samples),
        mean_latency=statistics.fmean(samples) if samples else 0.0,
        stdev_latency=statistics.pstdev(samples) if samples else 0.0,
        min_latency=min(samples, default=0.0),
        max_latency=max(samples, default=0.0),
        **extra,
    )


class TestTotals:
    def test_pooled_statistics(self):
        first = [100.0, 200.0, 300.0]
        second = [1000.0, 1200.0]
        total = total_report(
            [
                report("subscriber", first, lost_count=2, frequency=100.0, size=16),
                report("client", second, lost_count=1, frequency=10.0, size=10),
            ]
        )

        pooled = first + second
        assert total.role == "total"
        assert total.count == 5
        assert total.mean_latency == pytest.approx(statistics.fmean(pooled))
        assert total.stdev_latency == pytest.approx(statistics.pstdev(pooled))
        assert total.min_latency == 100.0
        assert total.max_latency == 1200.0
        assert total.lost_count == 3
        assert total.frequency == pytest.approx(110.0)
        assert total.size == 16

    def test_publishers_and_servers_excluded(self):
        total = total_report(
            [
                report("publisher", [1.0, 2.0], lost_count=5),
                report("server", [3.0], lost_count=5),
                report("subscriber", [10.0]),
            ]
        )
        assert total.count == 1
        assert total.mean_latency == 10.0
        assert total.lost_count == 0

    def test_empty_endpoints_do_not_skew_min(self):
        total = total_report([report("subscriber", []), report("subscriber", [50.0])])
        assert total.min_latency == 50.0
        assert total.count == 1

    def test_no_rows(self):
        total = total_report([])
        assert total.count == 0
        assert total.mean_latency == 0.0


def test_from_snapshot():
    snapshot = TrackerSnapshot(
        count=3,
        mean=5.0,
        stdev=1.0,
        min=4.0,
        max=6.0,
        lost_count=1,
        frequency=100.0,
        size=16,
        received_count=3,
        late_count=1,
    )
    row = EndpointReport.from_snapshot("node", "topic", EndpointRole.SUBSCRIBER, snapshot)
    assert row.role == "subscriber"
    assert row.mean_latency == 5.0
    assert row.late_count == 1
    assert "node subscriber topic" in format_report_line(row)


def test_collect_reports(manual_node: PerformanceNode, message_registry: MessageTypeRegistry):
    builder = message_registry.resolve("stamped4_int32")
    publisher = builder.add_publisher(manual_node, "t")
    builder.add_subscriber(manual_node, "t")
    publisher.publish()

    rows = collect_reports([manual_node])
    assert [(row.role, row.name) for row in rows] == [
        ("publisher", "t"),
        ("subscriber", "t"),
    ]
    assert all(row.count == 1 for row in rows)
    assert [row.role for row in collect_reports([manual_node], include_publishers=False)] == [
        "subscriber"
    ]


def test_render_table():
    rows = [report("subscriber", [1.0]), report("client", [2.0])]
    table = render_table(rows, total_report(rows))
    assert isinstance(table, Table)
    assert table.row_count == 3


def test_write_json_and_csv(tmp_path: Path):
    rows = [report("subscriber", [1.0, 3.0]), report("publisher", [0.5])]
    usage = ResourceUsageStatistics(
        samples=2,
        mean_cpu_percent=10.0,
        max_cpu_percent=15.0,
        max_rss_bytes=2048,
        final_rss_bytes=1024,
    )
    summary = RunSummary.build(1.5, rows, {"lost_messages": 0}, usage)

    json_path = write_json(summary, tmp_path / "results" / "results.json")
    payload = json.loads(json_path.read_text())
    assert payload["duration"] == 1.5
    assert payload["total"]["count"] == 2
    assert len(payload["endpoints"]) == 2
    assert payload["resource_usage"]["max_rss_bytes"] == 2048

    csv_path = write_csv(rows, tmp_path / "results.csv")
    with csv_path.open() as handle:
        read_rows = list(csv.DictReader(handle))
    assert [row["role"] for row in read_rows] == ["subscriber", "publisher"]
    assert read_rows[0]["count"] == "2"
