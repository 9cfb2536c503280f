"""
Property-Based Tests for the mpbench Tracker.

Key Test Areas:
- Loss counting over arbitrary increasing tracking number streams
- Welford statistics against the population formulas
- Monotonicity of the loss detector under arbitrary arrival orders
- Report aggregation as if all samples came from one tracker
"""

import statistics

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mpbench.core.model import PerformanceHeader
from mpbench.core.reporting import EndpointReport, total_report
from mpbench.core.tracker import Tracker

# Test Strategies


@st.composite
def increasing_tracking_numbers(draw):
    """A strictly increasing tracking number stream with random gaps."""
    start = draw(st.integers(min_value=0, max_value=1000))
    steps = draw(st.lists(st.integers(min_value=1, max_value=20), max_size=200))
    numbers = [start]
    for step in steps:
        numbers.append(numbers[-1] + step)
    return numbers


latencies_us = st.lists(
    st.integers(min_value=0, max_value=10_000_000), min_size=1, max_size=200
)


def feed(tracker: Tracker, numbers: list[int]) -> None:
    for number in numbers:
        tracker.scan(PerformanceHeader(tracking_number=number), 0)


class TestLossProperties:
    @given(numbers=increasing_tracking_numbers())
    @settings(max_examples=200)
    def test_lost_count_equals_holes(self, numbers: list[int]):
        tracker = Tracker("node", "topic")
        feed(tracker, numbers)

        expected_lost = numbers[-1] - numbers[0] + 1 - len(numbers)
        assert tracker.lost_count == expected_lost
        assert tracker.expected_next_tracking_number == numbers[-1] + 1
        assert tracker.count == len(numbers)

    @given(numbers=st.lists(st.integers(min_value=0, max_value=500), max_size=200))
    @settings(max_examples=200)
    def test_loss_detector_is_monotone(self, numbers: list[int]):
        tracker = Tracker("node", "topic")
        previous_expected = 0
        previous_lost = 0
        for number in numbers:
            tracker.scan(PerformanceHeader(tracking_number=number), 0)
            assert tracker.expected_next_tracking_number >= previous_expected
            assert tracker.lost_count >= previous_lost
            previous_expected = tracker.expected_next_tracking_number
            previous_lost = tracker.lost_count

        snapshot = tracker.snapshot()
        assert snapshot.count == len(numbers)
        assert snapshot.received_count == len(numbers)


class TestStatisticsProperties:
    @given(values=latencies_us)
    @settings(max_examples=200)
    def test_running_statistics_match_population_formulas(self, values: list[int]):
        tracker = Tracker("node", "topic")
        for number, latency in enumerate(values):
            tracker.scan(PerformanceHeader(tracking_number=number, stamp=0), latency * 1000)

        snapshot = tracker.snapshot()
        assert snapshot.mean == pytest.approx(statistics.fmean(values), rel=1e-9, abs=1e-6)
        assert snapshot.stdev == pytest.approx(statistics.pstdev(values), rel=1e-6, abs=1e-3)
        assert snapshot.min == min(values)
        assert snapshot.max == max(values)

    @given(groups=st.lists(latencies_us, min_size=1, max_size=5))
    @settings(max_examples=100)
    def test_total_pools_all_samples(self, groups: list[list[int]]):
        reports = []
        for index, values in enumerate(groups):
            tracker = Tracker("node", f"topic_{index}")
            for number, latency in enumerate(values):
                tracker.scan(PerformanceHeader(tracking_number=number), latency * 1000)
            reports.append(
                EndpointReport.from_snapshot(
                    "node", f"topic_{index}", "subscriber", tracker.snapshot()
                )
            )

        pooled = [value for values in groups for value in values]
        total = total_report(reports)
        assert total.count == len(pooled)
        assert total.mean_latency == pytest.approx(statistics.fmean(pooled), rel=1e-9, abs=1e-6)
        assert total.stdev_latency == pytest.approx(
            statistics.pstdev(pooled), rel=1e-6, abs=1e-2
        )
        assert total.min_latency == min(pooled)
        assert total.max_latency == max(pooled)
