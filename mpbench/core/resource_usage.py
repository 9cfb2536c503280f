"""
Process resource usage sampling.

``ResourceUsageLogger`` samples the CPU and memory usage of the benchmark
process at a fixed interval while a run is in progress. Samples are kept in
memory and, when a path is given, appended to a tab-separated file so long
runs can be plotted afterwards.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TextIO

import psutil
from loguru import logger

from mpbench.datastructures.type_aliases import DurationSeconds

from .statistics import ResourceUsageSample, ResourceUsageStatistics


class ResourceUsageLogger:
    """Periodically samples ``psutil.Process()`` for CPU% and memory."""

    HEADER = "elapsed_s\tcpu_percent\trss_bytes\tvms_bytes\tnum_threads\n"

    def __init__(
        self,
        interval: DurationSeconds = 1.0,
        path: str | Path | None = None,
        process: psutil.Process | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Sampling interval must be positive, got {interval}")
        self.interval = interval
        self.path = Path(path) if path is not None else None
        self.process = process or psutil.Process()
        self.samples: list[ResourceUsageSample] = []
        self._start = time.time()
        self._task: asyncio.Task[None] | None = None
        self._file: TextIO | None = None

    def sample(self) -> ResourceUsageSample:
        """Take one sample now."""
        now = time.time()
        with self.process.oneshot():
            memory = self.process.memory_info()
            sample = ResourceUsageSample(
                timestamp=now,
                elapsed_seconds=now - self._start,
                cpu_percent=self.process.cpu_percent(interval=None),
                rss_bytes=memory.rss,
                vms_bytes=memory.vms,
                num_threads=self.process.num_threads(),
            )
        self.samples.append(sample)
        if self._file is not None:
            self._file.write(
                f"{sample.elapsed_seconds:.3f}\t{sample.cpu_percent:.1f}\t"
                f"{sample.rss_bytes}\t{sample.vms_bytes}\t{sample.num_threads}\n"
            )
            self._file.flush()
        return sample

    def start(self) -> None:
        """Start sampling on the running loop."""
        if self._task is not None:
            return
        self._start = time.time()
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("w", encoding="utf-8")
            self._file.write(self.HEADER)
        # first cpu_percent() call only primes the counters
        self.process.cpu_percent(interval=None)
        self._task = asyncio.create_task(self._run(), name="resource-usage")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sample()
            except psutil.Error as e:
                logger.warning(f"Resource usage sample failed: {e}")

    async def stop(self) -> ResourceUsageStatistics:
        """Stop sampling, close the output file and return the aggregate."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._file is not None:
            self._file.close()
            self._file = None
        return self.statistics()

    def statistics(self) -> ResourceUsageStatistics:
        if not self.samples:
            return ResourceUsageStatistics(
                samples=0,
                mean_cpu_percent=0.0,
                max_cpu_percent=0.0,
                max_rss_bytes=0,
                final_rss_bytes=0,
            )
        cpu = [sample.cpu_percent for sample in self.samples]
        return ResourceUsageStatistics(
            samples=len(self.samples),
            mean_cpu_percent=sum(cpu) / len(cpu),
            max_cpu_percent=max(cpu),
            max_rss_bytes=max(sample.rss_bytes for sample in self.samples),
            final_rss_bytes=self.samples[-1].rss_bytes,
        )
