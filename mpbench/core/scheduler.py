"""
Execution substrate for benchmark nodes.

Nodes never create tasks themselves: periodic work (publishing, sending
requests) is registered with a ``Scheduler`` bound to the node's executor id.
``AsyncioScheduler`` runs every timer as an asyncio task and owns the task
lifecycle so that shutting a run down never leaves "Task was destroyed but it
is pending" warnings behind.

Timers are drift-corrected: the next deadline is the previous deadline plus
the period, not "now plus the period". When a callback overruns its period
the missed ticks are skipped rather than fired in a burst.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from mpbench.datastructures.type_aliases import (
    DurationSeconds,
    ExecutorId,
    TimestampNanoseconds,
)

type TimerCallback = Callable[[], None | Awaitable[None]]


class Clock(Protocol):
    def now(self) -> TimestampNanoseconds: ...


class SystemClock:
    """Wall clock in integer nanoseconds."""

    def now(self) -> TimestampNanoseconds:
        return time.time_ns()


class Scheduler(Protocol):
    """What nodes need from their execution context."""

    def schedule_periodic(
        self, period: DurationSeconds, callback: TimerCallback, name: str | None = None
    ) -> PeriodicTimer: ...

    def cancel(self, timer: PeriodicTimer) -> None: ...

    def now(self) -> TimestampNanoseconds: ...


@dataclass(slots=True, eq=False)
class PeriodicTimer:
    period: DurationSeconds
    callback: TimerCallback
    name: str
    ticks: int = 0
    skipped: int = 0
    failures: int = 0
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class AsyncioScheduler:
    """Runs periodic timers on the running asyncio loop.

    Timers may be registered before the loop runs; they start with
    ``start()``. Timers registered after ``start()`` begin immediately.
    """

    def __init__(self, name: str = "executor-0", clock: Clock | None = None) -> None:
        self.name = name
        self.clock = clock or SystemClock()
        self.timers: list[PeriodicTimer] = []
        self.tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._shutdown_requested = False

    def now(self) -> TimestampNanoseconds:
        return self.clock.now()

    @property
    def running(self) -> bool:
        return self._running

    def schedule_periodic(
        self, period: DurationSeconds, callback: TimerCallback, name: str | None = None
    ) -> PeriodicTimer:
        if period <= 0:
            raise ValueError(f"Timer period must be positive, got {period}")
        if self._shutdown_requested:
            raise RuntimeError("Cannot schedule timers after shutdown requested")

        timer = PeriodicTimer(
            period=period,
            callback=callback,
            name=name or f"{self.name}-timer-{len(self.timers)}",
        )
        self.timers.append(timer)
        if self._running:
            self._start_timer(timer)
        return timer

    def cancel(self, timer: PeriodicTimer) -> None:
        """Stop ``timer``; it will not fire again."""
        if timer in self.timers:
            self.timers.remove(timer)
        if timer.task is not None and not timer.task.done():
            timer.task.cancel()

    def start(self) -> None:
        """Start every registered timer. Must be called from the running loop."""
        if self._running:
            return
        if self._shutdown_requested:
            raise RuntimeError("Cannot restart a scheduler after shutdown")

        self._running = True
        for timer in self.timers:
            self._start_timer(timer)
        logger.debug(f"[{self.name}] Started {len(self.timers)} timers")

    def _start_timer(self, timer: PeriodicTimer) -> None:
        task = asyncio.create_task(self._run_timer(timer), name=timer.name)
        timer.task = task
        self.tasks.add(task)
        task.add_done_callback(self._task_completed)

    def _task_completed(self, task: asyncio.Task[Any]) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            logger.debug(f"[{self.name}] Task {task.get_name()} was cancelled")
        elif task.exception():
            logger.error(f"[{self.name}] Task {task.get_name()} failed: {task.exception()}")

    async def _run_timer(self, timer: PeriodicTimer) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timer.period
        while True:
            delay = deadline - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                result = timer.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                timer.failures += 1
                logger.error(f"[{self.name}] Timer {timer.name} callback failed: {e}")
            timer.ticks += 1

            deadline += timer.period
            lag = loop.time() - deadline
            if lag > 0:
                missed = int(lag // timer.period) + 1
                timer.skipped += missed
                deadline += missed * timer.period

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        self._running = False

        if not self.tasks:
            logger.debug(f"[{self.name}] No tasks to shutdown")
            return

        logger.debug(f"[{self.name}] Shutting down {len(self.tasks)} timer tasks")
        pending = [task for task in self.tasks if not task.done()]
        for task in pending:
            task.cancel()

        if pending:
            done, still_pending = await asyncio.wait(pending, timeout=timeout)
            for task in still_pending:
                logger.warning(f"[{self.name}] Task {task.get_name()} ignored cancellation")

        self.tasks.clear()

    def __len__(self) -> int:
        return len(self.timers)


class ExecutorPool:
    """One scheduler per executor id, all sharing the same clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or SystemClock()
        self._schedulers: dict[ExecutorId, AsyncioScheduler] = {}

    def get(self, executor_id: ExecutorId) -> AsyncioScheduler:
        scheduler = self._schedulers.get(executor_id)
        if scheduler is None:
            scheduler = AsyncioScheduler(name=f"executor-{executor_id}", clock=self.clock)
            self._schedulers[executor_id] = scheduler
        return scheduler

    def __call__(self, executor_id: ExecutorId) -> AsyncioScheduler:
        return self.get(executor_id)

    @property
    def executor_ids(self) -> list[ExecutorId]:
        return sorted(self._schedulers)

    def start(self) -> None:
        for scheduler in self._schedulers.values():
            scheduler.start()

    async def shutdown(self, timeout: float = 5.0) -> None:
        await asyncio.gather(
            *(scheduler.shutdown(timeout) for scheduler in self._schedulers.values())
        )
