"""Pytest configuration and fixtures for mpbench testing.

Fixtures build the pieces of a benchmark (transport, registries, scheduler,
nodes) in isolation and tear them down after each test so no timer task or
transport handle outlives the test that created it.
"""

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from mpbench.core.events import MemoryEventSink
from mpbench.core.node import PerformanceNode
from mpbench.core.registry import (
    MessageTypeRegistry,
    ServiceTypeRegistry,
    create_message_registry,
    create_service_registry,
)
from mpbench.core.scheduler import AsyncioScheduler, ExecutorPool
from mpbench.core.topology import TopologyBuilder
from mpbench.core.transport.inprocess import InProcessTransport
from mpbench.datastructures.type_aliases import TimestampNanoseconds


class ManualClock:
    """Clock whose time only moves when a test moves it."""

    def __init__(self, start: TimestampNanoseconds = 1_000_000_000) -> None:
        self.value = start

    def now(self) -> TimestampNanoseconds:
        return self.value

    def advance_us(self, microseconds: float) -> None:
        self.value += int(microseconds * 1000)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def events() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def transport() -> Generator[InProcessTransport, None, None]:
    transport = InProcessTransport()
    yield transport
    transport.close()


@pytest.fixture
def message_registry() -> MessageTypeRegistry:
    return create_message_registry()


@pytest.fixture
def service_registry() -> ServiceTypeRegistry:
    return create_service_registry()


@pytest_asyncio.fixture
async def executors() -> AsyncGenerator[ExecutorPool, None]:
    pool = ExecutorPool()
    yield pool
    await pool.shutdown(timeout=1.0)


@pytest.fixture
def sync_executors() -> ExecutorPool:
    """Executor pool for tests that build topologies without running them."""
    return ExecutorPool()


@pytest.fixture
def builder(
    transport: InProcessTransport,
    sync_executors: ExecutorPool,
    message_registry: MessageTypeRegistry,
    service_registry: ServiceTypeRegistry,
    events: MemoryEventSink,
) -> TopologyBuilder:
    return TopologyBuilder(
        transport,
        sync_executors,
        message_registry=message_registry,
        service_registry=service_registry,
        events=events,
    )


@pytest_asyncio.fixture
async def scheduler() -> AsyncGenerator[AsyncioScheduler, None]:
    scheduler = AsyncioScheduler(name="test-executor")
    yield scheduler
    await scheduler.shutdown(timeout=1.0)


@pytest.fixture
def manual_node(
    transport: InProcessTransport, events: MemoryEventSink, clock: ManualClock
) -> Generator[PerformanceNode, None, None]:
    """A node driven by a manual clock; its timers are never started."""
    node = PerformanceNode(
        "manual_node",
        transport,
        AsyncioScheduler(name="manual", clock=clock),
        events=events,
    )
    yield node
    node.destroy()


@pytest_asyncio.fixture
async def live_node(
    transport: InProcessTransport,
    events: MemoryEventSink,
    scheduler: AsyncioScheduler,
) -> AsyncGenerator[PerformanceNode, None]:
    """A node on a real scheduler, for tests running on the event loop."""
    node = PerformanceNode("live_node", transport, scheduler, events=events)
    yield node
    node.destroy()
