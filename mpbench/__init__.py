"""
mpbench - Middleware Performance Benchmark

A harness measuring latency, throughput and delivery reliability across
many publish/subscribe and request/response endpoints.

## Quick Start

```python
import asyncio

from mpbench import BenchmarkSystem

system = BenchmarkSystem()
builder = system.topology_builder()
system.add_nodes(builder.build_from_path("topology.json"))
summary = asyncio.run(system.run(10.0))
print(summary.total.mean_latency, summary.total.lost_count)
```
"""

from .core import (
    BenchmarkSettings,
    BenchmarkSystem,
    ConfigParseError,
    PerformanceNode,
    TopologyBuilder,
    Tracker,
    UnknownTypeError,
)

# Version info
__version__ = "0.1.0"
