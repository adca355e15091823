"""Workload generators, shard routers and load-balance benchmarks for sharded stores."""

__version__ = "0.1.0"

__all__ = [
    "workloads",
    "adaptive_router",
    "predictive_router",
    "sensitivity",
    "heavy",
    "intel_bench",
]