"""Heavy multi-threaded benchmark of a hotspot-redirecting sharded map."""

from __future__ import annotations

import argparse
import bisect
import csv
import itertools
import os
import platform
import random
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Hashable, Optional, Sequence, TextIO

from shardbench.adaptive_router import primary_hash

HOTSPOT_THRESHOLD = 1.5
CSV_HEADER = (
    "name",
    "threads",
    "shards",
    "mops",
    "balance",
    "redirects",
    "latency_avg",
    "latency_p99",
)


class _Shard:
    __slots__ = ("lock", "tree", "ops")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.tree: dict[Hashable, object] = {}
        self.ops = 0


class RedirectingShardedMap:
    """Sharded map that sends keys away from a shard routed to far above average."""

    def __init__(self, num_shards: int) -> None:
        if num_shards < 1:
            raise ValueError("a sharded map needs at least one shard")
        self._num_shards = num_shards
        self._shards = [_Shard() for _ in range(num_shards)]
        self._loads = [0] * num_shards
        self._route_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._total_ops = 0
        self._redirects = 0

    @property
    def num_shards(self) -> int:
        return self._num_shards

    @property
    def redirects(self) -> int:
        """Number of routing decisions that left the key's hash shard."""
        return self._redirects

    @property
    def ops(self) -> int:
        """Total inserts and lookups performed."""
        return self._total_ops

    def shard_sizes(self) -> list[int]:
        """Number of keys stored in each shard."""
        return [len(shard.tree) for shard in self._shards]

    def route(self, key: Hashable) -> int:
        """Pick the shard for ``key``, counting the routing towards that hash shard's load."""
        n = self._num_shards
        home = primary_hash(key) % n
        with self._route_lock:
            self._loads[home] += 1
            avg = sum(self._loads) / n
            if avg > 0 and self._loads[home] > avg * HOTSPOT_THRESHOLD:
                target = self._loads.index(min(self._loads))
                if target != home:
                    self._redirects += 1
                    return target
            return home

    def _touch(self, shard: _Shard) -> None:
        shard.ops += 1
        with self._stats_lock:
            self._total_ops += 1

    def insert(self, key: Hashable, value: object) -> None:
        """Store ``value`` under ``key`` in the shard the router picks."""
        shard = self._shards[self.route(key)]
        with shard.lock:
            shard.tree[key] = value
            self._touch(shard)

    def contains(self, key: Hashable) -> bool:
        """Whether ``key`` is in the shard the router picks now."""
        shard = self._shards[self.route(key)]
        with shard.lock:
            self._touch(shard)
            return key in shard.tree

    def balance(self) -> float:
        """1 minus the coefficient of variation of per-shard operations, floored at 0."""
        ops = [shard.ops for shard in self._shards]
        mean = sum(ops) / len(ops)
        if mean == 0:
            return 1.0
        variance = sum((x - mean) ** 2 for x in ops) / len(ops)
        return max(0.0, 1.0 - variance**0.5 / mean)


class Uniform:
    """Keys drawn uniformly from [0, 1_000_000]."""

    name = "Uniform"

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)

    def next(self) -> int:
        return self._rng.randint(0, 1_000_000)


class Zipfian:
    """Skewed keys in [0, n) drawn by inverting a Zipf(0.99) CDF."""

    name = "Zipfian"

    def __init__(self, n: int = 100_000, seed: Optional[int] = None) -> None:
        if n < 1:
            raise ValueError("a Zipfian workload needs at least one key")
        cdf = list(itertools.accumulate(1.0 / i**0.99 for i in range(1, n + 1)))
        total = cdf[-1]
        self._cdf = [v / total for v in cdf]
        self._rng = random.Random(seed)

    def next(self) -> int:
        return bisect.bisect_left(self._cdf, self._rng.random())


class Adversarial:
    """Thread-safe stream of multiples of ``shards``: every key hits shard 0."""

    name = "Adversarial"

    def __init__(self, shards: int) -> None:
        self._shards = shards
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter) * self._shards


@dataclass(frozen=True)
class HeavyResult:
    name: str
    threads: int
    shards: int
    mops: float
    balance: float
    redirects: int
    latency_avg: float
    latency_p99: float


def _out(out: Optional[TextIO]) -> TextIO:
    return out if out is not None else sys.stdout


def _header(out: TextIO, title: str) -> None:
    out.write(f"\n{'=' * 70}\n {title}\n{'=' * 70}\n")


def _run_workers(count: int, body: Callable[[int], None]) -> float:
    """Start ``count`` threads running ``body(t)`` together; return elapsed ms."""
    go = threading.Event()

    def worker(t: int) -> None:
        go.wait()
        body(t)

    workers = [threading.Thread(target=worker, args=(t,)) for t in range(count)]
    for w in workers:
        w.start()
    start = time.perf_counter()
    go.set()
    for w in workers:
        w.join()
    return (time.perf_counter() - start) * 1000.0


def _mops(ops: int, ms: float) -> float:
    if ms <= 0:
        return float("inf")
    return ops / (ms / 1000.0) / 1e6


def _table_row(out: TextIO, label: object, width: int, mops: float, tree: RedirectingShardedMap) -> None:
    out.write(
        f"{label!s:>{width}}"
        f"{mops:>12.2f} Mops/s"
        f"{tree.balance() * 100:>10.1f}%"
        f"{tree.redirects:>12}\n"
    )


def experiment_scalability(
    results: list[HeavyResult], total_ops: int = 1_000_000, out: Optional[TextIO] = None
) -> list[HeavyResult]:
    """Mixed insert/lookup load over 16 shards with a growing number of threads."""
    out = _out(out)
    _header(out, "SCALABILITY (1M ops, varying threads)")
    shards = 16
    out.write(f"{'Threads':>10}{'Throughput':>15}{'Balance':>12}{'Redirects':>12}\n")
    out.write("-" * 50 + "\n")

    produced = []
    for threads in (1, 2, 4, 6, 8, 10, 12, 14, 16, 20, 22):
        tree = RedirectingShardedMap(shards)
        ops_per_thread = total_ops // threads

        def body(t: int) -> None:
            rng = random.Random(t)
            for i in range(ops_per_thread):
                key = rng.randint(0, 1_000_000)
                if i % 3 == 0:
                    tree.insert(key, key)
                else:
                    tree.contains(key)

        ms = _run_workers(threads, body)
        mops = _mops(threads * ops_per_thread, ms)
        _table_row(out, threads, 10, mops, tree)
        produced.append(
            HeavyResult("Scalability", threads, shards, mops, tree.balance(), tree.redirects, 0, 0)
        )
    results.extend(produced)
    return produced


def experiment_shard_scaling(
    results: list[HeavyResult], total_ops: int = 1_000_000, out: Optional[TextIO] = None
) -> list[HeavyResult]:
    """Insert-only load from 8 threads over a growing number of shards."""
    out = _out(out)
    _header(out, "SHARD SCALING (1M ops, 8 threads, varying shards)")
    threads = 8
    out.write(f"{'Shards':>10}{'Throughput':>15}{'Balance':>12}{'Redirects':>12}\n")
    out.write("-" * 50 + "\n")

    produced = []
    for shards in (2, 4, 8, 16, 32, 64, 128):
        tree = RedirectingShardedMap(shards)

        def body(t: int) -> None:
            rng = random.Random(t)
            for i in range(total_ops // threads):
                tree.insert(rng.randint(0, 1_000_000), i)

        ms = _run_workers(threads, body)
        mops = _mops(total_ops, ms)
        _table_row(out, shards, 10, mops, tree)
        produced.append(
            HeavyResult("ShardScale", threads, shards, mops, tree.balance(), tree.redirects, 0, 0)
        )
    results.extend(produced)
    return produced


def experiment_workloads(
    results: list[HeavyResult], total_ops: int = 500_000, out: Optional[TextIO] = None
) -> list[HeavyResult]:
    """Uniform, Zipfian and adversarial inserts from 8 threads over 8 shards."""
    out = _out(out)
    _header(out, "WORKLOAD COMPARISON (500K ops, 8 threads, 8 shards)")
    threads = shards = 8
    out.write(f"{'Workload':>15}{'Throughput':>15}{'Balance':>12}{'Redirects':>12}\n")
    out.write("-" * 55 + "\n")

    shared_adversarial = Adversarial(shards)
    factories: list[tuple[str, Callable[[], object]]] = [
        ("Uniform", Uniform),
        ("Zipfian", Zipfian),
        ("Adversarial", lambda: shared_adversarial),
    ]
    produced = []
    for name, factory in factories:
        tree = RedirectingShardedMap(shards)
        generators = [factory() for _ in range(threads)]

        def body(t: int) -> None:
            workload = generators[t]
            for i in range(total_ops // threads):
                tree.insert(workload.next(), i)

        ms = _run_workers(threads, body)
        mops = _mops(total_ops, ms)
        _table_row(out, name, 15, mops, tree)
        produced.append(HeavyResult(name, threads, shards, mops, tree.balance(), tree.redirects, 0, 0))
    results.extend(produced)
    return produced


def experiment_sensitivity(
    total_ops: int = 500_000, out: Optional[TextIO] = None
) -> list[tuple[float, float, int]]:
    """Inserts over key ranges scaled by each threshold; returns (threshold, mops, redirects)."""
    out = _out(out)
    _header(out, "SENSITIVITY ANALYSIS (500K ops per config)")
    threads = 8
    out.write("\n--- Hotspot Detection Sensitivity ---\n")
    out.write(f"{'Threshold':>12}{'Throughput':>15}{'Redirects':>12}\n")

    rows = []
    for threshold in (1.1, 1.25, 1.5, 2.0, 3.0, 5.0):
        tree = RedirectingShardedMap(8)
        high = int(100_000 * threshold)

        def body(t: int) -> None:
            rng = random.Random(t)
            for i in range(total_ops // threads):
                tree.insert(rng.randint(0, high), i)

        ms = _run_workers(threads, body)
        mops = _mops(total_ops, ms)
        out.write(f"{threshold:>12.2f}{mops:>12.2f} Mops/s{tree.redirects:>12}\n")
        rows.append((threshold, mops, tree.redirects))
    return rows


def experiment_latency(
    results: list[HeavyResult], samples: int = 100_000, out: Optional[TextIO] = None
) -> list[HeavyResult]:
    """Single-threaded per-insert latency in nanoseconds for two workloads."""
    if samples < 1:
        raise ValueError("latency measurement needs at least one sample")
    out = _out(out)
    _header(out, "LATENCY DISTRIBUTION (100K samples)")
    out.write(
        f"{'Workload':>15}{'Avg (ns)':>12}{'P50 (ns)':>12}{'P99 (ns)':>12}{'P99.9 (ns)':>12}\n"
    )
    out.write("-" * 65 + "\n")

    produced = []
    for label, workload in (("Uniform", Uniform()), ("Adversarial", Adversarial(8))):
        tree = RedirectingShardedMap(8)
        for i in range(10_000):
            tree.insert(workload.next(), i)

        latencies = []
        for i in range(samples):
            key = workload.next()
            start = time.perf_counter_ns()
            tree.insert(key, i)
            latencies.append(float(time.perf_counter_ns() - start))
        latencies.sort()

        avg = sum(latencies) / len(latencies)
        p50 = latencies[samples // 2]
        p99 = latencies[int(samples * 0.99)]
        p999 = latencies[int(samples * 0.999)]
        out.write(f"{label:>15}{avg:>12.0f}{p50:>12.0f}{p99:>12.0f}{p999:>12.0f}\n")
        produced.append(HeavyResult(f"Latency_{label}", 1, 8, 0.0, 0.0, 0, avg, p99))
    results.extend(produced)
    return produced


def experiment_sustained(
    results: list[HeavyResult], total_ops: int = 5_000_000, out: Optional[TextIO] = None
) -> HeavyResult:
    """Long mixed load from 8 threads, sampling throughput every half second."""
    out = _out(out)
    _header(out, "SUSTAINED LOAD (5M ops, 8 threads)")
    threads, shards = 8, 16
    tree = RedirectingShardedMap(shards)
    per_thread = total_ops // threads
    completed = [0] * threads
    remaining = [threads]
    remaining_lock = threading.Lock()
    finished = threading.Event()
    go = threading.Event()

    def worker(t: int) -> None:
        go.wait()
        rng = random.Random(t)
        for i in range(per_thread):
            key = rng.randint(0, 1_000_000)
            if i % 3 == 0:
                tree.insert(key, key)
            else:
                tree.contains(key)
            completed[t] += 1
        with remaining_lock:
            remaining[0] -= 1
            if remaining[0] == 0:
                finished.set()

    workers = [threading.Thread(target=worker, args=(t,)) for t in range(threads)]
    for w in workers:
        w.start()
    start = time.perf_counter()
    go.set()

    checkpoints = []
    while not finished.wait(0.5):
        elapsed = time.perf_counter() - start
        checkpoints.append(sum(completed) / elapsed / 1e6)
    for w in workers:
        w.join()
    total_ms = (time.perf_counter() - start) * 1000.0

    final_mops = _mops(total_ops, total_ms)
    out.write(f"Total time: {total_ms:.2f} ms\n")
    out.write(f"Final throughput: {final_mops:.2f} Mops/s\n")
    out.write(f"Balance: {tree.balance() * 100:.1f}%\n")
    out.write(f"Redirects: {tree.redirects}\n")
    if checkpoints:
        out.write(f"Throughput range: [{min(checkpoints):.2f}, {max(checkpoints):.2f}] Mops/s\n")

    result = HeavyResult("Sustained", threads, shards, final_mops, tree.balance(), tree.redirects, 0, 0)
    results.append(result)
    return result


def export_csv(results: Sequence[HeavyResult], path: str) -> None:
    """Write benchmark results as CSV, floats with three decimals."""
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for r in results:
            writer.writerow(
                (
                    r.name,
                    r.threads,
                    r.shards,
                    f"{r.mops:.3f}",
                    f"{r.balance:.3f}",
                    r.redirects,
                    f"{r.latency_avg:.3f}",
                    f"{r.latency_p99:.3f}",
                )
            )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run every heavy experiment and export the results."""
    parser = argparse.ArgumentParser(description="Heavy sharded-map benchmark.")
    parser.add_argument(
        "--scale", type=float, default=1.0, help="multiplier applied to every operation count"
    )
    parser.add_argument(
        "--output", default="heavy_benchmark_results.csv", help="CSV output path"
    )
    args = parser.parse_args(argv)
    if args.scale <= 0:
        parser.error("--scale must be positive")

    def scaled(count: int) -> int:
        return max(1, int(count * args.scale))

    out = sys.stdout
    out.write("╔" + "═" * 63 + "╗\n")
    out.write("║" + "HEAVY BENCHMARK".center(63) + "║\n")
    out.write("╚" + "═" * 63 + "╝\n")
    out.write(f"\nSystem: {os.cpu_count()} hardware threads\n")
    out.write(f"Runtime: Python {platform.python_version()}\n")

    results: list[HeavyResult] = []
    experiment_scalability(results, scaled(1_000_000), out)
    experiment_shard_scaling(results, scaled(1_000_000), out)
    experiment_workloads(results, scaled(500_000), out)
    experiment_sensitivity(scaled(500_000), out)
    experiment_latency(results, scaled(100_000), out)
    experiment_sustained(results, scaled(5_000_000), out)

    export_csv(results, args.output)
    out.write(f"\n✓ Results exported to {args.output}\n")
    out.write("\n╔" + "═" * 63 + "╗\n")
    out.write("║" + "BENCHMARK COMPLETE".center(63) + "║\n")
    out.write("╚" + "═" * 63 + "╝\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())