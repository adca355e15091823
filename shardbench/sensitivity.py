"""Sensitivity of a simulated sharded tree to its tuning parameters."""

from __future__ import annotations

import argparse
import bisect
import csv
import math
import random
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import groupby
from typing import Callable, Iterable, Optional, Sequence, TextIO, Union

Number = Union[int, float]
Setter = Callable[["SystemParameters", Number], Optional["SystemParameters"]]

CSV_HEADER = (
    "parameter",
    "value",
    "workload",
    "balance_score",
    "throughput_mops",
    "redirects",
    "blocked",
    "max_min_ratio",
    "latency_p99",
)


@dataclass
class SystemParameters:
    """Tunable knobs of the router, stats cache and rebalancer."""

    vnodes_per_shard: int = 16
    window_size: int = 50
    hotspot_threshold: float = 1.5
    max_consecutive_redirects: int = 3
    redirect_cooldown_ms: int = 100
    refresh_interval_ms: int = 1
    num_shards: int = 8
    rebalance_threshold: float = 2.0
    balance_score_min: float = 0.8

    def __str__(self) -> str:
        return (
            f"vnodes={self.vnodes_per_shard}"
            f",window={self.window_size}"
            f",hotspot={self.hotspot_threshold:g}"
            f",max_redir={self.max_consecutive_redirects}"
            f",cooldown={self.redirect_cooldown_ms}"
            f",refresh={self.refresh_interval_ms}"
            f",shards={self.num_shards}"
            f",rebal={self.rebalance_threshold:g}"
            f",bal_min={self.balance_score_min:g}"
        )


class KeySource(ABC):
    """An endless stream of non-negative keys with a display name."""

    name: str = ""

    @abstractmethod
    def next_key(self) -> int:
        """Return the next key."""


class UniformKeys(KeySource):
    """Keys drawn uniformly from [0, max_key]."""

    name = "Uniform"

    def __init__(self, max_key: int = 100_000, seed: int = 42) -> None:
        self._max_key = max_key
        self._rng = random.Random(seed)

    def next_key(self) -> int:
        return self._rng.randint(0, self._max_key)


class ZipfianKeys(KeySource):
    """Skewed keys in [0, max_key) drawn by inverting a Zipf CDF."""

    name = "Zipfian"

    def __init__(self, max_key: int = 100_000, alpha: float = 0.99, seed: int = 42) -> None:
        if max_key < 1:
            raise ValueError("a Zipfian key source needs at least one key")
        weights = [1.0 / i**alpha for i in range(1, max_key + 1)]
        total = sum(weights)
        cdf = []
        cumulative = 0.0
        for weight in weights:
            cumulative += weight / total
            cdf.append(cumulative)
        self._cdf = cdf
        self._rng = random.Random(seed)

    def next_key(self) -> int:
        return bisect.bisect_left(self._cdf, self._rng.random())


class AdversarialKeys(KeySource):
    """Keys that all land on ``target`` under ``key % num_shards``."""

    name = "Adversarial"

    def __init__(self, num_shards: int, target: int = 0) -> None:
        self._num_shards = num_shards
        self._target = target
        self._counter = 0

    def next_key(self) -> int:
        key = self._target + self._counter * self._num_shards
        self._counter += 1
        return key


class SequentialKeys(KeySource):
    """Consecutive keys starting at zero."""

    name = "Sequential"

    def __init__(self) -> None:
        self._counter = 0

    def next_key(self) -> int:
        key = self._counter
        self._counter += 1
        return key


class SimulatedParallelAVL:
    """Single-threaded model of hotspot redirection with anti-thrashing limits."""

    def __init__(
        self,
        params: SystemParameters,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if params.num_shards < 1:
            raise ValueError("the simulation needs at least one shard")
        self._params = params
        self._clock = clock
        self._sizes = [0] * params.num_shards
        self._ops = [0] * params.num_shards
        self._redirect_times: dict[int, float] = {}
        self._redirect_counts: dict[int, int] = {}
        self.total_ops = 0
        self.redirects = 0
        self.blocked = 0

    @property
    def shard_sizes(self) -> list[int]:
        return list(self._sizes)

    @property
    def max_load(self) -> int:
        return max(self._sizes)

    @property
    def min_load(self) -> int:
        return min(self._sizes)

    def insert(self, key: int) -> None:
        """Place one key, redirecting it away from an overloaded shard."""
        self.total_ops += 1
        natural = key % self._params.num_shards
        target = self.route(key, natural)
        self._sizes[target] += 1
        self._ops[target] += 1
        if target != natural:
            self.redirects += 1

    def route(self, key: int, natural_shard: int) -> int:
        """Shard for ``key``: its natural shard unless that one is a hotspot."""
        params = self._params
        avg_load = sum(self._sizes) / params.num_shards
        if not (avg_load > 0 and self._sizes[natural_shard] > params.hotspot_threshold * avg_load):
            return natural_shard

        now = self._clock()
        last = self._redirect_times.get(key)
        elapsed_ms = math.inf if last is None else int((now - last) * 1000.0)
        if elapsed_ms < params.redirect_cooldown_ms:
            count = self._redirect_counts.get(key, 0) + 1
            self._redirect_counts[key] = count
            if count > params.max_consecutive_redirects:
                self.blocked += 1
                return natural_shard
        else:
            self._redirect_counts[key] = 1
        self._redirect_times[key] = now

        min_load = min(self._sizes)
        return self._sizes.index(min_load)

    def balance_score(self) -> float:
        """1 minus the coefficient of variation of shard sizes, floored at 0."""
        sizes = self._sizes
        avg = sum(sizes) / len(sizes)
        if avg == 0:
            return 1.0
        variance = sum((size - avg) ** 2 for size in sizes) / len(sizes)
        return max(0.0, 1.0 - math.sqrt(variance) / avg)


@dataclass(frozen=True)
class ExperimentResult:
    parameter_name: str
    parameter_value: float
    workload: str
    balance_score: float
    throughput_mops: float
    redirects: int
    blocked_redirects: int
    max_min_ratio: float
    latency_p99_us: float


def _field_setter(name: str) -> Setter:
    def setter(params: SystemParameters, value: Number) -> None:
        setattr(params, name, value)

    return setter


_FULL_ANALYSIS: tuple[tuple[str, tuple[Number, ...]], ...] = (
    ("num_shards", (2, 4, 8, 16, 32, 64)),
    ("hotspot_threshold", (1.1, 1.25, 1.5, 2.0, 3.0, 5.0)),
    ("max_consecutive_redirects", (1, 2, 3, 5, 10, 20)),
    ("redirect_cooldown_ms", (10, 50, 100, 200, 500, 1000)),
    ("vnodes_per_shard", (4, 8, 16, 32, 64, 128)),
    ("window_size", (10, 25, 50, 100, 200, 500)),
    ("refresh_interval_ms", (1, 5, 10, 50, 100, 500)),
    ("balance_score_min", (0.5, 0.6, 0.7, 0.8, 0.9, 0.95)),
)

_RULE = "═" * 63
_THIN_RULE = "─" * 57


def _format_value(value: Number) -> str:
    return f"{value:.2f}" if isinstance(value, float) else str(value)


class SensitivityAnalyzer:
    """Runs the simulation across parameter sweeps and collects results."""

    def __init__(self, ops_per_experiment: int = 100_000, warmup_ops: int = 10_000) -> None:
        if ops_per_experiment < 1:
            raise ValueError("each experiment needs at least one operation")
        self.ops_per_experiment = ops_per_experiment
        self.warmup_ops = warmup_ops
        self._results: list[ExperimentResult] = []

    @property
    def results(self) -> list[ExperimentResult]:
        return list(self._results)

    def run_experiment(
        self,
        params: SystemParameters,
        workload: KeySource,
        param_name: str,
        param_value: Number,
    ) -> ExperimentResult:
        """Warm up, then time ``ops_per_experiment`` inserts from ``workload``."""
        tree = SimulatedParallelAVL(params)
        for _ in range(self.warmup_ops):
            tree.insert(workload.next_key())

        start = time.perf_counter()
        for _ in range(self.ops_per_experiment):
            tree.insert(workload.next_key())
        duration_ms = (time.perf_counter() - start) * 1000.0

        ops = self.ops_per_experiment
        throughput = ops / duration_ms / 1000.0 if duration_ms > 0 else math.inf
        min_load = tree.min_load
        ratio = tree.max_load / min_load if min_load > 0 else 999.0
        return ExperimentResult(
            parameter_name=param_name,
            parameter_value=float(param_value),
            workload=workload.name,
            balance_score=tree.balance_score(),
            throughput_mops=throughput,
            redirects=tree.redirects,
            blocked_redirects=tree.blocked,
            max_min_ratio=ratio,
            latency_p99_us=duration_ms * 1000.0 / ops * 2.5,
        )

    def analyze_parameter(
        self,
        name: str,
        values: Iterable[Number],
        setter: Setter,
        out: Optional[TextIO] = None,
    ) -> list[ExperimentResult]:
        """Sweep one parameter over three workloads, printing a table per workload.

        ``setter`` either mutates the parameters it is given or returns new ones.
        """
        out = out if out is not None else sys.stdout
        values = list(values)
        out.write(f"\n{_RULE}\n Analyzing: {name}\n{_RULE}\n")

        workloads: list[KeySource] = [UniformKeys(), ZipfianKeys(), AdversarialKeys(8)]
        produced: list[ExperimentResult] = []
        for workload in workloads:
            out.write(f"\n  Workload: {workload.name}\n  {_THIN_RULE}\n")
            out.write(
                f"{'Value':>12}{'Balance':>12}{'Mops/s':>12}{'Redirects':>12}{'MaxMin':>12}\n"
            )
            for value in values:
                params = SystemParameters()
                replaced = setter(params, value)
                if isinstance(replaced, SystemParameters):
                    params = replaced
                result = self.run_experiment(params, workload, name, value)
                self._results.append(result)
                produced.append(result)
                out.write(
                    f"{_format_value(value):>12}"
                    f"{result.balance_score * 100:>11.2f}%"
                    f"{result.throughput_mops:>12.3f}"
                    f"{result.redirects:>12}"
                    f"{result.max_min_ratio:>11.2f}x\n"
                )
        return produced

    def run_full_analysis(self, out: Optional[TextIO] = None) -> None:
        """Sweep every tunable parameter in turn."""
        out = out if out is not None else sys.stdout
        out.write("\n")
        out.write("╔" + "═" * 64 + "╗\n")
        out.write("║     PARALLEL AVL - SENSITIVITY ANALYSIS" + " " * 24 + "║\n")
        out.write("║     Systematic Parameter Variation Study" + " " * 23 + "║\n")
        out.write("╚" + "═" * 64 + "╝\n")
        for name, values in _FULL_ANALYSIS:
            self.analyze_parameter(name, values, _field_setter(name), out)

    def export_csv(self, path: str) -> None:
        """Write every collected result to a CSV file."""
        with open(path, "w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerow(CSV_HEADER)
            for r in self._results:
                writer.writerow(
                    (
                        r.parameter_name,
                        f"{r.parameter_value:g}",
                        r.workload,
                        f"{r.balance_score:g}",
                        f"{r.throughput_mops:g}",
                        r.redirects,
                        r.blocked_redirects,
                        f"{r.max_min_ratio:g}",
                        f"{r.latency_p99_us:g}",
                    )
                )

    def best_for_adversarial(self) -> dict[str, tuple[float, float]]:
        """Per parameter, the value with the highest adversarial balance and that balance."""
        best: dict[str, tuple[float, float]] = {}
        ordered = sorted(self._results, key=lambda r: r.parameter_name)
        for name, group in groupby(ordered, key=lambda r: r.parameter_name):
            best_value, best_balance = 0.0, 0.0
            for r in group:
                if r.workload == AdversarialKeys.name and r.balance_score > best_balance:
                    best_value, best_balance = r.parameter_value, r.balance_score
            best[name] = (best_value, best_balance)
        return best

    def print_summary(self, out: Optional[TextIO] = None) -> None:
        """Print the best adversarial value per parameter and the recommended setup."""
        out = out if out is not None else sys.stdout
        out.write("\n")
        out.write("╔" + "═" * 64 + "╗\n")
        out.write("║" + " " * 20 + "ANALYSIS SUMMARY" + " " * 28 + "║\n")
        out.write("╚" + "═" * 64 + "╝\n\n")
        for name, (value, balance) in self.best_for_adversarial().items():
            out.write(f"  {name}:\n")
            out.write(
                f"    Best for adversarial defense: {value:g}"
                f" (balance: {balance * 100:.1f}%)\n"
            )
        out.write("\n  RECOMMENDED CONFIGURATION:\n")
        out.write(f"  {_THIN_RULE}\n")
        out.write("    num_shards:               8-16 (scales with cores)\n")
        out.write("    hotspot_threshold:        1.5 (sensitive detection)\n")
        out.write("    max_consecutive_redirects: 3 (anti-thrashing)\n")
        out.write("    redirect_cooldown_ms:     100 (rate limiting)\n")
        out.write("    vnodes_per_shard:         16 (consistent hashing)\n")
        out.write("    window_size:              50 (recent ops tracking)\n")
        out.write("    refresh_interval_ms:      1 (real-time stats)\n")
        out.write("    balance_score_min:        0.8 (quality threshold)\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the full sensitivity analysis and export it as CSV."""
    parser = argparse.ArgumentParser(description="Parameter sensitivity analysis.")
    parser.add_argument("--ops", type=int, default=50_000, help="timed inserts per experiment")
    parser.add_argument("--warmup", type=int, default=10_000, help="warm-up inserts")
    parser.add_argument("--output", default="sensitivity_results.csv", help="CSV output path")
    args = parser.parse_args(argv)

    print("Starting Sensitivity Analysis...")
    analyzer = SensitivityAnalyzer(args.ops, args.warmup)
    analyzer.run_full_analysis()
    analyzer.print_summary()
    analyzer.export_csv(args.output)
    print(f"\n✓ Results exported to: {args.output}")
    print("\n✓ Analysis complete!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())