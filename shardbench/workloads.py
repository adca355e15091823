"""Key generators used to drive sharded-tree benchmarks."""

from __future__ import annotations

import math
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterator, Optional


class WorkloadType(Enum):
    """The kinds of key stream the factory can build."""

    UNIFORM = "uniform"
    ZIPFIAN = "zipfian"
    SEQUENTIAL = "sequential"
    ADVERSARIAL = "adversarial"


class WorkloadGenerator(ABC):
    """An endless stream of integer keys."""

    @abstractmethod
    def next(self) -> int:
        """Return the next key."""

    @abstractmethod
    def reset(self) -> None:
        """Return the generator to its starting state, where it has one."""

    def __iter__(self) -> Iterator[int]:
        return self

    def __next__(self) -> int:
        return self.next()


class UniformGenerator(WorkloadGenerator):
    """Keys drawn uniformly from the closed range [low, high]."""

    def __init__(self, low: int, high: int, seed: Optional[int] = None) -> None:
        if low > high:
            raise ValueError(f"empty key range [{low}, {high}]")
        self._low = low
        self._high = high
        self._rng = random.Random(seed)

    def next(self) -> int:
        return self._rng.randint(self._low, self._high)

    def reset(self) -> None:
        """Uniform draws carry no state worth rewinding."""


class ZipfianGenerator(WorkloadGenerator):
    """Skewed keys in [1, n + 1] following the Gray et al. sampling scheme."""

    def __init__(self, n: int, alpha: float = 0.99, seed: Optional[int] = None) -> None:
        if n < 1:
            raise ValueError("a Zipfian generator needs at least one item")
        self._n = n
        self._alpha = alpha
        self._theta = alpha - 1.0
        self._rng = random.Random(seed)
        self._zeta_n = self._zeta(n, self._theta)
        denominator = 1.0 - self._zeta(2, self._theta) / self._zeta_n
        numerator = 1.0 - (2.0 / n) ** (1.0 - alpha)
        # With two or fewer items every draw is answered before eta is used.
        self._eta = numerator / denominator if denominator != 0.0 else math.nan

    @staticmethod
    def _zeta(n: int, theta: float) -> float:
        return sum(1.0 / i**theta for i in range(1, n + 1))

    def next(self) -> int:
        u = self._rng.random()
        uz = u * self._zeta_n
        if uz < 1.0:
            return 1
        if uz < 1.0 + 0.5**self._theta:
            return 2
        base = max(self._eta * u - self._eta + 1.0, 0.0)
        return int(1 + self._n * base**self._alpha)

    def reset(self) -> None:
        """Zipfian draws carry no state worth rewinding."""


class SequentialGenerator(WorkloadGenerator):
    """Consecutive keys starting at ``start``."""

    def __init__(self, start: int = 0) -> None:
        self._start = start
        self._current = start

    def next(self) -> int:
        key = self._current
        self._current += 1
        return key

    def reset(self) -> None:
        self._current = self._start


class AdversarialGenerator(WorkloadGenerator):
    """Keys that all fall on one shard under ``key % num_shards``."""

    def __init__(self, num_shards: int, target_shard: int = 0) -> None:
        self._num_shards = num_shards
        self._target_shard = target_shard
        self._counter = target_shard

    def next(self) -> int:
        key = self._counter
        self._counter += self._num_shards
        return key

    def reset(self) -> None:
        self._counter = self._target_shard


class HotspotGenerator(WorkloadGenerator):
    """Mostly uniform keys, with a fraction of draws sent to a small hot range."""

    def __init__(
        self,
        cold_min: int,
        cold_max: int,
        hot_min: int,
        hot_max: int,
        hot_fraction: float = 0.1,
        seed: Optional[int] = None,
    ) -> None:
        if cold_min > cold_max or hot_min > hot_max:
            raise ValueError("hotspot generator ranges must not be empty")
        self._cold = (cold_min, cold_max)
        self._hot = (hot_min, hot_max)
        self._hot_fraction = hot_fraction
        self._rng = random.Random(seed)

    def next(self) -> int:
        if self._rng.random() < self._hot_fraction:
            return self._rng.randint(*self._hot)
        return self._rng.randint(*self._cold)

    def reset(self) -> None:
        """Hotspot draws carry no state worth rewinding."""


def create_workload(
    workload_type: WorkloadType,
    key_space: int,
    num_shards: int = 8,
    seed: int = 0,
) -> WorkloadGenerator:
    """Build the generator for ``workload_type`` over ``key_space`` keys."""
    if workload_type is WorkloadType.ZIPFIAN:
        return ZipfianGenerator(key_space, 0.99, seed)
    if workload_type is WorkloadType.SEQUENTIAL:
        return SequentialGenerator(0)
    if workload_type is WorkloadType.ADVERSARIAL:
        return AdversarialGenerator(num_shards, 0)
    return UniformGenerator(0, key_space - 1, seed)


def workload_name(workload_type: WorkloadType) -> str:
    """Upper-case display name of a workload type."""
    return workload_type.name