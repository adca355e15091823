"""Shard router that adapts to load to blunt targeted hotspot attacks."""

from __future__ import annotations

import bisect
import math
import random
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Optional

_MASK64 = (1 << 64) - 1


def primary_hash(key: Hashable) -> int:
    """64-bit hash of a key; integers hash to themselves."""
    if isinstance(key, int):
        return key & _MASK64
    return hash(key) & _MASK64


def secondary_hash(key: Hashable) -> int:
    """Mixed 64-bit hash used to scatter keys away from their primary shard."""
    h = primary_hash(key)
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK64
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK64
    h ^= h >> 16
    return h


class RoutingStrategy(Enum):
    STATIC_HASH = "static_hash"
    LOAD_AWARE = "load_aware"
    VIRTUAL_NODES = "virtual_nodes"
    INTELLIGENT = "intelligent"


@dataclass(frozen=True)
class RouterStats:
    total_load: int
    min_load: int
    max_load: int
    avg_load: float
    balance_score: float
    has_hotspot: bool


class AdaptiveRouter:
    """Picks a shard for each key, tracking per-shard load. Thread-safe."""

    VNODES_PER_SHARD = 16
    WINDOW_SIZE = 50
    HOTSPOT_THRESHOLD = 1.5

    def __init__(
        self,
        num_shards: int,
        strategy: RoutingStrategy = RoutingStrategy.INTELLIGENT,
        seed: Optional[int] = None,
    ) -> None:
        if num_shards < 1:
            raise ValueError("a router needs at least one shard")
        self._num_shards = num_shards
        self._strategy = strategy
        self._loads = [0] * num_shards
        self._recent = [0] * num_shards
        self._rng = random.Random(seed)
        self._lock = threading.Lock()
        self._ring_points: list[int] = []
        self._ring_shards: list[int] = []
        if strategy in (RoutingStrategy.VIRTUAL_NODES, RoutingStrategy.INTELLIGENT):
            self._build_ring()

    @property
    def num_shards(self) -> int:
        return self._num_shards

    @property
    def strategy(self) -> RoutingStrategy:
        return self._strategy

    def _build_ring(self) -> None:
        nodes = sorted(
            (secondary_hash(shard * self.VNODES_PER_SHARD + vnode), shard)
            for shard in range(self._num_shards)
            for vnode in range(self.VNODES_PER_SHARD)
        )
        self._ring_points = [point for point, _ in nodes]
        self._ring_shards = [shard for _, shard in nodes]

    def _check_index(self, shard_idx: int) -> None:
        if not 0 <= shard_idx < self._num_shards:
            raise IndexError(f"shard index {shard_idx} out of range")

    def route(self, key: Hashable) -> int:
        """Return the shard index that ``key`` should go to."""
        with self._lock:
            if self._strategy is RoutingStrategy.LOAD_AWARE:
                return self._route_load_aware(key)
            if self._strategy is RoutingStrategy.VIRTUAL_NODES:
                return self._route_virtual_nodes(key)
            if self._strategy is RoutingStrategy.INTELLIGENT:
                return self._route_intelligent(key)
            return self._route_static(key)

    def record_insertion(self, shard_idx: int) -> None:
        """Count an insertion on a shard, clearing the recent window when full."""
        self._check_index(shard_idx)
        with self._lock:
            self._loads[shard_idx] += 1
            self._recent[shard_idx] += 1
            if sum(self._recent) >= self.WINDOW_SIZE * self._num_shards:
                self._recent = [0] * self._num_shards

    def record_removal(self, shard_idx: int) -> None:
        """Count a removal on a shard; load never drops below zero."""
        self._check_index(shard_idx)
        with self._lock:
            if self._loads[shard_idx] > 0:
                self._loads[shard_idx] -= 1

    def stats(self) -> RouterStats:
        """Snapshot of load distribution across shards."""
        with self._lock:
            return self._compute_stats()

    def _compute_stats(self) -> RouterStats:
        loads = self._loads
        total = sum(loads)
        avg = total / self._num_shards
        if avg > 0:
            variance = sum((load - avg) ** 2 for load in loads) / self._num_shards
            balance = max(0.0, 1.0 - math.sqrt(variance) / avg)
        else:
            balance = 1.0
        max_load = max(loads)
        return RouterStats(
            total_load=total,
            min_load=min(loads),
            max_load=max_load,
            avg_load=avg,
            balance_score=balance,
            has_hotspot=max_load > self.HOTSPOT_THRESHOLD * avg,
        )

    def _route_static(self, key: Hashable) -> int:
        return primary_hash(key) % self._num_shards

    def _route_load_aware(self, key: Hashable) -> int:
        n = self._num_shards
        primary = primary_hash(key) % n
        avg_load = sum(self._loads) / n

        if self._loads[primary] > self.HOTSPOT_THRESHOLD * avg_load:
            min_load = min(self._loads)
            if min_load < avg_load:
                return self._loads.index(min_load)
            return self._rng.randrange(n)

        recent_avg = sum(self._recent) / n
        if self._recent[primary] > 1.5 * recent_avg and recent_avg > 5:
            return secondary_hash(key) % n
        return primary

    def _route_virtual_nodes(self, key: Hashable) -> int:
        pos = bisect.bisect_left(self._ring_points, primary_hash(key))
        if pos == len(self._ring_points):
            pos = 0
        return self._ring_shards[pos]

    def _route_intelligent(self, key: Hashable) -> int:
        stats = self._compute_stats()
        if stats.has_hotspot or stats.balance_score < 0.8:
            return self._route_load_aware(key)
        return self._route_virtual_nodes(key)