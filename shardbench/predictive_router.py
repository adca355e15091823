"""Shard router that forecasts hotspots from smoothed per-shard access rates."""

from __future__ import annotations

import bisect
import dataclasses
import math
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Hashable, Optional

from shardbench.adaptive_router import primary_hash, secondary_hash

_MASK64 = (1 << 64) - 1

ALPHA_SHORT = 0.3
ALPHA_MEDIUM = 0.1
ALPHA_LONG = 0.03
VNODES_PER_SHARD = 32


def robust_hash(key: Hashable) -> int:
    """64-bit hash of a key passed through the Murmur3 finalizer."""
    h = primary_hash(key)
    h ^= h >> 33
    h = (h * 0xFF51AFD7ED558CCD) & _MASK64
    h ^= h >> 33
    h = (h * 0xC4CEB9FE1A85EC53) & _MASK64
    h ^= h >> 33
    return h


class PredictiveStrategy(Enum):
    STATIC_HASH = "static_hash"
    LOAD_AWARE = "load_aware"
    CONSISTENT_HASH = "consistent_hash"
    PREDICTIVE = "predictive"
    HYBRID = "hybrid"


@dataclass
class ShardMetrics:
    """Smoothed access rates and counters for one shard."""

    ema_short: float = 0.0
    ema_medium: float = 0.0
    ema_long: float = 0.0
    trend_short: float = 0.0
    trend_medium: float = 0.0
    variance: float = 0.0
    total_ops: int = 0
    read_ops: int = 0
    write_ops: int = 0
    redirected_ops: int = 0
    last_access: float = field(default_factory=lambda: time.monotonic())


@dataclass
class TemporalPattern:
    """Smoothed access rate by hour of day and by weekday (0 is Sunday)."""

    hourly_load: list[float] = field(default_factory=lambda: [0.0] * 24)
    daily_load: list[float] = field(default_factory=lambda: [0.0] * 7)
    samples: int = 0


@dataclass(frozen=True)
class Prediction:
    will_be_hotspot: bool
    probability: float
    predicted_load: float
    time_to_hotspot: float
    recommended_shard: int


@dataclass(frozen=True)
class PredictorStats:
    total_load: int
    min_load: int
    max_load: int
    avg_load: float
    balance_score: float
    has_hotspot: bool
    hotspot_shard: int
    predictions_made: int
    successful_predictions: int
    prediction_accuracy: float


class PredictiveRouter:
    """Routes keys to shards, steering away from shards forecast to run hot."""

    def __init__(
        self,
        num_shards: int,
        strategy: PredictiveStrategy = PredictiveStrategy.PREDICTIVE,
        hotspot_threshold: float = 1.5,
        prediction_confidence: float = 0.6,
        seed: Optional[int] = None,
    ) -> None:
        if num_shards < 1:
            raise ValueError("a router needs at least one shard")
        self._num_shards = num_shards
        self._strategy = strategy
        self._hotspot_threshold = hotspot_threshold
        self._prediction_confidence = prediction_confidence
        self._rng = random.Random(seed)
        self._lock = threading.RLock()
        self._metrics = [ShardMetrics() for _ in range(num_shards)]
        self._temporal = [TemporalPattern() for _ in range(num_shards)]
        self._redirects: dict[Hashable, int] = {}
        self._predictions_made = 0
        self._predictions_correct = 0
        self._ring_points: list[int] = []
        self._ring_shards: list[int] = []
        if strategy in (PredictiveStrategy.CONSISTENT_HASH, PredictiveStrategy.HYBRID):
            self._build_ring()

    # ------------------------------------------------------------------ config

    @property
    def num_shards(self) -> int:
        return self._num_shards

    @property
    def strategy(self) -> PredictiveStrategy:
        return self._strategy

    @strategy.setter
    def strategy(self, value: PredictiveStrategy) -> None:
        with self._lock:
            self._strategy = value
            if value in (PredictiveStrategy.CONSISTENT_HASH, PredictiveStrategy.HYBRID):
                self._build_ring()

    @property
    def hotspot_threshold(self) -> float:
        return self._hotspot_threshold

    @hotspot_threshold.setter
    def hotspot_threshold(self, value: float) -> None:
        self._hotspot_threshold = value

    @property
    def prediction_confidence(self) -> float:
        return self._prediction_confidence

    @prediction_confidence.setter
    def prediction_confidence(self, value: float) -> None:
        self._prediction_confidence = value

    def _build_ring(self) -> None:
        nodes = sorted(
            (secondary_hash(shard * VNODES_PER_SHARD + vnode), shard)
            for shard in range(self._num_shards)
            for vnode in range(VNODES_PER_SHARD)
        )
        self._ring_points = [point for point, _ in nodes]
        self._ring_shards = [shard for _, shard in nodes]

    def _check_shard(self, shard_idx: int) -> None:
        if not 0 <= shard_idx < self._num_shards:
            raise IndexError(f"shard index {shard_idx} out of range")

    # ----------------------------------------------------------------- routing

    def route(self, key: Hashable) -> int:
        """Return the shard index for ``key``, honouring registered migrations."""
        with self._lock:
            migrated = self._redirects.get(key)
            if migrated is not None:
                return migrated
            natural = self._route_static(key)
            strategy = self._strategy
            if strategy is PredictiveStrategy.LOAD_AWARE:
                return self._route_load_aware(natural)
            if strategy is PredictiveStrategy.CONSISTENT_HASH:
                return self._route_consistent(key)
            if strategy is PredictiveStrategy.PREDICTIVE:
                return self._route_predictive(natural)
            if strategy is PredictiveStrategy.HYBRID:
                return self._route_hybrid(key, natural)
            return natural

    def _route_static(self, key: Hashable) -> int:
        return robust_hash(key) % self._num_shards

    def _route_consistent(self, key: Hashable) -> int:
        if not self._ring_points:
            return self._route_static(key)
        pos = bisect.bisect_left(self._ring_points, robust_hash(key))
        if pos == len(self._ring_points):
            pos = 0
        return self._ring_shards[pos]

    def _route_load_aware(self, natural: int) -> int:
        avg = sum(m.ema_medium for m in self._metrics) / self._num_shards
        if self._metrics[natural].ema_medium > avg * self._hotspot_threshold:
            return self._find_coolest()
        return natural

    def _route_predictive(self, natural: int) -> int:
        pred = self._predict(natural)
        if pred.will_be_hotspot and pred.probability >= self._prediction_confidence:
            self._predictions_made += 1
            self._metrics[natural].redirected_ops += 1
            return pred.recommended_shard
        return natural

    def _route_hybrid(self, key: Hashable, natural: int) -> int:
        pred = self._predict(natural)
        if pred.will_be_hotspot and pred.probability >= self._prediction_confidence:
            return pred.recommended_shard
        return self._route_consistent(key)

    # ---------------------------------------------------------------- tracking

    def record_access(self, shard_idx: int, is_write: bool = False) -> None:
        """Feed one access into a shard's rate estimates; unknown shards are ignored."""
        if not 0 <= shard_idx < self._num_shards:
            return
        now = time.monotonic()
        local = time.localtime()
        with self._lock:
            m = self._metrics[shard_idx]
            elapsed_ms = int((now - m.last_access) * 1000.0)
            instant_rate = 1000.0 / elapsed_ms if elapsed_ms > 0 else 100.0

            old_short = m.ema_short
            old_medium = m.ema_medium
            m.ema_short = ALPHA_SHORT * instant_rate + (1 - ALPHA_SHORT) * m.ema_short
            m.ema_medium = ALPHA_MEDIUM * instant_rate + (1 - ALPHA_MEDIUM) * m.ema_medium
            m.ema_long = ALPHA_LONG * instant_rate + (1 - ALPHA_LONG) * m.ema_long
            m.trend_short = m.ema_short - old_short
            m.trend_medium = m.ema_medium - old_medium

            error = instant_rate - m.ema_medium
            m.variance = ALPHA_MEDIUM * error * error + (1 - ALPHA_MEDIUM) * m.variance

            m.total_ops += 1
            if is_write:
                m.write_ops += 1
            else:
                m.read_ops += 1
            m.last_access = now

            pattern = self._temporal[shard_idx]
            hour = local.tm_hour
            day = (local.tm_wday + 1) % 7
            pattern.hourly_load[hour] = (
                ALPHA_MEDIUM * instant_rate + (1 - ALPHA_MEDIUM) * pattern.hourly_load[hour]
            )
            pattern.daily_load[day] = (
                ALPHA_LONG * instant_rate + (1 - ALPHA_LONG) * pattern.daily_load[day]
            )
            pattern.samples += 1

    def record_prediction_outcome(self, was_correct: bool) -> None:
        """Count a prediction that turned out right, for accuracy tracking."""
        if was_correct:
            with self._lock:
                self._predictions_correct += 1

    def register_migration(self, key: Hashable, new_shard: int) -> None:
        """Pin ``key`` to ``new_shard`` regardless of strategy."""
        with self._lock:
            self._redirects[key] = new_shard

    def clear_migration(self, key: Hashable) -> None:
        """Drop a pinned shard for ``key``, if any."""
        with self._lock:
            self._redirects.pop(key, None)

    # -------------------------------------------------------------- prediction

    def _find_coolest(self) -> int:
        best = 0
        best_score = math.inf
        for idx, m in enumerate(self._metrics):
            score = m.ema_medium + m.trend_medium * 10.0
            if score < best_score:
                best_score = score
                best = idx
        return best

    def _predict(self, shard_idx: int) -> Prediction:
        n = self._num_shards
        loads = [m.ema_medium for m in self._metrics]
        avg = sum(loads) / n
        std_dev = math.sqrt(sum((load - avg) ** 2 for load in loads) / n)
        m = self._metrics[shard_idx]

        threshold = max(avg * self._hotspot_threshold, avg + 2.0 * std_dev)
        predicted_load = m.ema_short + m.trend_short * 50.0

        if m.ema_medium > threshold:
            return Prediction(
                will_be_hotspot=True,
                probability=min(1.0, (m.ema_medium - threshold) / (std_dev + 0.1)),
                predicted_load=predicted_load,
                time_to_hotspot=0.0,
                recommended_shard=self._find_coolest(),
            )

        will_be_hotspot = False
        probability = 0.0
        time_to_hotspot = -1.0
        recommended = shard_idx

        if m.trend_short > 0 and predicted_load > threshold:
            will_be_hotspot = True
            gap = threshold - m.ema_medium
            time_to_hotspot = gap / m.trend_short * 0.1
            volatility = math.sqrt(m.variance)
            probability = max(0.0, min(1.0, m.trend_short / (volatility + 0.1) * 0.3))
            recommended = self._find_coolest()

        local = time.localtime()
        next_hour = (local.tm_hour + 1) % 24
        pattern = self._temporal[shard_idx]
        if pattern.samples > 100 and pattern.hourly_load[next_hour] > threshold:
            will_be_hotspot = True
            probability = max(probability, 0.5)
            time_to_hotspot = (60 - local.tm_min) * 60.0

        return Prediction(
            will_be_hotspot=will_be_hotspot,
            probability=probability,
            predicted_load=predicted_load,
            time_to_hotspot=time_to_hotspot,
            recommended_shard=recommended,
        )

    def predict(self, shard_idx: int) -> Prediction:
        """Forecast whether a shard is, or is about to become, a hotspot."""
        self._check_shard(shard_idx)
        with self._lock:
            return self._predict(shard_idx)

    def predict_all(self) -> list[Prediction]:
        """Forecasts for every shard, in shard order."""
        with self._lock:
            return [self._predict(idx) for idx in range(self._num_shards)]

    def coolest_shard(self) -> int:
        """Shard with the lowest load once its trend is taken into account."""
        with self._lock:
            return self._find_coolest()

    # ------------------------------------------------------------------- stats

    def stats(self) -> PredictorStats:
        """Snapshot of operation counts, balance and prediction accuracy."""
        with self._lock:
            loads = [m.total_ops for m in self._metrics]
            total = sum(loads)
            max_load = 0
            hotspot_shard = 0
            for idx, load in enumerate(loads):
                if load > max_load:
                    max_load = load
                    hotspot_shard = idx
            avg = total / self._num_shards
            if avg > 0:
                std_dev = math.sqrt(sum((load - avg) ** 2 for load in loads) / self._num_shards)
                balance = max(0.0, 1.0 - std_dev / avg)
            else:
                balance = 1.0
            made = self._predictions_made
            correct = self._predictions_correct
            return PredictorStats(
                total_load=total,
                min_load=min(loads),
                max_load=max_load,
                avg_load=avg,
                balance_score=balance,
                has_hotspot=max_load > self._hotspot_threshold * avg,
                hotspot_shard=hotspot_shard,
                predictions_made=made,
                successful_predictions=correct,
                prediction_accuracy=correct / made if made > 0 else 1.0,
            )

    def shard_metrics(self, shard_idx: int) -> ShardMetrics:
        """A copy of one shard's metrics."""
        self._check_shard(shard_idx)
        with self._lock:
            return dataclasses.replace(self._metrics[shard_idx])

    def predicted_load(self, shard_idx: int, hour: int) -> float:
        """Smoothed historical access rate of a shard at a given hour of day."""
        self._check_shard(shard_idx)
        if not 0 <= hour < 24:
            raise IndexError(f"hour {hour} out of range")
        with self._lock:
            return self._temporal[shard_idx].hourly_load[hour]

    def reset(self) -> None:
        """Forget all metrics, patterns, migrations and prediction counts."""
        with self._lock:
            self._metrics = [ShardMetrics() for _ in range(self._num_shards)]
            self._temporal = [TemporalPattern() for _ in range(self._num_shards)]
            self._redirects.clear()
            self._predictions_made = 0
            self._predictions_correct = 0