from unittest.mock import patch

import pytest

from shardbench.predictive_router import (
    PredictiveRouter,
    PredictiveStrategy,
    robust_hash,
)

FIXED_NOW = 1000.0


def _key_for_shard(router, shard):
    return next(k for k in range(10_000) if robust_hash(k) % router.num_shards == shard)


def _heat(router, shard, times=20):
    for _ in range(times):
        router.record_access(shard, is_write=True)


def test_robust_hash_of_zero_is_zero():
    assert robust_hash(0) == 0


def test_robust_hash_is_64_bit_and_deterministic():
    for key in (1, 42, 2**40, "abc"):
        h = robust_hash(key)
        assert 0 <= h < 2**64
        assert h == robust_hash(key)


def test_needs_at_least_one_shard():
    with pytest.raises(ValueError):
        PredictiveRouter(0)


def test_static_route_matches_hash():
    router = PredictiveRouter(8, PredictiveStrategy.STATIC_HASH)
    for key in range(50):
        assert router.route(key) == robust_hash(key) % 8


def test_migration_overrides_and_clears():
    router = PredictiveRouter(8, PredictiveStrategy.STATIC_HASH)
    key = 12345
    natural = router.route(key)
    other = (natural + 1) % 8
    router.register_migration(key, other)
    assert router.route(key) == other
    router.clear_migration(key)
    assert router.route(key) == natural


def test_consistent_route_is_stable_across_routers():
    a = PredictiveRouter(8, PredictiveStrategy.CONSISTENT_HASH)
    b = PredictiveRouter(8, PredictiveStrategy.CONSISTENT_HASH)
    for key in range(200):
        shard = a.route(key)
        assert 0 <= shard < 8
        assert shard == b.route(key)


def test_strategy_setter_builds_ring():
    router = PredictiveRouter(8, PredictiveStrategy.STATIC_HASH)
    router.strategy = PredictiveStrategy.CONSISTENT_HASH
    reference = PredictiveRouter(8, PredictiveStrategy.CONSISTENT_HASH)
    assert router.strategy is PredictiveStrategy.CONSISTENT_HASH
    assert [router.route(k) for k in range(100)] == [reference.route(k) for k in range(100)]


def test_hybrid_without_load_follows_consistent_hash():
    hybrid = PredictiveRouter(8, PredictiveStrategy.HYBRID)
    consistent = PredictiveRouter(8, PredictiveStrategy.CONSISTENT_HASH)
    assert [hybrid.route(k) for k in range(100)] == [consistent.route(k) for k in range(100)]


def test_record_access_counts_reads_and_writes():
    router = PredictiveRouter(4)
    router.record_access(1, is_write=True)
    router.record_access(1, is_write=True)
    router.record_access(1)
    m = router.shard_metrics(1)
    assert m.total_ops == 3
    assert m.write_ops == 2
    assert m.read_ops == 1


def test_record_access_ignores_unknown_shard():
    router = PredictiveRouter(4)
    router.record_access(9)
    assert router.stats().total_load == 0


def test_ema_ordering_after_one_access():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(4)
        router.record_access(0)
    m = router.shard_metrics(0)
    assert m.ema_short > m.ema_medium > m.ema_long > 0
    assert m.trend_short == m.ema_short


def test_empty_stats():
    stats = PredictiveRouter(4).stats()
    assert stats.balance_score == 1.0
    assert stats.prediction_accuracy == 1.0
    assert stats.has_hotspot is False
    assert stats.min_load == 0


def test_stats_identify_hotspot_shard():
    router = PredictiveRouter(4)
    for _ in range(5):
        router.record_access(2)
    stats = router.stats()
    assert stats.hotspot_shard == 2
    assert stats.max_load == 5
    assert stats.min_load == 0
    assert stats.total_load == 5
    assert stats.has_hotspot is True
    assert 0.0 <= stats.balance_score < 1.0


def test_load_aware_redirects_hot_shard():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(4, PredictiveStrategy.LOAD_AWARE)
        key = _key_for_shard(router, 3)
        assert router.route(key) == 3
        _heat(router, 3)
        target = router.route(key)
    assert target != 3
    assert target == router.coolest_shard()


def test_predict_flags_hot_shard_and_not_cold():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(8)
        _heat(router, 5)
        hot = router.predict(5)
        cold = router.predict(1)
    assert hot.will_be_hotspot is True
    assert 0.0 < hot.probability <= 1.0
    assert hot.recommended_shard != 5
    assert cold.will_be_hotspot is False
    assert cold.probability == 0.0
    assert cold.recommended_shard == 1


def test_predict_all_covers_every_shard():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(8)
        _heat(router, 5)
        preds = router.predict_all()
    assert len(preds) == 8
    assert [i for i, p in enumerate(preds) if p.will_be_hotspot] == [5]


def test_predict_rejects_bad_shard():
    with pytest.raises(IndexError):
        PredictiveRouter(4).predict(4)


def test_predictive_route_counts_predictions_and_accuracy():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(8, PredictiveStrategy.PREDICTIVE)
        key = _key_for_shard(router, 5)
        _heat(router, 5)
        target = router.route(key)
    assert target != 5
    assert router.shard_metrics(5).redirected_ops == 1
    stats = router.stats()
    assert stats.predictions_made == 1
    assert stats.successful_predictions == 0
    assert stats.prediction_accuracy == 0.0
    router.record_prediction_outcome(True)
    stats = router.stats()
    assert stats.successful_predictions == 1
    assert stats.prediction_accuracy == 1.0


def test_high_confidence_keeps_natural_shard():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(8, PredictiveStrategy.PREDICTIVE, prediction_confidence=2.0)
        key = _key_for_shard(router, 5)
        _heat(router, 5)
        assert router.route(key) == 5
    assert router.stats().predictions_made == 0


def test_shard_metrics_returns_copy():
    router = PredictiveRouter(4)
    router.record_access(0)
    copy = router.shard_metrics(0)
    copy.total_ops = 999
    assert router.shard_metrics(0).total_ops == 1


def test_shard_metrics_rejects_bad_shard():
    with pytest.raises(IndexError):
        PredictiveRouter(4).shard_metrics(-1)


def test_predicted_load_tracks_hourly_pattern():
    router = PredictiveRouter(4)
    router.record_access(0)
    assert sum(router.predicted_load(0, hour) for hour in range(24)) > 0
    assert sum(router.predicted_load(1, hour) for hour in range(24)) == 0


def test_predicted_load_rejects_bad_hour():
    router = PredictiveRouter(4)
    with pytest.raises(IndexError):
        router.predicted_load(0, 24)
    with pytest.raises(IndexError):
        router.predicted_load(0, -1)


def test_reset_clears_everything():
    with patch("time.monotonic", return_value=FIXED_NOW):
        router = PredictiveRouter(8, PredictiveStrategy.PREDICTIVE)
        key = _key_for_shard(router, 5)
        _heat(router, 5)
        router.route(key)
    router.register_migration(77, 1)
    router.reset()
    stats = router.stats()
    assert stats.total_load == 0
    assert stats.predictions_made == 0
    assert router.shard_metrics(5).ema_medium == 0.0
    assert router.route(77) == robust_hash(77) % 8


def test_threshold_and_confidence_setters():
    router = PredictiveRouter(4)
    router.hotspot_threshold = 3.0
    router.prediction_confidence = 0.9
    assert router.hotspot_threshold == 3.0
    assert router.prediction_confidence == 0.9
    for _ in range(3):
        router.record_access(0)
    router.record_access(1)
    # max 3 vs avg 1: not above 3x average
    assert router.stats().has_hotspot is False