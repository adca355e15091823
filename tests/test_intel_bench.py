import csv
import io

import pytest

from shardbench.intel_bench import (
    AdversarialWorkload,
    BenchmarkResult,
    CSV_HEADER,
    HashShardedStore,
    UniformWorkload,
    ZipfianWorkload,
    contention_label,
    export_to_csv,
    main,
    resistance_label,
    run_latency_experiment,
    run_rw_ratio_experiment,
    run_scalability_experiment,
    run_shard_scaling_experiment,
    run_workload_comparison,
)


def test_route_is_key_modulo_shards():
    store = HashShardedStore(8)
    assert [store.route(k) for k in (0, 7, 8, 17)] == [0, 7, 0, 1]


def test_insert_then_contains():
    store = HashShardedStore(4)
    assert store.insert(10, 20) is True
    assert store.contains(10) is True
    assert store.contains(11) is False
    assert store.total_ops == 3
    assert len(store) == 1


def test_duplicates_are_kept():
    store = HashShardedStore(4)
    store.insert(5, 1)
    store.insert(5, 2)
    assert len(store) == 2


def test_shard_ops_counts_inserts_and_lookups():
    store = HashShardedStore(8)
    store.insert(3, 3)
    store.contains(3)
    store.contains(11)
    assert store.shard_ops(3) == 3
    assert sum(store.shard_ops(i) for i in range(8)) == store.total_ops


def test_shard_ops_out_of_range():
    with pytest.raises(IndexError):
        HashShardedStore(2).shard_ops(2)


def test_zero_shards_rejected():
    with pytest.raises(ValueError):
        HashShardedStore(0)


def test_balance_empty_and_even():
    store = HashShardedStore(4)
    assert store.balance_score() == 1.0
    for k in range(8):
        store.insert(k, k)
    assert store.balance_score() == pytest.approx(1.0)


def test_balance_single_shard_load_floored_at_zero():
    store = HashShardedStore(8)
    for k in range(0, 800, 8):
        store.insert(k, k)
    assert store.balance_score() == 0.0


def test_reset_stats_clears_everything():
    store = HashShardedStore(4)
    for k in range(10):
        store.insert(k, k)
    store.reset_stats()
    assert store.total_ops == 0
    assert len(store) == 0
    assert store.contains(1) is False


def test_uniform_workload_range_and_seed():
    a = UniformWorkload(50, seed=3)
    b = UniformWorkload(50, seed=3)
    keys = [a.next() for _ in range(200)]
    assert keys == [b.next() for _ in range(200)]
    assert all(0 <= k <= 50 for k in keys)


def test_zipfian_workload_range_and_skew():
    wl = ZipfianWorkload(100, seed=1)
    keys = [wl.next() for _ in range(2000)]
    assert all(0 <= k < 100 for k in keys)
    assert keys.count(0) > keys.count(99)


def test_zipfian_rejects_empty():
    with pytest.raises(ValueError):
        ZipfianWorkload(0)


def test_adversarial_workload_multiples():
    wl = AdversarialWorkload(8)
    keys = [wl.next() for _ in range(5)]
    assert keys == [0, 8, 16, 24, 32]
    assert {k % 8 for k in keys} == {0}


def test_contention_labels():
    assert contention_label(4, 8) == "High"
    assert contention_label(8, 8) == "Medium"
    assert contention_label(16, 8) == "Low"


def test_resistance_labels():
    assert resistance_label(0.95) == "Excellent"
    assert resistance_label(0.8) == "Good"
    assert resistance_label(0.5) == "Poor"


def test_scalability_experiment():
    out = io.StringIO()
    results = run_scalability_experiment(max_threads=2, ops_per_thread=30, out=out)
    assert [r.threads for r in results] == [1, 2]
    assert [r.shards for r in results] == [8, 8]
    assert [r.total_ops for r in results] == [30, 60]
    assert "SCALABILITY" in out.getvalue()


def test_latency_experiment():
    results = run_latency_experiment(samples=10, out=io.StringIO())
    assert [r.workload for r in results] == ["Uniform", "Zipfian", "Adversarial"]
    for r in results:
        assert r.p50_latency_ns <= r.p99_latency_ns <= r.p999_latency_ns
        assert r.total_ops == 10


def test_latency_experiment_rejects_no_samples():
    with pytest.raises(ValueError):
        run_latency_experiment(samples=0, out=io.StringIO())


def test_shard_scaling_experiment():
    out = io.StringIO()
    results = run_shard_scaling_experiment(total_ops=80, out=out)
    assert [r.shards for r in results] == [2, 4, 8, 16, 32, 64]
    assert all(r.threads == 8 and r.total_ops == 80 for r in results)
    assert "High" in out.getvalue() and "Low" in out.getvalue()


def test_workload_comparison_adversarial_is_unbalanced():
    out = io.StringIO()
    results = run_workload_comparison(total_ops=80, out=out)
    assert [r.workload for r in results] == ["Uniform", "Zipfian", "Adversarial"]
    assert results[2].balance_score == 0.0
    assert "Poor" in out.getvalue()


def test_rw_ratio_experiment():
    results = run_rw_ratio_experiment(total_ops=80, out=io.StringIO())
    assert [r.workload for r in results][:2] == ["0% reads", "25% reads"]
    assert len(results) == 8
    assert all(0.0 <= r.balance_score <= 1.0 for r in results)


def test_export_round_trip(tmp_path):
    path = tmp_path / "results.csv"
    result = BenchmarkResult("Latency", "Uniform", 1, 8, 1.5, 0.25, 10.0, 9.0, 20.0, 30.0, 100)
    export_to_csv([result], str(path))
    with open(path, newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert tuple(rows[0]) == CSV_HEADER
    assert rows[1][:4] == ["Latency", "Uniform", "1", "8"]
    assert float(rows[1][4]) == pytest.approx(1.5)
    assert rows[1][-1] == "100"


def test_main_writes_csv(tmp_path, capsys):
    path = tmp_path / "out.csv"
    assert main(["--scale", "0.0001", "--max-threads", "2", "--output", str(path)]) == 0
    with open(path, newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert tuple(rows[0]) == CSV_HEADER
    assert {row[0] for row in rows[1:]} == {
        "Scalability", "Latency", "ShardScaling", "Workload", "RWRatio"
    }
    assert "Key Findings" in capsys.readouterr().out


def test_main_rejects_bad_scale():
    with pytest.raises(SystemExit):
        main(["--scale", "0"])