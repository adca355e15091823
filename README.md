# shardbench

Tools for studying how keys spread across the shards of a sharded
key-value store, and how well different routing schemes keep the load
even when the traffic is skewed or hostile.

The package has no dependencies outside the standard library.

## What is inside

- `shardbench.workloads` — key generators: `UniformGenerator`,
  `ZipfianGenerator` (α = 0.99 by default), `SequentialGenerator`,
  `AdversarialGenerator` (every key lands on one shard under
  `key % num_shards`) and `HotspotGenerator` (mostly uniform, with a
  fraction of draws on a small hot range). Every generator has `next()`
  and `reset()` and is also an endless iterator. `create_workload` builds
  one from a `WorkloadType`, and `workload_name` gives its upper-case
  display name.
- `shardbench.adaptive_router` — `AdaptiveRouter`, which picks a shard for
  a key with one of four `RoutingStrategy` values: `STATIC_HASH`,
  `LOAD_AWARE`, `VIRTUAL_NODES` (consistent hashing over a ring of 16
  virtual nodes per shard) and `INTELLIGENT`, which switches to load-aware
  routing when it sees a hotspot or a balance score under 0.8. Loads are
  fed in with `record_insertion` and `record_removal`; `stats()` returns a
  `RouterStats` with total, minimum, maximum and average load, a balance
  score between 0 and 1 and a hotspot flag. The hash functions
  `primary_hash` and `secondary_hash` are public.
- `shardbench.predictive_router` — `PredictiveRouter`, which keeps
  exponential moving averages of each shard's access rate (fed with
  `record_access`), projects the trend forward and, under the
  `PREDICTIVE` or `HYBRID` `PredictiveStrategy`, sends traffic away from a
  shard forecast to become a hotspot. It also offers `predict`,
  `predict_all`, `coolest_shard`, `shard_metrics`, `predicted_load` (by
  hour of day), a redirect index for migrated keys (`register_migration`,
  `clear_migration`), `stats()` returning a `PredictorStats`, and
  `reset()`.
- `shardbench.sensitivity` — `SimulatedParallelAVL`, a single-threaded
  model of hotspot redirection with per-key anti-thrashing limits, and
  `SensitivityAnalyzer`, which sweeps one `SystemParameters` field at a
  time over uniform, Zipfian and adversarial key sources and can export
  the results as CSV.
- `shardbench.heavy` — `RedirectingShardedMap`, a thread-safe sharded map
  that sends keys away from a shard routed to well above average, and
  scalability, shard-scaling, workload, sensitivity, latency and
  sustained-load experiments over it.
- `shardbench.intel_bench` — `HashShardedStore`, a thread-safe
  append-only store split by a static hash, and scalability, latency,
  shard-scaling, workload-comparison and read/write-ratio experiments
  over it.

## Install

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Using the library

Generate keys and route them:

```python
from shardbench.workloads import WorkloadType, create_workload, workload_name
from shardbench.adaptive_router import AdaptiveRouter, RoutingStrategy

keys = create_workload(WorkloadType.ADVERSARIAL, 100_000, 8, 0)
router = AdaptiveRouter(8, RoutingStrategy.INTELLIGENT, 1)

for _ in range(10_000):
    shard = router.route(keys.next())
    router.record_insertion(shard)

stats = router.stats()
print(workload_name(WorkloadType.ADVERSARIAL), stats.balance_score, stats.has_hotspot)
```

Seeded generators are deterministic, and `reset()` rewinds the ones that
carry state (sequential and adversarial); on the others it does nothing.

Run a single sensitivity experiment:

```python
from shardbench.sensitivity import AdversarialKeys, SensitivityAnalyzer, SystemParameters

analyzer = SensitivityAnalyzer(ops_per_experiment=5_000, warmup_ops=1_000)
result = analyzer.run_experiment(
    SystemParameters(hotspot_threshold=2.0), AdversarialKeys(8), "hotspot_threshold", 2.0
)
print(result.balance_score, result.redirects, result.blocked_redirects)
```

## Running the benchmarks

Each experiment suite is installed as a command:

```
shardbench-sensitivity [--ops N] [--warmup N] [--output PATH]
shardbench-heavy [--scale FACTOR] [--output PATH]
shardbench-intel [--scale FACTOR] [--max-threads N] [--output PATH]
```

`shardbench-sensitivity` prints a table per parameter and workload, a
summary with the value that gave the best balance under the adversarial
workload plus a recommended configuration, and writes
`sensitivity_results.csv` by default.

`shardbench-heavy` runs the scalability, shard-scaling, workload,
sensitivity, latency and sustained-load experiments and writes
`heavy_benchmark_results.csv` by default.

`shardbench-intel` runs the scalability, latency, shard-scaling,
workload-comparison and read/write-ratio experiments, writes
`intel_benchmark_results.csv` by default and prints the peak throughput
and speedup.

`--scale` multiplies every operation count, which is useful for quick
runs (for example `--scale 0.01`). Output files go to the current
directory unless `--output` says otherwise.

## What it does not do

- There is no balanced search tree here. The benchmark stores are plain
  in-memory dictionaries and lists split into shards, and the routers
  are standalone objects that are not wired into any store; nothing is
  persisted.
- There are no range queries, removals from the stores or key migration
  between shards; the predictive router's redirect index only records
  where a key should be routed.
- The multi-threaded experiments run on Python threads, so absolute
  throughput numbers reflect the interpreter and machine more than the
  data structure. The balance scores and redirect counts are the figures
  meant for comparison between routing schemes.