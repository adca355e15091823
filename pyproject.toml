[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shardbench"
version = "0.1.0"
description = "Workload generators, shard routers and load-balance benchmarks for sharded key-value stores"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "benchmark",
    "sharding",
    "load balancing",
    "consistent hashing",
    "zipfian",
    "workload generator",
    "hotspot detection",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Benchmark",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
shardbench-sensitivity = "shardbench.sensitivity:main"
shardbench-heavy = "shardbench.heavy:main"
shardbench-intel = "shardbench.intel_bench:main"

[tool.hatch.build.targets.wheel]
packages = ["shardbench"]

[tool.hatch.build.targets.sdist]
include = ["shardbench", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP", "SIM"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
check_untyped_defs = true
