[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "featherdb"
version = "0.1.0"
description = "Building blocks of a small distributed database: order-preserving key encoding, in-memory MVCC transactions with serializable snapshot isolation, and a replicated log."
requires-python = ">=3.10"
dependencies = []
keywords = ["database", "mvcc", "transactions", "raft", "key-value", "snapshot-isolation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["featherdb"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
