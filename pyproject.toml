[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lsmkv"
version = "0.1.0"
description = "A small log-structured merge-tree key-value store with sorted tables, compaction and a write-ahead log"
requires-python = ">=3.10"
dependencies = []
keywords = ["lsm", "key-value", "storage", "sstable", "skiplist", "wal", "bloom-filter", "database"]
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
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lsmkv"]

[tool.hatch.build.targets.sdist]
include = ["lsmkv", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
