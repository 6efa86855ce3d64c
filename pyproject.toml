[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pcache"
version = "1.0.0"
description = "Maintenance tools for page cache volumes: a flat data file of fixed-size pages with an SQLite index"
requires-python = ">=3.10"
dependencies = []
keywords = ["cache", "pages", "sqlite", "storage", "fifo", "defragmentation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pcache"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
