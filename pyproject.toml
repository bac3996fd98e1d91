[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stowr"
version = "0.3.0"
description = "File storage with compression, content deduplication, delta compression and JSON/SQLite indexing"
requires-python = ">=3.10"
keywords = ["file", "storage", "compression", "deduplication", "delta", "archive", "index"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Compression",
    "Topic :: System :: Filesystems",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "zstandard>=0.21",
    "lz4>=4.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
stowr-demo = "stowr.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["stowr"]

[tool.hatch.build.targets.sdist]
include = ["stowr", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
