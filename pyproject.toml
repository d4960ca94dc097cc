[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "profmeta"
version = "0.1.0"
description = "Metadata store, pprof normalizer and column row builder for sampled profiling data"
requires-python = ">=3.10"
dependencies = []
keywords = ["profiling", "pprof", "metastore", "stacktraces", "symbolization", "sqlite"]
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
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["profmeta"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
