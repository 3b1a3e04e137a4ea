[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "promxy"
version = "0.1.0"
description = "Remote read/write storage, a sharded write queue and server-group configuration for a Prometheus aggregating proxy"
requires-python = ">=3.10"
keywords = ["prometheus", "remote-write", "remote-read", "snappy", "protobuf", "monitoring"]
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
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["promxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
