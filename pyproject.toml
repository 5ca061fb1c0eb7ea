[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "portprobe"
version = "0.1.0"
description = "Building blocks for port scanning: result collection and reporting, routing lookup, ICMP probes and resume checkpoints"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = [
    "port-scanner",
    "network",
    "routing",
    "host-discovery",
    "icmp",
    "security",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Security",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["portprobe"]

[tool.hatch.build.targets.sdist]
include = [
    "portprobe",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
