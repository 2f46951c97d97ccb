[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "metricsserver"
version = "0.1.0"
description = "In-memory resource metrics storage, usage calculation and health probes for a cluster metrics server"
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "monitoring", "kubernetes", "cpu", "memory", "health-checks"]
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

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["metricsserver"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
