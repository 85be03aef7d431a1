[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mangahub"
version = "0.1.0"
description = "Manga reading-progress building blocks: TCP/UDP sync messages, sessions, heartbeats, and catalogue and library handlers"
requires-python = ">=3.10"
dependencies = [
    "httpx",
]
keywords = ["manga", "sync", "tcp", "udp", "myanimelist", "library", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "httpx",
]

[tool.hatch.build.targets.wheel]
packages = ["mangahub"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
