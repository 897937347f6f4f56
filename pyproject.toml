[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ichigochat"
version = "1.0.0"
description = "A small TCP chat server and client library with users, groups, statuses and a replayable journal"
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "messaging", "tcp", "server", "client", "journal"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ichigochat-server = "ichigochat.server:main"

[tool.hatch.build.targets.wheel]
packages = ["ichigochat"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
