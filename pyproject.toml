[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "syncbox"
version = "0.1.0"
description = "A small client/server file synchronisation tool over TCP with a per-user server folder"
requires-python = ">=3.10"
keywords = ["file-sync", "tcp", "client-server", "file-sharing", "packet-protocol"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: System :: Networking",
]
dependencies = [
    "watchdog",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
syncbox-server = "syncbox.server:main"
syncbox-client = "syncbox.client:main"

[tool.hatch.build.targets.wheel]
packages = ["syncbox"]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
