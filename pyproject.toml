[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "consolestate"
version = "0.1.0"
description = "In-memory state model for an async runtime console: tasks, resources and async operations"
requires-python = ">=3.10"
dependencies = []
keywords = ["async", "runtime", "console", "tasks", "instrumentation", "diagnostics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["consolestate"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
