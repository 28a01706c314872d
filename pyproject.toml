[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memoria"
version = "0.1.0"
description = "Memory module for a teaching operating-system simulator: partitioned memory, thread contexts and a TCP service for kernel and CPU modules"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "operating-system",
    "simulator",
    "memory-management",
    "partitions",
    "first-fit",
    "best-fit",
    "worst-fit",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Education",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
memoria = "memoria.server:main"

[tool.hatch.build.targets.wheel]
packages = ["memoria"]

[tool.pytest.ini_options]
addopts = "-ra"
