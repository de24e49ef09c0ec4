[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memsim"
version = "0.1.0"
description = "Cycle-level DRAM controller, page allocation and memory-statistics toolkit"
requires-python = ">=3.10"
dependencies = []
keywords = ["simulation", "dram", "memory-controller", "paging", "microarchitecture"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
memsim = "memsim.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["memsim"]

[tool.pytest.ini_options]
addopts = "-ra"
