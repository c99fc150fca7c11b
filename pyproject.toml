[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "segmem"
version = "0.1.0"
description = "Segmented memory server for an operating-system simulator: first/best/worst fit, hole merging and compaction over a binary TCP protocol"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "segmentation",
    "memory",
    "compaction",
    "first-fit",
    "best-fit",
    "worst-fit",
    "simulator",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
segmem = "segmem.server:main"

[tool.hatch.build.targets.wheel]
packages = ["segmem"]

[tool.pytest.ini_options]
addopts = "-ra"
