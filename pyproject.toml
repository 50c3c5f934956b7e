[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "decima-explorer"
version = "2.7.0"
description = "Read, extract, pack and repack Decima engine .bin and .mpk archives"
requires-python = ">=3.10"
dependencies = []
keywords = ["decima", "archive", "bin", "mpk", "prefetch", "murmurhash", "extract", "repack"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
decima-explorer = "decima_explorer.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["decima_explorer"]

[tool.pytest.ini_options]
addopts = "-ra"
