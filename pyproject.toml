[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "freikino"
version = "0.1.0"
description = "Matroska subtitle extraction, ASS document building and playback helpers for a video player"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "matroska",
    "mkv",
    "webm",
    "ebml",
    "subtitles",
    "ass",
    "ssa",
    "srt",
    "video",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["freikino"]

[tool.hatch.build.targets.sdist]
include = ["freikino", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
