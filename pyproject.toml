[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "o2link"
version = "0.1.0"
description = "UDP packet framing, protocol headers and view models for linking SNES game sessions to an online server"
requires-python = ">=3.10"
dependencies = []
keywords = ["snes", "multiplayer", "udp", "view-model", "packets"]
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
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["o2link"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
