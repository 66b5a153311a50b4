[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "turbine"
version = "0.1.0"
description = "Building blocks for a lightweight Linux container runtime for web applications"
requires-python = ">=3.11"
keywords = ["containers", "runtime", "namespaces", "networking", "sandbox", "toml"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "tomli-w",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["turbine"]

[tool.pytest.ini_options]
addopts = "-ra"
