[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "meshgate"
version = "1.0.0"
description = "Building blocks for a proxy-mesh gateway: access control, rate limiting, GeoIP, caching and federation"
requires-python = ">=3.10"
keywords = [
    "proxy",
    "gateway",
    "rate-limiting",
    "rbac",
    "geoip",
    "federation",
    "api-keys",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]
dependencies = []

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["meshgate"]

[tool.hatch.build.targets.sdist]
include = ["meshgate", "tests", "pyproject.toml", "README.md"]

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
