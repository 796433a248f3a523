[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kelarin"
version = "0.1.0"
description = "SQLite-backed repositories and chat services for a home-service marketplace: users, services, providers, offers, orders, notifications and real-time chat."
requires-python = ">=3.11"
dependencies = []
keywords = [
    "marketplace",
    "repository",
    "sqlite",
    "chat",
    "websocket",
    "orders",
    "offers",
    "notifications",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kelarin"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
