[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcpkit"
version = "0.1.0"
description = "Building blocks for Model Context Protocol sessions: JSON-RPC framing, newline-delimited JSON transports, middleware, keepalive and streamable HTTP bookkeeping."
requires-python = ">=3.10"
dependencies = []
keywords = ["mcp", "model-context-protocol", "json-rpc", "ndjson", "transport", "streamable-http"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mcpkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
