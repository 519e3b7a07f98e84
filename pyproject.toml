[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcpsdk"
version = "0.1.0"
description = "Model Context Protocol building blocks: JSON-RPC transports over stdio, HTTP+SSE and streamable HTTP, capability providers and a WSGI handler"
requires-python = ">=3.10"
dependencies = [
    "httpx",
]
keywords = ["mcp", "model-context-protocol", "json-rpc", "sse", "wsgi", "transport"]
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
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mcpsdk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
