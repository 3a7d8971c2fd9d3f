"""
MCP (Model Context Protocol) front end for the Splitwise API.

One dispatcher, two transports:

    from src.mcp import build_registry, dispatch, run_stdio, create_app

- Tool registry: fixed set of Splitwise tools with pydantic-derived inputSchemas
- Dispatcher: initialize, ping, tools/list, tools/call (JSON-RPC 2.0)
- Stdio transport: newline-delimited JSON on stdin/stdout
- HTTP transport: POST /mcp with bearer-token auth (Starlette + uvicorn)

Run either transport with:
    python run_servers.py mcp --transport stdio
    python run_servers.py mcp --transport http --port 8080
"""

from .tools import (
    ToolDescriptor,
    ToolNotFoundError,
    ToolRegistry,
    build_registry,
)
from .dispatcher import dispatch, SERVER_NAME, SERVER_VERSION
from .stdio_server import run_stdio
from .http_server import create_app, run_http_server
from .mcp_client import SplitwiseMCPClient, MCPToolError, DEFAULT_MCP_URL

__all__ = [
    # Registry
    "ToolDescriptor",
    "ToolNotFoundError",
    "ToolRegistry",
    "build_registry",
    # Dispatcher
    "dispatch",
    "SERVER_NAME",
    "SERVER_VERSION",
    # Transports
    "run_stdio",
    "create_app",
    "run_http_server",
    # Client
    "SplitwiseMCPClient",
    "MCPToolError",
    "DEFAULT_MCP_URL",
]
