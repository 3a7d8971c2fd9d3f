"""
Protocol-level client for a running Splitwise MCP server.

Goes through the official MCP Python SDK (ClientSession over the streamable
HTTP transport) and presents the server's bearer token, so it exercises the
same path a real agent would:

    client = SplitwiseMCPClient("http://localhost:8080", auth_token="secret")
    categories = client.call_tool("get_categories")

    async with client.session() as session:
        result = await session.call_tool("list_groups", {})

A tool result with isError set raises MCPToolError. JSON-RPC errors (unknown
tool, invalid arguments, Splitwise failures) are raised by the SDK as McpError.
"""

import asyncio
import concurrent.futures
import json
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp import ClientSession, types
from mcp.client.streamable_http import streamablehttp_client

DEFAULT_MCP_URL = os.environ.get("MCP_SERVER_URL", "http://localhost:8080/mcp")
DEFAULT_AUTH_TOKEN = os.environ.get("MCP_AUTH_TOKEN", "default-token")


class MCPToolError(Exception):
    """A tool call came back with isError: true."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"{tool_name}: {message}")


def decode_tool_result(tool_name: str, result: types.CallToolResult) -> Any:
    """
    Turn a CallToolResult into Python data.

    Args:
        tool_name: Name of the tool that produced the result
        result: Result returned by ClientSession.call_tool

    Returns:
        The decoded JSON of the first text block (raw text if it is not JSON),
        or None when there is no text block

    Raises:
        MCPToolError: If the result is flagged as an error
    """
    texts = [block.text for block in result.content if isinstance(block, types.TextContent)]
    if result.isError:
        raise MCPToolError(tool_name, texts[0] if texts else "tool call failed")
    if not texts:
        return None
    try:
        return json.loads(texts[0])
    except ValueError:
        return texts[0]


def _run_blocking(coro):
    """asyncio.run, moved to a worker thread when a loop is already running here."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coro).result()


class SplitwiseMCPClient:
    """
    Client for the HTTP transport of the Splitwise MCP server.

    The synchronous helpers open one short-lived session per call, matching
    the server's stateless POST-per-request model. Use session() to issue
    several calls over one connection.
    """

    def __init__(self, server_url: str = DEFAULT_MCP_URL, auth_token: str = DEFAULT_AUTH_TOKEN):
        """
        Args:
            server_url: Server address; the /mcp endpoint path is added if absent
            auth_token: Bearer token the server was started with (MCP_AUTH_TOKEN)
        """
        server_url = server_url.rstrip("/")
        self.endpoint = server_url if server_url.endswith("/mcp") else server_url + "/mcp"
        self.auth_token = auth_token
        self._tool_list: Optional[List[Dict[str, Any]]] = None

    @property
    def server_url(self) -> str:
        return self.endpoint[: -len("/mcp")]

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.auth_token}"}

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ClientSession]:
        """Open an initialized MCP session against the server."""
        async with streamablehttp_client(self.endpoint, headers=self.headers) as (reader, writer, _):
            async with ClientSession(reader, writer) as session:
                await session.initialize()
                yield session

    async def fetch_tools(self) -> List[Dict[str, Any]]:
        async with self.session() as session:
            listing = await session.list_tools()
        return [
            {
                "name": item.name,
                "description": item.description or "",
                "inputSchema": item.inputSchema,
            }
            for item in listing.tools
        ]

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        async with self.session() as session:
            result = await session.call_tool(name, arguments or {})
        return decode_tool_result(name, result)

    def list_tools(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """
        Tool definitions (name, description, inputSchema) from tools/list.

        The first listing is remembered; pass refresh=True to ask the server again.
        """
        if refresh or self._tool_list is None:
            self._tool_list = _run_blocking(self.fetch_tools())
        return self._tool_list

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Call a tool via tools/call and return its decoded JSON result."""
        return _run_blocking(self.invoke(name, arguments))

    def get_current_user(self) -> Dict[str, Any]:
        return self.call_tool("get_current_user")

    def get_categories(self) -> List[Dict[str, Any]]:
        return self.call_tool("get_categories")

    def list_expenses(self, **filters: Any) -> List[Dict[str, Any]]:
        return self.call_tool("list_expenses", filters)
