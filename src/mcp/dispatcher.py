"""
JSON-RPC 2.0 request dispatcher for the MCP method surface.

dispatch() is a pure function of (message, registry, client): it performs no
framing or I/O of its own, so the stdio and HTTP transports call the exact
same code. It never raises for a bad request; every failure becomes a
JSON-RPC error response carrying the request id.

Supported methods:
- initialize: server info and capabilities
- ping: liveness check
- tools/list: every registered tool with its inputSchema
- tools/call: validate arguments, run the tool, return a text content block

Messages without an "id" are notifications and produce no response.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from mcp import types

from ..splitwise.client import SplitwiseClient
from ..splitwise.errors import (
    MalformedResponse,
    NetworkFailure,
    NotFound,
    RateLimited,
    SplitwiseError,
    Unauthorized,
)
from .tools import ToolNotFoundError, ToolRegistry

SERVER_NAME = "splitwise-mcp-server"
SERVER_VERSION = "0.1.0"
SERVER_INSTRUCTIONS = (
    "Tools for the Splitwise expense-sharing service: users, groups, expenses, "
    "friends, currencies and categories. Call get_categories before creating "
    "expenses to choose a category_id."
)

SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
DEFAULT_PROTOCOL_VERSION = types.LATEST_PROTOCOL_VERSION

# Server-defined JSON-RPC error codes for Splitwise failures
SPLITWISE_ERROR = -32000
UNAUTHORIZED = -32001
NOT_FOUND = -32002
RATE_LIMITED = -32003
NETWORK_FAILURE = -32004
MALFORMED_RESPONSE = -32005

_ERROR_CODES = (
    (Unauthorized, UNAUTHORIZED),
    (NotFound, NOT_FOUND),
    (RateLimited, RATE_LIMITED),
    (NetworkFailure, NETWORK_FAILURE),
    (MalformedResponse, MALFORMED_RESPONSE),
)

logger = logging.getLogger(__name__)


class RequestError(Exception):
    """A JSON-RPC error to send back for the current request."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)


def error_code_for(error: SplitwiseError) -> int:
    for error_class, code in _ERROR_CODES:
        if isinstance(error, error_class):
            return code
    return SPLITWISE_ERROR


def success_response(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(
    request_id: Any,
    code: int,
    message: str,
    data: Any = None,
) -> Dict[str, Any]:
    error = types.ErrorData(code=code, message=message, data=data)
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": error.model_dump(exclude_none=True),
    }


def parse_error_response(message: str = "Parse error") -> Dict[str, Any]:
    """Response for input that was not valid JSON (the id is unknown)."""
    return error_response(None, types.PARSE_ERROR, message)


def _validation_details(error: ValidationError) -> List[Dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "arguments",
            "message": err["msg"],
        }
        for err in error.errors()
    ]


# -------- METHOD HANDLERS --------

def _initialize(params: Dict[str, Any], registry: ToolRegistry, client: SplitwiseClient) -> Dict[str, Any]:
    requested = params.get("protocolVersion")
    version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else DEFAULT_PROTOCOL_VERSION

    client_info = params.get("clientInfo") or {}
    if isinstance(client_info, dict):
        logger.info(
            "Client connected: %s %s",
            client_info.get("name", "unknown"),
            client_info.get("version", ""),
        )

    result = types.InitializeResult(
        protocolVersion=version,
        capabilities=types.ServerCapabilities(
            tools=types.ToolsCapability(listChanged=False),
        ),
        serverInfo=types.Implementation(name=SERVER_NAME, version=SERVER_VERSION),
        instructions=SERVER_INSTRUCTIONS,
    )
    return result.model_dump(by_alias=True, exclude_none=True)


def _ping(params: Dict[str, Any], registry: ToolRegistry, client: SplitwiseClient) -> Dict[str, Any]:
    return {}


def _list_tools(params: Dict[str, Any], registry: ToolRegistry, client: SplitwiseClient) -> Dict[str, Any]:
    return {
        "tools": [
            descriptor.to_mcp_tool().model_dump(by_alias=True, exclude_none=True)
            for descriptor in registry.list_tools()
        ]
    }


def _call_tool(params: Dict[str, Any], registry: ToolRegistry, client: SplitwiseClient) -> Dict[str, Any]:
    name = params.get("name")
    if not isinstance(name, str) or not name:
        raise RequestError(types.INVALID_PARAMS, "tools/call requires a tool name in params.name")

    try:
        descriptor = registry.get(name)
    except ToolNotFoundError as e:
        raise RequestError(
            types.METHOD_NOT_FOUND,
            str(e),
            {"error_type": "NotFound", "tool": name},
        )

    arguments = params.get("arguments")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise RequestError(types.INVALID_PARAMS, "params.arguments must be an object")

    try:
        parsed = descriptor.parse_arguments(arguments)
    except ValidationError as e:
        raise RequestError(
            types.INVALID_PARAMS,
            f"Invalid arguments for tool {name}",
            {"error_type": "InvalidParams", "tool": name, "errors": _validation_details(e)},
        )

    try:
        text = descriptor.call(client, parsed)
    except SplitwiseError as e:
        logger.warning("Tool %s failed: %s (%s)", name, e.message, e.error_type)
        data = e.to_dict()
        data["tool"] = name
        raise RequestError(error_code_for(e), e.message, data)

    result = types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=False,
    )
    return result.model_dump(by_alias=True, exclude_none=True)


METHODS = {
    "initialize": _initialize,
    "ping": _ping,
    "tools/list": _list_tools,
    "tools/call": _call_tool,
}


def dispatch(
    message: Any,
    registry: ToolRegistry,
    client: SplitwiseClient,
) -> Optional[Dict[str, Any]]:
    """
    Handle one decoded JSON-RPC message.

    Args:
        message: Decoded JSON value received from a transport
        registry: Tools available to tools/list and tools/call
        client: Splitwise client used by tool handlers

    Returns:
        Response envelope, or None when the message is a notification
    """
    if not isinstance(message, dict):
        return error_response(None, types.INVALID_REQUEST, "Request must be a JSON object")

    is_notification = "id" not in message
    request_id = message.get("id")
    method = message.get("method")

    if message.get("jsonrpc") != "2.0" or not isinstance(method, str):
        if is_notification:
            logger.warning("Dropping malformed notification: %r", message)
            return None
        return error_response(request_id, types.INVALID_REQUEST, "Invalid Request")

    if is_notification:
        logger.debug("Notification received: %s", method)
        return None

    params = message.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return error_response(request_id, types.INVALID_PARAMS, "params must be an object")

    handler = METHODS.get(method)
    if handler is None:
        return error_response(request_id, types.METHOD_NOT_FOUND, f"Method not found: {method}")

    logger.debug("Dispatching %s (id=%r)", method, request_id)
    try:
        result = handler(params, registry, client)
    except RequestError as e:
        return error_response(request_id, e.code, e.message, e.data)
    except Exception as e:
        logger.exception("Unexpected error handling %s", method)
        return error_response(request_id, types.INTERNAL_ERROR, f"Internal error: {e}")

    return success_response(request_id, result)
