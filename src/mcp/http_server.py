"""
HTTP transport: JSON-RPC POST bodies at /mcp, guarded by a bearer token.

Endpoints:
- POST /mcp: authenticated JSON-RPC endpoint (same dispatcher as stdio)
- GET /health: liveness probe (no auth)
- GET /: server info (no auth)

The token check happens before the body is read, so unauthenticated requests
never reach the dispatcher. Dispatch runs in Starlette's threadpool; requests
share only the read-only registry and the Splitwise client.
"""

import hmac
import json
import logging
from typing import Optional

from mcp import types
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..config import Settings
from ..splitwise.client import SplitwiseClient
from .dispatcher import (
    DEFAULT_PROTOCOL_VERSION,
    SERVER_NAME,
    SERVER_VERSION,
    dispatch,
    error_response,
    parse_error_response,
)
from .tools import ToolRegistry

MCP_PATH = "/mcp"

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def is_authorized(request: Request, auth_token: str) -> bool:
    """Constant-time comparison of the request's bearer token with the configured one."""
    token = _bearer_token(request)
    if token is None:
        return False
    return hmac.compare_digest(token.encode("utf-8"), auth_token.encode("utf-8"))


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        {"error": "Unauthorized", "message": "A valid bearer token is required"},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_app(
    registry: ToolRegistry,
    client: SplitwiseClient,
    auth_token: str,
) -> Starlette:
    """
    Build the ASGI application.

    Args:
        registry: Tool registry shared with the dispatcher
        client: Splitwise client used by tool handlers
        auth_token: Bearer token every POST /mcp must present

    Returns:
        Starlette app ready to be served by uvicorn
    """

    async def mcp_endpoint(request: Request) -> Response:
        if not is_authorized(request, auth_token):
            peer = request.client.host if request.client else "unknown"
            logger.warning("Rejected unauthenticated request from %s", peer)
            return _unauthorized()

        body = await request.body()
        try:
            message = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Malformed JSON body: %s", e)
            return JSONResponse(parse_error_response(), status_code=400)

        try:
            response = await run_in_threadpool(dispatch, message, registry, client)
        except Exception as e:
            # dispatch() handles its own errors; this only guards the transport
            logger.exception("Dispatcher crashed")
            return JSONResponse(
                error_response(None, types.INTERNAL_ERROR, f"Internal error: {e}"),
                status_code=500,
            )

        if response is None:
            return Response(status_code=202)
        return JSONResponse(response)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "service": SERVER_NAME,
            "transport": "http",
        })

    async def server_info(request: Request) -> JSONResponse:
        return JSONResponse({
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
            "protocol": DEFAULT_PROTOCOL_VERSION,
            "transport": "http",
            "capabilities": {
                "tools": True,
                "resources": False,
                "prompts": False,
            },
            "tools": len(registry),
            "endpoints": {
                "mcp": MCP_PATH,
                "health": "/health",
                "info": "/",
            },
        })

    return Starlette(
        routes=[
            Route(MCP_PATH, mcp_endpoint, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
            Route("/", server_info, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type"],
            ),
        ],
    )


def run_http_server(
    settings: Settings,
    registry: ToolRegistry,
    client: SplitwiseClient,
) -> None:
    """Serve the HTTP transport with uvicorn until the process is stopped."""
    import uvicorn

    if settings.uses_default_token:
        logger.warning("MCP_AUTH_TOKEN not set, using the default token (INSECURE!)")

    app = create_app(registry, client, settings.auth_token)
    logger.info("HTTP server listening on %s:%d", settings.host, settings.port)
    logger.info("MCP endpoint: http://localhost:%d%s", settings.port, MCP_PATH)
    logger.info("Using auth token: %s", "DEFAULT (INSECURE!)" if settings.uses_default_token else "CUSTOM")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
