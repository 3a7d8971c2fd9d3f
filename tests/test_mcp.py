"""
Tests for the MCP server: dispatcher, stdio transport and HTTP transport.

This file contains three kinds of tests:
1. Dispatcher unit tests that call dispatch() directly with a mocked Splitwise client
2. Transport tests that drive the stdio loop and the Starlette app in-process
3. Integration tests that talk to a running server through the MCP client

Integration tests need a server started with:
    python run_servers.py mcp --transport http --port 8080
and are skipped when none is running.
"""

import io
import json
import os
import sys
from unittest.mock import MagicMock, patch

import pytest
from mcp import types
from starlette.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.mcp import build_registry, create_app, dispatch, run_stdio
from src.mcp.dispatcher import (
    MALFORMED_RESPONSE,
    NETWORK_FAILURE,
    NOT_FOUND,
    RATE_LIMITED,
    SERVER_NAME,
    SPLITWISE_ERROR,
    UNAUTHORIZED,
)
from src.mcp.mcp_client import MCPToolError, SplitwiseMCPClient, decode_tool_result
from src.splitwise import (
    MalformedResponse,
    NetworkFailure,
    NotFound,
    RateLimited,
    SplitwiseAPIError,
    SplitwiseClient,
    Unauthorized,
)
from src.splitwise.models import Category

AUTH_TOKEN = "test-token"


def request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def client():
    return MagicMock(spec=SplitwiseClient)


class TestDispatcher:
    """Unit tests for JSON-RPC dispatch."""

    def test_initialize(self, registry, client):
        """Test initialize reports server info and the tools capability."""
        response = dispatch(request("initialize", {
            "protocolVersion": "2024-11-05",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "1.0"},
        }), registry, client)

        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == "2024-11-05"
        assert result["serverInfo"]["name"] == SERVER_NAME
        assert "tools" in result["capabilities"]
        assert client.method_calls == []

    def test_initialize_unknown_version(self, registry, client):
        """Test an unsupported protocol version gets the server's latest."""
        response = dispatch(request("initialize", {"protocolVersion": "1999-01-01"}), registry, client)

        assert response["result"]["protocolVersion"] != "1999-01-01"

    def test_ping(self, registry, client):
        """Test ping returns an empty result."""
        assert dispatch(request("ping", request_id=9), registry, client) == {
            "jsonrpc": "2.0", "id": 9, "result": {},
        }

    def test_tools_list(self, registry, client):
        """Test tools/list returns every tool with its schema, in a stable order."""
        first = dispatch(request("tools/list"), registry, client)
        second = dispatch(request("tools/list", request_id=2), registry, client)

        tools = first["result"]["tools"]
        assert [tool["name"] for tool in tools] == registry.names()
        assert first["result"] == second["result"]
        for tool in tools:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"

    @pytest.mark.parametrize("request_id", [7, "abc-7", 0])
    def test_id_echoed(self, registry, client, request_id):
        """Test the response id matches the request id exactly."""
        response = dispatch(request("ping", request_id=request_id), registry, client)
        assert response["id"] == request_id

    def test_call_tool(self, registry, client):
        """Test a successful tools/call returns one JSON text block."""
        client.get_categories.return_value = [
            Category.model_validate({"id": 25, "name": "Food and drink"}),
        ]

        response = dispatch(request("tools/call", {"name": "get_categories", "arguments": {}}, 2),
                            registry, client)

        assert response["id"] == 2
        result = response["result"]
        assert result["isError"] is False
        assert len(result["content"]) == 1
        assert result["content"][0]["type"] == "text"
        assert json.loads(result["content"][0]["text"]) == [{"id": 25, "name": "Food and drink"}]
        client.get_categories.assert_called_once_with()

    def test_call_tool_without_arguments(self, registry, client):
        """Test omitted arguments are treated as an empty object."""
        client.get_friends.return_value = []

        response = dispatch(request("tools/call", {"name": "list_friends"}), registry, client)

        assert json.loads(response["result"]["content"][0]["text"]) == []

    def test_unknown_tool(self, registry, client):
        """Test calling an unregistered tool."""
        response = dispatch(request("tools/call", {"name": "get_balance", "arguments": {}}, 3),
                            registry, client)

        assert response["id"] == 3
        assert response["error"]["code"] == -32601
        assert response["error"]["data"]["error_type"] == "NotFound"
        assert "get_balance" in response["error"]["message"]
        assert client.method_calls == []

    def test_missing_required_argument(self, registry, client):
        """Test invalid arguments are rejected before any Splitwise call."""
        response = dispatch(request("tools/call", {"name": "get_user", "arguments": {}}, 4),
                            registry, client)

        error = response["error"]
        assert error["code"] == -32602
        assert error["data"]["error_type"] == "InvalidParams"
        assert error["data"]["errors"][0]["field"] == "user_id"
        assert client.method_calls == []

    @pytest.mark.parametrize("arguments", [
        {"expense_id": 3},
        {"expense_id": 3, "split_by_shares": []},
    ])
    def test_update_without_changes(self, registry, client, arguments):
        """Test update_expense with no changed fields is invalid params."""
        response = dispatch(request("tools/call", {"name": "update_expense", "arguments": arguments}),
                            registry, client)

        assert response["error"]["code"] == -32602
        assert client.method_calls == []

    @pytest.mark.parametrize("cost", ["NaN", "sNaN", "Infinity"])
    def test_non_finite_cost(self, registry, client, cost):
        """Test non-finite amounts never reach Splitwise."""
        response = dispatch(request("tools/call", {
            "name": "create_expense",
            "arguments": {"cost": cost, "description": "Taxi", "group_id": 3},
        }), registry, client)

        assert response["error"]["code"] == -32602
        assert response["error"]["data"]["errors"][0]["field"] == "cost"
        assert client.method_calls == []

    def test_arguments_must_be_object(self, registry, client):
        """Test non-object arguments are invalid params."""
        response = dispatch(request("tools/call", {"name": "get_user", "arguments": [1]}), registry, client)

        assert response["error"]["code"] == -32602

    def test_missing_tool_name(self, registry, client):
        """Test tools/call without a name is invalid params."""
        response = dispatch(request("tools/call", {"arguments": {}}), registry, client)

        assert response["error"]["code"] == -32602

    @pytest.mark.parametrize("error,code", [
        (Unauthorized("Invalid API key", status_code=401), UNAUTHORIZED),
        (NotFound("Group not found", status_code=404), NOT_FOUND),
        (RateLimited("Slow down", retry_after="5", status_code=429), RATE_LIMITED),
        (NetworkFailure("Connection refused"), NETWORK_FAILURE),
        (MalformedResponse("Unexpected body"), MALFORMED_RESPONSE),
        (SplitwiseAPIError("Server error", status_code=500), SPLITWISE_ERROR),
    ])
    def test_splitwise_errors(self, registry, client, error, code):
        """Test each Splitwise failure maps to its JSON-RPC error code."""
        client.get_group.side_effect = error

        response = dispatch(request("tools/call", {"name": "get_group", "arguments": {"group_id": 5}}),
                            registry, client)

        assert response["error"]["code"] == code
        assert response["error"]["message"] == error.message
        assert response["error"]["data"]["error_type"] == error.error_type
        assert response["error"]["data"]["tool"] == "get_group"
        client.get_group.assert_called_once_with(5)

    def test_rate_limit_reports_retry_after(self, registry, client):
        """Test RateLimited errors keep the Retry-After value."""
        client.get_groups.side_effect = RateLimited("Slow down", retry_after="5", status_code=429)

        response = dispatch(request("tools/call", {"name": "list_groups"}), registry, client)

        assert response["error"]["data"]["retry_after"] == "5"

    def test_unexpected_exception(self, registry, client):
        """Test an unexpected handler failure becomes an internal error."""
        client.get_groups.side_effect = RuntimeError("boom")

        response = dispatch(request("tools/call", {"name": "list_groups"}, 11), registry, client)

        assert response["id"] == 11
        assert response["error"]["code"] == -32603

    def test_unknown_method(self, registry, client):
        """Test an unknown method."""
        response = dispatch(request("resources/list"), registry, client)

        assert response["error"]["code"] == -32601
        assert response["error"]["message"] == "Method not found: resources/list"

    def test_notification_has_no_response(self, registry, client):
        """Test messages without an id get no response."""
        message = {"jsonrpc": "2.0", "method": "notifications/initialized"}

        assert dispatch(message, registry, client) is None

    @pytest.mark.parametrize("message", [
        [],
        "ping",
        {"id": 1, "method": "ping"},
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        {"jsonrpc": "2.0", "id": 1},
    ])
    def test_invalid_request(self, registry, client, message):
        """Test malformed envelopes are invalid requests."""
        response = dispatch(message, registry, client)

        assert response["error"]["code"] == -32600

    def test_params_must_be_object(self, registry, client):
        """Test non-object params are invalid params."""
        response = dispatch({"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": [1]},
                            registry, client)

        assert response["error"]["code"] == -32602


class TestStdioTransport:
    """Tests for the newline-delimited stdio loop."""

    def run(self, registry, client, lines):
        stdin = io.StringIO("".join(line + "\n" for line in lines))
        stdout = io.StringIO()
        written = run_stdio(registry, client, stdin=stdin, stdout=stdout)
        responses = [json.loads(line) for line in stdout.getvalue().splitlines()]
        assert written == len(responses)
        return responses

    def test_one_response_per_request_in_order(self, registry, client):
        """Test responses are written one per line in request order."""
        responses = self.run(registry, client, [
            json.dumps(request("initialize", {"protocolVersion": "2025-03-26"}, 1)),
            json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
            json.dumps(request("tools/list", request_id=2)),
            "",
            json.dumps(request("ping", request_id=3)),
        ])

        assert [response["id"] for response in responses] == [1, 2, 3]

    def test_malformed_line(self, registry, client):
        """Test a malformed line gets a parse error and the loop continues."""
        responses = self.run(registry, client, [
            "{not json",
            json.dumps(request("ping", request_id=5)),
        ])

        assert responses[0]["id"] is None
        assert responses[0]["error"]["code"] == -32700
        assert responses[1] == {"jsonrpc": "2.0", "id": 5, "result": {}}

    def test_undecodable_line(self, registry, client):
        """Test a line that is not UTF-8 gets a parse error and the next request is still served."""
        ping = json.dumps(request("ping", request_id=5)).encode("utf-8")
        stdin = io.TextIOWrapper(io.BytesIO(b"\xff\xfe garbage\n" + ping + b"\n"), encoding="utf-8")
        stdout = io.StringIO()

        written = run_stdio(registry, client, stdin=stdin, stdout=stdout)

        responses = [json.loads(line) for line in stdout.getvalue().splitlines()]
        assert written == 2
        assert responses[0]["id"] is None
        assert responses[0]["error"]["code"] == -32700
        assert responses[1] == {"jsonrpc": "2.0", "id": 5, "result": {}}

    def test_empty_input(self, registry, client):
        """Test the loop ends cleanly at end of input."""
        assert self.run(registry, client, []) == []


class TestHttpTransport:
    """Tests for the Starlette app behind the HTTP transport."""

    @pytest.fixture
    def http(self, registry, client):
        return TestClient(create_app(registry, client, AUTH_TOKEN))

    @pytest.fixture
    def auth(self):
        return {"Authorization": f"Bearer {AUTH_TOKEN}"}

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": "Bearer wrong-token"},
        {"Authorization": f"Basic {AUTH_TOKEN}"},
    ])
    def test_rejects_bad_credentials(self, http, client, headers):
        """Test requests without the right token never reach the dispatcher."""
        with patch("src.mcp.http_server.dispatch") as mock_dispatch:
            response = http.post("/mcp", json=request("tools/list"), headers=headers)

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        mock_dispatch.assert_not_called()
        assert client.method_calls == []

    def test_request(self, http, auth):
        """Test an authorized request is dispatched and its id echoed."""
        response = http.post("/mcp", json=request("tools/list", request_id="req-1"), headers=auth)

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "req-1"
        assert len(body["result"]["tools"]) == 15

    def test_tool_call(self, http, client, auth):
        """Test tools/call over HTTP."""
        client.get_currencies.return_value = []

        response = http.post("/mcp", json=request("tools/call", {"name": "get_currencies"}), headers=auth)

        assert response.status_code == 200
        assert response.json()["result"]["content"][0]["text"] == "[]"

    def test_error_responses_use_200(self, http, auth):
        """Test JSON-RPC errors are carried in a 200 response."""
        response = http.post("/mcp", json=request("tools/call", {"name": "nope"}), headers=auth)

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_malformed_body(self, http, auth):
        """Test a body that is not JSON gets a parse error."""
        response = http.post("/mcp", content=b"{not json", headers={**auth, "Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700
        assert response.json()["id"] is None

    def test_notification(self, http, auth):
        """Test notifications are accepted with no body."""
        response = http.post(
            "/mcp",
            json={"jsonrpc": "2.0", "method": "notifications/initialized"},
            headers=auth,
        )

        assert response.status_code == 202
        assert response.content == b""

    def test_dispatcher_crash(self, http, auth):
        """Test a dispatcher crash becomes a 500 with an internal error."""
        with patch("src.mcp.http_server.dispatch", side_effect=RuntimeError("boom")):
            response = http.post("/mcp", json=request("ping"), headers=auth)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == -32603

    def test_get_not_allowed(self, http, auth):
        """Test only POST is served at /mcp."""
        assert http.get("/mcp", headers=auth).status_code == 405

    def test_health(self, http):
        """Test the health endpoint needs no token."""
        response = http.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_server_info(self, http):
        """Test the info endpoint."""
        body = http.get("/").json()

        assert body["name"] == SERVER_NAME
        assert body["tools"] == 15
        assert body["endpoints"]["mcp"] == "/mcp"


class TestMCPClientSetup:
    """Tests for the MCP client that need no running server."""

    def test_url_normalization(self):
        """Test /mcp is appended to the server URL."""
        client = SplitwiseMCPClient("http://test:8080/", auth_token="secret")

        assert client.endpoint == "http://test:8080/mcp"
        assert client.server_url == "http://test:8080"

    def test_url_with_path(self):
        """Test a URL that already ends in /mcp is kept."""
        assert SplitwiseMCPClient("http://test:8080/mcp").endpoint == "http://test:8080/mcp"

    def test_bearer_header(self):
        """Test the client sends the configured token."""
        client = SplitwiseMCPClient("http://test:8080", auth_token="secret")

        assert client.headers == {"Authorization": "Bearer secret"}

    def test_decode_result(self):
        """Test a successful result is decoded from its JSON text block."""
        result = types.CallToolResult(content=[types.TextContent(type="text", text='[{"id": 1}]')])

        assert decode_tool_result("list_groups", result) == [{"id": 1}]

    def test_decode_error_result(self):
        """Test an isError result raises MCPToolError with the tool name."""
        result = types.CallToolResult(
            content=[types.TextContent(type="text", text="Group not found")],
            isError=True,
        )

        with pytest.raises(MCPToolError) as exc_info:
            decode_tool_result("get_group", result)
        assert exc_info.value.tool_name == "get_group"
        assert exc_info.value.message == "Group not found"


class TestMCPClientProtocol:
    """
    Integration tests through the MCP protocol.
    These require a running server: python run_servers.py mcp --transport http
    """

    @pytest.fixture
    def client(self):
        return SplitwiseMCPClient()

    @pytest.mark.integration
    def test_list_tools_via_protocol(self, client):
        """Test tools/list through a real MCP session."""
        try:
            tools = client.list_tools(refresh=True)
        except Exception as e:
            pytest.skip(f"MCP server not available: {e}")

        assert {tool["name"] for tool in tools} == set(build_registry().names())
        for tool in tools:
            assert tool["description"]
            assert tool["inputSchema"].get("type") == "object"

    @pytest.mark.integration
    def test_get_categories_via_protocol(self, client):
        """Test calling a read-only tool through a real MCP session."""
        try:
            categories = client.get_categories()
        except Exception as e:
            pytest.skip(f"MCP server not available: {e}")

        assert isinstance(categories, list)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
