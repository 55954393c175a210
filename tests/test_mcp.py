"""
Tests for the JSON-RPC tool adapter, directly and over HTTP.
"""

from __future__ import annotations

import json

import pytest


def _rpc(body, **kwargs):
    from explorer.api.mcp import handle_rpc_body
    from explorer.tools.registry import get_registry

    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    return handle_rpc_body(raw, registry=get_registry(), **kwargs)


def test_initialize() -> None:
    reply = _rpc({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"clientInfo": {"name": "cli"}}})
    assert reply.status_code == 200
    result = reply.body["result"]
    assert result["protocolVersion"] == "2025-06-18"
    assert result["serverInfo"] == {"name": "nyc-schools-data", "version": "1.0.0"}
    assert result["capabilities"] == {"tools": {}}
    assert reply.body["id"] == 1


def test_tools_list_matches_registry() -> None:
    from explorer.tools.registry import get_registry

    reply = _rpc({"jsonrpc": "2.0", "id": "a", "method": "tools/list"})
    tools = reply.body["result"]["tools"]
    assert [t["name"] for t in tools] == get_registry().names
    assert all(t["inputSchema"]["type"] == "object" for t in tools)


def test_tools_call_returns_text_content() -> None:
    reply = _rpc(
        {
            "jsonrpc": "2.0",
            "id": 7,
            "method": "tools/call",
            "params": {"name": "search_schools", "arguments": {"borough": "Brooklyn", "min_eni": 0.85, "min_impact_score": 0.55}},
        }
    )
    assert reply.status_code == 200
    content = reply.body["result"]["content"]
    assert content[0]["type"] == "text"
    payload = json.loads(content[0]["text"])
    assert payload["_context"]["sample_size"] == 5
    # Adapter results are not compressed: full records come back.
    assert "total_budget" in payload["schools"][0]


@pytest.mark.parametrize(
    "params, message",
    [
        ({"name": "rank_schools"}, "Unknown tool: rank_schools"),
        ({"arguments": {}}, "tools/call requires name parameter"),
        ({"name": "explain_metrics", "arguments": {"topic": "astrology"}}, "explain_metrics: topic"),
    ],
)
def test_tools_call_invalid_params(params, message) -> None:
    reply = _rpc({"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": params})
    assert reply.status_code == 400
    assert reply.body["error"]["code"] == -32602
    assert message in reply.body["error"]["message"]


def test_tools_call_handler_failure_is_internal_error() -> None:
    reply = _rpc(
        {
            "jsonrpc": "2.0",
            "id": 4,
            "method": "tools/call",
            "params": {"name": "generate_chart", "arguments": {"chart_type": "scatter", "x_metric": "impact_score"}},
        }
    )
    assert reply.status_code == 500
    assert reply.body["error"]["code"] == -32603


def test_unknown_method() -> None:
    reply = _rpc({"jsonrpc": "2.0", "id": 9, "method": "resources/list"})
    assert reply.status_code == 400
    assert reply.body["error"] == {"code": -32601, "message": "Method not found"}


@pytest.mark.parametrize(
    "body",
    [
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "id": 5, "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "method": "tools/call", "params": {"name": "search_schools"}},
        {"jsonrpc": "2.0", "id": None, "method": "whatever"},
    ],
)
def test_notifications_are_acknowledged_without_body(body) -> None:
    reply = _rpc(body)
    assert reply.status_code == 202
    assert reply.body is None


@pytest.mark.parametrize(
    "raw, code",
    [
        (b"{broken", -32700),
        (b"[1, 2]", -32600),
        (json.dumps({"jsonrpc": "1.0", "id": 1, "method": "ping"}).encode(), -32600),
        (json.dumps({"jsonrpc": "2.0", "id": 1}).encode(), -32600),
        (json.dumps({"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": [1]}).encode(), -32602),
    ],
)
def test_malformed_messages(raw, code) -> None:
    reply = _rpc(raw)
    assert reply.status_code == 400
    assert reply.body["error"]["code"] == code


def test_ping() -> None:
    assert _rpc({"jsonrpc": "2.0", "id": 2, "method": "ping"}).body["result"] == {}


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from explorer.api.server import app

    return TestClient(app)


def test_http_status_and_round_trip(client) -> None:
    assert client.get("/api/mcp").json()["protocolVersion"] == "2025-06-18"

    r = client.post("/api/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    assert r.status_code == 200
    assert len(r.json()["result"]["tools"]) == 7

    n = client.post("/api/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert n.status_code == 202
    assert n.content == b""


def test_http_rate_limit(client, monkeypatch) -> None:
    monkeypatch.setenv("MCP_RATE_LIMIT_PER_MINUTE", "60")
    ping = {"jsonrpc": "2.0", "id": 1, "method": "ping"}

    for _ in range(60):
        assert client.post("/api/mcp", json=ping).status_code == 200
    r = client.post("/api/mcp", json=ping)
    assert r.status_code == 429
    err = r.json()["error"]
    assert err["code"] == -32002
    assert 1 <= err["data"]["retryAfter"] <= 60
