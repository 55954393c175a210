"""
HTTP tests for the streaming chat endpoint (LLM_MOCK, no network).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

import pytest


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from explorer.api.server import app

    with TestClient(app) as c:
        yield c


def _frames(body: str) -> List[Tuple[str, Dict[str, Any]]]:
    out = []
    for block in body.split("\n\n"):
        if not block.strip():
            continue
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        out.append((lines["event"], json.loads(lines["data"])))
    return out


def _ask(client, text: str = "Tell me about Bronx schools", **kwargs):
    return client.post("/api/chat", json={"messages": [{"role": "user", "content": text}]}, **kwargs)


def test_status_and_health(client) -> None:
    assert client.get("/healthz").json() == {"ok": True}
    assert client.get("/api/chat").json()["status"] == "ok"


def test_chat_streams_sse_frames(client, flush_audit) -> None:
    from explorer.llm.client_streaming import MOCK_REPLY

    r = _ask(client)
    flush_audit()

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    assert r.headers["x-ratelimit-limit"] == "10"
    assert r.headers["x-ratelimit-remaining"] == "9"

    frames = _frames(r.text)
    types = [t for t, _ in frames]
    assert types[:2] == ["text_delta", "done"]
    assert frames[0][1] == {"text": MOCK_REPLY}
    assert frames[1][1]["evaluating"] is True
    assert sorted(types[2:]) == ["evaluation", "suggested_queries"]


def test_blocked_query_streams_reframe(client) -> None:
    r = _ask(client, "Rank the best to worst schools in Queens")
    frames = _frames(r.text)
    assert [t for t, _ in frames] == ["text_delta", "done"]
    assert "rank" in frames[0][1]["text"].lower()


@pytest.mark.parametrize(
    "payload, error",
    [
        ({"messages": []}, "Messages are required"),
        ({}, "Messages are required"),
        ({"messages": [{"role": "assistant", "content": "hi"}]}, "The last message must be from the user"),
        ({"messages": [{"role": "system", "content": "hi"}]}, "Invalid chat request"),
        ({"messages": "nope"}, "Invalid chat request"),
    ],
)
def test_chat_rejects_bad_requests(client, payload, error) -> None:
    r = client.post("/api/chat", json=payload)
    assert r.status_code == 400
    assert r.json()["error"] == error


def test_chat_rejects_invalid_json(client) -> None:
    r = client.post("/api/chat", content=b"{not json", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid JSON body"


def test_chat_rate_limit(client, monkeypatch) -> None:
    monkeypatch.setenv("CHAT_RATE_LIMIT_PER_MINUTE", "1")

    assert _ask(client, headers={"x-forwarded-for": "10.0.0.1"}).status_code == 200
    r = _ask(client, headers={"x-forwarded-for": "10.0.0.1, 172.16.0.1"})
    assert r.status_code == 429
    body = r.json()
    assert body["code"] == "RATE_LIMIT"
    assert 1 <= body["retryAfter"] <= 60
    assert r.headers["retry-after"] == str(body["retryAfter"])
    assert r.headers["x-ratelimit-remaining"] == "0"

    # Another caller is admitted independently.
    assert _ask(client, headers={"x-forwarded-for": "10.0.0.2"}).status_code == 200


def test_chat_budget_exceeded(client, monkeypatch) -> None:
    monkeypatch.setenv("DAILY_BUDGET_USD", "0")

    r = _ask(client)
    assert r.status_code == 503
    assert r.json()["code"] == "BUDGET_EXCEEDED"


def test_chat_admission_is_charged_before_body_is_streamed(client, monkeypatch) -> None:
    from explorer.auth.rate_limit import get_chat_rate_limiter

    monkeypatch.setenv("CHAT_RATE_LIMIT_PER_MINUTE", "2")
    _ask(client, headers={"x-real-ip": "10.9.9.9"})
    d = get_chat_rate_limiter().check("10.9.9.9")
    assert d.allowed and d.remaining == 0


@pytest.mark.asyncio
async def test_client_disconnect_does_not_cancel_session() -> None:
    import asyncio

    from explorer.api import server
    from explorer.chat.channel import ChatStreamEvent, EventChannel

    finished = []

    async def session():
        yield ChatStreamEvent("text_delta", {"text": "first"})
        await asyncio.sleep(0.05)
        yield ChatStreamEvent("text_delta", {"text": "second"})
        yield ChatStreamEvent("done", {"usage": {}})
        finished.append(True)

    channel = EventChannel()
    task = server.start_chat_session(channel, session())
    assert task in server._background_tasks

    body = server._sse_body(channel)
    first = await body.__anext__()
    assert first.startswith("event: text_delta\n") and '"first"' in first
    await body.aclose()

    await asyncio.wait_for(task, timeout=2)
    await asyncio.sleep(0)
    assert finished == [True]
    assert channel.closed
    assert task not in server._background_tasks
