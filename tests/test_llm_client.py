"""
Tests for the provider-agnostic LLM client (no network).
"""

from __future__ import annotations

import pytest


def test_generate_json_mock_returns_schema_defaults() -> None:
    from explorer.llm.client import generate_json
    from explorer.llm.schemas import EvaluationResponse

    obj, err = generate_json("anything", schema=EvaluationResponse)
    assert err is None
    assert obj["scores"]["factual_accuracy"] == 3
    assert obj["flags"] == []


def test_missing_api_key_is_an_error_code(monkeypatch) -> None:
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")

    from explorer.llm.client import generate_json, get_chat_model

    llm, cfg, err = get_chat_model()
    assert llm is None
    assert err == "missing_api_key"
    assert cfg.model == "claude-sonnet-4-5"

    obj, err2 = generate_json("x")
    assert obj is None
    assert err2 == "missing_api_key"


def test_vertex_requires_project_and_location(monkeypatch) -> None:
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "vertex")
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

    from explorer.llm.client import get_chat_model

    llm, cfg, err = get_chat_model(model="gemini-override")
    assert llm is None
    assert err == "missing_gcp_project"
    assert cfg.model == "gemini-override"


def test_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "nope")

    from explorer.llm.client import get_chat_model

    assert get_chat_model()[2] == "provider_not_configured"


def test_config_is_clamped(monkeypatch) -> None:
    monkeypatch.setenv("LLM_TEMPERATURE", "7")
    monkeypatch.setenv("LLM_MAX_OUTPUT_TOKENS", "10")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "bad")

    from explorer.llm.client import _load_config

    cfg = _load_config()
    assert cfg.temperature == 1.0
    assert cfg.max_output_tokens == 64
    assert cfg.timeout == 120


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('Sure! Here you go: {"a": {"b": "}"}} trailing', {"a": {"b": "}"}}),
        ("no json here", None),
        ("", None),
    ],
)
def test_extract_json_object(text, expected) -> None:
    from explorer.llm.client import _extract_json_object

    assert _extract_json_object(text) == expected


@pytest.mark.parametrize(
    "exc, code",
    [
        (TimeoutError("slow"), "timeout"),
        (RuntimeError("504 Gateway Timeout"), "gateway_timeout"),
        (RuntimeError("DEADLINE_EXCEEDED"), "deadline_exceeded"),
        (RuntimeError("403 PERMISSION_DENIED"), "permission_denied"),
        (RuntimeError("401 unauthorized"), "unauthenticated"),
        (RuntimeError("404 model not found"), "model_not_found:m"),
        (RuntimeError("429 Too Many Requests"), "rate_limited"),
        (RuntimeError("overloaded_error"), "rate_limited"),
        (ValueError("weird"), "llm_error:ValueError"),
    ],
)
def test_classify_error(exc, code) -> None:
    from explorer.llm.client import _classify_error

    assert _classify_error(exc, model="m") == code


@pytest.mark.asyncio
async def test_stream_model_turn_mock() -> None:
    from explorer.llm.client_streaming import MOCK_REPLY, stream_model_turn

    chunks = [c async for c in stream_model_turn([], tools=[{"type": "function"}])]
    assert "".join(c.content for c in chunks if c.turn is None) == MOCK_REPLY
    turn = chunks[-1].turn
    assert turn is not None
    assert turn.text == MOCK_REPLY
    assert turn.stop_reason == "end_turn"


@pytest.mark.asyncio
async def test_stream_model_turn_config_error(monkeypatch) -> None:
    monkeypatch.delenv("LLM_MOCK", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")

    from explorer.llm.client_streaming import UpstreamModelError, stream_model_turn

    with pytest.raises(UpstreamModelError) as ei:
        async for _ in stream_model_turn([]):
            pass
    assert ei.value.code == "missing_api_key"


def test_model_turn_stop_reason() -> None:
    from explorer.llm.client_streaming import ModelTurn

    assert ModelTurn(tool_calls=[{"id": "t", "name": "search_schools", "args": {}}]).stop_reason == "tool_use"
    assert ModelTurn(text="hi").stop_reason == "end_turn"
