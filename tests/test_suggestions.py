"""
Tests for follow-up suggestions: validation, model output handling and heuristics.
"""

from __future__ import annotations

import pytest


def test_validate_suggestions_filters_caps_and_dedupes() -> None:
    from explorer.chat.suggestions import validate_suggestions

    out = validate_suggestions(
        [
            {"text": "Rank the best to worst schools in Queens", "category": "explore"},
            {"text": "Show the full profile for P.S. 211", "category": "explore"},
            {"text": "show the full profile for p.s. 211", "category": "explore"},
            {"text": "x" * 120, "category": "explain"},
            {"text": "Chart Impact vs. Economic Need in Bronx", "category": "visualize"},
            {"text": "One too many", "category": "compare"},
        ]
    )
    assert len(out) == 3
    assert out[0]["text"] == "Show the full profile for P.S. 211"
    assert len(out[1]["text"]) == 80
    assert all("worst" not in s["text"] for s in out)


def test_heuristics_build_on_session_history() -> None:
    from explorer.chat.suggestions import heuristic_suggestions

    out = heuristic_suggestions(
        [{"name": "search_schools", "parameters": {"borough": "Brooklyn"}}],
        [{"name": "P.S. 211 Harbor View", "dbn": "13K211"}],
        "Here are some schools.",
    )
    assert [s["text"] for s in out] == [
        "Show the full profile for P.S. 211 Harbor View",
        "Find schools similar to P.S. 211 Harbor View",
        "Chart Impact vs. Economic Need in Brooklyn",
    ]
    assert {s["category"] for s in out} <= {"explore", "compare", "explain", "visualize"}


def test_heuristics_without_history_still_suggest() -> None:
    from explorer.chat.suggestions import heuristic_suggestions

    out = heuristic_suggestions([], [], "Queens schools show higher attendance.")
    assert len(out) == 3
    assert out[0]["text"] == "Chart Impact vs. Economic Need in Queens"


def test_model_suggestions_are_validated(monkeypatch) -> None:
    from explorer.chat import suggestions as mod

    monkeypatch.setattr(
        mod,
        "generate_json",
        lambda *a, **k: (
            {
                "suggestions": [
                    {"text": "Which schools should I avoid?", "category": "explore"},
                    {"text": "How is Impact Score calculated?", "category": "explain"},
                    {"text": "Plot ENI vs Impact", "category": "not-a-category"},
                ]
            },
            None,
        ),
    )
    assert mod.generate_suggestions_sync("q", "a", []) == [
        {"text": "How is Impact Score calculated?", "category": "explain"},
        {"text": "Plot ENI vs Impact", "category": "explore"},
    ]


def test_model_suggestions_happy_path(monkeypatch) -> None:
    from explorer.chat import suggestions as mod

    seen = {}

    def fake(prompt, **kwargs):
        seen["prompt"] = prompt
        return (
            {
                "suggestions": [
                    {"text": "Which schools should I avoid?", "category": "explore"},
                    {"text": "How is Impact Score calculated?", "category": "explain"},
                ]
            },
            None,
        )

    monkeypatch.setattr(mod, "generate_json", fake)
    out = mod.generate_suggestions_sync(
        "Brooklyn growth", "Answer", [{"name": "search_schools", "parameters": {"borough": "Brooklyn"}}]
    )
    assert out == [{"text": "How is Impact Score calculated?", "category": "explain"}]
    assert 'search_schools({"borough": "Brooklyn"})' in seen["prompt"]


def test_mock_mode_yields_no_model_suggestions() -> None:
    from explorer.chat.suggestions import generate_suggestions_sync

    assert generate_suggestions_sync("q", "a", []) is None


@pytest.mark.asyncio
async def test_generate_suggestions_async_wrapper(monkeypatch) -> None:
    from explorer.chat import suggestions as mod

    monkeypatch.setattr(
        mod, "generate_json", lambda *a, **k: ({"suggestions": [{"text": "Explain ENI", "category": "explain"}]}, None)
    )
    assert await mod.generate_suggestions("q", "a", []) == [{"text": "Explain ENI", "category": "explain"}]


def test_model_prompt_sees_capped_raw_tool_results(monkeypatch) -> None:
    from explorer.chat import suggestions as mod

    seen = {}

    def fake(prompt, **kwargs):
        seen["prompt"] = prompt
        return None, "timeout"

    monkeypatch.setattr(mod, "generate_json", fake)
    raw = '{"schools": [{"dbn": "09X114", "name": "P.S. 114 Grand Concourse"}]}' + "x" * 5000
    assert mod.generate_suggestions_sync("Bronx growth", "Answer", [], raw) is None

    prompt = seen["prompt"]
    assert "P.S. 114 Grand Concourse" in prompt
    assert raw[: mod.PROMPT_TOOL_RESULTS_CHARS] in prompt
    assert raw[: mod.PROMPT_TOOL_RESULTS_CHARS + 1] not in prompt


def test_model_prompt_without_tool_results(monkeypatch) -> None:
    from explorer.chat import suggestions as mod

    seen = {}

    def fake(prompt, **kwargs):
        seen["prompt"] = prompt
        return None, "timeout"

    monkeypatch.setattr(mod, "generate_json", fake)
    mod.generate_suggestions_sync("q", "a", [])
    assert "Tool results (truncated):\nNone" in seen["prompt"]
