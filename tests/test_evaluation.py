"""
Tests for response evaluation: weighted scoring, confidence levels and the judge call.
"""

from __future__ import annotations

import pytest


def _scores(fa, ci, la, rf, qr):
    return {
        "factual_accuracy": fa,
        "context_inclusion": ci,
        "limitation_acknowledgment": la,
        "responsible_framing": rf,
        "query_relevance": qr,
    }


def test_weighted_score_bounds_and_midpoint() -> None:
    from explorer.chat.evaluation import calculate_weighted_score

    assert calculate_weighted_score(_scores(1, 1, 1, 1, 1)) == 0
    assert calculate_weighted_score(_scores(5, 5, 5, 5, 5)) == 100
    assert calculate_weighted_score(_scores(3, 3, 3, 3, 3)) == 50
    assert calculate_weighted_score(_scores(5, 5, 4, 4, 4)) == 86


def test_weighted_score_missing_and_out_of_range() -> None:
    from explorer.chat.evaluation import calculate_weighted_score

    assert calculate_weighted_score({}) == 0
    assert calculate_weighted_score(_scores(9, 9, 9, 9, 9)) == 100
    assert calculate_weighted_score(_scores("x", 5, 5, 5, 5)) == 75


@pytest.mark.parametrize(
    "score, level",
    [(100, "high"), (90, "high"), (89, "verified"), (75, "verified"), (74, "review_suggested"), (60, "review_suggested"), (59, "low"), (0, "low")],
)
def test_confidence_level(score, level) -> None:
    from explorer.chat.evaluation import confidence_level

    assert confidence_level(score) == level


def test_should_flag_response() -> None:
    from explorer.chat.evaluation import should_flag_response

    good = {"weighted_score": 90, "scores": _scores(5, 5, 4, 4, 4), "flags": []}
    assert not should_flag_response(good)
    assert should_flag_response({**good, "weighted_score": 55})
    assert should_flag_response({**good, "scores": _scores(2, 5, 5, 5, 5)})
    assert should_flag_response({**good, "flags": ["ranking language"]})


def test_evaluate_response_sync_in_mock_mode() -> None:
    from explorer.chat.evaluation import evaluate_response_sync

    ev = evaluate_response_sync("q", "a", "")
    assert ev == {
        "scores": _scores(3, 3, 3, 3, 3),
        "weighted_score": 50,
        "confidence_level": "low",
        "flags": [],
        "summary": "",
    }


def test_evaluate_response_recomputes_score(monkeypatch) -> None:
    from explorer.chat import evaluation as mod

    seen = {}

    def fake_generate_json(prompt, *, schema=None, model=None, run_name="generate_json"):
        seen["prompt"] = prompt
        seen["model"] = model
        return {"scores": _scores(5, 5, 5, 5, 5), "weighted_score": 3, "flags": ["x"] * 20, "summary": "ok"}, None

    monkeypatch.setenv("LLM_EVAL_MODEL", "judge-small")
    monkeypatch.setattr(mod, "generate_json", fake_generate_json)

    ev = mod.evaluate_response_sync("Which schools grow most?", "Answer", '{"schools": []}')
    assert ev["weighted_score"] == 100
    assert ev["confidence_level"] == "high"
    assert len(ev["flags"]) == 8
    assert seen["model"] == "judge-small"
    assert "Which schools grow most?" in seen["prompt"]
    assert '{"schools": []}' in seen["prompt"]


def test_evaluate_response_unavailable(monkeypatch) -> None:
    from explorer.chat import evaluation as mod

    monkeypatch.setattr(mod, "generate_json", lambda *a, **k: (None, "missing_api_key"))
    assert mod.evaluate_response_sync("q", "a", "") is None


@pytest.mark.asyncio
async def test_evaluate_response_async_wrapper() -> None:
    from explorer.chat.evaluation import evaluate_response

    ev = await evaluate_response("q", "a", "")
    assert ev is not None and ev["weighted_score"] == 50
