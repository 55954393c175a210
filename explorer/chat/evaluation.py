"""
LLM-as-judge scoring of a finished chat response.

The judge model scores five 1-5 dimensions; the weighted 0-100 score and the
confidence level are computed here, not trusted from the model.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional

from explorer.llm.client import generate_json
from explorer.llm.schemas import EvaluationResponse

logger = logging.getLogger(__name__)

SCORE_WEIGHTS: Dict[str, int] = {
    "factual_accuracy": 25,
    "context_inclusion": 20,
    "limitation_acknowledgment": 20,
    "responsible_framing": 20,
    "query_relevance": 15,
}

EVALUATION_PROMPT = """You are evaluating an AI assistant's answer about NYC school data. The assistant should give context, acknowledge limitations and avoid rankings or deficit framing.

User query:
{user_query}

Assistant response:
{assistant_response}

Tool results used (may be truncated):
{tool_results}

Rate each dimension from 1 (worst) to 5 (best):
- factual_accuracy: numbers match the tool results; nothing fabricated.
- context_inclusion: ENI, Impact and Performance scores, sample size and data year are present.
- limitation_acknowledgment: caveats fit the finding; correlation is not presented as causation.
- responsible_framing: asset-based language, no rankings, several hypotheses where appropriate.
- query_relevance: the question is answered at the right depth.

Respond with JSON only:
{{"scores": {{"factual_accuracy": n, "context_inclusion": n, "limitation_acknowledgment": n, "responsible_framing": n, "query_relevance": n}}, "flags": ["specific concern"], "summary": "one sentence assessment"}}"""


def calculate_weighted_score(scores: Dict[str, Any]) -> int:
    """
    Map five 1-5 scores onto 0-100.

    All ones gives 0 and all fives gives 100. Missing or invalid dimensions count as 1.
    """
    total = 0
    for key, weight in SCORE_WEIGHTS.items():
        try:
            v = int(scores.get(key) or 1)
        except (TypeError, ValueError):
            v = 1
        total += max(1, min(v, 5)) * weight
    return int(round((total - 100) / 4))


def confidence_level(score: int) -> str:
    if score >= 90:
        return "high"
    if score >= 75:
        return "verified"
    if score >= 60:
        return "review_suggested"
    return "low"


def should_flag_response(evaluation: Dict[str, Any]) -> bool:
    """Stricter review signal than the auto-log threshold: low score, weak accuracy or framing, or any flag."""
    if int(evaluation.get("weighted_score") or 0) < 60:
        return True
    scores = evaluation.get("scores") or {}
    if int(scores.get("factual_accuracy") or 1) <= 2 or int(scores.get("responsible_framing") or 1) <= 2:
        return True
    return bool(evaluation.get("flags"))


def build_evaluation_prompt(user_query: str, assistant_response: str, tool_results: str) -> str:
    return EVALUATION_PROMPT.format(
        user_query=user_query or "",
        assistant_response=assistant_response or "",
        tool_results=tool_results or "None",
    )


def evaluate_response_sync(user_query: str, assistant_response: str, tool_results: str) -> Optional[Dict[str, Any]]:
    """
    Run the judge model. Returns None when the model is unavailable or its output unusable.
    """
    prompt = build_evaluation_prompt(user_query, assistant_response, tool_results)
    model = (os.getenv("LLM_EVAL_MODEL") or "").strip() or None
    obj, err = generate_json(prompt, schema=EvaluationResponse, model=model, run_name="evaluation")
    if err or not isinstance(obj, dict):
        logger.warning("Evaluation unavailable: %s", err or "empty")
        return None
    try:
        parsed = EvaluationResponse.model_validate(obj)
    except Exception as e:
        logger.warning("Evaluation output rejected: %s", type(e).__name__)
        return None

    scores = parsed.scores.model_dump()
    weighted = calculate_weighted_score(scores)
    return {
        "scores": scores,
        "weighted_score": weighted,
        "confidence_level": confidence_level(weighted),
        "flags": list(parsed.flags),
        "summary": parsed.summary,
    }


async def evaluate_response(user_query: str, assistant_response: str, tool_results: str) -> Optional[Dict[str, Any]]:
    """The blocking judge call runs on a worker thread so the event loop keeps streaming."""
    return await asyncio.to_thread(evaluate_response_sync, user_query, assistant_response, tool_results)
