"""
Post-processing after the terminal `done` event: quality evaluation and follow-up suggestions.

Both run as independent tasks, each inside its own timeout. Results are yielded in
completion order, so a slow evaluator never holds back suggestions. On timeout the
evaluator yields nothing and the suggestion task falls back to heuristics.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

from explorer.authz.policy import ChatPolicy
from explorer.chat.channel import ChatStreamEvent
from explorer.chat.evaluation import evaluate_response
from explorer.chat.suggestions import generate_suggestions, heuristic_suggestions
from explorer.memory.audit import log_evaluation

logger = logging.getLogger(__name__)


async def _evaluation_task(
    *,
    policy: ChatPolicy,
    user_query: str,
    response_text: str,
    tool_results: str,
    tool_calls: List[Dict[str, Any]],
) -> Optional[ChatStreamEvent]:
    try:
        evaluation = await asyncio.wait_for(
            evaluate_response(user_query, response_text, tool_results),
            timeout=policy.evaluation_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Evaluation timed out after %.1fs", policy.evaluation_timeout_seconds)
        return None
    except Exception:
        logger.warning("Evaluation failed", exc_info=True)
        return None
    if not evaluation:
        return None

    auto_logged = int(evaluation.get("weighted_score") or 0) < policy.auto_log_threshold
    if auto_logged:
        try:
            log_evaluation(
                user_query=user_query,
                assistant_response=response_text,
                tool_calls=tool_calls,
                evaluation=evaluation,
                log_type="auto",
                tool_results=tool_results,
            )
        except Exception:
            logger.warning("Auto-log could not be queued", exc_info=True)

    return ChatStreamEvent("evaluation", {**evaluation, "auto_logged": auto_logged})


async def _suggestions_task(
    *,
    policy: ChatPolicy,
    user_query: str,
    response_text: str,
    tool_results: str,
    tool_calls: List[Dict[str, Any]],
    schools: List[Dict[str, str]],
) -> ChatStreamEvent:
    items: Optional[List[Dict[str, str]]] = None
    try:
        items = await asyncio.wait_for(
            generate_suggestions(user_query, response_text, tool_calls, tool_results),
            timeout=policy.suggestions_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.info("Suggestions timed out after %.1fs; using heuristics", policy.suggestions_timeout_seconds)
    except Exception:
        logger.warning("Suggestions failed; using heuristics", exc_info=True)
    if not items:
        items = heuristic_suggestions(tool_calls, schools, response_text)
    return ChatStreamEvent("suggested_queries", {"suggestions": items})


async def run_post_processing(
    *,
    policy: ChatPolicy,
    user_query: str,
    response_text: str,
    tool_results: str,
    tool_calls: List[Dict[str, Any]],
    schools: List[Dict[str, str]],
) -> AsyncGenerator[ChatStreamEvent, None]:
    """
    Run the enabled post-processing tasks concurrently and yield their events as they finish.

    Args:
        policy: Chat policy (enable flags, timeouts, auto-log threshold)
        user_query: newest user turn
        response_text: all text the assistant emitted in this session
        tool_results: joined raw tool results, already capped
        tool_calls: `{name, parameters}` for every tool invoked
        schools: name/DBN pairs surfaced by tool results

    Yields:
        ChatStreamEvent: `suggested_queries` and/or `evaluation`, in completion order
    """
    tasks: List["asyncio.Task[Optional[ChatStreamEvent]]"] = []
    if policy.suggestions_enabled:
        tasks.append(
            asyncio.create_task(
                _suggestions_task(
                    policy=policy,
                    user_query=user_query,
                    response_text=response_text,
                    tool_results=tool_results,
                    tool_calls=tool_calls,
                    schools=schools,
                )
            )
        )
    if policy.evaluation_enabled:
        tasks.append(
            asyncio.create_task(
                _evaluation_task(
                    policy=policy,
                    user_query=user_query,
                    response_text=response_text,
                    tool_results=tool_results,
                    tool_calls=tool_calls,
                )
            )
        )

    try:
        for fut in asyncio.as_completed(tasks):
            ev = await fut
            if ev is not None:
                yield ev
    finally:
        for t in tasks:
            if not t.done():
                t.cancel()
