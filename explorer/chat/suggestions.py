from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from explorer.chat.prefilter import check_prefilter
from explorer.chat.tool_summaries import _truncate, compact_args_for_prompt
from explorer.llm.client import generate_json
from explorer.llm.schemas import SuggestionsResponse

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
MAX_SUGGESTION_CHARS = 80
PROMPT_TOOL_RESULTS_CHARS = 3000

BOROUGHS = ("Manhattan", "Bronx", "Brooklyn", "Queens", "Staten Island")

SUGGESTIONS_PROMPT = """You suggest follow-up questions for an NYC school data explorer.

User query:
{user_query}

Assistant response (truncated):
{assistant_response}

Tools used:
{tools_used}

Tool results (truncated):
{tool_results}

Suggest exactly 3 follow-ups that build on the specific schools, boroughs, metrics or patterns above. Spread them across the categories explore, compare, explain and visualize. Keep each under 80 characters.
Never suggest rankings, schools to avoid, demographic filtering, "failing" or "bad" schools, or neighborhood-safety framing. Say "high student growth" instead of "best".

Respond with JSON only:
{{"suggestions": [{{"text": "...", "category": "explore"}}]}}"""


def validate_suggestions(items: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Drop anything the pre-filter would block as a user query, cap length and count."""
    out: List[Dict[str, str]] = []
    seen = set()
    for s in items:
        text = _truncate(str(s.get("text") or ""), MAX_SUGGESTION_CHARS)
        if not text or text.lower() in seen:
            continue
        if check_prefilter(text).blocked:
            logger.warning("Filtered harmful suggestion: %s", text)
            continue
        seen.add(text.lower())
        out.append({"text": text, "category": str(s.get("category") or "explore")})
        if len(out) >= MAX_SUGGESTIONS:
            break
    return out


def _tools_line(tool_calls: List[Dict[str, Any]]) -> str:
    if not tool_calls:
        return "None"
    parts = []
    for c in tool_calls[:8]:
        args = compact_args_for_prompt(c.get("parameters") or {}, max_keys=5, max_value_chars=40)
        parts.append(f"{c.get('name')}({json.dumps(args, ensure_ascii=False)})")
    return "\n".join(parts)


def generate_suggestions_sync(
    user_query: str, assistant_response: str, tool_calls: List[Dict[str, Any]], tool_results: str = ""
) -> Optional[List[Dict[str, str]]]:
    """
    Model-generated suggestions. None on any failure or when validation leaves nothing.
    """
    prompt = SUGGESTIONS_PROMPT.format(
        user_query=user_query or "",
        assistant_response=(assistant_response or "")[:2000],
        tools_used=_tools_line(tool_calls),
        tool_results=(tool_results or "None")[:PROMPT_TOOL_RESULTS_CHARS],
    )
    model = (os.getenv("LLM_SUGGESTIONS_MODEL") or "").strip() or None
    obj, err = generate_json(prompt, schema=SuggestionsResponse, model=model, run_name="suggestions")
    if err or not isinstance(obj, dict):
        logger.warning("Suggestions unavailable: %s", err or "empty")
        return None
    try:
        parsed = SuggestionsResponse.model_validate(obj)
    except Exception as e:
        logger.warning("Suggestions output rejected: %s", type(e).__name__)
        return None
    items = validate_suggestions([s.model_dump() for s in parsed.suggestions if s.text])
    if not items:
        return None
    return items


async def generate_suggestions(
    user_query: str, assistant_response: str, tool_calls: List[Dict[str, Any]], tool_results: str = ""
) -> Optional[List[Dict[str, str]]]:
    return await asyncio.to_thread(generate_suggestions_sync, user_query, assistant_response, tool_calls, tool_results)


def _first_borough(tool_calls: List[Dict[str, Any]], text: str) -> Optional[str]:
    for c in tool_calls:
        b = (c.get("parameters") or {}).get("borough")
        if isinstance(b, str) and b.strip():
            return b.strip()
    for b in BOROUGHS:
        if re.search(rf"\b{re.escape(b)}\b", text or "", re.I):
            return b
    return None


def heuristic_suggestions(
    tool_calls: List[Dict[str, Any]],
    schools: List[Dict[str, str]],
    response_text: str,
) -> List[Dict[str, str]]:
    """
    Deterministic follow-ups from the session's tool history and reply text. No model calls.

    Args:
        tool_calls: `{name, parameters}` for every tool invoked in the session
        schools: name/DBN pairs surfaced by tool results, in order seen
        response_text: the assistant's final text
    """
    names = {str(c.get("name") or "") for c in tool_calls}
    text = response_text or ""
    low = text.lower()
    out: List[Dict[str, str]] = []

    if schools:
        school = schools[0].get("name") or ""
        if "get_school_profile" not in names:
            out.append({"text": f"Show the full profile for {school}", "category": "explore"})
        out.append({"text": f"Find schools similar to {school}", "category": "compare"})

    borough = _first_borough(tool_calls, text)
    if borough:
        out.append({"text": f"Chart Impact vs. Economic Need in {borough}", "category": "visualize"})
        out.append({"text": f"How does {borough} compare with citywide medians?", "category": "compare"})

    if "generate_chart" not in names:
        out.append({"text": "Show a scatter plot of Impact Score vs. Economic Need", "category": "visualize"})
    if "analyze_correlations" not in names and ("attendance" in low or "survey" in low):
        out.append({"text": "Does student attendance correlate with Impact Score?", "category": "explore"})
    if "explain_metrics" not in names:
        out.append({"text": "How is Impact Score calculated?", "category": "explain"})
    if "get_curated_lists" not in names:
        out.append({"text": "Which schools kept high growth in both years?", "category": "explore"})

    out.append({"text": "What are the limitations of this data?", "category": "explain"})
    return validate_suggestions(out)
