"""
Streaming chat runtime: the bounded tool-use loop.

Flow:
1. Pre-filter the newest user turn (blocked queries get a reframing reply and stop).
2. Stream a model turn with tools enabled; forward text as `text_delta`.
3. If the model asked for tools, run every requested call, emit `tool_start`/`tool_end`
   (and `chart_data` for charts), append the compressed round-trip and go back to 2.
4. After the last allowed tool round, make one more call with tools disabled and an
   explicit synthesis instruction.
5. Emit `done`, then the post-processing events.

Each model call receives the whole transcript. Raw tool results never re-enter the
transcript; they are kept in a side buffer for the evaluator.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from explorer.auth.rate_limit import DailyBudget, get_daily_budget
from explorer.authz.policy import ChatPolicy
from explorer.chat.channel import ChatStreamEvent
from explorer.chat.compaction import RawResultLog, is_chart_result, project_for_transcript, separate_chart_payload
from explorer.chat.postprocess import run_post_processing
from explorer.chat.prefilter import check_prefilter
from explorer.chat.prompts import build_system_prompt
from explorer.chat.tool_summaries import extract_school_mappings, summarize_tool_result
from explorer.chat.types import ChatMessage, ToolInvocation
from explorer.graphs.tracing import new_trace_id, session_metadata, trace_tool_call
from explorer.llm.client_streaming import ModelTurn, UpstreamModelError, stream_model_turn
from explorer.tools.registry import ToolRegistry, get_registry

logger = logging.getLogger(__name__)

SYNTHESIS_INSTRUCTION = (
    "Now synthesize all the data above into a complete, well-structured response for the user. "
    "Do not call any more tools."
)


def _to_transcript(system_prompt: str, messages: List[ChatMessage]) -> List[BaseMessage]:
    out: List[BaseMessage] = [SystemMessage(content=system_prompt)]
    for m in messages:
        if m.role == "user":
            out.append(HumanMessage(content=m.content))
        else:
            out.append(AIMessage(content=m.content))
    return out


def _latest_user_text(messages: List[ChatMessage]) -> str:
    for m in reversed(messages):
        if m.role == "user":
            return m.content
    return ""


def _dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


class _SessionState:
    """Mutable per-session bookkeeping."""

    def __init__(self) -> None:
        self.trace_id = new_trace_id()
        self.text_parts: List[str] = []
        self.invocations: List[ToolInvocation] = []
        self.raw_results = RawResultLog()
        self.schools: List[Dict[str, str]] = []
        self.input_tokens = 0
        self.output_tokens = 0
        self._ids: set = set()
        self._seq = 0

    def new_tool_id(self, proposed: Optional[str]) -> str:
        tid = str(proposed or "").strip()
        while not tid or tid in self._ids:
            self._seq += 1
            tid = f"toolu_{self._seq:04d}"
        self._ids.add(tid)
        return tid

    def add_usage(self, usage: Dict[str, int]) -> None:
        self.input_tokens += int(usage.get("input_tokens") or 0)
        self.output_tokens += int(usage.get("output_tokens") or 0)

    def add_schools(self, schools: List[Dict[str, str]]) -> None:
        known = {s["dbn"] for s in self.schools}
        self.schools.extend(s for s in schools if s["dbn"] not in known)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


async def _model_turn(
    state: _SessionState,
    transcript: List[BaseMessage],
    *,
    tools: Optional[List[Dict[str, Any]]],
    run_name: str,
    iteration: int,
) -> AsyncGenerator[Any, None]:
    """Stream one turn: yields `text_delta` events, then the `ModelTurn` itself."""
    turn: Optional[ModelTurn] = None
    async for chunk in stream_model_turn(
        transcript, tools=tools, run_name=run_name, metadata=session_metadata(state.trace_id, iteration=iteration)
    ):
        if chunk.turn is not None:
            turn = chunk.turn
        elif chunk.content:
            state.text_parts.append(chunk.content)
            yield ChatStreamEvent("text_delta", {"text": chunk.content})
    if turn is None:
        raise UpstreamModelError("stream_ended_without_turn")
    state.add_usage(turn.usage)
    yield turn


def _execute_one(
    registry: ToolRegistry, state: _SessionState, inv: ToolInvocation, iteration: int
) -> Tuple[List[ChatStreamEvent], ToolMessage]:
    """
    Run one tool call.

    Returns: (events, tool_message). Never raises; a failing handler becomes an
    error-flagged tool message.
    """
    events: List[ChatStreamEvent] = []
    try:
        result = trace_tool_call(
            tool=inv.name,
            tool_call_id=inv.id,
            args=inv.parameters,
            fn=lambda: registry.execute(inv.name, inv.parameters),
            metadata=session_metadata(state.trace_id, iteration=iteration),
        )
    except Exception as e:
        logger.exception("Tool %s raised", inv.name)
        err = f"Tool execution failed: {e}"
        inv.fail(err)
        events.append(ChatStreamEvent("tool_end", {"id": inv.id, "name": inv.name, "error": err}))
        msg = ToolMessage(content=_dumps({"error": err}), tool_call_id=inv.id, status="error")
        return events, msg

    state.raw_results.append(inv.id, inv.name, result)
    summary = summarize_tool_result(tool=inv.name, result=result)
    schools = extract_school_mappings(inv.name, result)
    state.add_schools(schools)

    if is_chart_result(inv.name, result):
        client_payload, model_view = separate_chart_payload(inv.id, result)
        events.append(ChatStreamEvent("chart_data", client_payload))
        content = model_view
    else:
        content = project_for_transcript(inv.name, result)

    inv.complete(summary, schools)
    events.append(
        ChatStreamEvent("tool_end", {"id": inv.id, "name": inv.name, "resultSummary": summary, "schools": schools})
    )
    return events, ToolMessage(content=_dumps(content), tool_call_id=inv.id)


async def run_chat_stream(
    *,
    policy: ChatPolicy,
    messages: List[ChatMessage],
    registry: Optional[ToolRegistry] = None,
    budget: Optional[DailyBudget] = None,
) -> AsyncGenerator[ChatStreamEvent, None]:
    """
    Drive one chat session and yield its events in wire order.

    Args:
        policy: Chat policy (iteration ceiling, post-processing switches)
        messages: Conversation turns; the last one is the user's question
        registry: Tool registry (defaults to the process-wide one)
        budget: Daily budget gate that receives this session's token usage

    Yields:
        ChatStreamEvent: text_delta/tool_start/tool_end/chart_data, then done (or error),
        then suggested_queries/evaluation in completion order
    """
    registry = registry or get_registry()
    budget = budget or get_daily_budget()
    user_query = _latest_user_text(messages)

    pf = check_prefilter(user_query)
    if pf.blocked:
        logger.info("Pre-filter blocked query")
        yield ChatStreamEvent("text_delta", {"text": pf.reframe})
        yield ChatStreamEvent("done", {"usage": {}, "evaluating": False, "suggestionsLoading": False})
        return

    transcript = _to_transcript(build_system_prompt(pf.flag), messages)
    tool_schemas = [d.for_model() for d in registry.descriptors]
    state = _SessionState()
    iterations = 0

    try:
        while True:
            synthesizing = iterations >= policy.max_tool_iterations
            turn: Optional[ModelTurn] = None
            async for item in _model_turn(
                state,
                transcript,
                tools=None if synthesizing else tool_schemas,
                run_name="chat_synthesis" if synthesizing else "chat_turn",
                iteration=iterations,
            ):
                if isinstance(item, ModelTurn):
                    turn = item
                else:
                    yield item

            if synthesizing or turn is None or turn.stop_reason != "tool_use":
                break

            round_invocations: List[ToolInvocation] = []
            for call in turn.tool_calls:
                inv = ToolInvocation(id=state.new_tool_id(call.get("id")), name=call["name"], parameters=call["args"])
                round_invocations.append(inv)
                state.invocations.append(inv)

            transcript.append(
                AIMessage(
                    content=turn.text,
                    tool_calls=[{"id": i.id, "name": i.name, "args": i.parameters} for i in round_invocations],
                )
            )

            tool_messages: List[ToolMessage] = []
            for inv in round_invocations:
                yield ChatStreamEvent("tool_start", {"id": inv.id, "name": inv.name, "parameters": inv.parameters})
                events, msg = _execute_one(registry, state, inv, iterations)
                for ev in events:
                    yield ev
                tool_messages.append(msg)
            transcript.extend(tool_messages)

            iterations += 1
            if iterations >= policy.max_tool_iterations:
                logger.warning("Tool iteration cap (%d) reached, forcing synthesis", policy.max_tool_iterations)
                # Must directly follow this round's ToolMessages: the Anthropic adapter folds
                # consecutive tool results and human text into a single user turn.
                transcript.append(HumanMessage(content=SYNTHESIS_INSTRUCTION))
    except UpstreamModelError as e:
        logger.warning("Chat stream aborted: %s", e.code)
        yield ChatStreamEvent("error", {"error": f"The language model is unavailable ({e.code}). Please try again."})
        return
    except Exception:
        logger.exception("Chat stream failed")
        yield ChatStreamEvent("error", {"error": "An unexpected error occurred. Please try again."})
        return
    finally:
        budget.record_usage(state.input_tokens, state.output_tokens)

    yield ChatStreamEvent(
        "done",
        {
            "usage": {"inputTokens": state.input_tokens, "outputTokens": state.output_tokens},
            "evaluating": policy.evaluation_enabled,
            "suggestionsLoading": policy.suggestions_enabled,
        },
    )

    async for ev in run_post_processing(
        policy=policy,
        user_query=user_query,
        response_text=state.text,
        tool_results=state.raw_results.joined(policy.eval_tool_results_max_chars),
        tool_calls=[inv.for_audit() for inv in state.invocations],
        schools=state.schools,
    ):
        yield ev
