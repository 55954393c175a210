"""
Streaming LLM client for the tool-calling chat loop.

One call is one model turn: text deltas are yielded as they arrive and the final chunk
carries the accumulated `ModelTurn` (text, requested tool calls, stop reason, usage).

Usage:
    async for chunk in stream_model_turn(messages, tools=tools):
        if chunk.turn is not None:
            turn = chunk.turn
        else:
            print(chunk.content, end="", flush=True)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional

from explorer.graphs.tracing import build_invoke_config
from explorer.llm.client import _classify_error, get_chat_model, mock_enabled

logger = logging.getLogger(__name__)

MOCK_REPLY = "LLM_MOCK enabled: no external call was made."


class UpstreamModelError(RuntimeError):
    """The model provider failed before or during a turn."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


@dataclass
class ModelTurn:
    """Accumulated result of one streamed model call."""

    text: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def stop_reason(self) -> str:
        return "tool_use" if self.tool_calls else "end_turn"


@dataclass
class LLMStreamChunk:
    """Single chunk of streamed content. The last chunk of a turn has `turn` set."""

    content: str = ""
    turn: Optional[ModelTurn] = None


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content
    out = ""
    if isinstance(content, list):
        # Anthropic returns content blocks; tool_use blocks carry no user-facing text.
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                out += str(block.get("text") or "")
            elif isinstance(block, str):
                out += block
    return out


def _usage(gathered: Any) -> Dict[str, int]:
    md = getattr(gathered, "usage_metadata", None) or {}
    try:
        return {
            "input_tokens": int(md.get("input_tokens") or 0),
            "output_tokens": int(md.get("output_tokens") or 0),
        }
    except Exception:
        return {"input_tokens": 0, "output_tokens": 0}


def _tool_calls(gathered: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for tc in list(getattr(gathered, "tool_calls", None) or []):
        if not isinstance(tc, dict) or not tc.get("name"):
            continue
        args = tc.get("args")
        out.append({"id": tc.get("id") or "", "name": str(tc["name"]), "args": args if isinstance(args, dict) else {}})
    return out


async def stream_model_turn(
    messages: List[Any],
    *,
    tools: Optional[List[Dict[str, Any]]] = None,
    run_name: str = "chat_turn",
    metadata: Optional[Dict[str, Any]] = None,
) -> AsyncGenerator[LLMStreamChunk, None]:
    """
    Stream one model turn.

    Args:
        messages: LangChain messages (system prompt first)
        tools: Tool schemas in function-calling format; None disables tool use
        run_name: Trace name when LangSmith tracing is enabled
        metadata: Extra trace metadata (session trace id, tool round)

    Yields:
        LLMStreamChunk: text deltas, then one final chunk with `turn` set

    Raises:
        UpstreamModelError: the provider could not be configured or failed mid-stream
    """
    if mock_enabled():
        yield LLMStreamChunk(content=MOCK_REPLY)
        yield LLMStreamChunk(
            turn=ModelTurn(
                text=MOCK_REPLY,
                usage={"input_tokens": 0, "output_tokens": 0},
            )
        )
        return

    llm, cfg, err = get_chat_model()
    if err:
        raise UpstreamModelError(err)

    runnable = llm.bind_tools(tools) if tools else llm  # type: ignore[attr-defined]
    gathered: Any = None
    text_parts: List[str] = []
    config = build_invoke_config(kind="chat", run_name=run_name, metadata=metadata)
    try:
        async for chunk in runnable.astream(messages, config=config):
            gathered = chunk if gathered is None else gathered + chunk
            text = _chunk_text(chunk)
            if text:
                text_parts.append(text)
                yield LLMStreamChunk(content=text)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        code = _classify_error(e, model=cfg.model)
        logger.warning("model stream failed: %s", code)
        raise UpstreamModelError(code) from e

    text = "".join(text_parts)
    yield LLMStreamChunk(turn=ModelTurn(text=text, tool_calls=_tool_calls(gathered), usage=_usage(gathered)))
