"""
HTTP service for the NYC School Explorer.

Routes:
- POST /api/chat: streaming chat (Server-Sent Events)
- POST /api/flag: user feedback on a response (audit sink)
- POST /api/mcp: JSON-RPC tool access for MCP clients
- GET  /api/chat, /api/mcp, /healthz: liveness
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, AsyncIterator, Dict, Set

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from explorer.api.mcp import handle_rpc_body, rate_limited_reply, status_document
from explorer.auth.rate_limit import get_chat_rate_limiter, get_daily_budget, get_mcp_rate_limiter, rate_limit_headers
from explorer.authz.policy import load_chat_policy
from explorer.chat.channel import ChatStreamEvent, EventChannel
from explorer.chat.runtime_streaming import run_chat_stream
from explorer.chat.types import ChatRequest, FlagRequest
from explorer.memory.audit import log_evaluation
from explorer.tools.registry import get_registry

logger = logging.getLogger(__name__)

app = FastAPI(title="NYC School Explorer", version="1.0.0")

# Strong references to running chat sessions; a disconnected client does not cancel its session.
_background_tasks: Set["asyncio.Task[None]"] = set()

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real:
        return real.strip()
    return request.client.host if request.client else "unknown"


def _error(status: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": error, **extra})


@app.on_event("startup")
async def _startup_registry() -> None:
    """Fail fast when the tool descriptors and handlers disagree."""
    reg = get_registry()
    logger.info("Serving %d tools", len(reg.names))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(
            "%s %s - ERROR after %.1fms: %s", request.method, request.url.path, (time.time() - start_time) * 1000, e
        )
        raise
    logger.info(
        "%s %s - %d (%.1fms)", request.method, request.url.path, response.status_code, (time.time() - start_time) * 1000
    )
    return response


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/chat")
def chat_status() -> Dict[str, Any]:
    return {"status": "ok", "service": "nyc-school-explorer-chat"}


async def _pump(channel: EventChannel, events: AsyncIterator[ChatStreamEvent]) -> None:
    """Producer side: drive the session to completion and publish every event."""
    try:
        async for ev in events:
            channel.publish(ev)
    except Exception:
        logger.exception("Chat session failed")
        channel.publish(ChatStreamEvent("error", {"error": "An unexpected error occurred. Please try again."}))
    finally:
        channel.close()


async def _sse_body(channel: EventChannel) -> AsyncIterator[str]:
    """Consumer side: one SSE frame per event until the channel closes."""
    try:
        async for ev in channel:
            yield ev.to_sse()
    except asyncio.CancelledError:
        logger.info("Chat client disconnected; session continues in background")
        raise


def start_chat_session(channel: EventChannel, events: AsyncIterator[ChatStreamEvent]) -> "asyncio.Task[None]":
    task = asyncio.create_task(_pump(channel, events))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@app.post("/api/chat")
async def chat(request: Request) -> Response:
    """Streaming chat endpoint using Server-Sent Events."""
    try:
        raw = await request.json()
    except ValueError:
        return _error(400, "Invalid JSON body")
    try:
        req = ChatRequest.model_validate(raw)
    except ValidationError:
        return _error(400, "Invalid chat request")
    if not req.messages:
        return _error(400, "Messages are required")
    if req.messages[-1].role != "user":
        return _error(400, "The last message must be from the user")

    try:
        # Admission is charged up front, before any model or tool work.
        decision = get_chat_rate_limiter().check(_client_ip(request))
        headers = rate_limit_headers(decision)
        if not decision.allowed:
            headers["Retry-After"] = str(decision.retry_after_seconds)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests. Please wait a moment before trying again.",
                    "code": "RATE_LIMIT",
                    "retryAfter": decision.retry_after_seconds,
                },
                headers=headers,
            )
        if not get_daily_budget().check_budget():
            return _error(503, "Daily API budget exceeded. Please try again tomorrow.", code="BUDGET_EXCEEDED")

        channel = EventChannel()
        start_chat_session(channel, run_chat_stream(policy=load_chat_policy(), messages=req.messages))
    except Exception:
        logger.exception("Chat request failed before streaming")
        return _error(500, "An unexpected error occurred. Please try again.", code="INTERNAL_ERROR")

    return StreamingResponse(
        _sse_body(channel),
        media_type="text/event-stream",
        headers={**_SSE_HEADERS, **headers},
    )


_MISSING_EVALUATION: Dict[str, Any] = {
    "scores": {
        "factual_accuracy": 0,
        "context_inclusion": 0,
        "limitation_acknowledgment": 0,
        "responsible_framing": 0,
        "query_relevance": 0,
    },
    "weighted_score": 0,
    "flags": ["User flagged - no evaluation available"],
    "summary": "Response flagged by user without evaluation scores",
}


@app.post("/api/flag")
async def flag_response(request: Request) -> JSONResponse:
    try:
        raw = await request.json()
    except ValueError:
        return _error(400, "Invalid JSON body")
    try:
        req = FlagRequest.model_validate(raw)
    except ValidationError:
        return _error(400, "Invalid flag request")

    feedback = req.feedback.strip()
    if not feedback:
        return _error(400, "Feedback is required")
    if not req.user_query or not req.assistant_response:
        return _error(400, "user_query and assistant_response are required")

    policy = load_chat_policy()
    try:
        log_evaluation(
            user_query=req.user_query,
            assistant_response=req.assistant_response,
            tool_calls=req.tool_calls,
            evaluation=req.evaluation or dict(_MISSING_EVALUATION),
            log_type="user_flagged",
            user_feedback=feedback[: policy.max_feedback_chars],
        )
    except Exception:
        logger.exception("Failed to queue flagged response")
        return _error(500, "Failed to process flag request")
    return JSONResponse(content={"success": True})


@app.get("/api/mcp")
def mcp_status() -> Dict[str, Any]:
    return status_document()


@app.post("/api/mcp")
async def mcp(request: Request) -> Response:
    caller = _client_ip(request)
    decision = get_mcp_rate_limiter().check(caller)
    if not decision.allowed:
        logger.info("MCP rate limit exceeded caller=%s", caller)
        reply = rate_limited_reply(decision.retry_after_seconds)
    else:
        reply = handle_rpc_body(await request.body(), registry=get_registry(), caller=caller)
    if reply.body is None:
        return Response(status_code=reply.status_code)
    return JSONResponse(status_code=reply.status_code, content=reply.body)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting NYC School Explorer on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
