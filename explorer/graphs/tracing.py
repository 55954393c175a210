"""
LangSmith tracing for chat sessions.

Off unless `LANGSMITH_TRACING` (or `LANGCHAIN_TRACING_V2`) is set and an API key exists.
Each chat session gets one trace id. Its model turns and tool spans carry that id in
their metadata, so a whole session can be filtered as one group in LangSmith.

Run names:
- `chat_turn`, `chat_synthesis`: orchestrator model turns
- `evaluation`, `suggestions`: post-processing calls
- `tool:<name>`: one span per tool invocation

`LANGSMITH_TRACE_EXCLUDE` is a comma-separated list of run names to skip. An entry ending
in '*' matches by prefix, e.g. `tool:*` drops every tool span but keeps model turns.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

RUN_NAMES: Tuple[str, ...] = ("chat_turn", "chat_synthesis", "evaluation", "suggestions")
TOOL_RUN_PREFIX = "tool:"
DEFAULT_PROJECT = "nyc-school-explorer"


def _env_bool(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "y", "on")


def _csv(name: str) -> Tuple[str, ...]:
    raw = (os.getenv(name) or "").strip()
    return tuple(x.strip() for x in raw.split(",") if x.strip())


def _matches(pattern: str, run_name: str) -> bool:
    if pattern.endswith("*"):
        return run_name.startswith(pattern[:-1])
    return run_name == pattern


def _known_pattern(pattern: str) -> bool:
    if pattern.startswith(TOOL_RUN_PREFIX) or _matches(pattern, TOOL_RUN_PREFIX):
        return True
    return any(_matches(pattern, n) for n in RUN_NAMES)


@dataclass(frozen=True)
class TraceSettings:
    enabled: bool = False
    api_key: Optional[str] = None
    project: str = DEFAULT_PROJECT
    tags: Tuple[str, ...] = ()
    run_name_prefix: str = ""
    exclude: Tuple[str, ...] = ()

    def traces(self, run_name: str) -> bool:
        """True when tracing is on and `run_name` is not excluded."""
        if not self.enabled:
            return False
        n = str(run_name or "").strip()
        return not any(_matches(p, n) for p in self.exclude)

    def display_name(self, run_name: str) -> str:
        return f"{self.run_name_prefix}{run_name}"


def load_trace_settings() -> TraceSettings:
    wanted = _env_bool("LANGSMITH_TRACING") or _env_bool("LANGCHAIN_TRACING_V2")
    key = (os.getenv("LANGSMITH_API_KEY") or "").strip() or (os.getenv("LANGCHAIN_API_KEY") or "").strip() or None
    if wanted and not key:
        logger.warning("LangSmith tracing requested but no API key found. Tracing disabled.")
    exclude = _csv("LANGSMITH_TRACE_EXCLUDE")
    for pat in exclude:
        if not _known_pattern(pat):
            logger.warning("LANGSMITH_TRACE_EXCLUDE entry %r matches no run name", pat)
    return TraceSettings(
        enabled=bool(wanted and key),
        api_key=key,
        project=(os.getenv("LANGSMITH_PROJECT") or "").strip()
        or (os.getenv("LANGCHAIN_PROJECT") or "").strip()
        or DEFAULT_PROJECT,
        tags=_csv("LANGSMITH_TAGS"),
        run_name_prefix=(os.getenv("LANGSMITH_RUN_NAME_PREFIX") or "").strip(),
        exclude=exclude,
    )


def new_trace_id() -> str:
    return uuid.uuid4().hex


def session_metadata(trace_id: str, *, iteration: Optional[int] = None) -> Dict[str, Any]:
    """Metadata shared by every traced run of one chat session."""
    md: Dict[str, Any] = {"session_trace_id": trace_id}
    if iteration is not None:
        md["tool_round"] = iteration
    return md


def _tracer(settings: TraceSettings) -> List[Any]:
    try:
        from langchain_core.tracers.langchain import LangChainTracer  # type: ignore[import-not-found]
        from langsmith import Client  # type: ignore[import-not-found]
    except Exception as e:
        logger.warning("LangSmith tracing enabled but dependencies unavailable: %s", type(e).__name__)
        return []
    client = Client(api_key=settings.api_key)
    return [LangChainTracer(project_name=settings.project, client=client, tags=list(settings.tags) or None)]


def build_invoke_config(
    *,
    kind: str,
    run_name: str,
    metadata: Optional[Dict[str, Any]] = None,
    settings: Optional[TraceSettings] = None,
) -> Dict[str, Any]:
    """
    RunnableConfig for a model call; `{}` when tracing is off or `run_name` is excluded.
    """
    s = settings or load_trace_settings()
    if not s.traces(run_name):
        return {}
    md = dict(metadata or {})
    md["kind"] = str(kind or "unknown")
    cfg: Dict[str, Any] = {"metadata": md, "run_name": s.display_name(run_name)}
    callbacks = _tracer(s)
    if callbacks:
        cfg["callbacks"] = callbacks
    if s.tags:
        cfg["tags"] = list(s.tags)
    return cfg


def trace_tool_call(
    *,
    tool: str,
    tool_call_id: str,
    args: Dict[str, Any],
    fn: Callable[[], Any],
    metadata: Optional[Dict[str, Any]] = None,
    settings: Optional[TraceSettings] = None,
) -> Any:
    """
    Run `fn()` inside a `tool:<name>` span tagged with the tool-call id.

    Without tracing (or when the span is excluded) `fn()` runs directly. Exceptions from
    `fn` propagate unchanged either way.
    """
    s = settings or load_trace_settings()
    run_name = f"{TOOL_RUN_PREFIX}{tool}"
    if not s.traces(run_name):
        return fn()
    try:
        from langsmith.run_helpers import traceable  # type: ignore[import-not-found]
    except Exception:
        return fn()

    md = dict(metadata or {})
    md["tool_call_id"] = tool_call_id

    @traceable(name=s.display_name(run_name), run_type="tool", metadata=md, tags=list(s.tags) or None)
    def _span(_tool: str, _args: Dict[str, Any]) -> Any:
        return fn()

    return _span(str(tool), dict(args or {}))
