"""
Provider-agnostic LLM client.

- `get_chat_model()` builds the LangChain chat model used by the tool loop.
- `generate_json(prompt) -> (obj, err_code)` is the blocking JSON-mode call used by the
  evaluator and the suggestion generator. It never raises; callers have fallbacks.

Env (core):
- LLM_PROVIDER: which provider to use (default: "anthropic")
  - anthropic: Claude via Anthropic API using `langchain_anthropic`
  - vertexai: Gemini via Vertex AI using `langchain_google_vertexai`
- LLM_MODEL / LLM_TEMPERATURE / LLM_MAX_OUTPUT_TOKENS / LLM_TIMEOUT_SECONDS
- LLM_MOCK=1: return a deterministic stub (no external calls)

Anthropic requirements:
- ANTHROPIC_API_KEY (required)

Vertex requirements:
- GOOGLE_CLOUD_PROJECT, GOOGLE_CLOUD_LOCATION (required)
- Application Default Credentials (ADC)
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from explorer.graphs.tracing import build_invoke_config

logger = logging.getLogger(__name__)

_DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-5",
    "vertexai": "gemini-2.5-flash",
}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def mock_enabled() -> bool:
    return _env_bool("LLM_MOCK", False)


def _provider() -> str:
    p = (os.getenv("LLM_PROVIDER") or "").strip().lower() or "anthropic"
    if p in ("vertex", "gcp_vertexai"):
        return "vertexai"
    return p


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort extraction for when a model wraps JSON in code fences or adds extra text.
    """
    if not text:
        return None
    t = text.strip()

    if t.startswith("```"):
        t = re.sub(r"^```[a-zA-Z]*\s*", "", t)
        t = re.sub(r"\s*```$", "", t)
        t = t.strip()

    if t.startswith("{") and t.endswith("}"):
        try:
            obj = json.loads(t)
            return obj if isinstance(obj, dict) else None
        except Exception:
            pass

    # Scan for the first balanced JSON object substring.
    in_str = False
    escape = False
    depth = 0
    start = None
    for i, ch in enumerate(t):
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_str = not in_str
            continue
        if in_str:
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                try:
                    obj = json.loads(t[start : i + 1])
                    return obj if isinstance(obj, dict) else None
                except Exception:
                    start = None
    return None


SchemaT = TypeVar("SchemaT")


@dataclass(frozen=True)
class LLMConfig:
    model: str
    temperature: float
    max_output_tokens: int
    timeout: int = 120


def _load_config() -> LLMConfig:
    model = (os.getenv("LLM_MODEL") or "").strip() or _DEFAULT_MODELS.get(_provider(), "claude-sonnet-4-5")
    try:
        temperature = float((os.getenv("LLM_TEMPERATURE") or "").strip() or "0.2")
    except Exception:
        temperature = 0.2
    try:
        max_output_tokens = int((os.getenv("LLM_MAX_OUTPUT_TOKENS") or "").strip() or "4096")
    except Exception:
        max_output_tokens = 4096
    try:
        timeout = int((os.getenv("LLM_TIMEOUT_SECONDS") or "").strip() or "120")
    except Exception:
        timeout = 120

    return LLMConfig(
        model=model,
        temperature=max(0.0, min(temperature, 1.0)),
        max_output_tokens=max(64, min(max_output_tokens, 8192)),
        timeout=max(5, min(timeout, 300)),
    )


def _vertex_project_location_required() -> Tuple[Optional[str], Optional[str], Optional[str]]:
    project = (os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip() or None
    location = (os.getenv("GOOGLE_CLOUD_LOCATION") or "").strip() or None
    if not project:
        return None, None, "missing_gcp_project"
    if not location:
        return None, None, "missing_gcp_location"
    return project, location, None


def _classify_error(e: Exception, *, model: str) -> str:
    msg = str(e or "").replace("\n", " ").strip()
    up = msg.upper()

    # Timeouts first; status codes before generic keywords.
    if isinstance(e, TimeoutError):
        return "timeout"
    if "408" in msg:
        return "timeout"
    if "504" in msg:
        return "gateway_timeout"
    if "DEADLINE_EXCEEDED" in up or "DEADLINE EXCEEDED" in up:
        return "deadline_exceeded"
    if "TIMEOUT" in up or "TIMED OUT" in up:
        return "timeout"

    if "PERMISSION_DENIED" in up or "403" in msg:
        return "permission_denied"
    if "UNAUTHENTICATED" in up or "401" in msg:
        return "unauthenticated"
    if "404" in msg or "NOT FOUND" in up:
        return f"model_not_found:{model}"
    if "RATE" in up and "LIMIT" in up:
        return "rate_limited"
    if "MAX_TOKENS" in up or "MAX TOKENS" in up or "CONTEXT LENGTH" in up:
        return "max_tokens_truncated"
    if "429" in msg or "OVERLOADED" in up:
        return "rate_limited"
    if "API_KEY" in up and ("INVALID" in up or "MISSING" in up):
        return "unauthenticated"

    return f"llm_error:{type(e).__name__}"


def _get_llm_instance(provider: str, cfg: LLMConfig) -> Tuple[Any, Optional[str]]:
    """
    Factory for the LangChain chat model.

    Returns: (llm_instance, error_code). Exactly one is None.
    """
    if provider == "anthropic":
        api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
        if not api_key:
            return None, "missing_api_key"
        try:
            from langchain_anthropic import ChatAnthropic  # type: ignore[import-not-found]
        except Exception:
            return None, "sdk_import_failed:langchain_anthropic"

        llm = ChatAnthropic(
            model=cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_output_tokens,
            anthropic_api_key=api_key,
            timeout=cfg.timeout,
        )
        return llm, None

    if provider == "vertexai":
        project, location, err = _vertex_project_location_required()
        if err:
            return None, err
        try:
            import google.auth  # type: ignore[import-not-found]
        except Exception:
            return None, "adc_import_failed"
        try:
            google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
        except Exception:
            return None, "missing_adc_credentials"
        try:
            from langchain_google_vertexai import ChatVertexAI  # type: ignore[import-not-found]
        except Exception:
            return None, "sdk_import_failed:langchain_google_vertexai"

        llm = ChatVertexAI(
            model=cfg.model,
            temperature=cfg.temperature,
            max_output_tokens=cfg.max_output_tokens,
            project=str(project),
            location=str(location),
            timeout=cfg.timeout,
        )
        return llm, None

    return None, "provider_not_configured"


def get_chat_model(*, model: Optional[str] = None) -> Tuple[Any, LLMConfig, Optional[str]]:
    """
    Build the configured chat model.

    Returns: (llm, cfg, err_code). `llm` is None when err_code is set.
    """
    cfg = _load_config()
    if model:
        cfg = replace(cfg, model=model)
    llm, err = _get_llm_instance(_provider(), cfg)
    return llm, cfg, err


def generate_json(
    prompt: str,
    *,
    schema: Optional[Type[SchemaT]] = None,
    model: Optional[str] = None,
    run_name: str = "generate_json",
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Provider-agnostic JSON call.

    Args:
        prompt: The prompt to send to the LLM
        schema: Optional Pydantic schema for structured output
        model: Optional model override (e.g. a cheaper judge model)
        run_name: Trace name when LangSmith tracing is enabled

    Returns: (obj, err_code). Exactly one is non-None.
    """
    if mock_enabled():
        if schema is not None:
            try:
                obj0 = getattr(schema, "model_validate")({})  # type: ignore[misc]
                dump = getattr(obj0, "model_dump")(mode="json")  # type: ignore[misc]
                return (dump if isinstance(dump, dict) else {}), None
            except Exception:
                return {}, None
        return {"summary": "LLM_MOCK enabled: no external call was made."}, None

    llm, cfg, err = get_chat_model(model=model)
    if err:
        return None, err

    config = build_invoke_config(kind="post_processing", run_name=run_name)
    try:
        if schema is not None:
            structured = llm.with_structured_output(schema)  # type: ignore[call-arg, attr-defined]
            out = structured.invoke(prompt, config=config)
            if hasattr(out, "model_dump"):
                d = out.model_dump(mode="json")  # type: ignore[no-any-return]
                return (d, None) if isinstance(d, dict) else (None, "schema_dump_failed")
            if isinstance(out, dict):
                return out, None
            return None, "schema_output_unexpected"

        msg = llm.invoke(prompt, config=config)
        text = getattr(msg, "content", None)
        if isinstance(text, list):
            text = "".join(b.get("text", "") for b in text if isinstance(b, dict))
        obj = _extract_json_object(str(text or ""))
        return (obj, None) if obj is not None else (None, "json_parse_failed")
    except Exception as e:
        code = _classify_error(e, model=cfg.model)
        logger.warning("generate_json failed (%s): %s", run_name, code)
        return None, code
