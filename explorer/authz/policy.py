from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        x = float(raw)
    except Exception:
        return default
    if x != x:  # NaN
        return default
    return x


@dataclass(frozen=True)
class ChatPolicy:
    # Tool loop
    max_tool_iterations: int = 5

    # Post-processing
    evaluation_enabled: bool = True
    suggestions_enabled: bool = True
    evaluation_timeout_seconds: float = 30.0
    suggestions_timeout_seconds: float = 15.0
    auto_log_threshold: int = 75
    eval_tool_results_max_chars: int = 10_000

    # Flag endpoint
    max_feedback_chars: int = 1000


@dataclass(frozen=True)
class AdmissionPolicy:
    """
    Ceilings for the admission gates.

    Chat admission is keyed by caller address and enforces two fixed windows at once
    (per minute and per hour). The protocol adapter has its own per-minute gate.
    """

    chat_per_minute: int = 10
    chat_per_hour: int = 100
    mcp_per_minute: int = 60

    daily_budget_usd: float = 50.0
    cost_per_million_tokens_usd: float = 3.0


def load_chat_policy() -> ChatPolicy:
    """
    Load chat orchestration settings from env.

    Recommended vars:
    - CHAT_MAX_TOOL_ITERATIONS=5
    - CHAT_EVALUATION_ENABLED=1
    - CHAT_SUGGESTIONS_ENABLED=1
    - CHAT_EVALUATION_TIMEOUT_SECONDS=30
    - CHAT_SUGGESTIONS_TIMEOUT_SECONDS=15
    - CHAT_AUTO_LOG_THRESHOLD=75
    - CHAT_EVAL_TOOL_RESULTS_MAX_CHARS=10000
    """
    return ChatPolicy(
        max_tool_iterations=max(1, min(_env_int("CHAT_MAX_TOOL_ITERATIONS", 5), 10)),
        evaluation_enabled=_env_bool("CHAT_EVALUATION_ENABLED", True),
        suggestions_enabled=_env_bool("CHAT_SUGGESTIONS_ENABLED", True),
        evaluation_timeout_seconds=max(0.1, min(_env_float("CHAT_EVALUATION_TIMEOUT_SECONDS", 30.0), 120.0)),
        suggestions_timeout_seconds=max(0.1, min(_env_float("CHAT_SUGGESTIONS_TIMEOUT_SECONDS", 15.0), 120.0)),
        auto_log_threshold=max(0, min(_env_int("CHAT_AUTO_LOG_THRESHOLD", 75), 100)),
        eval_tool_results_max_chars=max(500, min(_env_int("CHAT_EVAL_TOOL_RESULTS_MAX_CHARS", 10_000), 200_000)),
        max_feedback_chars=max(100, min(_env_int("CHAT_MAX_FEEDBACK_CHARS", 1000), 10_000)),
    )


def load_admission_policy() -> AdmissionPolicy:
    """
    Load admission ceilings from env.

    Recommended vars:
    - CHAT_RATE_LIMIT_PER_MINUTE=10
    - CHAT_RATE_LIMIT_PER_HOUR=100
    - MCP_RATE_LIMIT_PER_MINUTE=60
    - DAILY_BUDGET_USD=50
    - COST_PER_MILLION_TOKENS_USD=3
    """
    return AdmissionPolicy(
        chat_per_minute=max(1, min(_env_int("CHAT_RATE_LIMIT_PER_MINUTE", 10), 10_000)),
        chat_per_hour=max(1, min(_env_int("CHAT_RATE_LIMIT_PER_HOUR", 100), 100_000)),
        mcp_per_minute=max(1, min(_env_int("MCP_RATE_LIMIT_PER_MINUTE", 60), 10_000)),
        daily_budget_usd=max(0.0, _env_float("DAILY_BUDGET_USD", 50.0)),
        cost_per_million_tokens_usd=max(0.0, _env_float("COST_PER_MILLION_TOKENS_USD", 3.0)),
    )
