from __future__ import annotations

import json
import logging
import os
import random
import string
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import requests

from explorer.chat.evaluation import confidence_level, should_flag_response

logger = logging.getLogger(__name__)

LogType = Literal["auto", "user_flagged"]

JSONL_CONTENT_LIMIT = 10 * 1024
WEBHOOK_PREVIEW_LIMIT = 500
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()
_file_lock = threading.Lock()


@dataclass(frozen=True)
class AuditConfig:
    log_dir: Path
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = 10.0

    @property
    def jsonl_path(self) -> Path:
        return self.log_dir / "evaluations.jsonl"


def load_audit_config() -> AuditConfig:
    log_dir = (os.getenv("AUDIT_LOG_DIR") or "").strip() or "logs"
    url = (os.getenv("AUDIT_WEBHOOK_URL") or "").strip() or (os.getenv("ZAPIER_WEBHOOK_URL") or "").strip() or None
    return AuditConfig(log_dir=Path(log_dir), webhook_url=url)


def _log_id() -> str:
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"log-{int(time.time() * 1000)}-{rand}"


def _truncate(text: str, limit: int) -> str:
    t = text or ""
    if len(t) <= limit:
        return t
    return t[: limit - 3] + "..."


def sanitize_for_spreadsheet(text: str) -> str:
    """Neutralize spreadsheet formula injection by quoting a leading formula character."""
    if not text:
        return ""
    if text.startswith(_FORMULA_PREFIXES):
        return "'" + text
    return text


def _score(v: Any) -> int:
    try:
        return int(v or 0)
    except (TypeError, ValueError):
        return 0


def _normalize_evaluation(evaluation: Any) -> Dict[str, Any]:
    """
    Evaluations can arrive from the client (flag endpoint), so every field is coerced
    and anything malformed falls back to an empty value.
    """
    ev = evaluation if isinstance(evaluation, dict) else {}
    scores = ev.get("scores")
    flags = ev.get("flags")
    if isinstance(flags, str):
        flags = [flags]
    score = _score(ev.get("weighted_score"))
    return {
        "scores": {str(k): _score(v) for k, v in scores.items()} if isinstance(scores, dict) else {},
        "weighted_score": score,
        "confidence_level": confidence_level(score),
        "flags": [str(f) for f in flags] if isinstance(flags, list) else [],
        "summary": str(ev.get("summary") or ""),
    }


def build_log_entry(
    *,
    user_query: str,
    assistant_response: str,
    tool_calls: List[Dict[str, Any]],
    evaluation: Dict[str, Any],
    log_type: LogType,
    user_feedback: Optional[str] = None,
    tool_results: Optional[str] = None,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "id": _log_id(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "log_type": log_type,
        "user_query": _truncate(user_query, JSONL_CONTENT_LIMIT),
        "assistant_response": _truncate(assistant_response, JSONL_CONTENT_LIMIT),
        "tool_calls": [tc for tc in (tool_calls or []) if isinstance(tc, dict)],
        "evaluation": _normalize_evaluation(evaluation),
    }
    # JSONL only; the webhook row never carries raw results.
    if tool_results:
        entry["tool_results"] = _truncate(tool_results, JSONL_CONTENT_LIMIT)
    if user_feedback is not None:
        entry["user_feedback"] = user_feedback
    return entry


def build_webhook_payload(entry: Dict[str, Any], *, assistant_response: str) -> Dict[str, Any]:
    """Flat, spreadsheet-safe row for the webhook."""
    ev = entry.get("evaluation") or {}
    scores = ev.get("scores") or {}
    tool_calls = entry.get("tool_calls") or []
    return {
        "id": entry["id"],
        "timestamp": entry["timestamp"],
        "log_type": entry["log_type"],
        "user_query": sanitize_for_spreadsheet(_truncate(entry.get("user_query") or "", WEBHOOK_PREVIEW_LIMIT)),
        "assistant_response_preview": sanitize_for_spreadsheet(_truncate(assistant_response, WEBHOOK_PREVIEW_LIMIT)),
        "assistant_response_length": len(assistant_response or ""),
        "tool_names": ", ".join(str(tc.get("name") or "") for tc in tool_calls if isinstance(tc, dict)),
        "tool_count": len(tool_calls),
        "score_factual": scores.get("factual_accuracy"),
        "score_context": scores.get("context_inclusion"),
        "score_limitations": scores.get("limitation_acknowledgment"),
        "score_framing": scores.get("responsible_framing"),
        "score_relevance": scores.get("query_relevance"),
        "weighted_score": ev.get("weighted_score"),
        "confidence_level": ev.get("confidence_level"),
        "needs_review": should_flag_response(ev),
        "flags": sanitize_for_spreadsheet("; ".join(ev.get("flags") or [])),
        "summary": sanitize_for_spreadsheet(_truncate(ev.get("summary") or "", WEBHOOK_PREVIEW_LIMIT)),
        "user_feedback": sanitize_for_spreadsheet(entry.get("user_feedback") or ""),
    }


def _append_jsonl(path: Path, entry: Dict[str, Any]) -> None:
    line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
    with _file_lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(line)


def _post_webhook(url: str, payload: Dict[str, Any], *, timeout: float) -> None:
    r = requests.post(url, json=payload, timeout=timeout)
    r.raise_for_status()


def write_log_entry(cfg: AuditConfig, entry: Dict[str, Any], *, assistant_response: str) -> bool:
    """
    Persist one entry: webhook first (when configured), then always the JSONL file.

    Returns True when the JSONL line was written. Never raises.
    """
    webhook_ok = False
    if cfg.webhook_url:
        try:
            _post_webhook(
                cfg.webhook_url,
                build_webhook_payload(entry, assistant_response=assistant_response),
                timeout=cfg.webhook_timeout_seconds,
            )
            webhook_ok = True
        except Exception as e:
            logger.warning("Audit webhook failed: %s", type(e).__name__)

    written = False
    try:
        _append_jsonl(cfg.jsonl_path, entry)
        written = True
    except Exception as e:
        logger.warning("Audit JSONL write failed: %s", e)

    logger.info(
        "audit %s score=%s webhook=%s id=%s",
        entry.get("log_type"),
        (entry.get("evaluation") or {}).get("weighted_score"),
        webhook_ok,
        entry.get("id"),
    )
    return written


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit")
        return _executor


def log_evaluation(
    *,
    user_query: str,
    assistant_response: str,
    tool_calls: List[Dict[str, Any]],
    evaluation: Dict[str, Any],
    log_type: LogType,
    user_feedback: Optional[str] = None,
    tool_results: Optional[str] = None,
) -> Future:
    """
    Queue an audit entry on the single background writer and return immediately.

    `tool_results` is the session's raw tool output (joined JSON texts); it is kept in
    the JSONL entry and left out of the webhook row.

    The returned future resolves to True/False (JSONL written); callers normally ignore it.
    """
    cfg = load_audit_config()
    entry = build_log_entry(
        user_query=user_query,
        assistant_response=assistant_response,
        tool_calls=tool_calls,
        evaluation=evaluation,
        log_type=log_type,
        user_feedback=user_feedback,
        tool_results=tool_results,
    )
    return _get_executor().submit(write_log_entry, cfg, entry, assistant_response=assistant_response or "")


def shutdown_audit_writer(wait: bool = True) -> None:
    global _executor
    with _executor_lock:
        ex, _executor = _executor, None
    if ex is not None:
        ex.shutdown(wait=wait)
