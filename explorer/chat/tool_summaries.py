from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional


def _truncate(s: str, n: int) -> str:
    txt = (s or "").strip()
    if len(txt) <= n:
        return txt
    return txt[: max(0, n - 3)].rstrip() + "..."


def _jsonable(v: Any, *, _depth: int = 0, _max_depth: int = 6) -> Any:
    """
    Best-effort convert values to JSON-serializable objects.
    """
    if _depth >= _max_depth:
        return str(v)
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, dict):
        return {str(k): _jsonable(vv, _depth=_depth + 1, _max_depth=_max_depth) for k, vv in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_jsonable(x, _depth=_depth + 1, _max_depth=_max_depth) for x in list(v)]
    if hasattr(v, "model_dump"):
        return _jsonable(v.model_dump(mode="json"), _depth=_depth + 1, _max_depth=_max_depth)
    return str(v)


def compact_args_for_prompt(args: Dict[str, Any], *, max_keys: int = 8, max_value_chars: int = 80) -> Dict[str, Any]:
    """
    Keep prompts small while still letting the model see what was called.
    """
    if not isinstance(args, dict):
        return {}
    out: Dict[str, Any] = {}
    for i, (k, v) in enumerate(args.items()):
        if i >= max_keys:
            break
        vv = _jsonable(v)
        if isinstance(vv, str):
            vv = _truncate(vv, max_value_chars)
        out[str(k)] = vv
    return out


def _count_list(x: Any) -> Optional[int]:
    return len(x) if isinstance(x, list) else None


def _get(d: Any, *path: str) -> Any:
    cur = d
    for p in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(p)
    return cur


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" + ("" if n == 1 else "s")


def summarize_tool_result(*, tool: str, result: Any) -> str:
    """
    One-line summary of a successful tool result for the UI `tool_end` event.

    Failed calls never get here; their `tool_end` carries the error text instead.
    """
    t = str(tool or "").strip()
    if not isinstance(result, dict):
        return "Tool completed successfully"

    if t == "search_schools":
        n = _count_list(result.get("schools")) or 0
        if n == 0:
            return "No schools found matching criteria"
        return f"Found {_plural(n, 'school')}"

    if t == "get_school_profile":
        name = _get(result, "profile", "school", "name")
        if not name:
            return "School not found"
        return _truncate(f"Retrieved profile for {name}", 160)

    if t == "find_similar_schools":
        n = _count_list(result.get("similar_schools")) or 0
        return f"Found {_plural(n, 'similar school')}"

    if t == "analyze_correlations":
        r = result.get("correlation")
        if isinstance(r, (int, float)):
            return f"Correlation: {r:.3f}"
        return "Correlation: not enough data"

    if t == "generate_chart":
        title = _get(result, "chart", "title") or "chart"
        return _truncate(f"Generated chart: {title}", 160)

    if t == "explain_metrics":
        return f"Explanation for {result.get('topic') or 'metric'}"

    if t == "get_curated_lists":
        n = _count_list(result.get("schools")) or 0
        label = str(result.get("list_type") or "curated").replace("_", " ")
        return f"Retrieved {_plural(n, label + ' school')}"

    return "Tool completed successfully"


def _iter_school_records(tool: str, result: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(result, dict):
        return []
    if tool in ("search_schools", "get_curated_lists"):
        items = result.get("schools")
    elif tool == "find_similar_schools":
        items = list(result.get("similar_schools") or [])
        ref = result.get("reference_school")
        if isinstance(ref, dict):
            items.insert(0, ref)
    elif tool == "get_school_profile":
        prof = result.get("profile") if isinstance(result.get("profile"), dict) else {}
        items = [prof.get("school")] + list(prof.get("similar_schools") or [])
    else:
        items = None
    return [x for x in (items or []) if isinstance(x, dict)]


def extract_school_mappings(tool: str, result: Any) -> List[Dict[str, str]]:
    """
    Name/DBN pairs mentioned by a tool result, so the client can link school names.
    """
    seen = set()
    out: List[Dict[str, str]] = []
    for rec in _iter_school_records(tool, result):
        name = str(rec.get("name") or "").strip()
        dbn = str(rec.get("dbn") or "").strip()
        if not name or not dbn or dbn in seen:
            continue
        seen.add(dbn)
        out.append({"name": name, "dbn": dbn})
    return out
