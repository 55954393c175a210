"""
Tool-result compression for the model-facing transcript.

Layer 1 separates chart payloads: the full series goes to the client, the model sees a
structural summary. Layer 2 projects school records onto a fixed allow-list of fields.
Neither layer touches the raw result, which is kept whole in `RawResultLog` for the
evaluator.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

ESSENTIAL_SCHOOL_FIELDS: Tuple[str, ...] = (
    "dbn",
    "name",
    "borough",
    "impact_score",
    "performance_score",
    "economic_need_index",
    "enrollment",
    "category",
    "is_charter",
    "student_attendance",
    "teacher_attendance",
    "survey_family_involvement",
    "survey_family_trust",
    "survey_safety",
    "survey_communication",
    "survey_instruction",
    "survey_leadership",
    "survey_support",
    "rating_instruction",
    "rating_safety",
    "rating_families",
    "principal_years",
    "pct_teachers_3plus_years",
)

_ESSENTIAL = frozenset(ESSENTIAL_SCHOOL_FIELDS)

# tool -> keys holding lists of school records
_RECORD_LISTS: Dict[str, Tuple[str, ...]] = {
    "search_schools": ("schools",),
    "get_curated_lists": ("schools",),
    "find_similar_schools": ("similar_schools",),
}

CHART_TOOL = "generate_chart"


def project_record(record: Any) -> Any:
    if not isinstance(record, dict):
        return record
    return {k: v for k, v in record.items() if k in _ESSENTIAL}


def _project_list(items: Any) -> Any:
    if not isinstance(items, list):
        return items
    return [project_record(x) for x in items]


_PROFILE_KEYS = ("school", "metrics", "is_persistent_high_growth", "similar_schools", "location")


def _project_profile(result: Dict[str, Any]) -> Dict[str, Any]:
    profile = result.get("profile")
    if not isinstance(profile, dict):
        return result
    p = {k: v for k, v in profile.items() if k in _PROFILE_KEYS}
    metrics = p.get("metrics")
    if isinstance(metrics, dict):
        m = dict(metrics)
        for k in ("current", "previous"):
            if isinstance(m.get(k), dict):
                m[k] = project_record(m[k])
        p["metrics"] = m
    if "similar_schools" in p:
        p["similar_schools"] = _project_list(p["similar_schools"])
    out = dict(result)
    out["profile"] = p
    return out


def project_for_transcript(tool: str, result: Any) -> Any:
    """
    Layer 2: keep only allow-listed fields of school records.

    Only removes keys. `_context` and every non-record key pass through, so applying
    this twice gives the same result as applying it once.
    """
    if not isinstance(result, dict):
        return result
    if tool == "get_school_profile":
        return _project_profile(result)
    keys = _RECORD_LISTS.get(tool)
    if not keys:
        return result
    out = dict(result)
    for k in keys:
        if k in out:
            out[k] = _project_list(out[k])
    return out


def is_chart_result(tool: str, result: Any) -> bool:
    return tool == CHART_TOOL and isinstance(result, dict) and isinstance(result.get("chart"), dict)


def separate_chart_payload(tool_use_id: str, result: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Layer 1: split a chart result into (client payload, model view).

    The model view names the chart and counts its points but carries none of the series.
    """
    chart = result.get("chart") or {}
    data = chart.get("data")
    client_payload = {"toolUseId": tool_use_id, **chart}
    model_view = {
        "chart": {
            "type": chart.get("type"),
            "title": chart.get("title"),
            "xAxis": chart.get("xAxis"),
            "yAxis": chart.get("yAxis"),
            "data_point_count": len(data) if isinstance(data, list) else 0,
        },
        "_context": result.get("_context"),
    }
    return client_payload, model_view


class RawResultLog:
    """Session-scoped side buffer of every raw tool result, in call order."""

    def __init__(self) -> None:
        self._entries: List[Tuple[str, str, str]] = []

    def append(self, tool_use_id: str, tool: str, result: Any) -> None:
        self._entries.append((tool_use_id, tool, json.dumps(result, ensure_ascii=False, default=str)))

    def __len__(self) -> int:
        return len(self._entries)

    def texts(self) -> List[str]:
        return [t for _, _, t in self._entries]

    def joined(self, max_chars: Optional[int] = None) -> str:
        txt = "\n".join(self.texts())
        if max_chars is not None and max_chars > 0 and len(txt) > max_chars:
            return txt[:max_chars]
        return txt
