from __future__ import annotations

from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SuggestionCategory = Literal["explore", "compare", "explain", "visualize"]


def _clamp_str(s: Any, *, max_chars: int) -> str:
    txt = "" if s is None else str(s)
    txt = txt.strip()
    if max_chars > 0 and len(txt) > max_chars:
        return txt[: max_chars - 3].rstrip() + "..."
    return txt


def _clamp_list(xs: Any, *, max_items: int) -> list:
    if not isinstance(xs, list):
        return []
    if max_items > 0 and len(xs) > max_items:
        return xs[:max_items]
    return xs


def _clamp_score(v: Any) -> int:
    try:
        n = int(round(float(v)))
    except Exception:
        return 1
    return max(1, min(n, 5))


class EvaluationScores(BaseModel):
    """Five 1-5 dimensions judged by the evaluator model."""

    model_config = ConfigDict(extra="ignore")

    factual_accuracy: int = 3
    context_inclusion: int = 3
    limitation_acknowledgment: int = 3
    responsible_framing: int = 3
    query_relevance: int = 3

    @field_validator(
        "factual_accuracy",
        "context_inclusion",
        "limitation_acknowledgment",
        "responsible_framing",
        "query_relevance",
        mode="before",
    )
    @classmethod
    def _score_range(cls, v: Any) -> int:
        return _clamp_score(v)


class EvaluationResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    scores: EvaluationScores = Field(default_factory=EvaluationScores)
    flags: List[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("flags", mode="before")
    @classmethod
    def _flags_cap(cls, v: Any) -> List[str]:
        out: List[str] = []
        for x in _clamp_list(v, max_items=8):
            s = _clamp_str(x, max_chars=200)
            if s:
                out.append(s)
        return out

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_trim(cls, v: Any) -> str:
        return _clamp_str(v, max_chars=600)


class SuggestionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""
    category: SuggestionCategory = "explore"

    @field_validator("text", mode="before")
    @classmethod
    def _text_trim(cls, v: Any) -> str:
        return _clamp_str(v, max_chars=80)

    @field_validator("category", mode="before")
    @classmethod
    def _category_known(cls, v: Any) -> str:
        s = str(v or "").strip().lower()
        return s if s in ("explore", "compare", "explain", "visualize") else "explore"


class SuggestionsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    suggestions: List[SuggestionItem] = Field(default_factory=list)

    @field_validator("suggestions", mode="before")
    @classmethod
    def _suggestions_cap(cls, v: Any) -> list:
        return _clamp_list(v, max_items=3)
