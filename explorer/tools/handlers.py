"""
Tool handlers.

Each handler takes a validated parameter model and returns a JSON-serialisable dict with
an embedded `_context` (sample size, data year, citywide medians, limitations). Handlers
never touch conversation state; they only read from the school store.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from explorer.tools.store import (
    DEFAULT_YEAR,
    ENI_THRESHOLD,
    HIGH_GROWTH_CATEGORIES,
    IMPACT_THRESHOLD,
    PERFORMANCE_THRESHOLD,
    PREVIOUS_YEAR,
    YEARS,
    get_store,
    pearson,
    sort_rows,
)

Borough = Literal["Manhattan", "Bronx", "Brooklyn", "Queens", "Staten Island"]
ReportType = Literal["EMS", "HS", "HST", "EC", "D75"]
Year = Literal["2023-24", "2024-25"]

_IMPACT_NOTE = (
    "Impact Score measures student growth relative to similar students. Performance Score measures "
    "absolute outcomes and correlates strongly with poverty."
)

METRIC_LABELS: Dict[str, str] = {
    "impact_score": "Impact Score (student growth)",
    "performance_score": "Performance Score (absolute outcomes)",
    "economic_need_index": "Economic Need Index (poverty)",
    "student_attendance": "Student Attendance Rate",
    "teacher_attendance": "Teacher Attendance Rate",
    "enrollment": "School Enrollment",
    "total_budget": "Total Budget Allocation",
    "pct_funded": "FSF % Funded",
    "total_suspensions": "Total Suspensions",
    "pta_income": "PTA Total Income",
    "survey_family_involvement": "Family Involvement Survey Score",
    "survey_safety": "Safety Survey Score",
    "survey_instruction": "Instruction Survey Score",
}


def _clamp_limit(v: Any, *, default: int, maximum: int) -> int:
    if v is None or isinstance(v, bool):
        return default
    try:
        n = int(float(v))
    except Exception:
        raise ValueError("limit must be a number")
    return max(1, min(n, maximum))


def _context(
    *,
    sample_size: int,
    year: str,
    limitations: List[str],
    methodology_note: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    ctx: Dict[str, Any] = {
        "sample_size": int(sample_size),
        "data_year": year,
        "citywide_medians": get_store().citywide_medians(DEFAULT_YEAR if year not in YEARS else year),
        "limitations": limitations,
    }
    if methodology_note:
        ctx["methodology_note"] = methodology_note
    ctx.update({k: v for k, v in extra.items() if v is not None})
    return ctx


# ---- search_schools -------------------------------------------------------------


class SearchSchoolsParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: Optional[str] = None
    borough: Optional[Borough] = None
    report_type: Optional[ReportType] = None
    min_impact_score: Optional[float] = None
    max_impact_score: Optional[float] = None
    min_performance_score: Optional[float] = None
    max_performance_score: Optional[float] = None
    min_eni: Optional[float] = None
    max_eni: Optional[float] = None
    min_enrollment: Optional[float] = None
    max_enrollment: Optional[float] = None
    category: Optional[
        Literal[
            "high_growth_high_achievement",
            "high_growth",
            "high_achievement",
            "below_growth_threshold",
            "lower_economic_need",
        ]
    ] = None
    is_charter: Optional[bool] = None
    nta: Optional[str] = None
    council_district: Optional[int] = None
    year: Year = DEFAULT_YEAR
    sort_by: Literal[
        "impact_score",
        "performance_score",
        "economic_need_index",
        "enrollment",
        "student_attendance",
        "teacher_attendance",
        "name",
    ] = "impact_score"
    sort_order: Optional[Literal["asc", "desc"]] = None
    limit: int = 10

    @field_validator("limit", mode="before")
    @classmethod
    def _limit_cap(cls, v: Any) -> int:
        return _clamp_limit(v, default=10, maximum=100)

    @field_validator("category", mode="before")
    @classmethod
    def _legacy_category(cls, v: Any) -> Any:
        # Older clients use the pre-rename category names.
        return {"developing": "below_growth_threshold", "below_threshold": "lower_economic_need"}.get(v, v)


def search_schools(p: SearchSchoolsParams) -> Dict[str, Any]:
    store = get_store()
    order = p.sort_order or ("asc" if p.sort_by == "name" else "desc")
    matched = store.search(
        year=p.year,
        query=p.query,
        borough=p.borough,
        report_type=p.report_type,
        category=p.category,
        is_charter=p.is_charter,
        nta=p.nta,
        council_district=p.council_district,
        ranges={
            "impact_score": (p.min_impact_score, p.max_impact_score),
            "performance_score": (p.min_performance_score, p.max_performance_score),
            "economic_need_index": (p.min_eni, p.max_eni),
            "enrollment": (p.min_enrollment, p.max_enrollment),
        },
        sort_by=p.sort_by,
        sort_order=order,
    )
    schools = matched[: p.limit]

    limitations = ["Based on NYC DOE School Quality Report data", f"Data from {p.year} school year"]
    if p.category:
        limitations.append("Categories are computed using fixed thresholds and may not capture all nuances")
    if p.min_impact_score is not None or p.max_impact_score is not None:
        limitations.append("Impact Score methodology not fully disclosed by DOE; interpret with caution")
    if len(schools) < 10:
        limitations.append(f"Small sample size ({len(schools)} schools) limits generalizability")
    charter_count = sum(1 for s in schools if s.get("is_charter"))
    if charter_count:
        limitations.append(
            f"Results include {charter_count} charter and {len(schools) - charter_count} district schools. "
            "Charter results should be interpreted with caution due to lottery selection effects."
        )

    sort_applied = None
    if p.sort_by != "impact_score" or p.sort_order:
        sort_applied = {"field": p.sort_by, "order": order}

    return {
        "schools": schools,
        "total_count": len(matched),
        "_context": _context(
            sample_size=len(schools),
            year=p.year,
            limitations=limitations,
            methodology_note=_IMPACT_NOTE,
            sort_applied=sort_applied,
        ),
    }


# ---- get_school_profile ---------------------------------------------------------


class SchoolProfileParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    dbn: str = Field(min_length=1)
    include_similar: bool = True


def get_school_profile(p: SchoolProfileParams) -> Dict[str, Any]:
    store = get_store()
    s = store.get(p.dbn)
    limitations = ["Based on NYC DOE School Quality Report data", "Impact Score methodology not fully disclosed by DOE"]
    if s is None:
        limitations.append("School not found in dataset")
        return {"profile": None, "_context": _context(sample_size=0, year=DEFAULT_YEAR, limitations=limitations)}

    current = store.row(p.dbn, DEFAULT_YEAR)
    previous = store.row(p.dbn, PREVIOUS_YEAR)

    change: Dict[str, float] = {}
    if current and previous:
        for k in ("impact_score", "performance_score", "economic_need_index", "enrollment"):
            a, b = current.get(k), previous.get(k)
            if isinstance(a, (int, float)) and isinstance(b, (int, float)):
                change[k] = round(a - b, 3)
        limitations.append("Year-over-year changes may reflect cohort differences, not school improvement")
    else:
        limitations.append("Only one year of data available for this school")

    persistent = store.is_persistent_high_growth(str(s.get("dbn")))
    if persistent:
        limitations.append("Persistent high growth suggests consistency, but cannot determine causation")
    if current and isinstance(current.get("enrollment"), (int, float)) and current["enrollment"] < 200:
        limitations.append("Small school enrollment may lead to more volatile year-over-year metrics")
    if (s.get("suspensions") or {}).get("is_redacted"):
        limitations.append("Some suspension values are redacted due to small counts for privacy protection")
    if s.get("budget") and s.get("is_charter"):
        limitations.append("Charter school budget data is not directly comparable to DOE-managed school budgets")

    similar: List[Dict[str, Any]] = []
    if p.include_similar:
        similar = store.similar(str(s.get("dbn")), criteria=("economic_need", "enrollment"), limit=5)

    profile = {
        "school": {
            k: s.get(k)
            for k in (
                "dbn",
                "name",
                "borough",
                "report_type",
                "is_charter",
                "principal_years",
                "pct_teachers_3plus_years",
            )
        },
        "metrics": {"current": current, "previous": previous, "change": change},
        "is_persistent_high_growth": persistent,
        "similar_schools": similar,
        "budget": s.get("budget"),
        "suspensions": s.get("suspensions"),
        "pta": s.get("pta"),
        "location": {
            "address": s.get("address"),
            "borough": s.get("borough"),
            "nta": s.get("nta"),
            "grades_served": s.get("grades_served"),
            "council_district": s.get("council_district"),
        },
    }
    return {
        "profile": profile,
        "_context": _context(
            sample_size=1,
            year=DEFAULT_YEAR,
            limitations=limitations,
            methodology_note=(
                "Profile includes both years of data when available. Similar schools are matched by "
                "ENI (+/-0.05) and enrollment (+/-20%)."
            ),
        ),
    }


# ---- find_similar_schools -------------------------------------------------------


class SimilarSchoolsParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    dbn: str = Field(min_length=1)
    match_criteria: List[Literal["economic_need", "enrollment", "borough", "report_type"]] = Field(
        default_factory=lambda: ["economic_need", "enrollment"]
    )
    eni_tolerance: float = Field(default=0.05, ge=0, le=1)
    enrollment_tolerance: float = Field(default=0.2, ge=0, le=5)
    limit: int = 5

    @field_validator("limit", mode="before")
    @classmethod
    def _limit_cap(cls, v: Any) -> int:
        return _clamp_limit(v, default=5, maximum=25)


def find_similar_schools(p: SimilarSchoolsParams) -> Dict[str, Any]:
    store = get_store()
    ref = store.latest_row(p.dbn)
    if ref is None:
        return {
            "reference_school": None,
            "similar_schools": [],
            "matching_criteria": [],
            "_context": _context(sample_size=0, year=DEFAULT_YEAR, limitations=["School not found in dataset"]),
        }

    similar = store.similar(
        p.dbn,
        criteria=p.match_criteria,
        eni_tolerance=p.eni_tolerance,
        enrollment_tolerance=p.enrollment_tolerance,
        limit=p.limit,
    )
    limitations = [
        "Similar schools matched by quantitative characteristics only",
        "Does not account for differences in programs, leadership, or culture",
        f"ENI tolerance +/-{p.eni_tolerance}, enrollment tolerance +/-{round(p.enrollment_tolerance * 100)}%",
    ]
    if len(similar) < 3:
        limitations.append("Few schools match these criteria; comparisons may be limited")

    return {
        "reference_school": {
            k: ref.get(k)
            for k in ("dbn", "name", "impact_score", "performance_score", "economic_need_index", "enrollment")
        },
        "similar_schools": similar,
        "matching_criteria": list(p.match_criteria),
        "_context": _context(
            sample_size=len(similar) + 1,
            year=str(ref.get("year") or DEFAULT_YEAR),
            limitations=limitations,
            methodology_note=(
                "Comparing schools with similar economic need provides fairer context than raw rankings."
            ),
        ),
    }


# ---- analyze_correlations -------------------------------------------------------

MetricName = Literal[
    "impact_score",
    "performance_score",
    "economic_need_index",
    "student_attendance",
    "teacher_attendance",
    "enrollment",
    "total_budget",
    "pct_funded",
    "total_suspensions",
    "pta_income",
    "survey_family_involvement",
    "survey_safety",
    "survey_instruction",
]


class CorrelationFilter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min_eni: Optional[float] = None
    max_eni: Optional[float] = None
    category: Optional[str] = None
    borough: Optional[str] = None


class CorrelationParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    metric1: MetricName
    metric2: MetricName
    filter: Optional[CorrelationFilter] = None
    year: Year = DEFAULT_YEAR


def _interpret_correlation(r: float) -> str:
    a = abs(r)
    if a >= 0.7:
        strength = "strong"
    elif a >= 0.5:
        strength = "moderate"
    elif a >= 0.3:
        strength = "weak"
    else:
        strength = "very weak or negligible"
    direction = "positive" if r >= 0 else "negative"
    return f"{strength} {direction} correlation (r = {r:.2f})"


def analyze_correlations(p: CorrelationParams) -> Dict[str, Any]:
    f = p.filter or CorrelationFilter()
    rows = get_store().search(
        year=p.year,
        borough=f.borough,
        category=f.category,
        ranges={"economic_need_index": (f.min_eni, f.max_eni)},
    )
    pairs = [
        (float(r[p.metric1]), float(r[p.metric2]))
        for r in rows
        if isinstance(r.get(p.metric1), (int, float)) and isinstance(r.get(p.metric2), (int, float))
    ]
    xs = [a for a, _ in pairs]
    ys = [b for _, b in pairs]
    r = pearson(xs, ys)
    n = len(pairs)

    limitations = [
        "Correlation does not imply causation",
        "Many confounding variables may explain the relationship",
        "Results may not generalize beyond this sample",
    ]
    metrics = {p.metric1, p.metric2}
    if "performance_score" in metrics:
        limitations.append("Performance Score correlates strongly with poverty; control for ENI when interpreting")
    if n < 30:
        limitations.append(f"Small sample size (n={n}) limits statistical power")
    if metrics & {"total_budget", "pct_funded"}:
        limitations.append("Charter school budgets are not comparable to DOE-managed school budgets")
    if "total_suspensions" in metrics:
        limitations.append("Schools with redacted suspension counts are excluded from this correlation")
    if "pta_income" in metrics:
        limitations.append("PTA income primarily reflects parent wealth, not school quality or effectiveness")

    filters_applied = f.model_dump(exclude_none=True) or None
    return {
        "correlation": None if r is None else round(r, 4),
        "sample_size": n,
        "metric1": {"name": METRIC_LABELS.get(p.metric1, p.metric1), "mean": round(sum(xs) / n, 4) if n else None},
        "metric2": {"name": METRIC_LABELS.get(p.metric2, p.metric2), "mean": round(sum(ys) / n, 4) if n else None},
        "interpretation": "Unable to calculate correlation" if r is None else _interpret_correlation(r),
        "filters_applied": filters_applied,
        "_context": _context(
            sample_size=n,
            year=p.year,
            limitations=limitations,
            methodology_note="Pearson correlation coefficient across all schools matching the filter criteria.",
        ),
    }


# ---- generate_chart -------------------------------------------------------------


class ChartFilter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    borough: Optional[Borough] = None
    report_type: Optional[ReportType] = None
    min_eni: Optional[float] = None
    max_eni: Optional[float] = None
    category: Optional[str] = None


class ChartParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chart_type: Literal["scatter", "bar", "histogram", "yoy_change"]
    x_metric: str = Field(min_length=1)
    y_metric: Optional[str] = None
    color_by: Optional[Literal["category", "borough", "is_charter"]] = None
    filter: Optional[ChartFilter] = None
    title: Optional[str] = None
    year: Year = DEFAULT_YEAR
    limit: int = 200

    @field_validator("limit", mode="before")
    @classmethod
    def _limit_cap(cls, v: Any) -> int:
        return _clamp_limit(v, default=200, maximum=1000)


def _chart_rows(f: ChartFilter, year: str) -> List[Dict[str, Any]]:
    return get_store().search(
        year=year,
        borough=f.borough,
        report_type=f.report_type,
        category=f.category,
        ranges={"economic_need_index": (f.min_eni, f.max_eni)},
    )


def _label(metric: str) -> str:
    return METRIC_LABELS.get(metric, metric).split(" (")[0]


def _histogram(rows: List[Dict[str, Any]], metric: str, color_by: Optional[str], bins: int = 10) -> List[Dict[str, Any]]:
    values = [float(r[metric]) for r in rows if isinstance(r.get(metric), (int, float))]
    if not values:
        return []
    lo, hi = min(values), max(values)
    width = (hi - lo) / bins or 0.1
    counts: List[Dict[str, Any]] = []
    for i in range(bins):
        start = lo + i * width
        counts.append({"bin": f"{start:.2f}-{start + width:.2f}", "count": 0})
    for r in rows:
        v = r.get(metric)
        if not isinstance(v, (int, float)):
            continue
        idx = min(bins - 1, max(0, int((float(v) - lo) / width)))
        counts[idx]["count"] += 1
        if color_by:
            key = str(r.get(color_by) if r.get(color_by) is not None else "unknown")
            counts[idx][key] = counts[idx].get(key, 0) + 1
    return counts


def generate_chart(p: ChartParams) -> Dict[str, Any]:
    f = p.filter or ChartFilter()
    x_label = _label(p.x_metric)
    limitations: List[str] = []

    if p.chart_type == "yoy_change":
        prev = {r["dbn"]: r for r in _chart_rows(f, PREVIOUS_YEAR)}
        data: List[Dict[str, Any]] = []
        for r in _chart_rows(f, DEFAULT_YEAR):
            old = prev.get(r["dbn"])
            cur_v = r.get(p.x_metric)
            old_v = old.get(p.x_metric) if old else None
            if not isinstance(cur_v, (int, float)) or not isinstance(old_v, (int, float)):
                continue
            point = {
                "name": r.get("name"),
                "dbn": r.get("dbn"),
                f"{p.x_metric}_2324": old_v,
                f"{p.x_metric}_2425": cur_v,
                f"{p.x_metric}_change": round(cur_v - old_v, 4),
                "economic_need_index": r.get("economic_need_index"),
            }
            if p.color_by:
                point[p.color_by] = r.get(p.color_by)
            data.append(point)
        data.sort(key=lambda d: abs(d[f"{p.x_metric}_change"]), reverse=True)
        data = data[: p.limit]
        limitations += [
            "Year-over-year changes may reflect cohort differences, not school improvement",
            f"Based on {len(data)} schools with data in both years",
        ]
        chart = {
            "type": "scatter",
            "title": p.title or f"Year-over-Year Change in {x_label}",
            "xAxis": {"label": f"{x_label} (2023-24)", "dataKey": f"{p.x_metric}_2324"},
            "yAxis": {"label": f"{x_label} (2024-25)", "dataKey": f"{p.x_metric}_2425"},
            "data": data,
        }
        year_label = "2023-24 vs 2024-25"
    else:
        rows = _chart_rows(f, p.year)
        if p.chart_type == "scatter":
            if not p.y_metric:
                raise ValueError("y_metric is required for scatter charts")
            data = []
            for r in rows:
                if not isinstance(r.get(p.x_metric), (int, float)) or not isinstance(r.get(p.y_metric), (int, float)):
                    continue
                point = {"name": r.get("name"), "dbn": r.get("dbn"), p.x_metric: r[p.x_metric], p.y_metric: r[p.y_metric]}
                if p.color_by:
                    point[p.color_by] = r.get(p.color_by)
                data.append(point)
            data = data[: p.limit]
            chart = {
                "type": "scatter",
                "title": p.title or f"{_label(p.y_metric)} vs {x_label}",
                "xAxis": {"label": x_label, "dataKey": p.x_metric},
                "yAxis": {"label": _label(p.y_metric), "dataKey": p.y_metric},
                "data": data,
            }
        elif p.chart_type == "bar":
            ranked = sort_rows([r for r in rows if isinstance(r.get(p.x_metric), (int, float))], sort_by=p.x_metric)
            data = [
                {"name": r.get("name"), "dbn": r.get("dbn"), p.x_metric: r[p.x_metric], **({p.color_by: r.get(p.color_by)} if p.color_by else {})}
                for r in ranked[: p.limit]
            ]
            chart = {
                "type": "bar",
                "title": p.title or x_label,
                "xAxis": {"label": "School", "dataKey": "name"},
                "yAxis": {"label": x_label, "dataKey": p.x_metric},
                "data": data,
            }
        else:
            data = _histogram(rows, p.x_metric, p.color_by)
            chart = {
                "type": "histogram",
                "title": p.title or f"Distribution of {x_label}",
                "xAxis": {"label": x_label, "dataKey": "bin"},
                "yAxis": {"label": "Number of schools", "dataKey": "count"},
                "data": data,
            }
        limitations.append(f"Based on {len(rows)} schools with available data")
        year_label = p.year

    if p.color_by:
        chart["colorBy"] = p.color_by
    ctx = _context(
        sample_size=len(chart["data"]) if p.chart_type != "histogram" else sum(b["count"] for b in chart["data"]),
        year=year_label,
        limitations=limitations or ["No schools matched the specified filter criteria"],
    )
    chart["context"] = ctx
    return {"chart": chart, "_context": ctx}


# ---- explain_metrics ------------------------------------------------------------

_EXPLANATIONS: Dict[str, Dict[str, Any]] = {
    "impact_score": {
        "title": "Impact Score",
        "explanation": (
            "Measures how much students grew compared with similar students elsewhere. It is less tied to "
            "family income than absolute test results."
        ),
        "caveats": ["The DOE has not fully published the methodology", "Only two years are available"],
    },
    "performance_score": {
        "title": "Performance Score",
        "explanation": "Measures absolute outcomes such as proficiency rates. It tracks poverty closely.",
        "caveats": ["Reflects what students bring as much as what schools do"],
    },
    "economic_need_index": {
        "title": "Economic Need Index (ENI)",
        "explanation": (
            "Estimates the share of students facing economic hardship (0-1). Values of "
            f"{ENI_THRESHOLD} and above mark high-poverty schools."
        ),
        "caveats": ["A school-level average hides variation between students"],
    },
    "high_growth_framework": {
        "title": "High growth framework",
        "explanation": (
            f"High-poverty schools (ENI >= {ENI_THRESHOLD}) whose Impact Score is at least {IMPACT_THRESHOLD} are "
            "treated as producing high student growth."
        ),
        "caveats": ["Designed for elementary/middle schools"],
    },
    "categories": {
        "title": "School categories",
        "explanation": (
            f"Among high-poverty schools: high growth (Impact >= {IMPACT_THRESHOLD}), high achievement "
            f"(Performance >= {PERFORMANCE_THRESHOLD}), both, or neither (below growth threshold). Schools "
            f"below ENI {ENI_THRESHOLD} are labelled lower economic need."
        ),
        "caveats": ["Thresholds are fixed cut points; schools near them can flip year to year"],
    },
    "methodology": {
        "title": "Methodology",
        "explanation": "All figures come from NYC DOE School Quality Reports for 2023-24 and 2024-25.",
        "caveats": ["Correlations describe patterns, not causes"],
    },
    "limitations": {
        "title": "Limitations",
        "explanation": "Two years of data, undisclosed growth methodology, and selection effects limit conclusions.",
        "caveats": ["Treat every finding as a question worth investigating"],
    },
    "budget_funding": {
        "title": "Budget and funding",
        "explanation": "Total budget and the share of Fair Student Funding a school receives.",
        "caveats": ["Charter budgets are not comparable to district budgets"],
    },
    "suspensions": {
        "title": "Suspensions",
        "explanation": "Counts of principal and superintendent suspensions reported by the DOE.",
        "caveats": ["Small counts are redacted for privacy"],
    },
    "pta_finances": {
        "title": "PTA finances",
        "explanation": "Income reported by each school's parent-teacher association.",
        "caveats": ["PTA income mostly reflects family wealth"],
    },
    "school_location": {
        "title": "School location",
        "explanation": "Address, neighborhood tabulation area and council district.",
        "caveats": ["Neighborhood does not determine school quality"],
    },
}


class ExplainParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topic: Literal[
        "impact_score",
        "performance_score",
        "economic_need_index",
        "high_growth_framework",
        "categories",
        "methodology",
        "limitations",
        "budget_funding",
        "suspensions",
        "pta_finances",
        "school_location",
    ]


def explain_metrics(p: ExplainParams) -> Dict[str, Any]:
    entry = _EXPLANATIONS[p.topic]
    return {
        "topic": p.topic,
        **entry,
        "_context": _context(sample_size=0, year=DEFAULT_YEAR, limitations=list(entry.get("caveats") or [])),
    }


# ---- get_curated_lists ----------------------------------------------------------

_LIST_DESCRIPTIONS = {
    "high_growth": "High-poverty schools with high student growth but lower absolute scores.",
    "persistent_high_growth": "Schools that kept high growth across both 2023-24 and 2024-25.",
    "high_growth_high_achievement": "High-poverty schools with both high growth and high absolute outcomes.",
    "high_achievement": "High-poverty schools with high absolute scores but lower growth.",
    "all_high_impact": "All high-poverty schools producing high student growth, regardless of absolute level.",
}


class CuratedListParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    list_type: Literal[
        "high_growth", "persistent_high_growth", "high_growth_high_achievement", "high_achievement", "all_high_impact"
    ]
    borough: Optional[Borough] = None
    report_type: Literal["EMS", "HS", "HST", "EC", "D75", "all"] = "EMS"
    sort_by: Literal["impact_score", "name", "enrollment", "economic_need_index"] = "impact_score"
    limit: int = 20

    @field_validator("limit", mode="before")
    @classmethod
    def _limit_cap(cls, v: Any) -> int:
        return _clamp_limit(v, default=20, maximum=100)


def get_curated_lists(p: CuratedListParams) -> Dict[str, Any]:
    store = get_store()
    rows = store.search(year=DEFAULT_YEAR, borough=p.borough, report_type=p.report_type)
    if p.list_type == "persistent_high_growth":
        schools = [r for r in rows if store.is_persistent_high_growth(str(r.get("dbn")))]
    elif p.list_type == "all_high_impact":
        schools = [r for r in rows if r.get("category") in HIGH_GROWTH_CATEGORIES]
    else:
        schools = [r for r in rows if r.get("category") == p.list_type]
    schools = sort_rows(schools, sort_by=p.sort_by, sort_order="asc" if p.sort_by == "name" else "desc")[: p.limit]

    scope = {"all": "All School Types", "EMS": "Elementary/Middle Schools"}.get(p.report_type, f"{p.report_type} Schools")
    limitations = [
        f"Categories computed using fixed thresholds (Impact >= {IMPACT_THRESHOLD}, "
        f"Performance >= {PERFORMANCE_THRESHOLD}, ENI >= {ENI_THRESHOLD})",
        "Cannot determine WHY schools appear in these categories",
        "Year-over-year volatility is significant",
    ]
    if p.report_type != "EMS":
        limitations.insert(
            0,
            f"SCOPE NOTE: The framework was validated for Elementary/Middle Schools only; results for {scope} "
            "need additional caution.",
        )
    if p.list_type == "persistent_high_growth":
        limitations.append("Two years of data provides more confidence but still cannot prove causation")

    return {
        "list_type": p.list_type,
        "description": _LIST_DESCRIPTIONS[p.list_type],
        "count": len(schools),
        "schools": schools,
        "scope": scope,
        "_context": _context(sample_size=len(schools), year=DEFAULT_YEAR, limitations=limitations),
    }


ToolHandler = Callable[[Dict[str, Any]], Dict[str, Any]]


def _bind(model: type, fn: Callable[[Any], Dict[str, Any]]) -> ToolHandler:
    def _handler(params: Dict[str, Any]) -> Dict[str, Any]:
        return fn(model.model_validate(params or {}))

    _handler.__name__ = fn.__name__
    _handler.__doc__ = fn.__doc__
    _handler.params_model = model  # type: ignore[attr-defined]
    return _handler


HANDLERS: Dict[str, ToolHandler] = {
    "search_schools": _bind(SearchSchoolsParams, search_schools),
    "get_school_profile": _bind(SchoolProfileParams, get_school_profile),
    "find_similar_schools": _bind(SimilarSchoolsParams, find_similar_schools),
    "analyze_correlations": _bind(CorrelationParams, analyze_correlations),
    "generate_chart": _bind(ChartParams, generate_chart),
    "explain_metrics": _bind(ExplainParams, explain_metrics),
    "get_curated_lists": _bind(CuratedListParams, get_curated_lists),
}
