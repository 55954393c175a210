"""
Read-only school data layer.

The dataset is a JSON document (bundled sample by default, `SCHOOL_DATA_PATH` to
override) loaded once into memory. Tool handlers only ever read from it.
"""

from __future__ import annotations

import json
import logging
import math
import os
import threading
from pathlib import Path
from statistics import median
from typing import Any, Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_YEAR = "2024-25"
PREVIOUS_YEAR = "2023-24"
YEARS = (PREVIOUS_YEAR, DEFAULT_YEAR)

IMPACT_THRESHOLD = 0.55
PERFORMANCE_THRESHOLD = 0.50
ENI_THRESHOLD = 0.85

HIGH_GROWTH_CATEGORIES = ("high_growth", "high_growth_high_achievement")

_FALLBACK_MEDIANS = {"impact": 0.50, "performance": 0.50, "eni": 0.72}

_SAMPLE_PATH = Path(__file__).resolve().parent / "data" / "sample_schools.json"


def categorize(impact: Optional[float], performance: Optional[float], eni: Optional[float]) -> Optional[str]:
    if impact is None or performance is None or eni is None:
        return None
    if eni < ENI_THRESHOLD:
        return "lower_economic_need"
    high_growth = impact >= IMPACT_THRESHOLD
    high_achievement = performance >= PERFORMANCE_THRESHOLD
    if high_growth and high_achievement:
        return "high_growth_high_achievement"
    if high_growth:
        return "high_growth"
    if high_achievement:
        return "high_achievement"
    return "below_growth_threshold"


def _num(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        x = float(v)
        return None if math.isnan(x) else x
    return None


def pearson(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    n = len(xs)
    if n < 3 or n != len(ys):
        return None
    mx = sum(xs) / n
    my = sum(ys) / n
    sxy = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    sxx = sum((x - mx) ** 2 for x in xs)
    syy = sum((y - my) ** 2 for y in ys)
    if sxx <= 0 or syy <= 0:
        return None
    return sxy / math.sqrt(sxx * syy)


class SchoolStore:
    def __init__(self, schools: Iterable[Dict[str, Any]]):
        self._schools: Dict[str, Dict[str, Any]] = {}
        for s in schools:
            dbn = str(s.get("dbn") or "").strip().upper()
            if dbn:
                self._schools[dbn] = s

    @classmethod
    def from_path(cls, path: Path) -> "SchoolStore":
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f) or {}
        schools = doc.get("schools") if isinstance(doc, dict) else doc
        if not isinstance(schools, list):
            raise ValueError(f"school dataset has no 'schools' list: {path}")
        logger.info("Loaded %d schools from %s", len(schools), path)
        return cls(schools)

    def __len__(self) -> int:
        return len(self._schools)

    # ---- record shaping ---------------------------------------------------------

    def _flatten(self, s: Dict[str, Any], year: str) -> Optional[Dict[str, Any]]:
        metrics = (s.get("metrics") or {}).get(year)
        if not isinstance(metrics, dict):
            return None
        row: Dict[str, Any] = {
            "dbn": s.get("dbn"),
            "name": s.get("name"),
            "borough": s.get("borough"),
            "report_type": s.get("report_type"),
            "is_charter": bool(s.get("is_charter")),
            "nta": s.get("nta"),
            "council_district": s.get("council_district"),
            "principal_years": s.get("principal_years"),
            "pct_teachers_3plus_years": s.get("pct_teachers_3plus_years"),
            "year": year,
        }
        row.update(metrics)
        row["category"] = categorize(
            _num(metrics.get("impact_score")),
            _num(metrics.get("performance_score")),
            _num(metrics.get("economic_need_index")),
        )
        budget = s.get("budget") or {}
        row["total_budget"] = budget.get("total_budget")
        row["pct_funded"] = budget.get("pct_funded")
        susp = s.get("suspensions") or {}
        row["total_suspensions"] = None if susp.get("is_redacted") else susp.get("total_suspensions")
        row["pta_income"] = (s.get("pta") or {}).get("pta_income")
        return row

    def rows(self, year: str = DEFAULT_YEAR) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for s in self._schools.values():
            r = self._flatten(s, year)
            if r is not None:
                out.append(r)
        return out

    # ---- queries ----------------------------------------------------------------

    def get(self, dbn: str) -> Optional[Dict[str, Any]]:
        return self._schools.get(str(dbn or "").strip().upper())

    def row(self, dbn: str, year: str) -> Optional[Dict[str, Any]]:
        s = self.get(dbn)
        return self._flatten(s, year) if s is not None else None

    def latest_row(self, dbn: str) -> Optional[Dict[str, Any]]:
        s = self.get(dbn)
        if s is None:
            return None
        for year in reversed(YEARS):
            r = self._flatten(s, year)
            if r is not None:
                return r
        return None

    def search(
        self,
        *,
        year: str = DEFAULT_YEAR,
        query: Optional[str] = None,
        borough: Optional[str] = None,
        report_type: Optional[str] = None,
        category: Optional[str] = None,
        is_charter: Optional[bool] = None,
        nta: Optional[str] = None,
        council_district: Optional[int] = None,
        ranges: Optional[Dict[str, tuple]] = None,
        sort_by: str = "impact_score",
        sort_order: str = "desc",
    ) -> List[Dict[str, Any]]:
        """
        Filter rows for `year`.

        `ranges` maps a metric name to an inclusive (min, max) pair; either bound may be
        None. Rows missing a ranged metric are excluded.
        """
        q = (query or "").strip().lower()
        out: List[Dict[str, Any]] = []
        for r in self.rows(year):
            if q and q not in str(r.get("name") or "").lower() and q not in str(r.get("dbn") or "").lower():
                continue
            if borough and r.get("borough") != borough:
                continue
            if report_type and report_type != "all" and r.get("report_type") != report_type:
                continue
            if category and r.get("category") != category:
                continue
            if is_charter is not None and bool(r.get("is_charter")) != is_charter:
                continue
            if nta and nta.lower() not in str(r.get("nta") or "").lower():
                continue
            if council_district is not None and r.get("council_district") != council_district:
                continue
            if ranges and not _in_ranges(r, ranges):
                continue
            out.append(r)
        return sort_rows(out, sort_by=sort_by, sort_order=sort_order)

    def citywide_medians(self, year: str = DEFAULT_YEAR) -> Dict[str, float]:
        rows = self.rows(year)
        out = dict(_FALLBACK_MEDIANS)
        for key, field in (("impact", "impact_score"), ("performance", "performance_score"), ("eni", "economic_need_index")):
            vals = [v for v in (_num(r.get(field)) for r in rows) if v is not None]
            if vals:
                out[key] = round(median(vals), 3)
        return out

    def is_persistent_high_growth(self, dbn: str) -> bool:
        s = self.get(dbn)
        if s is None:
            return False
        for year in YEARS:
            r = self._flatten(s, year)
            if r is None or r.get("category") not in HIGH_GROWTH_CATEGORIES:
                return False
        return True

    def similar(
        self,
        dbn: str,
        *,
        criteria: Sequence[str],
        eni_tolerance: float = 0.05,
        enrollment_tolerance: float = 0.2,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        ref = self.latest_row(dbn)
        if ref is None:
            return []
        ref_eni = _num(ref.get("economic_need_index"))
        ref_enr = _num(ref.get("enrollment"))
        out: List[Dict[str, Any]] = []
        for r in self.rows(str(ref.get("year"))):
            if r.get("dbn") == ref.get("dbn"):
                continue
            if "economic_need" in criteria and ref_eni is not None:
                eni = _num(r.get("economic_need_index"))
                if eni is None or abs(eni - ref_eni) > eni_tolerance:
                    continue
            if "enrollment" in criteria and ref_enr is not None:
                enr = _num(r.get("enrollment"))
                if enr is None or abs(enr - ref_enr) > ref_enr * enrollment_tolerance:
                    continue
            if "borough" in criteria and r.get("borough") != ref.get("borough"):
                continue
            if "report_type" in criteria and r.get("report_type") != ref.get("report_type"):
                continue
            out.append(r)
        return sort_rows(out, sort_by="impact_score", sort_order="desc")[:limit]


def _in_ranges(row: Dict[str, Any], ranges: Dict[str, tuple]) -> bool:
    for field, (lo, hi) in ranges.items():
        if lo is None and hi is None:
            continue
        v = _num(row.get(field))
        if v is None:
            return False
        if lo is not None and v < lo:
            return False
        if hi is not None and v > hi:
            return False
    return True


def sort_rows(rows: List[Dict[str, Any]], *, sort_by: str, sort_order: str = "desc") -> List[Dict[str, Any]]:
    reverse = sort_order != "asc"
    if sort_by == "name":
        return sorted(rows, key=lambda r: str(r.get("name") or "").lower(), reverse=reverse)
    present = [r for r in rows if _num(r.get(sort_by)) is not None]
    missing = [r for r in rows if _num(r.get(sort_by)) is None]
    present.sort(key=lambda r: _num(r.get(sort_by)) or 0.0, reverse=reverse)
    return present + missing


_store: SchoolStore | None = None
_store_lock = threading.Lock()


def data_path() -> Path:
    raw = (os.getenv("SCHOOL_DATA_PATH") or "").strip()
    return Path(raw) if raw else _SAMPLE_PATH


def get_store() -> SchoolStore:
    """Get the process-wide store, loading it on first use."""
    global _store
    with _store_lock:
        if _store is None:
            _store = SchoolStore.from_path(data_path())
        return _store


def set_store(store: Optional[SchoolStore]) -> None:
    """Replace (or clear) the process-wide store."""
    global _store
    with _store_lock:
        _store = store
