"""
Tests for the school data tools against the bundled sample dataset.
"""

from __future__ import annotations

import pytest


def _run(name, params):
    from explorer.tools.registry import execute_tool

    return execute_tool(name, params)


def test_search_applies_every_requested_filter() -> None:
    out = _run("search_schools", {"borough": "Brooklyn", "min_eni": 0.85, "min_impact_score": 0.55})

    schools = out["schools"]
    assert [s["dbn"] for s in schools] == ["13K211", "84K701", "19K302", "23K155", "17K470"]
    assert all(s["borough"] == "Brooklyn" for s in schools)
    assert all(s["economic_need_index"] >= 0.85 and s["impact_score"] >= 0.55 for s in schools)
    assert out["total_count"] == 5

    ctx = out["_context"]
    assert ctx["sample_size"] == 5
    assert ctx["data_year"] == "2024-25"
    assert set(ctx["citywide_medians"]) == {"impact", "performance", "eni"}
    assert any("Small sample size (5 schools)" in x for x in ctx["limitations"])
    assert any("1 charter and 4 district" in x for x in ctx["limitations"])
    assert "methodology_note" in ctx


def test_search_limit_is_clamped_and_sort_is_reported() -> None:
    out = _run("search_schools", {"limit": 500, "sort_by": "name"})
    assert out["_context"]["sample_size"] == out["total_count"]
    names = [s["name"] for s in out["schools"]]
    assert names == sorted(names, key=str.lower)
    assert out["_context"]["sort_applied"] == {"field": "name", "order": "asc"}


def test_search_by_dbn_fragment_and_legacy_category() -> None:
    out = _run("search_schools", {"query": "09x114"})
    assert [s["dbn"] for s in out["schools"]] == ["09X114"]

    legacy = _run("search_schools", {"category": "below_threshold"})
    assert legacy["schools"]
    assert all(s["category"] == "lower_economic_need" for s in legacy["schools"])


def test_school_profile_has_both_years_and_change() -> None:
    out = _run("get_school_profile", {"dbn": "13k211"})
    profile = out["profile"]
    assert profile["school"]["name"] == "P.S. 211 Harbor View"
    assert profile["metrics"]["current"]["year"] == "2024-25"
    assert profile["metrics"]["previous"]["year"] == "2023-24"
    assert profile["metrics"]["change"]["impact_score"] == pytest.approx(0.03)
    assert profile["is_persistent_high_growth"] is True
    assert all(s["dbn"] != "13K211" for s in profile["similar_schools"])
    assert out["_context"]["sample_size"] == 1


def test_school_profile_not_found() -> None:
    out = _run("get_school_profile", {"dbn": "99Z999"})
    assert out["profile"] is None
    assert "School not found in dataset" in out["_context"]["limitations"]


def test_find_similar_schools_respects_tolerance() -> None:
    out = _run("find_similar_schools", {"dbn": "13K211", "match_criteria": ["economic_need"], "eni_tolerance": 0.02})
    assert out["reference_school"]["dbn"] == "13K211"
    assert out["matching_criteria"] == ["economic_need"]
    for s in out["similar_schools"]:
        assert abs(s["economic_need_index"] - 0.93) <= 0.02 + 1e-9


def test_correlation_reports_sample_and_caveats() -> None:
    out = _run("analyze_correlations", {"metric1": "economic_need_index", "metric2": "performance_score"})
    assert out["sample_size"] == 23
    assert -1.0 <= out["correlation"] <= 0.0
    assert "negative" in out["interpretation"]
    lims = out["_context"]["limitations"]
    assert "Correlation does not imply causation" in lims
    assert any("control for ENI" in x for x in lims)


def test_scatter_chart_carries_full_series() -> None:
    out = _run(
        "generate_chart",
        {"chart_type": "scatter", "x_metric": "economic_need_index", "y_metric": "impact_score", "color_by": "borough"},
    )
    chart = out["chart"]
    assert chart["type"] == "scatter"
    assert len(chart["data"]) == 23
    assert chart["xAxis"]["dataKey"] == "economic_need_index"
    assert chart["colorBy"] == "borough"
    assert {"name", "dbn", "economic_need_index", "impact_score", "borough"} <= set(chart["data"][0])


def test_histogram_counts_every_school() -> None:
    out = _run("generate_chart", {"chart_type": "histogram", "x_metric": "impact_score"})
    assert sum(b["count"] for b in out["chart"]["data"]) == 23
    assert out["_context"]["sample_size"] == 23


def test_explain_metrics_topic() -> None:
    out = _run("explain_metrics", {"topic": "economic_need_index"})
    assert out["title"] == "Economic Need Index (ENI)"
    assert "0.85" in out["explanation"]
    assert out["_context"]["limitations"]


def test_curated_high_growth_list() -> None:
    out = _run("get_curated_lists", {"list_type": "high_growth"})
    assert out["count"] == len(out["schools"]) > 0
    assert all(s["category"] == "high_growth" for s in out["schools"])
    impacts = [s["impact_score"] for s in out["schools"]]
    assert impacts == sorted(impacts, reverse=True)
    assert out["scope"] == "Elementary/Middle Schools"


def test_curated_list_outside_ems_carries_scope_note() -> None:
    out = _run("get_curated_lists", {"list_type": "all_high_impact", "report_type": "HS"})
    assert out["_context"]["limitations"][0].startswith("SCOPE NOTE")
    assert all(s["report_type"] == "HS" for s in out["schools"])


def test_custom_dataset_path(tmp_path, monkeypatch) -> None:
    import json

    from explorer.tools.store import set_store

    doc = {
        "schools": [
            {
                "dbn": "01M001",
                "name": "Only School",
                "borough": "Manhattan",
                "report_type": "EMS",
                "metrics": {"2024-25": {"impact_score": 0.6, "performance_score": 0.4, "economic_need_index": 0.9}},
            }
        ]
    }
    p = tmp_path / "schools.json"
    p.write_text(json.dumps(doc), encoding="utf-8")
    monkeypatch.setenv("SCHOOL_DATA_PATH", str(p))
    set_store(None)

    out = _run("search_schools", {})
    assert [s["dbn"] for s in out["schools"]] == ["01M001"]
    assert out["schools"][0]["category"] == "high_growth"
