"""
Tests for tool_end summaries and school name/DBN extraction.
"""

from __future__ import annotations


def test_search_summary_counts_schools() -> None:
    from explorer.chat.tool_summaries import summarize_tool_result

    assert summarize_tool_result(tool="search_schools", result={"schools": [{}, {}]}) == "Found 2 schools"
    assert summarize_tool_result(tool="search_schools", result={"schools": [{}]}) == "Found 1 school"
    assert summarize_tool_result(tool="search_schools", result={"schools": []}) == "No schools found matching criteria"


def test_other_tool_summaries() -> None:
    from explorer.chat.tool_summaries import summarize_tool_result

    assert (
        summarize_tool_result(tool="get_school_profile", result={"profile": {"school": {"name": "P.S. 1"}}})
        == "Retrieved profile for P.S. 1"
    )
    assert summarize_tool_result(tool="get_school_profile", result={"profile": {}}) == "School not found"
    assert summarize_tool_result(tool="analyze_correlations", result={"correlation": -0.41234}) == "Correlation: -0.412"
    assert summarize_tool_result(tool="analyze_correlations", result={"correlation": None}) == (
        "Correlation: not enough data"
    )
    assert summarize_tool_result(tool="generate_chart", result={"chart": {"title": "T"}}) == "Generated chart: T"
    assert (
        summarize_tool_result(tool="get_curated_lists", result={"list_type": "high_growth", "schools": [{}, {}, {}]})
        == "Retrieved 3 high growth schools"
    )


def test_unrecognized_results_get_generic_summary() -> None:
    from explorer.chat.tool_summaries import summarize_tool_result

    assert summarize_tool_result(tool="search_schools", result=None) == "Tool completed successfully"
    assert summarize_tool_result(tool="rank_schools", result={"x": 1}) == "Tool completed successfully"


def test_extract_school_mappings_dedupes_and_includes_reference() -> None:
    from explorer.chat.tool_summaries import extract_school_mappings

    result = {
        "reference_school": {"dbn": "13K211", "name": "P.S. 211"},
        "similar_schools": [
            {"dbn": "09X114", "name": "P.S. 114"},
            {"dbn": "13K211", "name": "P.S. 211"},
            {"dbn": "", "name": "nameless dbn"},
        ],
    }
    assert extract_school_mappings("find_similar_schools", result) == [
        {"name": "P.S. 211", "dbn": "13K211"},
        {"name": "P.S. 114", "dbn": "09X114"},
    ]
    assert extract_school_mappings("explain_metrics", {"topic": "x"}) == []


def test_compact_args_for_prompt() -> None:
    from explorer.chat.tool_summaries import compact_args_for_prompt

    args = {f"k{i}": i for i in range(10)}
    args["k0"] = "x" * 200
    out = compact_args_for_prompt(args, max_keys=3, max_value_chars=20)
    assert list(out) == ["k0", "k1", "k2"]
    assert len(out["k0"]) == 20 and out["k0"].endswith("...")
    assert compact_args_for_prompt("nope") == {}  # type: ignore[arg-type]
