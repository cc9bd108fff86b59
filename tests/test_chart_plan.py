import json

import pytest

from backend.services.chart_plan import (
    DEFAULT_COLORS,
    apply_data_preparation,
    build_chart_plan,
    extract_chart_recommendations,
    normalize_chart_type,
    prepare_data_for_recommendation,
    select_recommendation,
)
from backend.services.chart_spec import CONSULTING_PALETTES
from backend.services.schemas import AgentResults, AgentRun, AnalystRecommendation, TabularData

MCKINSEY = CONSULTING_PALETTES["mckinsey"]["primary"]


def make_data():
    return TabularData(
        columns=["Month", "Region", "Sales"],
        rows=[
            {"Month": "Mar", "Region": "East", "Sales": 10},
            {"Month": "Jan", "Region": "East", "Sales": 5},
            {"Month": "Jan", "Region": "West", "Sales": 7},
            {"Month": "Mar", "Region": "East", "Sales": 3},
            {"Month": "Feb", "Region": "West", "Sales": 4},
        ],
    )


def make_recommendation(**overrides):
    recommendation = {
        "priority": 1,
        "chartType": "line chart",
        "chartTitle": "Monthly sales by region",
        "insightType": "trend",
        "dataPreparation": {"groupBy": ["Month", "Region"], "aggregations": {"Sales": "sum"}},
        "chartMapping": {"xAxis": "Month", "yAxis": "Sales", "groupBy": "Region"},
    }
    recommendation.update(overrides)
    return recommendation


def make_agent_results(recommendations=None, analyst_text=None, **outputs):
    if analyst_text is None:
        analyst_text = "```json\n" + json.dumps({"chartRecommendations": recommendations or []}) + "\n```"
    agents = {"chartAnalyst": AgentRun(output=analyst_text)}
    for key, text in outputs.items():
        agents[key] = AgentRun(output=text)
    return AgentResults(agents=agents)


def test_no_rows_means_no_plan():
    assert build_chart_plan(TabularData(columns=["a"], rows=[]), make_agent_results([make_recommendation()])) is None
    assert build_chart_plan(None, None) is None


def test_invalid_analyst_output_falls_back_to_default_plan():
    data = make_data()
    plan = build_chart_plan(data, make_agent_results(analyst_text='{"dataAnalysis": {"summary": "ok"}}'))

    assert plan is not None
    assert plan.recommendation_id == "default"
    assert plan.x_key == "Month"
    assert [item.key for item in plan.series] == ["Region", "Sales"]
    assert plan.data.rows == data.rows
    assert plan.chart_type == "bar"


def test_default_plan_without_agents_uses_default_colors():
    plan = build_chart_plan(make_data(), None)

    assert plan.chart_spec is None
    assert [item.color for item in plan.series] == DEFAULT_COLORS[:2]


def test_grouped_pivoted_and_month_sorted_plan():
    plan = build_chart_plan(make_data(), make_agent_results([make_recommendation()]))

    assert plan.chart_type == "line"
    assert plan.recommendation_id == "1-line chart-0"
    assert plan.x_key == "Month"
    assert plan.data.columns == ["Month", "East", "West"]
    assert plan.data.rows == [
        {"Month": "Jan", "East": 5, "West": 7},
        {"Month": "Feb", "West": 4},
        {"Month": "Mar", "East": 13},
    ]
    assert [(item.key, item.color) for item in plan.series] == [("East", MCKINSEY[0]), ("West", MCKINSEY[1])]


def test_plan_keys_are_present_in_rows():
    plan = build_chart_plan(make_data(), make_agent_results([make_recommendation()]))

    for row in plan.data.rows:
        assert plan.x_key in row
    for item in plan.series:
        assert any(item.key in row for row in plan.data.rows)


def test_series_per_y_axis_without_mapping_group():
    recommendation = make_recommendation(
        chartType="bar",
        dataPreparation={"groupBy": ["Region"], "aggregations": {"Sales": "sum", "Month": "count"}},
        chartMapping={"xAxis": "Region", "yAxis": ["Sales", "Month"]},
    )
    plan = build_chart_plan(make_data(), make_agent_results([recommendation]))

    assert plan.chart_type == "bar"
    assert [item.key for item in plan.series] == ["Sales", "Month"]
    assert plan.data.rows == [{"Region": "East", "Sales": 18, "Month": 3}, {"Region": "West", "Sales": 11, "Month": 2}]


def test_series_from_aggregation_keys_when_no_y_axis():
    recommendation = make_recommendation(
        chartType="pie",
        dataPreparation={"groupBy": ["Region"], "aggregations": {"Sales": "sum"}},
        chartMapping={},
    )
    plan = build_chart_plan(make_data(), make_agent_results([recommendation]))

    assert plan.chart_type == "pie"
    assert plan.x_key == "Region"
    assert [item.key for item in plan.series] == ["Sales"]


def test_missing_mapping_column_falls_back_to_default_plan():
    recommendation = make_recommendation(chartMapping={"xAxis": "Country", "yAxis": "Sales"})
    plan = build_chart_plan(make_data(), make_agent_results([recommendation]))

    assert plan.recommendation_id == "default"
    assert plan.x_key == "Month"


def test_recommendations_sorted_and_selectable():
    agent_results = make_agent_results(
        [
            make_recommendation(priority=2, chartType="bar"),
            make_recommendation(priority=1, chartType="area"),
            {"priority": 3},
        ]
    )

    recommendations = extract_chart_recommendations(agent_results)
    assert [item.id for item in recommendations] == ["1-area-1", "2-bar-0"]

    assert build_chart_plan(make_data(), agent_results).chart_type == "area"
    selected = build_chart_plan(make_data(), agent_results, selected_recommendation_id="2-bar-0")
    assert selected.chart_type == "bar"
    assert selected.recommendation.priority == 2


def test_select_recommendation_ignores_unknown_id():
    recommendations = [
        AnalystRecommendation(id="a", priority=1, chart_type="bar"),
        AnalystRecommendation(id="b", priority=2, chart_type="line"),
    ]
    assert select_recommendation(recommendations, "zzz").id == "a"
    assert select_recommendation([], "a") is None


@pytest.mark.parametrize(
    "candidate, fallback, expected",
    [
        ("Stacked Bar", None, "bar"),
        ("column", None, "bar"),
        ("donut", None, "pie"),
        ("Scatter plot", None, "scatter"),
        ("waterfall", None, "bar"),
        ("waterfall", "line", "line"),
        (None, None, "bar"),
    ],
)
def test_normalize_chart_type(candidate, fallback, expected):
    assert normalize_chart_type(candidate, fallback) == expected


def test_preparation_groups_then_filters_then_sorts():
    recommendation = AnalystRecommendation.model_validate(
        {
            "id": "r",
            "priority": 1,
            "chartType": "bar",
            "dataPreparation": {
                "groupBy": ["Month"],
                "aggregations": {"Sales": "sum"},
                "filters": [{"column": "Sales", "condition": "top 2"}],
                "sorting": {"column": "Sales", "order": "ascending"},
            },
        }
    )

    columns, rows = apply_data_preparation(make_data(), recommendation.data_preparation)

    assert columns == ["Month", "Sales"]
    assert rows == [{"Month": "Jan", "Sales": 12}, {"Month": "Mar", "Sales": 13}]


def test_prepare_data_uses_caller_palette():
    recommendation = AnalystRecommendation.model_validate(
        {
            "id": "r",
            "priority": 1,
            "chartType": "bar",
            "dataPreparation": {"groupBy": ["Region"], "aggregations": {"Sales": "sum", "Month": "count"}},
            "chartMapping": {"xAxis": "Region", "yAxis": ["Sales", "Month"]},
        }
    )

    prepared = prepare_data_for_recommendation(make_data(), recommendation, ["#111111"])
    assert prepared.x_key == "Region"
    assert [(item.key, item.color) for item in prepared.series] == [("Sales", "#111111"), ("Month", "#111111")]

    fallback = prepare_data_for_recommendation(make_data(), recommendation, [])
    assert [item.color for item in fallback.series] == DEFAULT_COLORS[:2]


def test_plan_serialises_to_camel_case():
    plan = build_chart_plan(make_data(), make_agent_results([make_recommendation()]))
    payload = plan.model_dump(by_alias=True)

    assert payload["chartType"] == "line"
    assert payload["xKey"] == "Month"
    assert payload["recommendationId"] == "1-line chart-0"
    assert payload["chartSpec"]["colors"]["palette"] == "mckinsey"


def test_plan_rows_carry_only_plan_columns():
    recommendation = make_recommendation(dataPreparation={}, chartMapping={"xAxis": "Region", "yAxis": "Sales"})

    plan = build_chart_plan(make_data(), make_agent_results([recommendation]))
    prepared = prepare_data_for_recommendation(
        make_data(), AnalystRecommendation.model_validate(dict(recommendation, id="r"))
    )

    for columns, rows in ((plan.data.columns, plan.data.rows), (prepared.columns, prepared.rows)):
        assert columns == ["Region", "Sales"]
        assert rows[0] == {"Region": "East", "Sales": 10}
        assert all(set(row) <= set(columns) for row in rows)
