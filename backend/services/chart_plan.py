import logging
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import Field

from .agent_output import parse_and_validate
from .chart_spec import ChartSpecification, derive_chart_spec, palette_color
from .months import sort_rows_by_chronological_month
from .reshape import apply_filters, group_and_aggregate, pivot_rows, sort_rows
from .schemas import (
    AgentResults,
    AnalystRecommendation,
    CamelModel,
    ChartAnalystOutput,
    ChartRecommendation,
    RecommendationChartMapping,
    RecommendationDataPreparation,
    TabularData,
)

logger = logging.getLogger(__name__)

ChartType = Literal["bar", "line", "area", "pie", "scatter"]

# Substring match, first hit wins.
SUPPORTED_CHART_TYPES: List[Tuple[str, str]] = [
    ("bar", "bar"),
    ("column", "bar"),
    ("stacked bar", "bar"),
    ("grouped bar", "bar"),
    ("line", "line"),
    ("line chart", "line"),
    ("area", "area"),
    ("area chart", "area"),
    ("pie", "pie"),
    ("donut", "pie"),
    ("scatter", "scatter"),
]

DEFAULT_COLORS = ["#00BFFF", "#001F3F", "#FF6B6B", "#4ECDC4", "#45B7D1"]

DEFAULT_RECOMMENDATION_ID = "default"


class ChartSeries(CamelModel):
    key: str
    label: Optional[str] = None
    color: Optional[str] = None


class ChartPlan(CamelModel):
    chart_type: ChartType
    x_key: str
    data: TabularData
    series: List[ChartSeries] = Field(default_factory=list)
    recommendation_id: str
    recommendation: Optional[AnalystRecommendation] = None
    chart_spec: Optional[ChartSpecification] = None


class PreparedChartData(TabularData):
    x_key: str
    series: List[ChartSeries] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def to_analyst_recommendation(candidate: ChartRecommendation, index: int) -> Optional[AnalystRecommendation]:
    priority = candidate.priority if candidate.priority is not None else index + 1
    chart_type = (candidate.chart_type or candidate.chart_variant or "").strip().lower()
    if not chart_type:
        return None

    return AnalystRecommendation(
        id=f"{priority}-{chart_type}-{index}",
        priority=priority,
        chart_type=chart_type,
        chart_variant=candidate.chart_variant,
        business_question=candidate.business_question,
        chart_title=candidate.chart_title,
        insight_type=candidate.insight_type,
        data_preparation=candidate.data_preparation or RecommendationDataPreparation(),
        chart_mapping=candidate.chart_mapping or RecommendationChartMapping(),
    )


def extract_chart_recommendations(agent_results: Optional[AgentResults]) -> List[AnalystRecommendation]:
    """Validated chart analyst recommendations, lowest priority first."""
    if agent_results is None:
        return []
    text = agent_results.output_of("chartAnalyst")
    if not text:
        return []

    result = parse_and_validate(text, ChartAnalystOutput, "Chart Analyst")
    if not result.success or result.data is None:
        logger.warning("Chart Analyst output could not be validated, returning no recommendations")
        return []

    recommendations: List[AnalystRecommendation] = []
    for index, candidate in enumerate(result.data.chart_recommendations):
        recommendation = to_analyst_recommendation(candidate, index)
        if recommendation is not None:
            recommendations.append(recommendation)
    return sorted(recommendations, key=lambda item: item.priority)


def select_recommendation(
    recommendations: Sequence[AnalystRecommendation],
    selected_id: Optional[str] = None,
) -> Optional[AnalystRecommendation]:
    if not recommendations:
        return None
    if selected_id:
        for recommendation in recommendations:
            if recommendation.id == selected_id:
                return recommendation
    return recommendations[0]


def _match_chart_type(candidate: Optional[str]) -> Optional[str]:
    lower = (candidate or "").lower()
    if not lower:
        return None
    for alias, chart_type in SUPPORTED_CHART_TYPES:
        if alias in lower:
            return chart_type
    return None


def normalize_chart_type(candidate: Optional[str], fallback: Optional[str] = None) -> str:
    return _match_chart_type(candidate) or _match_chart_type(fallback) or "bar"


# ---------------------------------------------------------------------------
# Data shaping
# ---------------------------------------------------------------------------


def _columns_of(columns: Sequence[str], rows: Sequence[Dict[str, Any]]) -> List[str]:
    if columns:
        return [column for column in columns if column]
    return list(rows[0].keys()) if rows else []


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(value for value in values if value))


def _project(rows: Sequence[Dict[str, Any]], columns: Sequence[str]) -> List[Dict[str, Any]]:
    return [{column: row[column] for column in columns if column in row} for row in rows]


def apply_data_preparation(
    data: TabularData,
    preparation: Optional[RecommendationDataPreparation],
) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Group/aggregate, then filter, then sort. Returns (columns, rows)."""
    columns = _columns_of(data.columns, data.rows)
    rows: List[Dict[str, Any]] = [dict(row) for row in data.rows]
    if preparation is None:
        return columns, rows

    group_by = [column for column in preparation.group_by or [] if column]
    aggregations = preparation.aggregations or {}
    if group_by and aggregations:
        rows = group_and_aggregate(rows, group_by, aggregations)
        columns = _unique([*group_by, *aggregations.keys()])

    if preparation.filters:
        rows = apply_filters(rows, preparation.filters)

    if preparation.sorting and preparation.sorting.column:
        rows = sort_rows(rows, preparation.sorting.column, preparation.sorting.order)

    return columns, rows


def _shape_series(
    columns: List[str],
    rows: List[Dict[str, Any]],
    recommendation: AnalystRecommendation,
    chart_spec: Optional[ChartSpecification],
    fallback: Sequence[str],
) -> Tuple[str, List[Dict[str, Any]], List[ChartSeries]]:
    mapping = recommendation.chart_mapping
    preparation = recommendation.data_preparation
    group_by = [column for column in preparation.group_by or [] if column]

    x_key = mapping.x_axis or (group_by[0] if group_by else None) or (columns[0] if columns else "")

    y_axes = mapping.y_axes()
    if not mapping.y_axis:
        y_axes = [key for key in (preparation.aggregations or {}) if key and key != x_key]

    def colored(keys: Sequence[Tuple[str, str]]) -> List[ChartSeries]:
        return [
            ChartSeries(key=key, label=label, color=palette_color(chart_spec, index, fallback))
            for index, (key, label) in enumerate(keys)
        ]

    if mapping.group_by and len(y_axes) == 1:
        rows, pivoted = pivot_rows(rows, x_key, mapping.group_by, y_axes[0])
        series = colored([(item["key"], item["label"]) for item in pivoted])
    elif y_axes:
        series = colored([(key, key) for key in y_axes])
    else:
        series = colored([(key, key) for key in columns if key != x_key])

    rows = list(sort_rows_by_chronological_month(rows, x_key))
    return x_key, rows, series


def _plan_is_consistent(x_key: str, rows: Sequence[Dict[str, Any]], series: Sequence[ChartSeries]) -> bool:
    if not rows:
        return True
    if not x_key or any(x_key not in row for row in rows):
        return False
    return all(any(item.key in row for row in rows) for item in series)


def default_chart_plan(data: TabularData, chart_spec: Optional[ChartSpecification]) -> ChartPlan:
    """First column on the x axis, every other column as its own series."""
    columns = _columns_of(data.columns, data.rows)
    x_key = columns[0] if columns else ""
    series = [
        ChartSeries(key=key, label=key, color=palette_color(chart_spec, index, DEFAULT_COLORS))
        for index, key in enumerate(columns[1:])
    ]
    return ChartPlan(
        chart_type=normalize_chart_type(chart_spec.chart_type if chart_spec else None),
        x_key=x_key,
        data=TabularData(columns=columns, rows=[dict(row) for row in data.rows]),
        series=series,
        recommendation_id=DEFAULT_RECOMMENDATION_ID,
        chart_spec=chart_spec,
    )


def build_chart_plan(
    data: Optional[TabularData],
    agent_results: Optional[AgentResults],
    selected_recommendation_id: Optional[str] = None,
) -> Optional[ChartPlan]:
    """Compile uploaded rows plus the agents' output into a render-ready ChartPlan.

    Returns None only when there are no rows. Malformed or missing
    recommendations degrade to the default column-based plan.
    """
    if data is None or not data.rows:
        return None

    chart_spec = derive_chart_spec(agent_results)
    recommendations = extract_chart_recommendations(agent_results)
    if not recommendations:
        logger.info("No usable recommendations, building default chart plan")
        return default_chart_plan(data, chart_spec)

    selected = select_recommendation(recommendations, selected_recommendation_id)
    columns, rows = apply_data_preparation(data, selected.data_preparation)
    chart_type = normalize_chart_type(selected.chart_type, chart_spec.chart_type if chart_spec else None)
    x_key, rows, series = _shape_series(columns, rows, selected, chart_spec, DEFAULT_COLORS)

    if not _plan_is_consistent(x_key, rows, series):
        logger.warning(
            "Recommendation %s references keys missing from the data (x=%s), using default plan",
            selected.id,
            x_key,
        )
        return default_chart_plan(data, chart_spec)

    columns = _unique([x_key, *(item.key for item in series)])
    return ChartPlan(
        chart_type=chart_type,
        x_key=x_key,
        data=TabularData(columns=columns, rows=_project(rows, columns)),
        series=series,
        recommendation_id=selected.id,
        recommendation=selected,
        chart_spec=chart_spec,
    )


def prepare_data_for_recommendation(
    data: TabularData,
    recommendation: AnalystRecommendation,
    color_palette: Optional[Sequence[str]] = None,
) -> PreparedChartData:
    """Shape rows for one recommendation, colouring series from the caller's palette."""
    columns, rows = apply_data_preparation(data, recommendation.data_preparation)
    x_key, rows, series = _shape_series(columns, rows, recommendation, None, color_palette or DEFAULT_COLORS)
    columns = _unique([x_key, *(item.key for item in series)])
    return PreparedChartData(
        columns=columns,
        rows=_project(rows, columns),
        x_key=x_key,
        series=series,
    )


__all__ = [
    "ChartPlan",
    "ChartSeries",
    "DEFAULT_COLORS",
    "PreparedChartData",
    "apply_data_preparation",
    "build_chart_plan",
    "default_chart_plan",
    "extract_chart_recommendations",
    "normalize_chart_type",
    "prepare_data_for_recommendation",
    "select_recommendation",
    "to_analyst_recommendation",
]
