from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ScalarValue = Union[str, int, float, bool, None]


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TabularData(CamelModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("columns")
    @classmethod
    def _unique_columns(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("column names must be unique")
        return value

    @field_validator("rows")
    @classmethod
    def _scalar_rows(cls, value: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for index, row in enumerate(value):
            for key, cell in row.items():
                if isinstance(cell, (dict, list, tuple, set)):
                    raise ValueError(f"row {index} column '{key}' holds a nested value")
        return value


# ---------------------------------------------------------------------------
# Data Transformer agent
# ---------------------------------------------------------------------------


class ColumnAnalysis(CamelModel):
    name: str
    type: Literal["dimension", "measure", "temporal", "identifier"]
    data_type: Literal["string", "number", "date", "boolean"]
    role: Literal["categorical", "numerical", "temporal", "implicitDimension", "identifier", "measure"]
    description: str


class TransformationSpec(CamelModel):
    type: Literal["unpivot", "pivot", "melt", "aggregate", "dateExtraction", "none"]
    id_columns: Optional[List[str]] = None
    value_columns: Optional[List[str]] = None
    new_dimension_column: Optional[str] = None
    new_measure_column: Optional[str] = None
    reasoning: Optional[str] = None


class PlotReadyStructure(CamelModel):
    dimensions: List[str]
    measures: List[str]
    temporal: Optional[str]
    primary_dimension: str
    suggested_x_axis: str
    suggested_y_axis: str
    group_by: Optional[str] = None


class DataTransformerOutput(CamelModel):
    columns: List[ColumnAnalysis]
    data_format: Literal["wide", "tall", "long", "normalized"]
    needs_transformation: bool
    transformation_reason: Optional[str] = None
    transformation: Optional[TransformationSpec] = None
    plot_ready_structure: PlotReadyStructure
    expected_outcome: Optional[str] = None


# ---------------------------------------------------------------------------
# Chart Analyst agent
# ---------------------------------------------------------------------------

INSIGHT_TYPES = {"trend", "comparison", "composition", "distribution", "relationship", "performance"}


class RecommendationFilter(CamelModel):
    column: str
    condition: str
    reason: Optional[str] = None


class RecommendationSorting(CamelModel):
    column: str
    order: Literal["ascending", "descending"] = "ascending"


class RecommendationDataPreparation(CamelModel):
    use_transformed_structure: Optional[bool] = None
    group_by: Optional[List[str]] = None
    aggregations: Optional[Dict[str, str]] = None
    filters: Optional[List[RecommendationFilter]] = None
    sorting: Optional[RecommendationSorting] = None


class RecommendationChartMapping(CamelModel):
    x_axis: Optional[str] = None
    y_axis: Optional[Union[str, List[str]]] = None
    group_by: Optional[str] = None
    additional_encodings: Optional[Dict[str, Any]] = None

    def y_axes(self) -> List[str]:
        if isinstance(self.y_axis, list):
            return [axis for axis in self.y_axis if axis]
        if self.y_axis:
            return [self.y_axis]
        return []


class ChartRecommendation(CamelModel):
    priority: Optional[int] = None
    chart_type: Optional[str] = None
    chart_variant: Optional[str] = None
    business_question: Optional[str] = None
    chart_title: Optional[str] = None
    insight_type: Optional[str] = None
    data_preparation: Optional[RecommendationDataPreparation] = None
    chart_mapping: Optional[RecommendationChartMapping] = None
    expected_insight: Optional[str] = None
    executive_summary: Optional[str] = None

    @field_validator("insight_type", mode="before")
    @classmethod
    def _first_insight_type(cls, value: Any) -> Optional[str]:
        # Models often echo the whole enum, e.g. "trend | comparison".
        if value is None:
            return None
        normalized = str(value).split("|")[0].strip().lower()
        if normalized not in INSIGHT_TYPES:
            raise ValueError(f"insightType must be one of {sorted(INSIGHT_TYPES)}")
        return normalized


class ChartAnalystOutput(CamelModel):
    data_analysis: Optional[Dict[str, Any]] = None
    chart_recommendations: List[ChartRecommendation]
    dashboard_strategy: Optional[Dict[str, Any]] = None
    additional_analytics: Optional[Dict[str, Any]] = None
    warnings: Optional[List[str]] = None


class AnalystRecommendation(CamelModel):
    """Normalized, immutable view of one validated recommendation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    priority: int
    chart_type: str
    chart_variant: Optional[str] = None
    business_question: Optional[str] = None
    chart_title: Optional[str] = None
    insight_type: Optional[str] = None
    data_preparation: RecommendationDataPreparation = Field(default_factory=RecommendationDataPreparation)
    chart_mapping: RecommendationChartMapping = Field(default_factory=RecommendationChartMapping)


# ---------------------------------------------------------------------------
# Viz Strategist / Design Consultant agents (all-optional partials)
# ---------------------------------------------------------------------------


class DataLabelsDirective(CamelModel):
    show: Optional[Literal["all", "selective", "none", "first-last", "peaks-troughs", "outliers"]] = None
    format: Optional[str] = None
    positions: Optional[List[Any]] = None
    position: Optional[str] = None
    font_size: Optional[float] = None
    font_weight: Optional[float] = None
    color: Optional[str] = None


class LegendDirective(CamelModel):
    show: Optional[bool] = None
    position: Optional[str] = None
    layout: Optional[Literal["horizontal", "vertical"]] = None


class StaticElementsDirective(CamelModel):
    data_labels: Optional[DataLabelsDirective] = None
    reference_lines: Optional[List[Dict[str, Any]]] = None
    annotations: Optional[List[Dict[str, Any]]] = None
    legend: Optional[LegendDirective] = None


class Dimensions(CamelModel):
    width: float
    height: float


class PowerpointDirective(CamelModel):
    export_dpi: Optional[float] = Field(default=None, alias="exportDPI")
    chart_dimensions: Optional[Dimensions] = None
    slide_size: Optional[Literal["16:9", "4:3"]] = None
    animation_build: Optional[str] = None


class VizStrategistOutput(CamelModel):
    static_elements: Optional[StaticElementsDirective] = None
    powerpoint: Optional[PowerpointDirective] = None
    subtitle: Optional[str] = None
    footnotes: Optional[List[str]] = None
    source: Optional[str] = None


class TypographyDirective(CamelModel):
    size: Optional[float] = None
    weight: Optional[float] = None
    color: Optional[str] = None
    line_height: Optional[float] = None
    font_family: Optional[str] = None


class DesignConsultantOutput(CamelModel):
    palette: Optional[Dict[str, Any]] = None
    typography: Optional[Dict[str, Union[str, TypographyDirective]]] = None
    spacing: Optional[Dict[str, Any]] = None
    elements: Optional[Dict[str, Dict[str, Any]]] = None
    background_color: Optional[str] = None


# ---------------------------------------------------------------------------
# Chart configuration and edit patches
# ---------------------------------------------------------------------------


class ChartConfigSeries(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: Optional[str] = None
    name: Optional[str] = None
    data: List[Any]


class HighchartsConfig(CamelModel):
    """Permissive chart configuration: required skeleton, everything else kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    chart: Dict[str, Any]
    series: List[ChartConfigSeries]


class PatchOperation(CamelModel):
    path: str = Field(..., min_length=1)
    op: Literal["replace", "add", "remove"]
    value: Optional[Any] = None

    @model_validator(mode="after")
    def _value_required(self) -> "PatchOperation":
        if self.op != "remove" and "value" not in self.model_fields_set:
            raise ValueError("Add and replace operations require a value")
        return self


class ChartPatchResult(CamelModel):
    edit_type: Literal["simple", "complex"] = "complex"
    operations: List[PatchOperation] = Field(default_factory=list)
    explanation: Optional[str] = None


class ChatMessage(CamelModel):
    role: str
    content: str


class AgentRun(CamelModel):
    output: str = ""
    role: Optional[str] = None
    error: Optional[str] = None


class AgentResults(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    agents: Dict[str, AgentRun] = Field(default_factory=dict)

    def output_of(self, agent_key: str) -> str:
        run = self.agents.get(agent_key)
        return run.output if run else ""


__all__ = [
    "AgentResults",
    "AgentRun",
    "AnalystRecommendation",
    "CamelModel",
    "ChartAnalystOutput",
    "ChartPatchResult",
    "ChartRecommendation",
    "ChatMessage",
    "DataTransformerOutput",
    "DesignConsultantOutput",
    "HighchartsConfig",
    "PatchOperation",
    "RecommendationChartMapping",
    "RecommendationDataPreparation",
    "TabularData",
    "VizStrategistOutput",
]
