import copy
import logging
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .chart_spec import ChartSpecification
from .schemas import CamelModel

logger = logging.getLogger(__name__)


class StyleModel(CamelModel):
    """Frozen, extensible style node; unknown keys from callers are kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")


# ---------------------------------------------------------------------------
# Design
# ---------------------------------------------------------------------------


class PaletteSpec(StyleModel):
    name: str = "mckinsey"
    primary: List[str] = Field(default_factory=lambda: ["#004B87", "#0066B3", "#003366", "#0FA3B1", "#7209B7"])
    accents: Dict[str, str] = Field(
        default_factory=lambda: {
            "positive": "#00A859",
            "negative": "#E63946",
            "warning": "#F77F00",
            "neutral": "#737373",
        }
    )
    grays: List[str] = Field(
        default_factory=lambda: ["#2C2C2C", "#4A4A4A", "#737373", "#A6A6A6", "#D9D9D9", "#F2F2F2"]
    )


class TypographySpec(StyleModel):
    size: float
    weight: float
    color: str
    line_height: float


class TypographySet(StyleModel):
    font_family: str = "Inter, Arial, sans-serif"
    chart_title: TypographySpec = TypographySpec(size=20, weight=600, color="#2C2C2C", line_height=1.3)
    axis_labels: TypographySpec = TypographySpec(size=12, weight=400, color="#4A4A4A", line_height=1.2)
    data_labels: TypographySpec = TypographySpec(size=11, weight=500, color="#2C2C2C", line_height=1.2)
    legend_text: TypographySpec = TypographySpec(size=11, weight=400, color="#4A4A4A", line_height=1.4)
    annotations: TypographySpec = TypographySpec(size=11, weight=400, color="#2C2C2C", line_height=1.3)


class MarginSpec(StyleModel):
    top: float = 60
    right: float = 80
    bottom: float = 80
    left: float = 80


class LineWeight(StyleModel):
    primary: float = 3
    secondary: float = 2


class MarkerSize(StyleModel):
    standard: float = 6
    emphasis: float = 10


class SpacingSpec(StyleModel):
    margins: MarginSpec = Field(default_factory=MarginSpec)
    line_weight: LineWeight = Field(default_factory=LineWeight)
    marker_size: MarkerSize = Field(default_factory=MarkerSize)
    bar_width: float = 65
    bar_gap: float = 8


class AxesElement(StyleModel):
    line_weight: float = 1.5
    line_color: str = "#4A4A4A"
    tick_length: float = 5


class GridLinesElement(StyleModel):
    weight: float = 0.5
    color: str = "#E5E5E5"
    opacity: float = 0.6
    style: Literal["solid", "dashed", "dotted"] = "solid"


class DataLabelsElement(StyleModel):
    font_size: float = 11
    font_weight: float = 500
    color: str = "#2C2C2C"
    offset_y: float = 6


class LegendElement(StyleModel):
    align: Literal["left", "center", "right"] = "right"
    vertical_align: Literal["top", "middle", "bottom"] = "top"
    layout: Optional[Literal["horizontal", "vertical"]] = None


class CalloutBoxElement(StyleModel):
    background: str = "rgba(255, 255, 255, 0.95)"
    border: str = "#004B87"
    border_radius: float = 4
    padding: float = 8


class ElementsSpec(StyleModel):
    axes: AxesElement = Field(default_factory=AxesElement)
    grid_lines: GridLinesElement = Field(default_factory=GridLinesElement)
    data_labels: DataLabelsElement = Field(default_factory=DataLabelsElement)
    legend: LegendElement = Field(default_factory=LegendElement)
    callout_box: CalloutBoxElement = Field(default_factory=CalloutBoxElement)


class DesignSpec(StyleModel):
    palette: PaletteSpec = Field(default_factory=PaletteSpec)
    typography: TypographySet = Field(default_factory=TypographySet)
    spacing: SpacingSpec = Field(default_factory=SpacingSpec)
    elements: ElementsSpec = Field(default_factory=ElementsSpec)
    background_color: str = "#FFFFFF"


# ---------------------------------------------------------------------------
# Viz strategy
# ---------------------------------------------------------------------------


class DataLabelsStrategy(StyleModel):
    show: Literal["all", "none", "selective", "first-last", "peaks-troughs", "outliers"] = "all"
    format: Optional[str] = "${point.y:.0f}"
    positions: List[Dict[str, Any]] = Field(default_factory=list)
    position: Optional[str] = None
    font_size: Optional[float] = None
    font_weight: Optional[float] = None


class LegendStrategy(StyleModel):
    show: bool = True
    position: str = "top-right"


class StaticElements(StyleModel):
    data_labels: DataLabelsStrategy = Field(default_factory=DataLabelsStrategy)
    reference_lines: List[Dict[str, Any]] = Field(default_factory=list)
    annotations: List[Dict[str, Any]] = Field(default_factory=list)
    legend: LegendStrategy = Field(default_factory=LegendStrategy)


class ChartDimensions(StyleModel):
    width: float = 1600
    height: float = 800


class PowerpointSpec(StyleModel):
    export_dpi: float = Field(default=300, alias="exportDPI")
    chart_dimensions: ChartDimensions = Field(default_factory=ChartDimensions)


class VizStrategySpec(StyleModel):
    static_elements: StaticElements = Field(default_factory=StaticElements)
    powerpoint: PowerpointSpec = Field(default_factory=PowerpointSpec)


DEFAULT_DESIGN = DesignSpec()
DEFAULT_VIZ_STRATEGY = VizStrategySpec()


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def deep_merge(base: Mapping[str, Any], *partials: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Overlay ``partials`` onto a copy of ``base``; later partials win.

    Mappings merge key by key, lists and scalars replace wholesale, and None
    values in a partial are skipped.
    """
    output: Dict[str, Any] = copy.deepcopy(dict(base))
    for partial in partials:
        if not isinstance(partial, Mapping):
            continue
        for key, value in partial.items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                output[key] = copy.deepcopy(list(value))
            elif isinstance(value, Mapping):
                current = output.get(key)
                output[key] = deep_merge(current if isinstance(current, Mapping) else {}, value)
            else:
                output[key] = value
    return output


def _dump(model: StyleModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True)


def _dasharray_style(dasharray: str) -> str:
    normalized = dasharray.strip().lower()
    if "0" in normalized:
        return "solid"
    if "1" in normalized:
        return "dotted"
    return "dashed"


def _legend_alignment(position: Optional[str]) -> Dict[str, str]:
    if position == "bottom":
        return {"align": "center", "verticalAlign": "bottom", "layout": "horizontal"}
    if position == "left":
        return {"align": "left", "verticalAlign": "middle", "layout": "vertical"}
    if position == "right":
        return {"align": "right", "verticalAlign": "middle", "layout": "vertical"}
    if position == "top-right":
        return {"align": "right", "verticalAlign": "top", "layout": "horizontal"}
    return {"align": "center", "verticalAlign": "top", "layout": "horizontal"}


def design_partial_from_spec(chart_spec: ChartSpecification) -> Dict[str, Any]:
    colors = chart_spec.colors
    typography = chart_spec.typography
    grid = chart_spec.axes.grid_style

    def text(style) -> Dict[str, Any]:
        return {"size": style.size, "weight": style.weight, "color": style.color}

    return {
        "palette": {
            "name": colors.palette or None,
            "primary": colors.primary or None,
            "accents": colors.accents.model_dump(),
            "grays": colors.grays or None,
        },
        "typography": {
            "chartTitle": text(typography.chart_title),
            "axisLabels": text(typography.axis_labels),
            "dataLabels": text(typography.data_labels),
            "annotations": text(typography.annotations),
        },
        "spacing": {
            "margins": chart_spec.spacing.margins.model_dump(),
            "barWidth": chart_spec.spacing.bar_width,
            "barGap": chart_spec.spacing.bar_gap,
        },
        "elements": {
            "gridLines": {
                "color": grid.color or None,
                "opacity": grid.opacity,
                "weight": grid.stroke_width,
                "style": _dasharray_style(grid.stroke_dasharray) if grid.stroke_dasharray else None,
            },
            "legend": _legend_alignment(chart_spec.legend.position),
            "dataLabels": {
                "fontSize": chart_spec.data_labels.font_size,
                "fontWeight": chart_spec.data_labels.font_weight,
            },
        },
    }


def viz_partial_from_spec(chart_spec: ChartSpecification, default_viz: VizStrategySpec) -> Dict[str, Any]:
    labels = chart_spec.data_labels
    return {
        "staticElements": {
            "dataLabels": {
                "show": "all" if labels.show else "none",
                "format": labels.format or None,
                "fontSize": labels.font_size or None,
                "fontWeight": labels.font_weight or None,
                "position": labels.position or None,
            },
            "referenceLines": [line.model_dump(by_alias=True) for line in chart_spec.reference_lines],
            "annotations": [note.model_dump(by_alias=True, exclude_none=True) for note in chart_spec.annotations],
            "legend": {
                "show": chart_spec.legend.show,
                "position": chart_spec.legend.position or "top",
            },
        },
        "powerpoint": {
            "exportDPI": chart_spec.export.dpi or default_viz.powerpoint.export_dpi,
            "chartDimensions": chart_spec.export.dimensions.model_dump(),
        },
    }


def derive_design(chart_spec: Optional[ChartSpecification], default_design: DesignSpec = DEFAULT_DESIGN) -> DesignSpec:
    if chart_spec is None:
        return default_design
    merged = deep_merge(_dump(default_design), design_partial_from_spec(chart_spec))
    return DesignSpec.model_validate(merged)


def derive_viz_strategy(
    chart_spec: Optional[ChartSpecification],
    default_viz: VizStrategySpec = DEFAULT_VIZ_STRATEGY,
) -> VizStrategySpec:
    if chart_spec is None:
        return default_viz
    merged = deep_merge(_dump(default_viz), viz_partial_from_spec(chart_spec, default_viz))
    return VizStrategySpec.model_validate(merged)


def resolve_design(
    chart_spec: Optional[ChartSpecification],
    override: Optional[Mapping[str, Any]] = None,
    default_design: DesignSpec = DEFAULT_DESIGN,
) -> DesignSpec:
    """defaults, then chart-spec-derived styling, then the caller's explicit override."""
    derived = derive_design(chart_spec, default_design)
    if not override:
        return derived
    return DesignSpec.model_validate(deep_merge(_dump(derived), override))


def resolve_viz_strategy(
    chart_spec: Optional[ChartSpecification],
    override: Optional[Mapping[str, Any]] = None,
    default_viz: VizStrategySpec = DEFAULT_VIZ_STRATEGY,
) -> VizStrategySpec:
    derived = derive_viz_strategy(chart_spec, default_viz)
    if not override:
        return derived
    return VizStrategySpec.model_validate(deep_merge(_dump(derived), override))


__all__ = [
    "DEFAULT_DESIGN",
    "DEFAULT_VIZ_STRATEGY",
    "DesignSpec",
    "VizStrategySpec",
    "deep_merge",
    "derive_design",
    "derive_viz_strategy",
    "resolve_design",
    "resolve_viz_strategy",
]
