import json
import textwrap
from typing import Any, Dict, Optional

from .chart_spec import format_value

DEFAULT_USER_REQUEST = "Analyze this data and create a professional visualization"

DATA_TRANSFORMER_PROMPT = textwrap.dedent(
    """
    You are a data transformation specialist. Decide whether the uploaded table is plot-ready.

    For every column classify:
    - type: dimension | measure | temporal | identifier
    - dataType: string | number | date | boolean
    - role: categorical | numerical | temporal | implicitDimension | identifier | measure

    Detect the format. Wide data spreads one measure over several columns whose headers are
    really values of a hidden dimension (Q1, Q2, Q3 or 2021, 2022, 2023). Tall data has one
    observation per row. Recommend an unpivot only for wide data; genuinely different measures
    (Revenue, Cost, Profit) stay as they are.

    Respond with JSON only, using exactly this structure:
    {
      "columns": [
        {"name": "Product", "type": "dimension", "dataType": "string", "role": "categorical", "description": "Product name"},
        {"name": "Q1", "type": "measure", "dataType": "number", "role": "implicitDimension", "description": "Quarter 1 sales"}
      ],
      "dataFormat": "wide",
      "needsTransformation": true,
      "transformationReason": "Quarters are spread across columns",
      "transformation": {
        "type": "unpivot",
        "idColumns": ["Product"],
        "valueColumns": ["Q1", "Q2"],
        "newDimensionColumn": "Quarter",
        "newMeasureColumn": "Sales",
        "reasoning": "Column names hold the Quarter dimension"
      },
      "plotReadyStructure": {
        "dimensions": ["Product", "Quarter"],
        "measures": ["Sales"],
        "temporal": "Quarter",
        "primaryDimension": "Quarter",
        "suggestedXAxis": "Quarter",
        "suggestedYAxis": "Sales",
        "groupBy": "Product"
      },
      "expectedOutcome": "One row per product and quarter"
    }
    """
).strip()

CHART_ANALYST_PROMPT = textwrap.dedent(
    """
    You are a senior business intelligence analyst. Recommend the single most useful chart
    for the data and explain how to prepare the data for it.

    Respond with JSON only. "chartRecommendations" must contain exactly one object:
    {
      "dataAnalysis": {"summary": "...", "keyDimensions": ["..."], "keyMeasures": ["..."]},
      "chartRecommendations": [
        {
          "priority": 1,
          "chartType": "Line Chart",
          "chartVariant": "Multi-line with markers",
          "businessQuestion": "How do product sales trend across quarters?",
          "chartTitle": "Product A sales grew 23% in Q4",
          "insightType": "trend",
          "dataPreparation": {
            "useTransformedStructure": true,
            "groupBy": ["Quarter", "Product"],
            "aggregations": {"Sales": "sum"},
            "filters": [{"column": "Product", "condition": "top 5", "reason": "Avoid clutter"}],
            "sorting": {"column": "Quarter", "order": "ascending"}
          },
          "chartMapping": {"xAxis": "Quarter", "yAxis": "Sales", "groupBy": "Product"},
          "expectedInsight": "...",
          "executiveSummary": "..."
        }
      ],
      "dashboardStrategy": {"overview": "..."},
      "warnings": []
    }

    Rules:
    - Only reference columns that exist in the data structure you receive.
    - insightType is one of trend, comparison, composition, distribution, relationship, performance.
    - Aggregations use sum, avg, count, countDistinct, min or max.
    - Filters support "top N" and "last N" conditions.
    """
).strip()

VIZ_STRATEGIST_PROMPT = textwrap.dedent(
    """
    You are a visualization strategist preparing charts for static PowerPoint, PDF and PNG export.
    Nothing is interactive: every number the audience needs must be visible on the chart.

    Describe in prose and, where useful, in a ```json block:
    - the chart type and variant (e.g. "stacked bar", "line chart")
    - data label policy (show data labels, label all, or no data labels) and number format
    - reference lines ("target line", "average line") and annotations, quoting annotation text
    - legend placement ("legend bottom", "legend top", "no legend" or "direct labels")
    - export aspect ratio (16:9 or 4:3) and resolution
    """
).strip()

DESIGN_CONSULTANT_PROMPT = textwrap.dedent(
    """
    You are a design consultant applying McKinsey, BCG, Bain or investment-banking chart standards.
    Name the palette you choose and list its hex codes. State typography explicitly in points,
    for example "chart title 20pt", "axis labels 12pt", "data labels 11pt". Specify margins,
    bar width, grid line style and legend placement in pixels. Every visual decision must be explicit.
    """
).strip()

CHART_GENERATOR_PROMPT = textwrap.dedent(
    """
    You are a Highcharts configuration generator for static exports.
    Produce one complete Highcharts configuration as JSON. It must contain a "chart" object with
    a "type" and a "series" array whose entries each have "data". Use the prepared data exactly as
    given, apply the design palette, typography and spacing, show data labels and reference lines
    as specified, disable tooltips and never set chart.width or chart.height.
    Do not return JavaScript functions; use Highcharts format strings instead.
    Output JSON only.
    """
).strip()

CHART_PATCH_PROMPT = textwrap.dedent(
    """
    You are a Highcharts configuration editor that identifies the MINIMAL change for a request.

    Return JSON with this structure:
    {
      "editType": "simple" | "complex",
      "operations": [
        {"path": "title.text", "op": "replace", "value": "New Title"},
        {"path": "legend.enabled", "op": "replace", "value": false}
      ],
      "explanation": "Brief description of the change"
    }

    Simple edits: titles, colors, legend, labels, spacing, grid lines, axis ticks.
    Complex edits: chart type changes, new series, regrouped data, complete redesigns.
    For complex edits set editType to "complex" and keep operations minimal.

    Operations: "replace" and "add" set the value at the path, "remove" deletes it.
    Paths are dotted; numeric segments are array indexes:
    - "title.text"
    - "colors"
    - "series.0.data"
    - "yAxis.0.tickInterval"
    - "yAxis.gridLineWidth" (set 0 to hide grid lines, do not remove the axis)
    - "xAxis.tickLength" (positive integer to show ticks)
    """
).strip()

CHART_EDITOR_PROMPT = textwrap.dedent(
    """
    You are an expert at modifying Highcharts configurations. You receive the current
    configuration and a natural-language request, and you output the COMPLETE modified
    configuration.

    Do NOT output partial configs or placeholder comments such as "...rest of config".
    Do NOT add explanations before or after the JSON.
    Output ONLY the JSON configuration wrapped in a ```json code fence.
    You MUST NOT return JavaScript functions anywhere; use format strings or null instead.
    """
).strip()


def _json_block(payload: Any) -> str:
    return "```json\n" + json.dumps(payload, indent=2, default=str) + "\n```"


def build_transformed_context(
    columns: list,
    rows: list,
    user_message: Optional[str],
    *,
    transformed: bool,
    transformation_reason: Optional[str] = None,
) -> str:
    label = "TRANSFORMED" if transformed else "ORIGINAL"
    lines = [
        f"DATA STRUCTURE ({label}):",
        f"- Columns: {', '.join(columns)}",
        f"- Row Count: {len(rows)}",
        f"- Sample Data (first 3 rows): {json.dumps(rows[:3], indent=2, default=str)}",
    ]
    if transformed:
        lines.append(f"- Transformation Applied: {transformation_reason or 'Data reshaped for optimal plotting'}")
    lines.append("")
    lines.append(f'USER REQUEST: "{user_message or DEFAULT_USER_REQUEST}"')
    return "\n".join(lines)


def build_viz_strategist_prompt(context: str, plot_ready: Optional[Dict[str, Any]], analyst_output: str) -> str:
    previous = json.dumps(plot_ready, indent=2) if plot_ready is not None else "No transformation needed"
    return "\n\n".join(
        [
            context,
            f"PREVIOUS AGENT OUTPUT (Data Transformer):\n{previous}",
            f"PREVIOUS AGENT OUTPUT (Chart Analyst):\n{analyst_output}",
            "Based on the chart analysis above, create detailed static chart specifications for "
            "PowerPoint/PDF/PNG export. No tooltips exist: all information must be visible on the chart.",
        ]
    )


def build_design_consultant_prompt(context: str, analyst_output: str) -> str:
    return "\n\n".join(
        [
            context,
            f"CHART ANALYSIS:\n{analyst_output}",
            "Create pixel-perfect design specifications: exact hex colors, typography sizes and "
            "weights, spacing in pixels and every visual element.",
        ]
    )


def build_patch_prompt(current_config: Dict[str, Any], user_request: str, conversation_context: str) -> str:
    return (
        f"Current Highcharts configuration:\n{_json_block(current_config)}\n\n"
        f'User Request: "{user_request}"{conversation_context}\n\n'
        "Identify the minimal JSON patch operations needed."
    )


def build_regeneration_prompt(current_config: Dict[str, Any], user_request: str, conversation_context: str) -> str:
    return (
        f"Current Highcharts Configuration:\n{_json_block(current_config)}\n\n"
        f'User Request: "{user_request}"{conversation_context}\n\n'
        "Generate the COMPLETE modified Highcharts configuration:"
    )


def build_generation_prompt(
    recommendation: Dict[str, Any],
    prepared: Dict[str, Any],
    chart_spec: Optional[Dict[str, Any]],
    viz_strategy: Dict[str, Any],
    design: Dict[str, Any],
) -> str:
    """Readable summary of the chart to build followed by the full structured inputs."""
    mapping = recommendation.get("chartMapping") or {}
    rows = prepared.get("rows") or []
    series = prepared.get("series") or []
    x_key = prepared.get("xKey")

    x_label = mapping.get("xAxis") or x_key or "Categories"
    y_axis = mapping.get("yAxis")
    y_label = ", ".join(y_axis) if isinstance(y_axis, list) else (y_axis or "Values")
    series_names = ", ".join(str(item.get("label") or item.get("key")) for item in series)

    static = viz_strategy.get("staticElements") or {}
    labels = static.get("dataLabels") or {}
    number_format = labels.get("format") or "${point.y:.0f}"
    title = recommendation.get("chartTitle") or recommendation.get("businessQuestion") or "Data Visualization"

    annotations = static.get("annotations") or []
    annotation_lines = (
        "\n".join(f'  - "{note.get("text")}" at position ({note.get("x")}, {note.get("y")})' for note in annotations)
        or "  - None"
    )
    reference_lines = static.get("referenceLines") or []
    reference_text = "\n".join(
        f"  - {line.get('label') or 'Line'} at value {line.get('value')} (color: {line.get('color') or 'default'})"
        for line in reference_lines
    )

    first_x = rows[0].get(x_key) if rows else None
    last_x = rows[-1].get(x_key) if rows else None
    sample = (
        ", ".join(
            f"{item.get('label') or item.get('key')}: {format_value(rows[0].get(item.get('key')), number_format)}"
            for item in series
        )
        if rows
        else "No data"
    )

    legend = static.get("legend") or {}
    legend_text = f"Visible at {legend.get('position')}" if legend.get("show") else "Hidden (using direct labeling)"

    palette = design.get("palette") or {}
    typography = design.get("typography") or {}
    chart_title_style = typography.get("chartTitle") or {}
    axis_style = typography.get("axisLabels") or {}
    margins = (design.get("spacing") or {}).get("margins") or {}
    powerpoint = viz_strategy.get("powerpoint") or {}
    dimensions = powerpoint.get("chartDimensions") or {}
    dpi = powerpoint.get("exportDPI") or 300

    header = textwrap.dedent(
        f"""
        # Highcharts Generation Request

        ## Chart Overview
        - Chart Type: {recommendation.get("chartType")}
        - Chart Title: "{title}"
        - X-Axis: {x_label} ({len(rows)} data points)
        - Y-Axis: {y_label}
        - Series Displayed: {series_names} ({len(series)} total)
        - Number Format: {number_format}

        ## Data Range
        - X-Axis Values: {first_x} -> {last_x}
        - Sample Data Point: {first_x} = {sample}

        ## Annotations
        {{annotations}}

        ## Static Elements
        - Data Labels: {labels.get("show") or "all"} points labeled with format "{number_format}"
        - Reference Lines: {len(reference_lines)} benchmark line(s)
        {{reference_lines}}
        - Legend: {legend_text}
        - Tooltips: Disabled (static chart for export)

        ## Design Specifications
        - Color Palette: {palette.get("name")}
        - Primary Colors: {", ".join((palette.get("primary") or [])[:3])}
        - Typography: Title {chart_title_style.get("size")}px (weight {chart_title_style.get("weight")}), Axis labels {axis_style.get("size")}px
        - Spacing: Margins {margins.get("top")}/{margins.get("right")}/{margins.get("bottom")}/{margins.get("left")}px

        ## Export Settings
        - Dimensions: {dimensions.get("width")}x{dimensions.get("height")}px
        - DPI: {dpi} (scale: {dpi / 96:.2f})
        """
    ).strip()
    header = header.replace("{annotations}", annotation_lines).replace("{reference_lines}", reference_text)

    structured = _json_block(
        {
            "recommendation": recommendation,
            "preparedData": prepared,
            "chartSpec": chart_spec,
            "vizStrategy": viz_strategy,
            "design": design,
        }
    )
    return (
        f"{header}\n\n## Complete Structured Data\n{structured}\n\n"
        "Generate a complete Highcharts configuration that implements this specification exactly."
    )


__all__ = [
    "CHART_ANALYST_PROMPT",
    "CHART_EDITOR_PROMPT",
    "CHART_GENERATOR_PROMPT",
    "CHART_PATCH_PROMPT",
    "DATA_TRANSFORMER_PROMPT",
    "DEFAULT_USER_REQUEST",
    "DESIGN_CONSULTANT_PROMPT",
    "VIZ_STRATEGIST_PROMPT",
    "build_design_consultant_prompt",
    "build_generation_prompt",
    "build_patch_prompt",
    "build_regeneration_prompt",
    "build_transformed_context",
    "build_viz_strategist_prompt",
]
