import asyncio
import json
import logging
import math
import re
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..settings import SETTINGS
from .agent_output import retry_with_validation
from .llm import LLMCallError
from .prompts import (
    CHART_ANALYST_PROMPT,
    DATA_TRANSFORMER_PROMPT,
    DEFAULT_USER_REQUEST,
    DESIGN_CONSULTANT_PROMPT,
    VIZ_STRATEGIST_PROMPT,
    build_design_consultant_prompt,
    build_transformed_context,
    build_viz_strategist_prompt,
)
from .reshape import apply_transformation
from .schemas import AgentRun, DataTransformerOutput, TabularData

logger = logging.getLogger(__name__)

Event = Dict[str, Any]

AGENT_ROLES = {
    "dataTransformer": "Data structure analysis and transformation",
    "chartAnalyst": "Strategic chart recommendations and data operations",
    "vizStrategist": "Static chart specifications for PowerPoint/PDF/PNG exports",
    "designConsultant": "Pixel-perfect design specifications (colors, typography, spacing)",
}

_DATE_PATTERNS = [
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}"),
    re.compile(r"^[A-Za-z]{3,9}\.? \d{1,2},? \d{4}$"),
]
_BOOLEAN_LITERALS = {"true", "false"}
_BULLET_MARKERS = ("•", "-", "*")
_NUMBERED_LINE = re.compile(r"^\d+\.")
_LEADING_MARKER = re.compile(r"^[\s•\-*\d.]+")


def sanitize_for_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: sanitize_for_json(val) for key, val in value.items()}
    if isinstance(value, list):
        return [sanitize_for_json(item) for item in value]
    if isinstance(value, pd.DataFrame):
        return sanitize_for_json(value.to_dict(orient="records"))
    if isinstance(value, pd.Series):
        return sanitize_for_json(value.tolist())
    if isinstance(value, (np.bool_, bool)):
        return bool(value)
    if isinstance(value, (np.integer, int)):
        return int(value)
    if isinstance(value, (np.floating, float)):
        if math.isnan(float(value)) or math.isinf(float(value)):
            return None
        return float(value)
    if value is None:
        return None
    if isinstance(value, np.ndarray):
        return sanitize_for_json(value.tolist())
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return value


def dataframe_to_tabular(df: pd.DataFrame) -> TabularData:
    """Convert an uploaded frame into TabularData; NaN and infinities become null."""
    df.columns = [str(column) for column in df.columns]
    cleaned = df.replace([np.inf, -np.inf], np.nan).astype(object)
    cleaned = cleaned.where(pd.notna(cleaned), None)
    return TabularData(columns=list(cleaned.columns), rows=sanitize_for_json(cleaned.to_dict(orient="records")))


# ---------------------------------------------------------------------------
# Column statistics
# ---------------------------------------------------------------------------


def _non_null(values: Sequence[Any]) -> pd.Series:
    series = pd.Series(list(values), dtype=object)
    return series[series.notna()]


def _looks_like_date(value: Any) -> bool:
    text = str(value).strip()
    return any(pattern.match(text) for pattern in _DATE_PATTERNS)


def detect_column_type(values: Sequence[Any]) -> str:
    """Classify a column as number, date, boolean or string; nulls are ignored."""
    series = _non_null(values)
    if series.empty:
        return "string"

    is_bool = series.map(lambda value: isinstance(value, (bool, np.bool_)))
    if not is_bool.any():
        text = series.astype(str).str.strip()
        numeric = pd.to_numeric(text.where(text != ""), errors="coerce")
        if numeric.notna().all():
            return "number"
        if series.map(_looks_like_date).all():
            return "date"

    literal = series.map(lambda value: isinstance(value, (bool, np.bool_)) or str(value).lower() in _BOOLEAN_LITERALS)
    if literal.all():
        return "boolean"
    return "string"


def column_stats(rows: Sequence[Mapping[str, Any]], column: str) -> Dict[str, Any]:
    values = [row.get(column) for row in rows]
    non_null = _non_null(values)
    return {
        "type": detect_column_type(values),
        "uniqueCount": int(non_null.nunique()),
        "nullCount": len(values) - len(non_null),
        "sampleValues": sanitize_for_json(non_null.head(5).tolist()),
    }


def build_data_context(data: TabularData, user_message: Optional[str] = None) -> str:
    details = []
    for column in data.columns:
        stats = column_stats(data.rows, column)
        details.append(f"{column} ({stats['type']}, {stats['uniqueCount']} unique values)")

    sample = json.dumps(sanitize_for_json(data.rows[:3]), indent=2, default=str)
    request = f'USER REQUEST: "{user_message}"' if user_message else f"USER REQUEST: {DEFAULT_USER_REQUEST}"
    return "\n".join(
        [
            "DATA STRUCTURE:",
            f"- Columns: {', '.join(data.columns)}",
            f"- Column Details: {', '.join(details)}",
            f"- Row Count: {len(data.rows)}",
            f"- Sample Data (first 3 rows): {sample}",
            "",
            request,
        ]
    )


def extract_key_points(text: Optional[str]) -> List[str]:
    """Pull bullet points out of agent prose, or a few mid-length lines when there are none."""
    lines = [line for line in (text or "").split("\n") if line.strip()]
    points = [
        _LEADING_MARKER.sub("", line).strip()
        for line in lines
        if any(marker in line for marker in _BULLET_MARKERS) or _NUMBERED_LINE.match(line)
    ]
    points = [point for point in points if len(point) > 10]
    if not points:
        return [line for line in lines if 50 < len(line) < 200][:3]
    return points[:5]


# ---------------------------------------------------------------------------
# Multi-agent analysis
# ---------------------------------------------------------------------------


def _event(event_type: str, **payload: Any) -> Event:
    return {"type": event_type, **payload}


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def run_analysis(data: TabularData, user_message: Optional[str], llm: Any) -> AsyncIterator[Event]:
    """Run transformer, analyst, then strategist and designer concurrently, yielding progress events.

    Only the transformer and analyst are fatal; a failed stylistic agent leaves an empty
    output behind so the chart spec derivation falls back to defaults.
    """
    context = build_data_context(data, user_message)
    logger.info("Starting multi-agent analysis on %s rows", len(data.rows))

    yield _event("agent-start", agentName="Data Transformer")
    transformer = await retry_with_validation(
        lambda: llm.generate_text(
            context, system=DATA_TRANSFORMER_PROMPT, model=SETTINGS.GEMINI_FAST_MODEL, temperature=0.2
        ),
        DataTransformerOutput,
        agent_name="Data Transformer",
    )
    if transformer.raw_output is None:
        yield _event("error", agentName="Data Transformer", message=transformer.error, details="Multi-agent analysis failed")
        return
    yield _event("agent-complete", agentName="Data Transformer")

    recommendation: Optional[DataTransformerOutput] = transformer.data if transformer.success else None
    working = TabularData(columns=list(data.columns), rows=list(data.rows))
    applied = False
    if recommendation is None:
        logger.warning("Using original data, transformer output failed validation: %s", transformer.error)
    elif recommendation.needs_transformation:
        transformed = apply_transformation(data, recommendation)
        if transformed.transformation.applied:
            working = TabularData(columns=transformed.columns, rows=transformed.rows)
            applied = True
    else:
        logger.info("No transformation needed, data is already plot-ready")

    transformed_context = build_transformed_context(
        working.columns,
        working.rows,
        user_message,
        transformed=applied,
        transformation_reason=recommendation.transformation_reason if recommendation else None,
    )

    yield _event("agent-start", agentName="Chart Analyst")
    try:
        analyst_text = await llm.generate_text(
            transformed_context, system=CHART_ANALYST_PROMPT, model=SETTINGS.GEMINI_MODEL, temperature=0.3
        )
    except LLMCallError as exc:
        logger.error("Chart Analyst failed: %s", exc)
        yield _event("error", agentName="Chart Analyst", message=_error_message(exc), details="Multi-agent analysis failed")
        return
    yield _event("agent-complete", agentName="Chart Analyst")

    plot_ready = (
        recommendation.plot_ready_structure.model_dump(by_alias=True, exclude_none=True) if recommendation else None
    )
    yield _event("agent-start", agentName="Visualization Strategist")
    yield _event("agent-start", agentName="Design Consultant")
    viz_result, design_result = await asyncio.gather(
        llm.generate_text(
            build_viz_strategist_prompt(transformed_context, plot_ready, analyst_text),
            system=VIZ_STRATEGIST_PROMPT,
            model=SETTINGS.GEMINI_FAST_MODEL,
            temperature=0.4,
        ),
        llm.generate_text(
            build_design_consultant_prompt(transformed_context, analyst_text),
            system=DESIGN_CONSULTANT_PROMPT,
            model=SETTINGS.GEMINI_FAST_MODEL,
            temperature=0.5,
        ),
        return_exceptions=True,
    )

    agents: Dict[str, AgentRun] = {
        "dataTransformer": AgentRun(output=transformer.raw_output, role=AGENT_ROLES["dataTransformer"]),
        "chartAnalyst": AgentRun(output=analyst_text, role=AGENT_ROLES["chartAnalyst"]),
    }
    for key, name, result in (
        ("vizStrategist", "Visualization Strategist", viz_result),
        ("designConsultant", "Design Consultant", design_result),
    ):
        if isinstance(result, BaseException):
            logger.error("%s failed: %s", name, result)
            agents[key] = AgentRun(output="", role=AGENT_ROLES[key], error=_error_message(result))
            yield _event("error", agentName=name, message=_error_message(result))
        else:
            agents[key] = AgentRun(output=result, role=AGENT_ROLES[key])
            yield _event("agent-complete", agentName=name)

    if applied:
        details = (
            f"Data was reshaped from {len(data.columns)} columns x {len(data.rows)} rows "
            f"to {len(working.columns)} columns x {len(working.rows)} rows"
        )
    else:
        details = "No transformation needed"

    logger.info("Multi-agent analysis complete")
    yield _event(
        "complete",
        success=True,
        transformedData=working.model_dump(by_alias=True) if applied else None,
        transformation={
            "applied": applied,
            "recommendation": recommendation.model_dump(by_alias=True, exclude_none=True) if recommendation else None,
            "details": details,
        },
        agents={key: run.model_dump(by_alias=True, exclude_none=True) for key, run in agents.items()},
        summary={
            "transformation": extract_key_points(transformer.raw_output)
            if applied
            else ["Data is already in optimal format"],
            "chartInsights": extract_key_points(analyst_text),
            "chartRecommendation": extract_key_points(agents["vizStrategist"].output),
            "styleGuide": extract_key_points(agents["designConsultant"].output),
        },
    )


__all__ = [
    "AGENT_ROLES",
    "build_data_context",
    "column_stats",
    "dataframe_to_tabular",
    "detect_column_type",
    "extract_key_points",
    "run_analysis",
    "sanitize_for_json",
]
