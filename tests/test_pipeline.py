import asyncio
import json

import numpy as np
import pandas as pd
import pytest

from backend.services.llm import LLMCallError
from backend.services.pipeline import (
    build_data_context,
    column_stats,
    dataframe_to_tabular,
    detect_column_type,
    extract_key_points,
    run_analysis,
)
from backend.services.prompts import (
    CHART_ANALYST_PROMPT,
    DATA_TRANSFORMER_PROMPT,
    DESIGN_CONSULTANT_PROMPT,
    VIZ_STRATEGIST_PROMPT,
)
from backend.services.schemas import TabularData
from backend.settings import SETTINGS

TRANSFORMER_OUTPUT = {
    "columns": [
        {"name": "Product", "type": "dimension", "dataType": "string", "role": "categorical", "description": "Product"},
        {"name": "Q1", "type": "measure", "dataType": "number", "role": "implicitDimension", "description": "Q1"},
        {"name": "Q2", "type": "measure", "dataType": "number", "role": "implicitDimension", "description": "Q2"},
    ],
    "dataFormat": "wide",
    "needsTransformation": True,
    "transformationReason": "Quarters are spread across columns",
    "transformation": {
        "type": "unpivot",
        "idColumns": ["Product"],
        "valueColumns": ["Q1", "Q2"],
        "newDimensionColumn": "Quarter",
        "newMeasureColumn": "Sales",
    },
    "plotReadyStructure": {
        "dimensions": ["Product", "Quarter"],
        "measures": ["Sales"],
        "temporal": "Quarter",
        "primaryDimension": "Quarter",
        "suggestedXAxis": "Quarter",
        "suggestedYAxis": "Sales",
    },
}


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(SETTINGS, "AGENT_MAX_RETRIES", 2)
    monkeypatch.setattr(SETTINGS, "AGENT_RETRY_BASE_DELAY_S", 0)


class AgentLLM:
    """Answers by system prompt so concurrent agents get their own output."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    async def generate_text(self, prompt, *, system=None, **kwargs):
        self.calls.append({"prompt": prompt, "system": system, **kwargs})
        answer = self.answers[system]
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def make_data():
    return TabularData(columns=["Product", "Q1", "Q2"], rows=[{"Product": "A", "Q1": 10, "Q2": 20}])


def make_answers(**overrides):
    answers = {
        DATA_TRANSFORMER_PROMPT: "```json\n" + json.dumps(TRANSFORMER_OUTPUT) + "\n```",
        CHART_ANALYST_PROMPT: '{"chartRecommendations": [{"priority": 1, "chartType": "bar"}]}\n- Quarter over quarter growth is strong',
        VIZ_STRATEGIST_PROMPT: "1. Label every bar with its value\n2. Add a target line",
        DESIGN_CONSULTANT_PROMPT: "* Use the BCG palette for all series",
    }
    answers.update(overrides)
    return answers


def collect(data, llm, message=None):
    async def run():
        return [event async for event in run_analysis(data, message, llm)]

    return asyncio.run(run())


def test_detect_column_type():
    assert detect_column_type([1, "2.5", None]) == "number"
    assert detect_column_type(["2024-01-05", "1/2/2024"]) == "date"
    assert detect_column_type([True, "false"]) == "boolean"
    assert detect_column_type(["A", 1]) == "string"
    assert detect_column_type([None, None]) == "string"
    assert detect_column_type(["", "1"]) == "string"


def test_column_stats():
    rows = [{"v": "a"}, {"v": "b"}, {"v": "a"}, {"v": None}, {}]
    assert column_stats(rows, "v") == {"type": "string", "uniqueCount": 2, "nullCount": 2, "sampleValues": ["a", "b", "a"]}


def test_build_data_context_includes_stats_and_request():
    context = build_data_context(make_data(), "Compare quarters")

    assert "- Columns: Product, Q1, Q2" in context
    assert "Q1 (number, 1 unique values)" in context
    assert "- Row Count: 1" in context
    assert context.endswith('USER REQUEST: "Compare quarters"')
    assert build_data_context(make_data()).endswith(
        "USER REQUEST: Analyze this data and create a professional visualization"
    )


def test_extract_key_points_prefers_bullets():
    text = "Intro line\n- short\n- A genuinely useful observation\n2. Another numbered insight here"
    assert extract_key_points(text) == ["A genuinely useful observation", "Another numbered insight here"]


def test_extract_key_points_falls_back_to_sentences():
    sentence = "This sentence is comfortably longer than fifty characters in total."
    assert extract_key_points(f"short\n{sentence}\n") == [sentence]
    assert extract_key_points("") == []


def test_dataframe_to_tabular_nulls_missing_values():
    df = pd.DataFrame({"a": [1.0, np.nan, np.inf], "b": ["x", None, "z"]})
    data = dataframe_to_tabular(df)

    assert data.columns == ["a", "b"]
    assert data.rows == [{"a": 1.0, "b": "x"}, {"a": None, "b": None}, {"a": None, "b": "z"}]


def test_full_run_streams_events_and_transforms_data():
    llm = AgentLLM(make_answers())
    events = collect(make_data(), llm, "Compare quarters")

    assert [(event["type"], event.get("agentName")) for event in events] == [
        ("agent-start", "Data Transformer"),
        ("agent-complete", "Data Transformer"),
        ("agent-start", "Chart Analyst"),
        ("agent-complete", "Chart Analyst"),
        ("agent-start", "Visualization Strategist"),
        ("agent-start", "Design Consultant"),
        ("agent-complete", "Visualization Strategist"),
        ("agent-complete", "Design Consultant"),
        ("complete", None),
    ]

    complete = events[-1]
    assert complete["transformedData"] == {
        "columns": ["Product", "Quarter", "Sales"],
        "rows": [{"Product": "A", "Quarter": "Q1", "Sales": 10}, {"Product": "A", "Quarter": "Q2", "Sales": 20}],
    }
    assert complete["transformation"]["applied"] is True
    assert complete["transformation"]["details"] == "Data was reshaped from 3 columns x 1 rows to 3 columns x 2 rows"
    assert set(complete["agents"]) == {"dataTransformer", "chartAnalyst", "vizStrategist", "designConsultant"}
    assert complete["summary"]["chartInsights"] == ["Quarter over quarter growth is strong"]
    assert complete["summary"]["styleGuide"] == ["Use the BCG palette for all series"]

    analyst_call = next(call for call in llm.calls if call["system"] == CHART_ANALYST_PROMPT)
    assert "DATA STRUCTURE (TRANSFORMED)" in analyst_call["prompt"]


def test_invalid_transformer_output_keeps_original_data():
    llm = AgentLLM(make_answers(**{DATA_TRANSFORMER_PROMPT: ["nope", "still nope", "never"]}))
    complete = collect(make_data(), llm)[-1]

    assert complete["type"] == "complete"
    assert complete["transformedData"] is None
    assert complete["transformation"]["recommendation"] is None
    assert complete["agents"]["dataTransformer"]["output"] == "never"
    assert complete["summary"]["transformation"] == ["Data is already in optimal format"]


def test_transformer_call_failures_stop_the_run():
    llm = AgentLLM(make_answers(**{DATA_TRANSFORMER_PROMPT: [LLMCallError("down")] * 3}))
    events = collect(make_data(), llm)

    assert events[-1]["type"] == "error"
    assert events[-1]["agentName"] == "Data Transformer"
    assert all(call["system"] == DATA_TRANSFORMER_PROMPT for call in llm.calls)


def test_analyst_failure_stops_the_run():
    llm = AgentLLM(make_answers(**{CHART_ANALYST_PROMPT: LLMCallError("quota exceeded")}))
    events = collect(make_data(), llm)

    assert events[-1] == {
        "type": "error",
        "agentName": "Chart Analyst",
        "message": "quota exceeded",
        "details": "Multi-agent analysis failed",
    }


def test_stylistic_agent_failure_degrades_to_empty_output():
    llm = AgentLLM(make_answers(**{DESIGN_CONSULTANT_PROMPT: LLMCallError("boom")}))
    events = collect(make_data(), llm)

    assert {"type": "error", "agentName": "Design Consultant", "message": "boom"} in events
    complete = events[-1]
    assert complete["type"] == "complete"
    assert complete["agents"]["designConsultant"] == {
        "output": "",
        "role": "Pixel-perfect design specifications (colors, typography, spacing)",
        "error": "boom",
    }
    assert complete["summary"]["styleGuide"] == []

