import asyncio
import json

import pytest

from backend.services.chart_editor import (
    ConfigRegenerationError,
    edit_chart,
    extract_changes,
    generate_assistant_message,
    parse_regenerated_config,
    render_chat_history,
    sanitize_config_text,
    strip_fixed_dimensions,
)
from backend.services.llm import LLMCallError
from backend.services.schemas import ChatMessage
from backend.settings import SETTINGS


class FakeLLM:
    """Returns canned responses in order and records every call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def generate_text(self, prompt, **kwargs):
        self.calls.append({"prompt": prompt, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_config():
    return {
        "chart": {"type": "column", "width": 800, "height": 400},
        "title": {"text": "Sales"},
        "legend": {"enabled": True},
        "series": [{"name": "East", "data": [1, 2]}],
    }


def test_simple_edit_is_applied_as_patch():
    patch = {
        "editType": "simple",
        "operations": [{"path": "legend.enabled", "op": "replace", "value": False}],
        "explanation": "Legend hidden",
    }
    llm = FakeLLM(json.dumps(patch))

    result = asyncio.run(edit_chart(make_config(), "hide the legend", llm))

    assert result.edit_method == "patch"
    assert result.modified_config["legend"] == {"enabled": False}
    assert result.modified_config["chart"] == {"type": "column"}
    assert result.changes_summary == ["Legend hidden"]
    assert result.assistant_message.startswith("I've updated the chart: Legend hidden.")
    assert len(llm.calls) == 1
    assert llm.calls[0]["model"] == SETTINGS.GEMINI_FAST_MODEL
    assert llm.calls[0]["json_output"] is True


def test_patch_without_explanation_gets_generic_summary():
    patch = {"editType": "simple", "operations": [{"path": "title.text", "op": "replace", "value": "Revenue"}]}
    result = asyncio.run(edit_chart(make_config(), "rename", FakeLLM(json.dumps(patch))))
    assert result.changes_summary == ["Chart updated"]


def test_complex_edit_falls_through_to_regeneration():
    regenerated = dict(make_config(), chart={"type": "pie", "height": 300})
    llm = FakeLLM(
        json.dumps({"editType": "complex", "operations": [], "explanation": "needs restructure"}),
        "Here you go:\n```json\n" + json.dumps(regenerated) + "\n```",
    )

    result = asyncio.run(edit_chart(make_config(), "make it a pie chart", llm))

    assert result.edit_method == "full-regeneration"
    assert result.modified_config["chart"] == {"type": "pie"}
    assert result.changes_summary == ["Chart type changed to pie"]
    assert len(llm.calls) == 2
    assert llm.calls[1]["model"] == SETTINGS.GEMINI_MODEL


@pytest.mark.parametrize(
    "stage_one",
    [
        LLMCallError("timeout"),
        "not json",
        json.dumps({"editType": "simple", "operations": []}),
        json.dumps({"editType": "sideways"}),
    ],
)
def test_stage_one_failures_fall_through(stage_one):
    llm = FakeLLM(stage_one, json.dumps(make_config()))
    result = asyncio.run(edit_chart(make_config(), "tweak", llm))
    assert result.edit_method == "full-regeneration"
    assert result.changes_summary == ["Chart configuration updated"]


def test_unparseable_regeneration_is_terminal():
    llm = FakeLLM(LLMCallError("down"), "Sorry, I cannot do that.")

    with pytest.raises(ConfigRegenerationError) as excinfo:
        asyncio.run(edit_chart(make_config(), "tweak", llm))

    assert excinfo.value.raw_output == "Sorry, I cannot do that."


def test_regeneration_call_failure_propagates():
    llm = FakeLLM(LLMCallError("down"), LLMCallError("still down"))
    with pytest.raises(LLMCallError):
        asyncio.run(edit_chart(make_config(), "tweak", llm))


def test_chat_history_is_truncated_into_prompt():
    history = [ChatMessage(role="user" if index % 2 == 0 else "assistant", content=f"message {index}") for index in range(7)]
    patch = {"editType": "simple", "operations": [{"path": "title.text", "op": "replace", "value": "x"}]}
    llm = FakeLLM(json.dumps(patch))

    asyncio.run(edit_chart(make_config(), "rename", llm, history))

    prompt = llm.calls[0]["prompt"]
    assert "Previous conversation:" in prompt
    assert "message 1" not in prompt
    assert "User: message 2" in prompt
    assert "Assistant: message 3" in prompt


def test_render_chat_history():
    assert render_chat_history([]) == ""
    history = [ChatMessage(role="user", content="a"), ChatMessage(role="assistant", content="b")]
    assert render_chat_history(history, limit=1) == "\n\nPrevious conversation:\nAssistant: b"


def test_function_literals_are_nulled():
    text = '{"tooltip": {"formatter": function () { return this.y; }, }, "series": [1,]}'
    assert json.loads(sanitize_config_text(text)) == {"tooltip": {"formatter": None}, "series": [1]}


def test_parse_regenerated_config_rejects_non_objects():
    assert parse_regenerated_config('{"chart": {}}') == {"chart": {}}
    with pytest.raises(ConfigRegenerationError):
        parse_regenerated_config("[1, 2]")


def test_strip_fixed_dimensions_copies():
    config = make_config()
    stripped = strip_fixed_dimensions(config)
    assert stripped["chart"] == {"type": "column"}
    assert config["chart"]["width"] == 800


def test_extract_changes_reports_each_difference():
    old = make_config()
    new = {
        "chart": {"type": "line"},
        "title": {"text": "Revenue"},
        "colors": ["#000000"],
        "legend": {"enabled": False},
        "series": [{"data": [1]}, {"data": [2]}],
        "yAxis": {"plotLines": [{"value": 1}]},
    }

    assert extract_changes(old, new) == [
        "Chart type changed to line",
        "Chart title updated",
        "Color scheme updated",
        "Series count changed to 2",
        "Legend hidden",
        "Reference lines updated",
    ]
    assert extract_changes(old, old) == ["Chart configuration updated"]


def test_assistant_message_closing_depends_on_change_count():
    assert generate_assistant_message(["A"]).endswith("Let me know if you need any other adjustments!")
    assert generate_assistant_message(["A", "B"]) == "I've updated the chart: A, B. The changes should be visible now."
