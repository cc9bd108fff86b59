import copy
import json
import logging
import re
import time
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..settings import SETTINGS
from .llm import LLMCallError
from .patching import apply_patch
from .prompts import (
    CHART_EDITOR_PROMPT,
    CHART_PATCH_PROMPT,
    build_patch_prompt,
    build_regeneration_prompt,
)
from .schemas import CamelModel, ChartPatchResult, ChatMessage

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FUNCTION_LITERAL = re.compile(r":\s*function\s*\([^)]*\)\s*\{[\s\S]*?\}")
_TRAILING_COMMA = re.compile(r",\s*(\}|\])")


class ConfigRegenerationError(Exception):
    """Raised when the fully regenerated configuration cannot be parsed."""

    def __init__(self, details: str, raw_output: str):
        self.details = details
        self.raw_output = raw_output
        super().__init__(details)


class ChartEditResult(CamelModel):
    success: bool = True
    modified_config: Dict[str, Any]
    changes_summary: List[str]
    assistant_message: str
    edit_method: Literal["patch", "full-regeneration"]
    timing: int


def sanitize_config_text(text: str) -> str:
    """Replace function literals with null and drop the trailing commas that leaves behind."""
    if not text:
        return text
    sanitized = _FUNCTION_LITERAL.sub(": null", text)
    return _TRAILING_COMMA.sub(r"\1", sanitized)


def parse_regenerated_config(text: str) -> Dict[str, Any]:
    fenced = _FENCED_JSON.search(text or "")
    candidate = fenced.group(1) if fenced else (text or "")
    try:
        config = json.loads(sanitize_config_text(candidate))
    except ValueError as exc:
        raise ConfigRegenerationError(str(exc), text) from exc
    if not isinstance(config, dict):
        raise ConfigRegenerationError("Regenerated configuration is not a JSON object", text)
    return config


def strip_fixed_dimensions(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Charts size to their container, so chart.width and chart.height never survive."""
    cleaned = copy.deepcopy(dict(config))
    chart = cleaned.get("chart")
    if isinstance(chart, dict):
        chart.pop("width", None)
        chart.pop("height", None)
    return cleaned


def render_chat_history(history: Optional[Sequence[ChatMessage]], limit: Optional[int] = None) -> str:
    if not history:
        return ""
    keep = SETTINGS.CHAT_HISTORY_LIMIT if limit is None else limit
    recent = list(history)[-keep:] if keep > 0 else []
    if not recent:
        return ""
    lines = [f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}" for message in recent]
    return "\n\nPrevious conversation:\n" + "\n".join(lines)


def _lookup(config: Mapping[str, Any], *keys: str) -> Any:
    current: Any = config
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _length(value: Any) -> Optional[int]:
    return len(value) if isinstance(value, list) else None


def extract_changes(old_config: Mapping[str, Any], new_config: Mapping[str, Any]) -> List[str]:
    changes: List[str] = []

    if _lookup(old_config, "chart", "type") != _lookup(new_config, "chart", "type"):
        changes.append(f"Chart type changed to {_lookup(new_config, 'chart', 'type')}")
    if _lookup(old_config, "title", "text") != _lookup(new_config, "title", "text"):
        changes.append("Chart title updated")
    if old_config.get("colors") != new_config.get("colors"):
        changes.append("Color scheme updated")
    if _length(old_config.get("series")) != _length(new_config.get("series")):
        changes.append(f"Series count changed to {_length(new_config.get('series')) or 0}")
    if _lookup(old_config, "legend", "enabled") != _lookup(new_config, "legend", "enabled"):
        changes.append("Legend shown" if _lookup(new_config, "legend", "enabled") else "Legend hidden")
    if _length(_lookup(old_config, "yAxis", "plotLines")) != _length(_lookup(new_config, "yAxis", "plotLines")):
        changes.append("Reference lines updated")

    return changes or ["Chart configuration updated"]


def generate_assistant_message(changes: Sequence[str]) -> str:
    closing = "The changes should be visible now." if len(changes) > 1 else "Let me know if you need any other adjustments!"
    return f"I've updated the chart: {', '.join(changes)}. {closing}"


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def _try_patch(llm: Any, current_config: Dict[str, Any], user_request: str, context: str) -> Optional[ChartPatchResult]:
    try:
        text = await llm.generate_text(
            build_patch_prompt(current_config, user_request, context),
            system=CHART_PATCH_PROMPT,
            model=SETTINGS.GEMINI_FAST_MODEL,
            temperature=0.15,
            json_output=True,
        )
        return ChartPatchResult.model_validate(json.loads(text))
    except (LLMCallError, ValidationError, ValueError, TypeError) as exc:
        logger.info("Patch approach failed, falling back to full regeneration: %s", exc)
        return None


async def edit_chart(
    current_config: Dict[str, Any],
    user_request: str,
    llm: Any,
    chat_history: Optional[Sequence[ChatMessage]] = None,
) -> ChartEditResult:
    """Apply a natural-language edit: minimal patch first, full regeneration otherwise.

    Raises ConfigRegenerationError when the regenerated config is unparseable and
    LLMCallError when the regeneration call itself fails.
    """
    context = render_chat_history(chat_history)
    logger.info("Editing chart with request: %s", user_request)

    start = time.perf_counter()
    patch = await _try_patch(llm, current_config, user_request, context)
    if patch is not None:
        logger.info("Patch analysis: %s with %s operations", patch.edit_type, len(patch.operations))
    if patch is not None and patch.edit_type == "simple" and patch.operations:
        modified = strip_fixed_dimensions(apply_patch(current_config, patch.operations))
        summary = [patch.explanation] if patch.explanation else ["Chart updated"]
        timing = _elapsed_ms(start)
        logger.info("Patch applied in %sms", timing)
        return ChartEditResult(
            modified_config=modified,
            changes_summary=summary,
            assistant_message=generate_assistant_message(summary),
            edit_method="patch",
            timing=timing,
        )

    regeneration_start = time.perf_counter()
    text = await llm.generate_text(
        build_regeneration_prompt(current_config, user_request, context),
        system=CHART_EDITOR_PROMPT,
        model=SETTINGS.GEMINI_MODEL,
        temperature=0.3,
    )
    try:
        modified = strip_fixed_dimensions(parse_regenerated_config(text))
    except ConfigRegenerationError:
        logger.error("Failed to parse regenerated config, raw output: %s", text)
        raise

    changes = extract_changes(current_config, modified)
    timing = _elapsed_ms(regeneration_start)
    logger.info("Full regeneration took %sms", timing)
    return ChartEditResult(
        modified_config=modified,
        changes_summary=changes,
        assistant_message=generate_assistant_message(changes),
        edit_method="full-regeneration",
        timing=timing,
    )


__all__ = [
    "ChartEditResult",
    "ConfigRegenerationError",
    "edit_chart",
    "extract_changes",
    "generate_assistant_message",
    "parse_regenerated_config",
    "render_chat_history",
    "sanitize_config_text",
    "strip_fixed_dimensions",
]
