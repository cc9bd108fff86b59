import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..settings import SETTINGS

try:
    import google.generativeai as genai  # type: ignore
except ImportError:  # pragma: no cover - optional dependency during local dev/tests
    genai = None

logger = logging.getLogger(__name__)


class LLMCallError(Exception):
    """Raised when the model call fails, times out, or returns no content."""


def _response_text(response: Any) -> str:
    raw_text: Optional[str] = None
    try:
        raw_text = response.text  # type: ignore[attr-defined]
    except ValueError as exc:
        logger.warning("Gemini response missing text: %s", exc)
    except AttributeError:
        raw_text = None

    if not raw_text and hasattr(response, "candidates"):
        gathered_parts: List[str] = []
        finish_reasons: List[Any] = []
        for candidate in getattr(response, "candidates", []):  # pragma: no cover - depends on API response
            finish_reason = getattr(candidate, "finish_reason", None)
            if finish_reason is not None:
                finish_reasons.append(finish_reason)
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                text_value = getattr(part, "text", None)
                if text_value:
                    gathered_parts.append(text_value)
        if gathered_parts:
            raw_text = "\n".join(gathered_parts).strip()
        elif finish_reasons:
            raise LLMCallError(f"Gemini did not return content (finish reasons: {finish_reasons}).")

    if not raw_text:
        raise LLMCallError("Gemini returned empty response.")
    return raw_text


class GeminiClient:
    """Async text generation against Gemini with a per-call timeout."""

    def __init__(
        self,
        api_key: str,
        *,
        default_model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ):
        if genai is None:
            raise RuntimeError("google-generativeai package is not installed. Run `pip install google-generativeai`.")
        genai.configure(api_key=api_key)
        self.default_model = default_model or SETTINGS.GEMINI_MODEL
        self.timeout = timeout if timeout is not None else SETTINGS.LLM_TIMEOUT_S
        self.max_output_tokens = max_output_tokens or SETTINGS.GEMINI_MAX_OUTPUT_TOKENS

    async def generate_text(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.2,
        json_output: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        model_name = model or self.default_model
        generative_model = genai.GenerativeModel(model_name, system_instruction=system)
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "top_p": 0.8,
            "max_output_tokens": max_output_tokens or self.max_output_tokens,
        }
        if json_output:
            generation_config["response_mime_type"] = "application/json"

        logger.debug("Sending prompt to %s (%s chars)", model_name, len(prompt))
        try:
            response = await asyncio.wait_for(
                generative_model.generate_content_async(prompt, generation_config=generation_config),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Gemini call to %s timed out after %ss", model_name, self.timeout)
            raise LLMCallError(f"Gemini call timed out after {self.timeout}s") from exc
        except Exception as exc:  # pragma: no cover - network errors
            logger.error("Gemini API call failed: %s", exc)
            raise LLMCallError("Gemini API call failed") from exc

        raw_text = _response_text(response)
        logger.debug("Gemini raw response: %s", raw_text)
        return raw_text


def create_llm_client() -> GeminiClient:
    """Build a client from settings; RuntimeError means the service is not configured."""
    if not SETTINGS.GEMINI_API_KEY:
        raise RuntimeError("Gemini API key not configured. Set GEMINI_API_KEY environment variable.")
    return GeminiClient(SETTINGS.GEMINI_API_KEY)


__all__ = ["GeminiClient", "LLMCallError", "create_llm_client"]
