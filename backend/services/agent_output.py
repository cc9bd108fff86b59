import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from ..settings import SETTINGS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Schema = Union[type, TypeAdapter]
AgentCallback = Callable[[], Awaitable[str]]
RetryObserver = Callable[[int, str], None]

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_BRACED_SPAN = re.compile(r"\{[\s\S]*\}")
# String literals are matched first and put back untouched so that "https://..." survives.
_STRING_OR_COMMENT = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*|/\*[\s\S]*?\*/')
_STRING_OR_TRAILING_COMMA = re.compile(r'("(?:\\.|[^"\\])*")|,(\s*[}\]])')


class AgentOutputError(Exception):
    """Base class for agent text that could not be turned into a validated payload."""


class NoJsonFound(AgentOutputError):
    """Raised when agent text contains neither a fenced JSON block nor a braced span."""

    def __init__(self, message: str = "No JSON found in agent output"):
        super().__init__(message)


class JsonParseError(AgentOutputError):
    """Raised when the extracted text is not valid JSON even after sanitizing."""


class SchemaValidationError(AgentOutputError):
    """Raised when parsed JSON does not match the expected shape."""

    def __init__(self, errors: List[dict]):
        self.errors = errors
        super().__init__(f"Schema validation failed: {json.dumps(errors, default=str)}")


class RetryResult(BaseModel, Generic[T]):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: Optional[T] = None
    attempts: int
    error: Optional[str] = None
    raw_output: Optional[str] = None


def extract_json_text(text: str) -> str:
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1)
    braced = _BRACED_SPAN.search(text)
    if braced:
        return braced.group(0)
    raise NoJsonFound()


def sanitize_json_text(text: str) -> str:
    """Strip // and /* */ comments and trailing commas outside string literals."""
    without_comments = _STRING_OR_COMMENT.sub(lambda match: match.group(1) or "", text)
    without_commas = _STRING_OR_TRAILING_COMMA.sub(
        lambda match: match.group(1) if match.group(1) is not None else match.group(2),
        without_comments,
    )
    return without_commas.strip()


def parse_json_text(text: str) -> Any:
    candidate = sanitize_json_text(extract_json_text(text))
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        raise JsonParseError(f"JSON parse error: {exc}") from exc


def validate_payload(payload: Any, schema: Schema) -> Any:
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(payload)
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(exc.errors(include_url=False, include_context=False)) from exc


def parse_and_validate(text: str, schema: Schema, agent_name: str) -> RetryResult:
    """Extract, sanitize, parse and validate one agent response.

    Never raises: every failure is reported through the returned envelope.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    try:
        data = validate_payload(parse_json_text(text), schema)
    except AgentOutputError as exc:
        if isinstance(exc, SchemaValidationError):
            logger.warning("%s output failed validation: %s", agent_name, exc.errors)
        else:
            logger.warning("%s output could not be parsed: %s", agent_name, exc)
        return RetryResult(success=False, attempts=1, error=str(exc), raw_output=text)

    logger.debug("%s output validated", agent_name)
    return RetryResult(success=True, data=data, attempts=1, raw_output=text)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Wait after failed attempt ``attempt``: none after the first, then base * 2^(attempt-1)."""
    if attempt <= 1:
        return 0.0
    return base_delay * (2 ** (attempt - 1))


async def retry_with_validation(
    agent_fn: AgentCallback,
    schema: Schema,
    *,
    agent_name: str,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    timeout: Optional[float] = None,
    on_retry: Optional[RetryObserver] = None,
) -> RetryResult:
    """Call ``agent_fn`` until its text validates against ``schema`` or attempts run out."""
    retries = SETTINGS.AGENT_MAX_RETRIES if max_retries is None else max(0, max_retries)
    delay_base = SETTINGS.AGENT_RETRY_BASE_DELAY_S if base_delay is None else base_delay
    total_attempts = retries + 1

    last_error = "Agent produced no output"
    last_raw: Optional[str] = None

    for attempt in range(1, total_attempts + 1):
        logger.info("%s attempt %s/%s", agent_name, attempt, total_attempts)
        try:
            if timeout is not None:
                text = await asyncio.wait_for(agent_fn(), timeout=timeout)
            else:
                text = await agent_fn()
        except asyncio.TimeoutError:
            last_error = f"Agent call timed out after {timeout}s"
            logger.error("%s call timed out on attempt %s", agent_name, attempt)
        except Exception as exc:
            last_error = f"Agent call failed: {exc}"
            logger.error("%s call failed on attempt %s: %s", agent_name, attempt, exc)
        else:
            result = parse_and_validate(text, schema, agent_name)
            last_raw = result.raw_output
            if result.success:
                return RetryResult(success=True, data=result.data, attempts=attempt, raw_output=last_raw)
            last_error = result.error or last_error

        if attempt < total_attempts:
            wait = backoff_delay(attempt, delay_base)
            logger.warning("%s retrying in %.1fs after: %s", agent_name, wait, last_error)
            if wait > 0:
                if on_retry is not None:
                    on_retry(attempt, last_error)
                await asyncio.sleep(wait)

    logger.warning("%s failed after %s attempts: %s", agent_name, total_attempts, last_error)
    return RetryResult(success=False, attempts=total_attempts, error=last_error, raw_output=last_raw)


__all__ = [
    "AgentOutputError",
    "JsonParseError",
    "NoJsonFound",
    "RetryResult",
    "SchemaValidationError",
    "backoff_delay",
    "extract_json_text",
    "parse_and_validate",
    "parse_json_text",
    "retry_with_validation",
    "sanitize_json_text",
    "validate_payload",
]
