import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Invalid integer for %s, using default %s", name, default)
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Invalid number for %s, using default %s", name, default)
        return default


class _Settings:
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-pro-latest")
    # Patch classification, data transformer and stylistic agents.
    GEMINI_FAST_MODEL = os.getenv("GEMINI_FAST_MODEL", "gemini-1.5-flash-latest")
    GEMINI_MAX_OUTPUT_TOKENS = _env_int("GEMINI_MAX_OUTPUT_TOKENS", 4096)

    LLM_TIMEOUT_S = _env_float("LLM_TIMEOUT_S", 60.0)
    AGENT_MAX_RETRIES = _env_int("AGENT_MAX_RETRIES", 2)
    AGENT_RETRY_BASE_DELAY_S = _env_float("AGENT_RETRY_BASE_DELAY_S", 1.0)
    CHAT_HISTORY_LIMIT = _env_int("CHAT_HISTORY_LIMIT", 5)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:8000")


SETTINGS = _Settings()
