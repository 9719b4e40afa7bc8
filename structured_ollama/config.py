"""Central configuration for structured_ollama.

Contains:
- Server connection settings (base URL, timeouts, retries)
- Optional security header settings (API key and header format)
- Model list loading behaviour
- Structured output post-processing switches
- Logging level

All values can be overridden through environment variables or a ``.env``
file next to this module.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env file (in the package directory)
load_dotenv(Path(__file__).parent / ".env")


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag ("true"/"1"/"yes"/"on") from the environment."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# SERVER SETTINGS
# ============================================================================

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")

# Timeouts in seconds. Generation can be slow, so the read timeout is long.
OLLAMA_CONNECT_TIMEOUT = float(os.getenv("OLLAMA_CONNECT_TIMEOUT", "30"))
OLLAMA_READ_TIMEOUT = float(os.getenv("OLLAMA_READ_TIMEOUT", "120"))

# Retry policy for non-streaming calls (429 / 5xx / network errors)
OLLAMA_MAX_RETRIES = int(os.getenv("OLLAMA_MAX_RETRIES", "2"))
OLLAMA_BACKOFF_BASE = float(os.getenv("OLLAMA_BACKOFF_BASE", "1.5"))


# ============================================================================
# SECURITY HEADER
# ============================================================================
# No header is sent when OLLAMA_API_KEY is unset.
# OLLAMA_API_KEY_FORMAT uses {value} as the key placeholder, e.g. "Bearer {value}".

OLLAMA_API_KEY = os.getenv("OLLAMA_API_KEY")
OLLAMA_API_KEY_HEADER = os.getenv("OLLAMA_API_KEY_HEADER", "X-API-Key")
OLLAMA_API_KEY_FORMAT = os.getenv("OLLAMA_API_KEY_FORMAT", "{value}")


# ============================================================================
# MODEL LIST
# ============================================================================

OLLAMA_MODEL_LOAD_ON_STARTUP = _env_bool("OLLAMA_MODEL_LOAD_ON_STARTUP", True)


# ============================================================================
# STRUCTURED OUTPUT
# ============================================================================

# Run json_repair on cleaned output that still fails to parse.
# Off by default: invalid output is returned as cleaned text, not rewritten.
OLLAMA_REPAIR_JSON = _env_bool("OLLAMA_REPAIR_JSON", False)

# Number of characters of invalid output quoted in warning logs
INVALID_JSON_LOG_PREVIEW = 100


# ============================================================================
# LOGGING
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
