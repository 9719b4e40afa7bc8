import logging
from typing import Optional

from structured_ollama.config import LOG_LEVEL


# ============================================================================
# LOGGING
# ============================================================================

def setup_logging(name: str) -> logging.Logger:
    """Configures a standard logger."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - [%(levelname)s] - %(message)s",
        datefmt="%H:%M:%S"
    )
    return logging.getLogger(name)


def mask_sensitive_value(value: Optional[str]) -> str:
    """Mask a secret for log output, keeping only the first 4 characters.

    Example:
        >>> mask_sensitive_value("Bearer abcdef")
        'Bear****'
    """
    if value is None or len(value) <= 4:
        return "****"
    return value[:4] + "****"
