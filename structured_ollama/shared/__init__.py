# Shared helpers for structured_ollama

from .logs import setup_logging, mask_sensitive_value
from .errors import ErrorCode, OllamaClientError, StreamIncompleteError
