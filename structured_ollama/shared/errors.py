"""Exception types raised by the Ollama client.

Pure helpers (schema derivation, prompt enhancement, response cleaning)
never raise on malformed input. Only the transport-facing client raises,
and the streaming path delivers these errors through ``on_error`` instead.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error categories with their user-facing messages."""

    # Configuration
    API_KEY_MISSING = "API key is not configured. Set OLLAMA_API_KEY."
    BASE_URL_INVALID = "Server URL is invalid."

    # Network
    NETWORK_ERROR = "Network error while talking to the server."
    CONNECTION_TIMEOUT = "Timed out connecting to the server."
    READ_TIMEOUT = "Timed out waiting for the server response."

    # Response
    INVALID_RESPONSE = "Server response has an unexpected format."
    JSON_PARSE_ERROR = "Failed to parse JSON."
    EMPTY_RESPONSE = "Server returned an empty response."
    STREAM_INCOMPLETE = "Stream ended before a completion record was received."

    # Request / server
    MODEL_NOT_FOUND = "Requested model was not found."
    INVALID_PARAMETER = "Invalid parameter."
    SERVER_ERROR = "The AI server reported an error."

    # Auth
    UNAUTHORIZED = "API key was rejected."
    FORBIDDEN = "Access is forbidden."

    @property
    def message(self) -> str:
        return self.value


class OllamaClientError(Exception):
    """Base exception for client errors.

    Args:
        code: Error category.
        detail: Optional extra context appended to the code's message.
    """

    def __init__(self, code: ErrorCode, detail: Optional[str] = None):
        message = code.message if not detail else f"{code.message} - {detail}"
        super().__init__(message)
        self.code = code
        self.detail = detail


class StreamIncompleteError(OllamaClientError):
    """Raised when a stream closes without sending its completion record."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(ErrorCode.STREAM_INCOMPLETE, detail)
