"""Per-client settings and global request customisation.

Defaults come from ``structured_ollama.config`` (environment / .env).
"""

from dataclasses import dataclass, field
from typing import Optional

from structured_ollama import config
from structured_ollama.schema.node import SchemaNode


@dataclass(frozen=True)
class SecuritySettings:
    """Optional authentication header.

    Attributes:
        api_key: Secret; no header is sent when empty.
        header_name: HTTP header name, e.g. "X-API-Key" or "Authorization".
        header_value_format: Value template; ``{value}`` is replaced by the key,
            e.g. "Bearer {value}".
    """

    api_key: Optional[str] = None
    header_name: str = "X-API-Key"
    header_value_format: str = "{value}"

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def header(self) -> dict[str, str]:
        """The header to add, or an empty dict when no key is configured."""
        if not self.enabled:
            return {}
        return {self.header_name: self.header_value_format.replace("{value}", self.api_key)}


@dataclass(frozen=True)
class ClientSettings:
    """Connection settings for one ``OllamaClient``.

    Attributes:
        base_url: Server root URL (no trailing slash needed).
        connect_timeout: Seconds to establish a connection.
        read_timeout: Seconds to wait for response data.
        max_retries: Retries for 429 / 5xx / network errors (non-streaming).
        backoff_base: Exponential backoff base in seconds.
        model_load_on_startup: Load the model list when the client is built.
        repair_invalid_json: Run json_repair on cleaned output that does not parse.
        security: Optional authentication header.
    """

    base_url: str = "http://localhost:11434"
    connect_timeout: float = 30.0
    read_timeout: float = 120.0
    max_retries: int = 2
    backoff_base: float = 1.5
    model_load_on_startup: bool = True
    repair_invalid_json: bool = False
    security: SecuritySettings = field(default_factory=SecuritySettings)

    @classmethod
    def from_env(cls) -> "ClientSettings":
        """Build settings from ``structured_ollama.config``."""
        return cls(
            base_url=config.OLLAMA_BASE_URL,
            connect_timeout=config.OLLAMA_CONNECT_TIMEOUT,
            read_timeout=config.OLLAMA_READ_TIMEOUT,
            max_retries=config.OLLAMA_MAX_RETRIES,
            backoff_base=config.OLLAMA_BACKOFF_BASE,
            model_load_on_startup=config.OLLAMA_MODEL_LOAD_ON_STARTUP,
            repair_invalid_json=config.OLLAMA_REPAIR_JSON,
            security=SecuritySettings(
                api_key=config.OLLAMA_API_KEY,
                header_name=config.OLLAMA_API_KEY_HEADER,
                header_value_format=config.OLLAMA_API_KEY_FORMAT,
            ),
        )

    @property
    def root_url(self) -> str:
        return self.base_url.rstrip("/")


@dataclass(frozen=True)
class ClientCustomizer:
    """Defaults applied to every request of a client.

    Attributes:
        default_response_schema: Used when a request has no schema of its own.
        custom_read_timeout: Overrides ``ClientSettings.read_timeout``.
        prompt_prefix: Prepended to every prompt.
        prompt_suffix: Appended to every prompt (before schema instructions).
    """

    default_response_schema: Optional[SchemaNode] = None
    custom_read_timeout: Optional[float] = None
    prompt_prefix: Optional[str] = None
    prompt_suffix: Optional[str] = None

    def decorate(self, prompt: str) -> str:
        return f"{self.prompt_prefix or ''}{prompt}{self.prompt_suffix or ''}"
