"""HTTP client for Ollama-compatible servers."""

from .models import GenerateRequest, GenerateResponse, ModelDetails, ModelInfo, ModelListResponse
from .settings import ClientCustomizer, ClientSettings, SecuritySettings
from .model_registry import ModelRegistry, format_size
from .ollama_client import OllamaClient

__all__ = [
    "ClientCustomizer",
    "ClientSettings",
    "GenerateRequest",
    "GenerateResponse",
    "ModelDetails",
    "ModelInfo",
    "ModelListResponse",
    "ModelRegistry",
    "OllamaClient",
    "SecuritySettings",
    "format_size",
]
