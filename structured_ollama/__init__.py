"""Structured JSON output from Ollama's plain-text generate endpoint.

Describe the expected output as an annotated class (or a ``SchemaNode``),
and ``OllamaClient.generate_structured`` folds that schema into the prompt
and returns the cleaned JSON text.
"""

from structured_ollama.client import (
    ClientCustomizer,
    ClientSettings,
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    OllamaClient,
    SecuritySettings,
)
from structured_ollama.generation import StreamCallback, StreamDecoder, StreamState
from structured_ollama.schema import ArraySchema, FieldSchema, Hidden, SchemaNode, schema_class
from structured_ollama.shared import ErrorCode, OllamaClientError, StreamIncompleteError

__version__ = "0.1.0"
