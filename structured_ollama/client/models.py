"""Pydantic models for the Ollama HTTP API.

## Library Usage

Uses Pydantic v2 BaseModel with:
- Field(alias=...) for the snake_case wire names that differ from ours
- model_validate_json() for parsing response bodies
- extra="ignore" so new server fields never break parsing

## Data Flow

1. ``GenerateRequest`` is built by the caller (optionally with a schema)
2. The client sends ``to_payload()`` (the schema itself is never sent)
3. The body is parsed into ``GenerateResponse`` / ``ModelListResponse``
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from structured_ollama.schema.node import SchemaNode


class GenerateRequest(BaseModel):
    """Request for ``POST /api/generate``.

    Attributes:
        model: Model name, e.g. "llama3".
        prompt: Instruction text.
        stream: Stream the response as NDJSON. Forced by the client per call.
        response_schema: Expected output shape. Folded into the prompt
            instead of being sent; ignored in streaming mode.
    """

    model_config = ConfigDict(frozen=True)

    model: str = ""
    prompt: str = ""
    stream: bool = False
    response_schema: Optional[SchemaNode] = None

    def to_payload(self, prompt: Optional[str] = None, stream: Optional[bool] = None) -> dict[str, Any]:
        """Wire payload, with optional prompt / stream overrides."""
        return {
            "model": self.model,
            "prompt": self.prompt if prompt is None else prompt,
            "stream": self.stream if stream is None else stream,
        }


class GenerateResponse(BaseModel):
    """Response of ``POST /api/generate`` (non-streaming).

    ``json_valid`` is filled by the client when a schema was requested:
    True if ``response`` parses as JSON, False if it is only a best-effort
    cleanup, None when no schema was involved.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: Optional[str] = None
    response: Optional[str] = None
    done: Optional[bool] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None
    json_valid: Optional[bool] = Field(default=None, exclude=True)


class ModelDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    format: Optional[str] = None
    family: Optional[str] = None
    families: Optional[list[str]] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


class ModelInfo(BaseModel):
    """One installed model as listed by ``GET /api/tags``."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    name: str
    model: Optional[str] = None
    modified_at: Optional[str] = None
    size: Optional[int] = None
    digest: Optional[str] = None
    details: Optional[ModelDetails] = None


class ModelListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    models: list[ModelInfo] = Field(default_factory=list)
