"""Ollama client with prompt-based structured output.

## Structured Output on a Text-Only Endpoint

``/api/generate`` takes a prompt and returns text. To get JSON of a given
shape out of it, the client:

1. Folds the response schema into the prompt (``generation.prompt_enhancer``)
2. Sends the enhanced prompt; the schema itself never goes over the wire
3. Cleans the returned text (``generation.response_cleaner``) and flags
   whether it parses as JSON

The result is always a string: valid JSON, or the best-effort cleanup with
``json_valid=False``. Validity is not guaranteed, only made likely.

## Library Usage

Uses ``requests`` for HTTP calls. Non-streaming calls retry with exponential
backoff on rate limits (429), server errors (5xx) and network transients.
Streaming calls are not retried: fragments may already have been delivered.

## Data Flow

    generate():        request -> schema? -> enhance -> POST -> clean -> response
    generate_stream(): request -> POST (stream) -> iter_lines -> StreamDecoder -> callback
"""

import time
from concurrent.futures import Executor, Future
from typing import Any, Iterator, Optional, Union

import requests
from pydantic import ValidationError as PydanticValidationError

from structured_ollama.client.model_registry import ModelRegistry, format_size
from structured_ollama.client.models import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelListResponse,
)
from structured_ollama.client.settings import ClientCustomizer, ClientSettings
from structured_ollama.config import INVALID_JSON_LOG_PREVIEW
from structured_ollama.generation.prompt_enhancer import enhance
from structured_ollama.generation.response_cleaner import clean, is_valid_json, repair
from structured_ollama.generation.stream_decoder import (
    StreamCallback,
    StreamDecoder,
    StreamState,
    submit_background,
)
from structured_ollama.schema.node import SchemaNode
from structured_ollama.shared.errors import ErrorCode, OllamaClientError
from structured_ollama.shared.logs import mask_sensitive_value, setup_logging

logger = setup_logging(__name__)

HEALTH_MARKER = "ollama is running"


class OllamaClient:
    """Client for an Ollama-compatible server.

    Args:
        settings: Connection settings. Defaults to ``ClientSettings.from_env()``.
        customizer: Optional defaults applied to every request.
        session: ``requests.Session`` to use (one is created if omitted).
        decoder: Stream decoder for ``generate_stream``.

    Example:
        >>> client = OllamaClient()
        >>> result = client.generate_structured("llama3", "Extract the name: Ann is 30", Person)
        >>> result.response, result.json_valid
        ('{"name":"Ann","age":30}', True)
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        customizer: Optional[ClientCustomizer] = None,
        session: Optional[requests.Session] = None,
        decoder: Optional[StreamDecoder] = None,
    ):
        self.settings = settings or ClientSettings.from_env()
        self.customizer = customizer
        self._session = session or requests.Session()
        self._decoder = decoder or StreamDecoder()
        self._registry = ModelRegistry()

        logger.info(f"OllamaClient initialised - base_url: {self.settings.root_url}")
        if self.settings.security.enabled:
            logger.info(f"Security header configured - header: {self.settings.security.header_name}")
        else:
            logger.warning(
                "No security header configured. Servers that require authentication "
                "will answer 401/403. Set OLLAMA_API_KEY to enable it."
            )

        if self.settings.model_load_on_startup:
            self.refresh_models()
        else:
            logger.info("Skipping model list load (model_load_on_startup=False)")

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # HEALTH AND MODELS
    # =========================================================================

    def is_healthy(self) -> bool:
        """True if the server root answers 2xx with "Ollama is running"."""
        logger.debug(f"Health check: {self.settings.root_url}")
        try:
            response = self._send("GET", "")
        except requests.RequestException as exc:
            logger.error(f"Health check network error: {exc}")
            return False

        with response:
            if not response.ok:
                logger.warning(f"Health check failed - HTTP {response.status_code}")
                return False
            healthy = HEALTH_MARKER in (response.text or "").lower()

        logger.info(f"Health check result: {'healthy' if healthy else 'unhealthy'}")
        return healthy

    def get_models(self) -> ModelListResponse:
        """List installed models (``GET /api/tags``).

        Raises:
            OllamaClientError: On network, HTTP or parsing errors.
        """
        response = self._request_with_retry("GET", "/api/tags")
        body = response.text or ""
        if not body.strip():
            raise OllamaClientError(ErrorCode.EMPTY_RESPONSE)

        try:
            model_list = ModelListResponse.model_validate_json(body)
        except PydanticValidationError as exc:
            logger.error(f"Failed to parse model list: {exc}")
            raise OllamaClientError(ErrorCode.JSON_PARSE_ERROR, str(exc)) from exc

        logger.info(f"Model list loaded - {len(model_list.models)} models")
        return model_list

    def refresh_models(self) -> bool:
        """Reload the model snapshot. Failures are logged, never raised.

        Returns:
            True if a non-empty snapshot is available after the call.
        """
        logger.info("Loading available models...")
        try:
            models = self.get_models().models
        except OllamaClientError as exc:
            logger.error(f"Model list refresh failed: {exc}")
            logger.warning("Continuing without model validation (the server validates on request)")
            return False

        if not models:
            logger.warning("Server returned an empty model list")
            return self._registry.initialized

        self._registry.replace(models)
        for model in models:
            parameter_size = model.details.parameter_size if model.details else "N/A"
            logger.debug(f"  - {model.name}: {parameter_size} ({format_size(model.size)})")
        return True

    @property
    def available_models(self) -> tuple[ModelInfo, ...]:
        return self._registry.models

    @property
    def models_initialized(self) -> bool:
        return self._registry.initialized

    def is_model_available(self, name: str) -> bool:
        """True if ``name`` is installed, or if the list was never loaded."""
        if not self._registry.initialized:
            logger.debug("Model list not loaded; leaving validation to the server")
        return self._registry.is_available(name)

    def get_model_info(self, name: str) -> Optional[ModelInfo]:
        return self._registry.get(name)

    # =========================================================================
    # GENERATION
    # =========================================================================

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a completion (``POST /api/generate``, non-streaming).

        When a schema is in effect (the request's own, else the customizer
        default) the prompt is enhanced with it and the response text is
        cleaned; ``json_valid`` tells whether the cleaned text parses.

        Raises:
            OllamaClientError: On invalid parameters, network, HTTP or
                parsing errors. Invalid model JSON is NOT an error.
        """
        self._validate(request)
        schema = self._effective_schema(request)
        logger.debug(
            f"Generate - model: {request.model}, prompt length: {len(request.prompt)}, "
            f"schema: {'yes' if schema is not None else 'no'}"
        )

        prompt = self._decorate(request.prompt)
        if schema is not None:
            enhanced = enhance(prompt, schema)
            logger.debug(f"Prompt enhanced - {len(prompt)} -> {len(enhanced)} chars")
            prompt = enhanced

        response = self._request_with_retry(
            "POST", "/api/generate", payload=request.to_payload(prompt=prompt, stream=False)
        )
        body = response.text or ""
        if not body.strip():
            raise OllamaClientError(ErrorCode.EMPTY_RESPONSE)

        try:
            result = GenerateResponse.model_validate_json(body)
        except PydanticValidationError as exc:
            logger.error(f"Failed to parse generate response: {exc}")
            raise OllamaClientError(ErrorCode.JSON_PARSE_ERROR, str(exc)) from exc

        if schema is not None:
            result = self._clean_structured(result)

        duration_ms = (result.total_duration or 0) // 1_000_000
        logger.info(
            f"Generate completed - response length: {len(result.response or '')}, "
            f"duration: {duration_ms}ms"
        )
        return result

    def generate_text(self, model: str, prompt: str) -> str:
        """Shortcut returning only the generated text."""
        return self.generate(GenerateRequest(model=model, prompt=prompt)).response or ""

    def generate_structured(
        self,
        model: str,
        prompt: str,
        schema: Union[SchemaNode, type],
    ) -> GenerateResponse:
        """Generate JSON shaped by ``schema`` (a SchemaNode or an annotated class)."""
        node = schema if isinstance(schema, SchemaNode) else SchemaNode.from_type(schema)
        return self.generate(GenerateRequest(model=model, prompt=prompt, response_schema=node))

    def generate_stream(self, request: GenerateRequest, callback: StreamCallback) -> StreamState:
        """Stream a completion, delivering fragments to ``callback``.

        Response schemas are not supported here (fragments cannot be cleaned)
        and are ignored with a warning. Blocks until the stream ends; every
        outcome, including HTTP and parameter errors, is reported through
        exactly one ``on_complete`` or ``on_error``.
        """
        try:
            self._validate(request)
        except OllamaClientError as exc:
            callback.on_error(exc)
            return StreamState.FAILED

        if request.response_schema is not None:
            logger.warning(
                "response_schema is ignored in streaming mode. Use generate() for JSON responses."
            )
        if self.customizer is not None and self.customizer.default_response_schema is not None:
            logger.warning("Default response schema is set but ignored in streaming mode.")

        payload = request.to_payload(prompt=self._decorate(request.prompt), stream=True)
        logger.debug(f"Generate stream - model: {request.model}, prompt length: {len(request.prompt)}")

        try:
            response = self._send("POST", "/api/generate", payload=payload, stream=True)
        except requests.RequestException as exc:
            callback.on_error(self._transport_error(exc))
            return StreamState.FAILED

        with response:
            if not response.ok:
                body = response.text or ""
                logger.error(f"Generate stream failed - HTTP {response.status_code}: {body}")
                callback.on_error(self._http_error(response.status_code, body))
                return StreamState.FAILED

            return self._decoder.decode(
                response.iter_lines(decode_unicode=True),
                _TransportErrorMapper(callback, self._transport_error),
            )

    def generate_stream_async(
        self,
        request: GenerateRequest,
        callback: StreamCallback,
        executor: Optional[Executor] = None,
    ) -> Future:
        """Run ``generate_stream`` in the background; the Future tracks completion."""
        return submit_background(self.generate_stream, request, callback, executor=executor)

    def iter_stream(self, request: GenerateRequest) -> Iterator[str]:
        """Generator form of ``generate_stream``.

        Raises:
            OllamaClientError: On parameter, HTTP or transport errors, or when
                the stream ends without a completion record.
        """
        self._validate(request)
        payload = request.to_payload(prompt=self._decorate(request.prompt), stream=True)
        try:
            response = self._send("POST", "/api/generate", payload=payload, stream=True)
        except requests.RequestException as exc:
            raise self._transport_error(exc) from exc

        with response:
            if not response.ok:
                raise self._http_error(response.status_code, response.text or "")
            try:
                yield from self._decoder.iter_fragments(response.iter_lines(decode_unicode=True))
            except (requests.RequestException, OSError) as exc:
                raise self._transport_error(exc) from exc

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _validate(request: GenerateRequest) -> None:
        if not request.model or not request.model.strip():
            raise OllamaClientError(ErrorCode.INVALID_PARAMETER, "model name is empty")
        if not request.prompt or not request.prompt.strip():
            raise OllamaClientError(ErrorCode.INVALID_PARAMETER, "prompt is empty")

    def _effective_schema(self, request: GenerateRequest) -> Optional[SchemaNode]:
        if request.response_schema is not None:
            return request.response_schema
        if self.customizer is not None and self.customizer.default_response_schema is not None:
            logger.debug("Applying default response schema")
            return self.customizer.default_response_schema
        return None

    def _decorate(self, prompt: str) -> str:
        return self.customizer.decorate(prompt) if self.customizer is not None else prompt

    def _clean_structured(self, result: GenerateResponse) -> GenerateResponse:
        """Clean the response text and record whether it is valid JSON."""
        raw = result.response or ""
        cleaned = clean(raw)
        valid = is_valid_json(cleaned)
        logger.debug(f"JSON response cleaned - {len(raw)} -> {len(cleaned)} chars")

        if not valid and self.settings.repair_invalid_json:
            repaired = repair(cleaned)
            if repaired is not None:
                logger.warning(f"Repaired malformed JSON from model ({len(cleaned)} -> {len(repaired)} chars)")
                cleaned, valid = repaired, True

        if valid:
            logger.debug("JSON validation succeeded")
        else:
            logger.warning(
                f"Model returned invalid JSON (kept as is): {cleaned[:INVALID_JSON_LOG_PREVIEW]}"
            )
        return result.model_copy(update={"response": cleaned, "json_valid": valid})

    @property
    def _timeout(self) -> tuple[float, float]:
        read_timeout = self.settings.read_timeout
        if self.customizer is not None and self.customizer.custom_read_timeout is not None:
            read_timeout = self.customizer.custom_read_timeout
        return (self.settings.connect_timeout, read_timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        security_header = self.settings.security.header()
        for name, value in security_header.items():
            logger.debug(f"Adding security header - {name}: {mask_sensitive_value(value)}")
        headers.update(security_header)
        return headers

    def _send(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
        stream: bool = False,
    ) -> requests.Response:
        """Single HTTP call, no retries."""
        return self._session.request(
            method,
            f"{self.settings.root_url}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self._timeout,
            stream=stream,
        )

    def _request_with_retry(
        self,
        method: str,
        path: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> requests.Response:
        """HTTP call with exponential backoff on 429 / 5xx / network errors.

        Returns:
            A successful (2xx) response.

        Raises:
            OllamaClientError: Mapped HTTP or transport error after all retries.
        """
        max_retries = max(self.settings.max_retries, 0)
        backoff_base = self.settings.backoff_base

        for attempt in range(max_retries + 1):
            try:
                response = self._send(method, path, payload=payload)
            except requests.RequestException as exc:
                if attempt < max_retries:
                    delay = backoff_base ** (attempt + 1)
                    logger.warning(
                        f"Request failed ({exc}), retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                logger.error(f"{method} {path} failed: {exc}")
                raise self._transport_error(exc) from exc

            if response.ok:
                return response

            status = response.status_code
            if (status == 429 or status >= 500) and attempt < max_retries:
                delay = backoff_base ** (attempt + 1)
                error_type = "Rate limit" if status == 429 else "Server error"
                logger.warning(
                    f"{error_type} ({status}), retry {attempt + 1}/{max_retries} after {delay:.1f}s"
                )
                response.close()
                time.sleep(delay)
                continue

            body = response.text or ""
            logger.error(f"{method} {path} failed - HTTP {status}: {body}")
            raise self._http_error(status, body)

        raise OllamaClientError(ErrorCode.NETWORK_ERROR, "max retries exceeded")

    @staticmethod
    def _http_error(status: int, body: str) -> OllamaClientError:
        """Map an HTTP error status to an OllamaClientError."""
        if status == 401:
            return OllamaClientError(ErrorCode.UNAUTHORIZED)
        if status == 403:
            return OllamaClientError(ErrorCode.FORBIDDEN)
        if status == 404:
            return OllamaClientError(ErrorCode.MODEL_NOT_FOUND, body)
        if status in (500, 502, 503):
            return OllamaClientError(ErrorCode.SERVER_ERROR, body)
        return OllamaClientError(ErrorCode.INVALID_RESPONSE, f"HTTP {status}: {body}")

    @staticmethod
    def _transport_error(exc: BaseException) -> OllamaClientError:
        """Map a transport exception to an OllamaClientError (cause chained)."""
        if isinstance(exc, OllamaClientError):
            return exc
        if isinstance(exc, requests.ConnectTimeout):
            error = OllamaClientError(ErrorCode.CONNECTION_TIMEOUT, str(exc))
        elif isinstance(exc, (requests.Timeout, TimeoutError)):
            error = OllamaClientError(ErrorCode.READ_TIMEOUT, str(exc))
        else:
            error = OllamaClientError(ErrorCode.NETWORK_ERROR, str(exc))
        error.__cause__ = exc
        return error


class _TransportErrorMapper:
    """Callback wrapper translating raw transport errors for the caller."""

    def __init__(self, callback: StreamCallback, translate):
        self._callback = callback
        self._translate = translate

    def on_fragment(self, text: str) -> None:
        self._callback.on_fragment(text)

    def on_complete(self) -> None:
        self._callback.on_complete()

    def on_error(self, cause: BaseException) -> None:
        self._callback.on_error(self._translate(cause))
