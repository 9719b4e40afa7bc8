import json
import logging
from typing import Annotated

import pytest
import requests

from conftest import FakeResponse, RecordingCallback
from structured_ollama.client import (
    ClientCustomizer,
    GenerateRequest,
    SecuritySettings,
)
from structured_ollama.generation import StreamState
from structured_ollama.schema import FieldSchema, SchemaNode
from structured_ollama.shared import ErrorCode, OllamaClientError, StreamIncompleteError

PERSON = SchemaNode.of("name", "string", "age", "integer").with_required("name")

MODELS_BODY = json.dumps({
    "models": [
        {
            "name": "llama3:latest",
            "size": 4_661_224_676,
            "digest": "365c0bd3c000",
            "details": {"family": "llama", "parameter_size": "8.0B", "quantization_level": "Q4_0"},
        },
        {"name": "mistral:7b", "size": 4_109_865_159},
    ]
})


class Person:
    name: Annotated[str, FieldSchema(required=True)]
    age: int


def generate_body(text, **extra):
    return json.dumps({"model": "llama3", "response": text, "done": True, "total_duration": 5_000_000, **extra})


def line(text, done=False):
    return json.dumps({"model": "llama3", "response": text, "done": done})


# =============================================================================
# HEALTH / MODELS
# =============================================================================

def test_is_healthy(make_client):
    client, session = make_client([FakeResponse(200, "Ollama is running")])

    assert client.is_healthy() is True
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == "http://ollama.test"


@pytest.mark.parametrize(
    "response",
    [FakeResponse(500, "boom"), FakeResponse(200, "hello"), requests.ConnectionError("refused")],
)
def test_is_unhealthy(make_client, response):
    client, _ = make_client([response])

    assert client.is_healthy() is False


def test_get_models(make_client):
    client, session = make_client([FakeResponse(200, MODELS_BODY)])

    models = client.get_models().models

    assert [m.name for m in models] == ["llama3:latest", "mistral:7b"]
    assert models[0].details.parameter_size == "8.0B"
    assert session.calls[0]["url"] == "http://ollama.test/api/tags"


def test_get_models_empty_body(make_client):
    client, _ = make_client([FakeResponse(200, "  ")])

    with pytest.raises(OllamaClientError) as exc_info:
        client.get_models()

    assert exc_info.value.code is ErrorCode.EMPTY_RESPONSE


def test_get_models_bad_body(make_client):
    client, _ = make_client([FakeResponse(200, "<html>")])

    with pytest.raises(OllamaClientError) as exc_info:
        client.get_models()

    assert exc_info.value.code is ErrorCode.JSON_PARSE_ERROR


def test_models_loaded_on_startup(make_client):
    client, _ = make_client([FakeResponse(200, MODELS_BODY)], model_load_on_startup=True)

    assert client.models_initialized is True
    assert len(client.available_models) == 2
    assert client.is_model_available("mistral:7b") is True
    assert client.is_model_available("phi3") is False
    assert client.get_model_info("llama3:latest").size == 4_661_224_676
    assert client.get_model_info("phi3") is None


def test_failed_refresh_leaves_validation_to_server(make_client):
    client, _ = make_client([FakeResponse(503, "loading")], model_load_on_startup=True)

    assert client.models_initialized is False
    assert client.is_model_available("anything") is True


def test_refresh_keeps_last_snapshot_on_failure(make_client):
    client, _ = make_client([FakeResponse(200, MODELS_BODY), FakeResponse(500, "down")])

    assert client.refresh_models() is True
    assert client.refresh_models() is False
    assert len(client.available_models) == 2


# =============================================================================
# GENERATE
# =============================================================================

def test_generate_with_schema_enhances_prompt_and_cleans_response(make_client):
    raw = 'Sure! Here it is:\n```json\n{"name":"Ann","age":30}\n```'
    client, session = make_client([FakeResponse(200, generate_body(raw))])

    result = client.generate(GenerateRequest(model="llama3", prompt="Extract: Ann is 30", response_schema=PERSON))

    assert result.response == '{"name":"Ann","age":30}'
    assert result.json_valid is True
    payload = session.calls[0]["json"]
    assert session.calls[0]["url"] == "http://ollama.test/api/generate"
    assert payload["stream"] is False
    assert payload["prompt"].startswith("Extract: Ann is 30")
    assert PERSON.to_json() in payload["prompt"]
    assert set(payload) == {"model", "prompt", "stream"}


def test_generate_without_schema_returns_text_untouched(make_client):
    raw = "```python\nprint('hi')\n```"
    client, session = make_client([FakeResponse(200, generate_body(raw))])

    result = client.generate(GenerateRequest(model="llama3", prompt="Write code"))

    assert result.response == raw
    assert result.json_valid is None
    assert session.calls[0]["json"]["prompt"] == "Write code"


def test_invalid_json_is_returned_not_raised(make_client, caplog):
    client, _ = make_client([FakeResponse(200, generate_body("I cannot answer that."))])

    with caplog.at_level(logging.WARNING):
        result = client.generate(GenerateRequest(model="llama3", prompt="Extract", response_schema=PERSON))

    assert result.response == "I cannot answer that."
    assert result.json_valid is False
    assert "invalid JSON" in caplog.text


def test_repair_when_enabled(make_client):
    client, _ = make_client(
        [FakeResponse(200, generate_body("{'name': 'Ann',}"))],
        repair_invalid_json=True,
    )

    result = client.generate(GenerateRequest(model="llama3", prompt="Extract", response_schema=PERSON))

    assert result.json_valid is True
    assert json.loads(result.response) == {"name": "Ann"}


def test_generate_structured_from_class(make_client):
    client, session = make_client([FakeResponse(200, generate_body('{"name":"Ann"}'))])

    result = client.generate_structured("llama3", "Extract", Person)

    assert result.json_valid is True
    assert SchemaNode.from_type(Person).to_json() in session.calls[0]["json"]["prompt"]


def test_generate_text(make_client):
    client, _ = make_client([FakeResponse(200, generate_body("Hello there"))])

    assert client.generate_text("llama3", "Say hello") == "Hello there"


@pytest.mark.parametrize(
    "request_",
    [GenerateRequest(model="", prompt="hi"), GenerateRequest(model="llama3", prompt="   ")],
)
def test_invalid_parameters_are_rejected_before_sending(make_client, request_):
    client, session = make_client()

    with pytest.raises(OllamaClientError) as exc_info:
        client.generate(request_)

    assert exc_info.value.code is ErrorCode.INVALID_PARAMETER
    assert session.calls == []


def test_customizer_default_schema_prefix_and_timeout(make_client):
    customizer = ClientCustomizer(
        default_response_schema=PERSON,
        custom_read_timeout=300.0,
        prompt_prefix="[system] ",
    )
    client, session = make_client([FakeResponse(200, generate_body('{"name":"Ann"}'))], customizer=customizer)

    result = client.generate(GenerateRequest(model="llama3", prompt="Extract"))

    call = session.calls[0]
    assert result.json_valid is True
    assert call["json"]["prompt"].startswith("[system] Extract")
    assert PERSON.to_json() in call["json"]["prompt"]
    assert call["timeout"] == (30.0, 300.0)


def test_empty_generate_body(make_client):
    client, _ = make_client([FakeResponse(200, "")])

    with pytest.raises(OllamaClientError) as exc_info:
        client.generate(GenerateRequest(model="llama3", prompt="hi"))

    assert exc_info.value.code is ErrorCode.EMPTY_RESPONSE


# =============================================================================
# ERRORS, RETRIES, SECURITY
# =============================================================================

@pytest.mark.parametrize(
    "status, code",
    [
        (401, ErrorCode.UNAUTHORIZED),
        (403, ErrorCode.FORBIDDEN),
        (404, ErrorCode.MODEL_NOT_FOUND),
        (500, ErrorCode.SERVER_ERROR),
        (502, ErrorCode.SERVER_ERROR),
        (400, ErrorCode.INVALID_RESPONSE),
    ],
)
def test_http_errors_are_mapped(make_client, status, code):
    client, _ = make_client([FakeResponse(status, "details")])

    with pytest.raises(OllamaClientError) as exc_info:
        client.generate(GenerateRequest(model="llama3", prompt="hi"))

    assert exc_info.value.code is code


@pytest.mark.parametrize(
    "exc, code",
    [
        (requests.ConnectTimeout("slow connect"), ErrorCode.CONNECTION_TIMEOUT),
        (requests.ReadTimeout("slow read"), ErrorCode.READ_TIMEOUT),
        (requests.ConnectionError("refused"), ErrorCode.NETWORK_ERROR),
    ],
)
def test_transport_errors_are_mapped(make_client, exc, code):
    client, _ = make_client([exc])

    with pytest.raises(OllamaClientError) as exc_info:
        client.generate(GenerateRequest(model="llama3", prompt="hi"))

    assert exc_info.value.code is code
    assert exc_info.value.__cause__ is exc


def test_retries_with_backoff_then_succeeds(make_client, monkeypatch):
    sleeps = []
    monkeypatch.setattr("structured_ollama.client.ollama_client.time.sleep", sleeps.append)
    client, session = make_client(
        [FakeResponse(503, "busy"), requests.ConnectionError("reset"), FakeResponse(200, generate_body("ok"))],
        max_retries=2,
        backoff_base=2.0,
    )

    result = client.generate(GenerateRequest(model="llama3", prompt="hi"))

    assert result.response == "ok"
    assert len(session.calls) == 3
    assert sleeps == [2.0, 4.0]


def test_gives_up_after_max_retries(make_client, monkeypatch):
    monkeypatch.setattr("structured_ollama.client.ollama_client.time.sleep", lambda _: None)
    client, session = make_client([FakeResponse(500, "down")] * 3, max_retries=2)

    with pytest.raises(OllamaClientError) as exc_info:
        client.generate(GenerateRequest(model="llama3", prompt="hi"))

    assert exc_info.value.code is ErrorCode.SERVER_ERROR
    assert len(session.calls) == 3


def test_client_errors_are_not_retried(make_client):
    client, session = make_client([FakeResponse(404, "model 'x' not found")], max_retries=2)

    with pytest.raises(OllamaClientError):
        client.generate(GenerateRequest(model="x", prompt="hi"))

    assert len(session.calls) == 1


def test_security_header_is_sent(make_client):
    security = SecuritySettings(api_key="secret-key", header_name="Authorization", header_value_format="Bearer {value}")
    client, session = make_client([FakeResponse(200, "Ollama is running")], security=security)

    client.is_healthy()

    assert session.calls[0]["headers"]["Authorization"] == "Bearer secret-key"


def test_no_security_header_without_key(make_client):
    client, session = make_client([FakeResponse(200, "Ollama is running")])

    client.is_healthy()

    assert "X-API-Key" not in session.calls[0]["headers"]


def test_close_closes_session(make_client):
    client, session = make_client()

    with client:
        pass

    assert session.closed is True


# =============================================================================
# STREAMING
# =============================================================================

def test_generate_stream_delivers_fragments(make_client):
    response = FakeResponse(200, lines=[line("Hel"), line("lo"), line("", done=True)])
    client, session = make_client([response])
    callback = RecordingCallback()

    state = client.generate_stream(GenerateRequest(model="llama3", prompt="Say hello"), callback)

    assert state is StreamState.COMPLETED
    assert callback.events == [("fragment", "Hel"), ("fragment", "lo"), ("complete",)]
    assert session.calls[0]["stream"] is True
    assert session.calls[0]["json"]["stream"] is True
    assert response.closed is True


def test_generate_stream_ignores_schema(make_client, caplog):
    client, session = make_client([FakeResponse(200, lines=[line("x", done=True)])])
    callback = RecordingCallback()

    with caplog.at_level(logging.WARNING):
        client.generate_stream(GenerateRequest(model="llama3", prompt="hi", response_schema=PERSON), callback)

    assert session.calls[0]["json"]["prompt"] == "hi"
    assert "ignored in streaming mode" in caplog.text


def test_generate_stream_http_error(make_client):
    response = FakeResponse(404, "model not found")
    client, _ = make_client([response])
    callback = RecordingCallback()

    state = client.generate_stream(GenerateRequest(model="nope", prompt="hi"), callback)

    assert state is StreamState.FAILED
    assert len(callback.events) == 1
    assert callback.events[0][1].code is ErrorCode.MODEL_NOT_FOUND
    assert response.closed is True


def test_generate_stream_connection_failure(make_client):
    client, _ = make_client([requests.ConnectTimeout("slow")])
    callback = RecordingCallback()

    state = client.generate_stream(GenerateRequest(model="llama3", prompt="hi"), callback)

    assert state is StreamState.FAILED
    assert callback.events[0][1].code is ErrorCode.CONNECTION_TIMEOUT


def test_generate_stream_transport_failure_mid_stream(make_client):
    def lines():
        yield line("partial")
        raise requests.exceptions.ChunkedEncodingError("connection broken")

    response = FakeResponse(200, lines=lines())
    client, _ = make_client([response])
    callback = RecordingCallback()

    client.generate_stream(GenerateRequest(model="llama3", prompt="hi"), callback)

    assert callback.events[0] == ("fragment", "partial")
    error = callback.events[1][1]
    assert error.code is ErrorCode.NETWORK_ERROR
    assert isinstance(error.__cause__, requests.exceptions.ChunkedEncodingError)
    assert response.closed is True


def test_generate_stream_truncated(make_client):
    client, _ = make_client([FakeResponse(200, lines=[line("a")])])
    callback = RecordingCallback()

    client.generate_stream(GenerateRequest(model="llama3", prompt="hi"), callback)

    assert isinstance(callback.events[-1][1], StreamIncompleteError)


def test_generate_stream_invalid_parameter(make_client):
    client, session = make_client()
    callback = RecordingCallback()

    state = client.generate_stream(GenerateRequest(model="llama3", prompt=""), callback)

    assert state is StreamState.FAILED
    assert callback.events[0][1].code is ErrorCode.INVALID_PARAMETER
    assert session.calls == []


def test_generate_stream_async(make_client):
    client, _ = make_client([FakeResponse(200, lines=[line("a"), line("", done=True)])])
    callback = RecordingCallback()

    future = client.generate_stream_async(GenerateRequest(model="llama3", prompt="hi"), callback)

    assert future.result(timeout=5) is StreamState.COMPLETED
    assert callback.fragments == ["a"]


def test_iter_stream(make_client):
    client, _ = make_client([FakeResponse(200, lines=[line("Hel"), line("lo"), line("", done=True)])])

    assert list(client.iter_stream(GenerateRequest(model="llama3", prompt="hi"))) == ["Hel", "lo"]


def test_iter_stream_http_error(make_client):
    client, _ = make_client([FakeResponse(401, "")])

    with pytest.raises(OllamaClientError) as exc_info:
        list(client.iter_stream(GenerateRequest(model="llama3", prompt="hi")))

    assert exc_info.value.code is ErrorCode.UNAUTHORIZED
