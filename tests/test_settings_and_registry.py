import pytest

from structured_ollama import config
from structured_ollama.client import (
    ClientCustomizer,
    ClientSettings,
    ModelInfo,
    ModelRegistry,
    SecuritySettings,
    format_size,
)
from structured_ollama.shared import ErrorCode, OllamaClientError, mask_sensitive_value


def test_security_header_format():
    security = SecuritySettings(api_key="abc123", header_name="Authorization", header_value_format="Bearer {value}")

    assert security.enabled is True
    assert security.header() == {"Authorization": "Bearer abc123"}


@pytest.mark.parametrize("api_key", [None, "", "   "])
def test_security_disabled_without_key(api_key):
    security = SecuritySettings(api_key=api_key)

    assert security.enabled is False
    assert security.header() == {}


def test_settings_from_env(monkeypatch):
    monkeypatch.setattr(config, "OLLAMA_BASE_URL", "http://gpu-box:11434/")
    monkeypatch.setattr(config, "OLLAMA_API_KEY", "k-123")
    monkeypatch.setattr(config, "OLLAMA_MAX_RETRIES", 5)
    monkeypatch.setattr(config, "OLLAMA_REPAIR_JSON", True)

    settings = ClientSettings.from_env()

    assert settings.root_url == "http://gpu-box:11434"
    assert settings.max_retries == 5
    assert settings.repair_invalid_json is True
    assert settings.security.api_key == "k-123"


def test_env_bool(monkeypatch):
    monkeypatch.setenv("SO_TEST_FLAG", "Yes")
    assert config._env_bool("SO_TEST_FLAG", False) is True
    monkeypatch.setenv("SO_TEST_FLAG", "off")
    assert config._env_bool("SO_TEST_FLAG", True) is False
    monkeypatch.delenv("SO_TEST_FLAG")
    assert config._env_bool("SO_TEST_FLAG", True) is True


def test_customizer_decorate():
    assert ClientCustomizer(prompt_prefix="A ", prompt_suffix=" Z").decorate("mid") == "A mid Z"
    assert ClientCustomizer().decorate("mid") == "mid"


def test_registry_replaces_whole_snapshot():
    registry = ModelRegistry()
    assert registry.initialized is False
    assert registry.is_available("anything") is True

    registry.replace([ModelInfo(name="a"), ModelInfo(name="b")])
    registry.replace([])
    assert [m.name for m in registry.models] == ["a", "b"]

    registry.replace([ModelInfo(name="c")])
    assert [m.name for m in registry.models] == ["c"]
    assert registry.is_available("a") is False
    assert registry.get("c").name == "c"


@pytest.mark.parametrize(
    "size, expected",
    [
        (None, "N/A"),
        (512, "512 B"),
        (1536, "1.50 KB"),
        (5 * 1024 * 1024, "5.00 MB"),
        (7_548_000_000, "7.03 GB"),
    ],
)
def test_format_size(size, expected):
    assert format_size(size) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(None, "****"), ("abc", "****"), ("abcd", "****"), ("Bearer xyz", "Bear****")],
)
def test_mask_sensitive_value(value, expected):
    assert mask_sensitive_value(value) == expected


def test_error_message_includes_detail():
    error = OllamaClientError(ErrorCode.MODEL_NOT_FOUND, "llama9")

    assert str(error) == "Requested model was not found. - llama9"
    assert error.code is ErrorCode.MODEL_NOT_FOUND
    assert str(OllamaClientError(ErrorCode.UNAUTHORIZED)) == "API key was rejected."
