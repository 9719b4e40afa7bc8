"""Shared fakes for client tests. No test here touches the network."""

import pytest

from structured_ollama.client import ClientSettings, OllamaClient


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code=200, text="", lines=None):
        self.status_code = status_code
        self.text = text
        self._lines = lines if lines is not None else []
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def iter_lines(self, decode_unicode=False):
        return iter(self._lines)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self):
        self.closed = True


class RecordingCallback:
    def __init__(self):
        self.events = []

    def on_fragment(self, text):
        self.events.append(("fragment", text))

    def on_complete(self):
        self.events.append(("complete",))

    def on_error(self, cause):
        self.events.append(("error", cause))

    @property
    def fragments(self):
        return [event[1] for event in self.events if event[0] == "fragment"]


@pytest.fixture
def make_client():
    """Build an OllamaClient around a FakeSession.

    Returns ``(client, session)``. Settings default to no startup load,
    no retries and zero backoff.
    """

    def _make(responses=None, customizer=None, **settings_overrides):
        values = {
            "base_url": "http://ollama.test/",
            "model_load_on_startup": False,
            "max_retries": 0,
            "backoff_base": 0.0,
        }
        values.update(settings_overrides)
        session = FakeSession(responses)
        client = OllamaClient(
            settings=ClientSettings(**values),
            customizer=customizer,
            session=session,
        )
        return client, session

    return _make
