"""Decode a newline-delimited JSON (NDJSON) generation stream.

## What This Module Does

Streaming ``/api/generate`` responses arrive as one JSON record per line:

    {"model":"llama3","response":"Hel","done":false}
    {"model":"llama3","response":"lo","done":false}
    {"model":"llama3","response":"","done":true,"total_duration":...}

``StreamDecoder.decode`` reads the lines as they arrive and reports them to a
``StreamCallback``:

- ``on_fragment(text)`` for every non-empty ``response`` value
- ``on_complete()`` once, on the first record with ``done: true``; reading
  stops there even if more lines follow
- ``on_error(cause)`` once, if the line source fails (connection, timeout,
  I/O) or ends without a completion record

A line that is not valid JSON (a partial write, keep-alive noise) is logged
and skipped. ``on_complete`` and ``on_error`` are mutually exclusive.

## Concurrency

``decode`` blocks the calling thread while it waits for each line. Use
``decode_async`` to run it on an executor. There is no cancellation: to stop
early, close the underlying response (the client does so in a ``with`` block).
"""

import json
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from enum import Enum, auto
from typing import Any, Callable, Iterable, Iterator, Optional, Protocol, Union

import requests

from structured_ollama.shared.errors import StreamIncompleteError
from structured_ollama.shared.logs import setup_logging

logger = setup_logging(__name__)

Line = Union[str, bytes]

# Failures of the line source itself. Anything raised by a callback propagates.
TRANSPORT_ERRORS = (requests.RequestException, OSError)


class StreamCallback(Protocol):
    """Receiver of decoded stream events."""

    def on_fragment(self, text: str) -> None:
        ...

    def on_complete(self) -> None:
        ...

    def on_error(self, cause: BaseException) -> None:
        ...


class StreamState(Enum):
    """Decode session state. COMPLETED and FAILED are terminal."""

    READING = auto()
    COMPLETED = auto()
    FAILED = auto()


class StreamDecoder:
    """Turns NDJSON lines into fragment / completion / error callbacks.

    Args:
        fragment_field: Record field holding the text fragment.
        done_field: Record field holding the completion flag.
    """

    def __init__(self, fragment_field: str = "response", done_field: str = "done"):
        self.fragment_field = fragment_field
        self.done_field = done_field

    def decode(self, lines: Iterable[Line], callback: StreamCallback) -> StreamState:
        """Consume ``lines`` until completion or failure.

        Args:
            lines: Line source, e.g. ``response.iter_lines()``.
            callback: Receives fragments and exactly one terminal event.

        Returns:
            The terminal state (COMPLETED or FAILED).
        """
        state = StreamState.READING
        fragments = 0

        try:
            iterator = iter(lines)
        except TRANSPORT_ERRORS as exc:
            return self._fail(callback, exc)

        while state is StreamState.READING:
            try:
                line = next(iterator)
            except StopIteration:
                return self._fail(
                    callback,
                    StreamIncompleteError(f"received {fragments} fragment(s) without a completion record"),
                )
            except TRANSPORT_ERRORS as exc:
                return self._fail(callback, exc)

            record = self._parse(line)
            if record is None:
                continue

            fragment = record.get(self.fragment_field)
            if isinstance(fragment, str) and fragment:
                fragments += 1
                callback.on_fragment(fragment)

            if record.get(self.done_field) is True:
                state = StreamState.COMPLETED

        logger.info(f"Generate stream completed ({fragments} fragments)")
        callback.on_complete()
        return state

    def decode_async(
        self,
        lines: Iterable[Line],
        callback: StreamCallback,
        executor: Optional[Executor] = None,
    ) -> Future:
        """Run ``decode`` in the background and return its ``Future``.

        Without an executor a single-use worker thread is started.
        """
        return submit_background(self.decode, lines, callback, executor=executor)

    def iter_fragments(self, lines: Iterable[Line]) -> Iterator[str]:
        """Lazy alternative to ``decode``: yield fragments as they arrive.

        Returns when the completion record arrives. Transport errors from
        ``lines`` propagate; a source that ends early raises
        ``StreamIncompleteError``.
        """
        for line in lines:
            record = self._parse(line)
            if record is None:
                continue
            fragment = record.get(self.fragment_field)
            if isinstance(fragment, str) and fragment:
                yield fragment
            if record.get(self.done_field) is True:
                return
        raise StreamIncompleteError("stream closed without a completion record")

    def _parse(self, line: Line) -> Optional[dict[str, Any]]:
        """Parse one line; ``None`` for blank, malformed or non-object lines."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if not line or not line.strip():
            return None
        try:
            record = json.loads(line)
        except ValueError:
            logger.warning(f"Skipping malformed stream line: {line[:100]}")
            return None
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object stream line: {line[:100]}")
            return None
        return record

    @staticmethod
    def _fail(callback: StreamCallback, cause: BaseException) -> StreamState:
        logger.error(f"Generate stream failed: {cause}")
        callback.on_error(cause)
        return StreamState.FAILED


def submit_background(fn: Callable[..., Any], *args: Any, executor: Optional[Executor] = None) -> Future:
    """Submit ``fn(*args)`` to ``executor``, or to a single-use worker thread."""
    if executor is not None:
        return executor.submit(fn, *args)

    worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ollama-stream")
    try:
        return worker.submit(fn, *args)
    finally:
        worker.shutdown(wait=False)
