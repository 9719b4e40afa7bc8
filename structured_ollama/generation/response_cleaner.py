"""Recover a JSON payload from free-form model output.

## What This Module Does

Models asked for "JSON only" still tend to add a friendly sentence, wrap the
payload in a markdown fence, or both. ``clean`` strips that noise:

1. Trim surrounding whitespace
2. Remove a wrapping ```` ``` ```` / ```` ```json ```` fence
3. Keep only the span from the first ``{`` or ``[`` to its matching closer

``is_valid_json`` reports separately whether the result parses. An invalid
result is a soft signal: callers keep the cleaned text instead of failing.

## Library Usage

Parsing uses the standard ``json`` module. ``repair`` falls back to
``json_repair`` for output that is close to JSON but not quite valid
(trailing commas, single quotes, unquoted keys).
"""

import json
import re
from typing import Optional

from json_repair import repair_json

from structured_ollama.shared.logs import setup_logging

logger = setup_logging(__name__)

# ```json\n ... \n```  (language tag optional, only before a newline)
_FENCE_PATTERN = re.compile(r"^```(?:[\w+-]+)?[ \t]*\n(.*?)\n?[ \t]*```$", re.DOTALL)
# ```...```  on a single line, no language tag
_INLINE_FENCE_PATTERN = re.compile(r"^```(.*?)```$", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def clean(raw_text: Optional[str]) -> str:
    """Extract the JSON part of a model response.

    Never raises. Worst case, the trimmed input is returned unchanged.

    Args:
        raw_text: Model output.

    Returns:
        Best-effort JSON text.

    Example:
        >>> clean('Sure! Here is the result: {"a":1} Hope that helps.')
        '{"a":1}'
        >>> clean('```json\\n{"a":1}\\n```')
        '{"a":1}'
    """
    if raw_text is None:
        return ""

    text = raw_text.strip()
    match = _FENCE_PATTERN.match(text) or _INLINE_FENCE_PATTERN.match(text)
    if match:
        text = match.group(1).strip()

    span = _outermost_span(text)
    if span is None:
        return text
    start, end = span
    return text[start:end + 1]


def is_valid_json(text: Optional[str]) -> bool:
    """True only if the whole string parses as strict JSON (no NaN / Infinity)."""
    if not text:
        return False
    try:
        json.loads(text, parse_constant=_reject_constant)
    except (ValueError, TypeError):
        return False
    return True


def _reject_constant(name: str) -> None:
    raise ValueError(f"{name} is not valid JSON")


def repair(text: Optional[str]) -> Optional[str]:
    """Try to repair almost-JSON text.

    Returns:
        Repaired JSON text if the repair parses, otherwise ``None``.
    """
    if not text:
        return None
    try:
        repaired = repair_json(text, return_objects=False)
    except Exception as exc:  # noqa: BLE001
        logger.debug(f"json_repair failed: {exc}")
        return None
    if not isinstance(repaired, str) or not repaired.strip() or repaired.strip() == '""':
        return None
    return repaired if is_valid_json(repaired) else None


def _outermost_span(text: str) -> Optional[tuple[int, int]]:
    """Index range of the first ``{``/``[`` and its matching closer.

    Brackets inside JSON string literals are ignored. Returns ``None`` when
    there is no opener or the opener is never closed.
    """
    start = next((i for i, ch in enumerate(text) if ch in _CLOSERS), None)
    if start is None:
        return None

    stack: list[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return start, index
    return None
