"""Fold a response schema into a plain-text prompt.

The caller's prompt is kept verbatim as a prefix; the schema and the
JSON-only directive are appended after it. Apply once per request: the
output is not meant to be enhanced again.
"""

from structured_ollama.prompts import STRUCTURED_OUTPUT_INSTRUCTIONS
from structured_ollama.schema.node import SchemaNode


def enhance(prompt: str, schema: SchemaNode) -> str:
    """Append the schema rendering and output rules to ``prompt``.

    Args:
        prompt: Original instruction, kept unchanged at the start.
        schema: Expected response shape.

    Returns:
        The directive string to send to the model.

    Example:
        >>> text = enhance("Extract name", SchemaNode.of("name", "string"))
        >>> text.startswith("Extract name")
        True
    """
    return (prompt or "") + STRUCTURED_OUTPUT_INSTRUCTIONS.format(schema=schema.to_json())
