"""LLM prompt templates for structured_ollama.

Contains the directive appended to a caller's prompt when a response schema
is requested from an endpoint without native structured output support.
"""


# =============================================================================
# STRUCTURED OUTPUT PROMPTS
# =============================================================================

# Appended verbatim after the caller's prompt. {schema} is the compact JSON
# rendering of the SchemaNode.
STRUCTURED_OUTPUT_INSTRUCTIONS = """

---
Respond with a single JSON value that conforms to this JSON Schema:
{schema}

Output rules:
1. Return ONLY the raw JSON. No explanations, comments or any other text before or after it.
2. Do NOT wrap the JSON in markdown code fences (no ``` or ```json).
3. Include every field listed in "required".
4. Use exactly the declared "type" for every field and respect all listed constraints."""
