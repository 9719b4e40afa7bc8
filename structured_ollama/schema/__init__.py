"""Schema description and derivation for prompt-based structured output."""

from .annotations import ArraySchema, ClassSchema, FieldSchema, Hidden, schema_class
from .node import SchemaNode
from .builder import derive

__all__ = [
    "ArraySchema",
    "ClassSchema",
    "FieldSchema",
    "Hidden",
    "SchemaNode",
    "derive",
    "schema_class",
]
