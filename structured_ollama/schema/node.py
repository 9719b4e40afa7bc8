"""Immutable schema description used for prompt-based structured output.

## Structured Output Without Native Support

Plain text completion endpoints cannot be constrained to a JSON Schema at
generation time. Instead, the schema is rendered into the prompt and the
model is asked to follow it. ``SchemaNode`` is the value that carries that
shape: one node per object, array or scalar, with the JSON Schema
constraints that matter to the model.

## Library Usage

Pydantic v2 ``BaseModel`` with ``frozen=True``:
- model validators enforce the structural invariants at construction
- nodes are never mutated; ``with_property`` / ``with_required`` return copies
- ``properties`` is exposed as a read-only ``MappingProxyType``

## Data Flow

1. Build a node via ``SchemaNode.from_type(cls)`` or the factory helpers
2. ``to_dict()`` / ``to_json()`` render the JSON-Schema-shaped description
3. The prompt enhancer embeds ``to_json()`` into the outgoing prompt
"""

import json
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator

SchemaKind = Literal["object", "array", "string", "integer", "number", "boolean"]

SCALAR_KINDS = frozenset({"string", "integer", "number", "boolean"})

# Constraints each kind may carry. Anything else on a node is ignored on render.
KIND_CONSTRAINTS: dict[str, tuple[str, ...]] = {
    "string": ("min_length", "max_length", "pattern", "format", "enum_values"),
    "integer": ("minimum", "maximum", "exclusive_minimum", "exclusive_maximum", "format", "enum_values"),
    "number": ("minimum", "maximum", "exclusive_minimum", "exclusive_maximum", "format", "enum_values"),
    "boolean": (),
    "array": ("min_items", "max_items", "unique_items"),
    "object": (),
}

# Python attribute -> JSON Schema keyword
_JSON_KEYS: dict[str, str] = {
    "min_length": "minLength",
    "max_length": "maxLength",
    "minimum": "minimum",
    "maximum": "maximum",
    "exclusive_minimum": "exclusiveMinimum",
    "exclusive_maximum": "exclusiveMaximum",
    "pattern": "pattern",
    "format": "format",
    "enum_values": "enum",
    "min_items": "minItems",
    "max_items": "maxItems",
    "unique_items": "uniqueItems",
}


class SchemaNode(BaseModel):
    """Description of one JSON value shape.

    Attributes:
        kind: JSON type of the value.
        title: Optional short name (usually only on the root).
        description: Optional meaning of the value, shown to the model.
        example: Optional example value as text.
        properties: Field name -> node, in declaration order. Always a read-only
            mapping (possibly empty) for objects, ``None`` otherwise.
        required_names: Names of mandatory properties, subset of ``properties``.
        items: Element node. Present iff ``kind == "array"``.
        min_length / max_length / pattern / format / enum_values: string
            constraints (``format`` and ``enum_values`` also apply to numbers).
        minimum / maximum / exclusive_minimum / exclusive_maximum: numeric
            constraints.
        min_items / max_items / unique_items: array constraints.
    """

    model_config = ConfigDict(frozen=True)

    kind: SchemaKind = "object"
    title: Optional[str] = None
    description: Optional[str] = None
    example: Optional[str] = None
    properties: Optional[dict[str, "SchemaNode"]] = None
    required_names: tuple[str, ...] = ()
    items: Optional["SchemaNode"] = None

    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[Union[int, float]] = None
    maximum: Optional[Union[int, float]] = None
    exclusive_minimum: Optional[bool] = None
    exclusive_maximum: Optional[bool] = None
    pattern: Optional[str] = None
    format: Optional[str] = None
    enum_values: tuple[Any, ...] = ()
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    unique_items: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _default_object_properties(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("kind", "object") == "object" and data.get("properties") is None:
            data = {**data, "properties": {}}
        return data

    @model_validator(mode="after")
    def _check_structure(self) -> "SchemaNode":
        if self.kind == "array" and self.items is None:
            raise ValueError("array schema requires an items schema")
        missing = [name for name in self.required_names if name not in (self.properties or {})]
        if missing:
            raise ValueError(f"required names not declared in properties: {missing}")
        if self.properties is not None and not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        return self

    # =========================================================================
    # FACTORIES
    # =========================================================================

    @classmethod
    def of(cls, *name_kind_pairs: str) -> "SchemaNode":
        """Build an object node from alternating field names and kinds.

        Example:
            >>> SchemaNode.of("name", "string", "age", "integer").to_json()
            '{"type":"object","properties":{"name":{"type":"string"},"age":{"type":"integer"}}}'

        Raises:
            ValueError: If an odd number of arguments is given.
        """
        if len(name_kind_pairs) % 2 != 0:
            raise ValueError(
                "Expected name/kind pairs, e.g. of('name', 'string', 'age', 'integer')"
            )
        properties = {
            name_kind_pairs[i]: cls.scalar(name_kind_pairs[i + 1])
            for i in range(0, len(name_kind_pairs), 2)
        }
        return cls(kind="object", properties=properties)

    @classmethod
    def scalar(cls, kind: str, **constraints: Any) -> "SchemaNode":
        """Build a node of the given kind. Arrays get an empty object as items."""
        if kind == "array" and "items" not in constraints:
            constraints["items"] = cls()
        return cls(kind=kind, **constraints)

    @classmethod
    def array(cls, item_kind: str) -> "SchemaNode":
        """Build an array node whose elements are of ``item_kind``."""
        return cls(kind="array", items=cls.scalar(item_kind))

    @classmethod
    def array_of(cls, item_schema: "SchemaNode") -> "SchemaNode":
        """Build an array node around an existing element node."""
        return cls(kind="array", items=item_schema)

    @classmethod
    def from_type(cls, type_: type) -> "SchemaNode":
        """Derive a node from an annotated class. See ``schema.builder.derive``."""
        from structured_ollama.schema.builder import derive

        return derive(type_)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchemaNode":
        """Parse a JSON-Schema-shaped dict (the inverse of ``to_dict``).

        Raises:
            ValueError: If ``data`` is not a mapping or describes an invalid node.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"schema must be a JSON object, got {type(data).__name__}")
        fields: dict[str, Any] = {"kind": data.get("type", "object")}
        for attr in ("title", "description", "example"):
            if data.get(attr) is not None:
                fields[attr] = data[attr]
        for attr, key in _JSON_KEYS.items():
            if key in data:
                fields[attr] = data[key]
        if isinstance(data.get("properties"), dict):
            fields["properties"] = {
                name: cls.from_dict(child) for name, child in data["properties"].items()
            }
        if "required" in data:
            fields["required_names"] = tuple(data["required"])
        if isinstance(data.get("items"), dict):
            fields["items"] = cls.from_dict(data["items"])
        elif fields["kind"] == "array":
            fields["items"] = cls()
        return cls(**fields)

    # =========================================================================
    # COPY-ON-WRITE HELPERS
    # =========================================================================

    def _replace(self, **changes: Any) -> "SchemaNode":
        values = {**dict(self), **changes}
        if isinstance(values.get("properties"), Mapping):
            values["properties"] = dict(values["properties"])
        return type(self)(**values)

    def with_property(self, name: str, schema: Union[str, "SchemaNode"]) -> "SchemaNode":
        """Return a copy with ``name`` added (or replaced) in ``properties``."""
        if self.kind != "object":
            raise ValueError(f"Cannot add property '{name}' to a {self.kind} schema")
        child = self.scalar(schema) if isinstance(schema, str) else schema
        return self._replace(properties={**(self.properties or {}), name: child})

    def with_required(self, *names: str) -> "SchemaNode":
        """Return a copy with ``names`` appended to ``required_names``."""
        merged = list(self.required_names)
        merged.extend(name for name in names if name not in merged)
        return self._replace(required_names=tuple(merged))

    # =========================================================================
    # RENDERING
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Render as a JSON-Schema-shaped dict.

        Only the constraints that belong to this node's kind are emitted.
        """
        out: dict[str, Any] = {"type": self.kind}
        if self.title:
            out["title"] = self.title
        if self.description:
            out["description"] = self.description

        if self.kind == "object":
            out["properties"] = {
                name: child.to_dict() for name, child in (self.properties or {}).items()
            }
            if self.required_names:
                out["required"] = list(self.required_names)
        elif self.kind == "array" and self.items is not None:
            out["items"] = self.items.to_dict()

        for attr in KIND_CONSTRAINTS[self.kind]:
            value = getattr(self, attr)
            if value is None or value == ():
                continue
            out[_JSON_KEYS[attr]] = list(value) if isinstance(value, tuple) else value

        if self.example:
            out["example"] = self.example
        return out

    def to_json(self) -> str:
        """Compact JSON rendering, as embedded in prompts."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


SchemaNode.model_rebuild()
