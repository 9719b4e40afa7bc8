"""Declarative metadata for schema derivation.

Attach these to a class and its fields to control how
``structured_ollama.schema.builder.derive`` describes them:

- ``@schema_class(title=..., description=...)`` on the class
- ``FieldSchema(...)`` inside ``typing.Annotated`` for per-field constraints
- ``ArraySchema(...)`` inside ``typing.Annotated`` for list/tuple/set fields
- ``Hidden()`` inside ``typing.Annotated`` to leave a field out entirely

## Example

    >>> from typing import Annotated
    >>> @schema_class(title="User", description="Signup form data")
    ... class User:
    ...     name: Annotated[str, FieldSchema(description="Full name", required=True, min_length=2)]
    ...     tags: Annotated[list[str], ArraySchema(min_items=1, unique_items=True)]
    ...     password: Annotated[str, Hidden()]
"""

from dataclasses import dataclass
from typing import Any, Optional

CLASS_SCHEMA_ATTR = "__schema_class__"


@dataclass(frozen=True)
class ClassSchema:
    """Class-level title/description."""

    title: Optional[str] = None
    description: Optional[str] = None
    example: Optional[str] = None


@dataclass(frozen=True)
class FieldSchema:
    """Field-level metadata.

    Attributes:
        description: Field meaning, shown to the model.
        required: Field must be present in the output.
        example: Example value as text.
        format: Semantic hint ("date", "email", "uri", "uuid", ...).
        pattern: Regular expression the value must match.
        enum_values: Closed set of allowed values.
        minimum / maximum: Numeric bounds.
        exclusive_minimum / exclusive_maximum: Make the bounds exclusive.
        min_length / max_length: String length bounds.
        min_items / max_items: Array size bounds (ArraySchema wins on conflict).
        type: Kind override ("string", "integer", "number", "boolean",
            "object", "array").
    """

    description: Optional[str] = None
    required: bool = False
    example: Optional[str] = None
    format: Optional[str] = None
    pattern: Optional[str] = None
    enum_values: tuple[Any, ...] = ()
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    type: Optional[str] = None


@dataclass(frozen=True)
class ArraySchema:
    """Array-specific metadata.

    ``item_type`` overrides the element type read from the annotation
    (``list[str]`` -> ``str``).
    """

    item_type: Optional[type] = None
    unique_items: bool = False
    min_items: Optional[int] = None
    max_items: Optional[int] = None


@dataclass(frozen=True)
class Hidden:
    """Marker: exclude the field from the derived schema."""


def schema_class(
    title: Optional[str] = None,
    description: Optional[str] = None,
    example: Optional[str] = None,
):
    """Class decorator attaching a ``ClassSchema``.

    The metadata is stored on the decorated class only; subclasses do not
    inherit it.
    """

    def decorate(cls):
        setattr(cls, CLASS_SCHEMA_ATTR, ClassSchema(title=title, description=description, example=example))
        return cls

    return decorate


def get_class_schema(cls: type) -> Optional[ClassSchema]:
    """Return the ``ClassSchema`` declared directly on ``cls``, if any."""
    meta = vars(cls).get(CLASS_SCHEMA_ATTR) if isinstance(cls, type) else None
    return meta if isinstance(meta, ClassSchema) else None
