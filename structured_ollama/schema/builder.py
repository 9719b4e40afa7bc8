"""Derive a SchemaNode from an annotated class.

## What This Module Does

Walks the type hints of a class (plain annotated class, dataclass or
pydantic model) and turns each field into a ``SchemaNode``:

1. Kind: ``FieldSchema.type`` override, else the intrinsic mapping
   (str -> string, int -> integer, float/Decimal -> number, bool -> boolean,
   list/tuple/set -> array, anything else -> object)
2. Constraints: copied from ``FieldSchema`` / ``ArraySchema`` metadata,
   keeping only those that match the field's kind
3. Arrays: element type from ``ArraySchema.item_type`` or the annotation
   (``list[Address]`` -> ``Address``), derived recursively
4. Nested objects: derived recursively and flattened into the field node.
   Both the nested properties and the nested required names are copied, so
   a nested field node carries its own ``required`` list
5. ``Hidden`` fields are skipped entirely

## Key Design Decisions

Recursion is guarded by a per-call set of the classes on the active path.
Re-entering one of them (``Node.children: list[Node]``) yields an empty
object instead of recursing, so recursive shapes lose their inner structure
but derivation always terminates. The entry is removed once a class has
been expanded, so the same class used by two sibling fields is expanded
both times.

Derivation never raises for unusual annotations: anything it does not
understand becomes an object with no properties. Annotations are resolved one
field at a time, so a field whose (string) annotation cannot be resolved
becomes an empty object on its own while the other fields keep their types
and metadata. Metadata of an unresolvable ``Annotated[...]`` string is still
evaluated, so ``Hidden`` and ``FieldSchema(required=True)`` are honoured.
"""

import ast
import collections.abc
import dataclasses
import decimal
import enum
import fractions
import inspect
import sys
import types
import typing
from typing import Any, Optional

from structured_ollama.schema.annotations import (
    ArraySchema,
    FieldSchema,
    Hidden,
    get_class_schema,
)
from structured_ollama.schema.node import SCALAR_KINDS, SchemaNode, KIND_CONSTRAINTS
from structured_ollama.shared.logs import setup_logging

logger = setup_logging(__name__)


_INTEGER_TYPES = (int,)
_NUMBER_TYPES = (float, decimal.Decimal, fractions.Fraction)
_ARRAY_ORIGINS = (
    list, tuple, set, frozenset, collections.deque,
    collections.abc.Sequence, collections.abc.MutableSequence,
    collections.abc.Set, collections.abc.MutableSet,
    collections.abc.Collection, collections.abc.Iterable,
)
_MAPPING_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


# ============================================================================
# PUBLIC API
# ============================================================================

def derive(type_: type) -> SchemaNode:
    """Derive the schema of an annotated class.

    Args:
        type_: Class whose annotated fields describe the expected output.

    Returns:
        Object SchemaNode with one property per visible field, in
        declaration order, plus the class-level title/description.

    Example:
        >>> from typing import Annotated
        >>> class Person:
        ...     name: Annotated[str, FieldSchema(required=True)]
        ...     age: int
        >>> derive(Person).to_json()
        '{"type":"object","properties":{"name":{"type":"string"},"age":{"type":"integer"}},"required":["name"]}'
    """
    logger.debug(f"Deriving schema for {getattr(type_, '__qualname__', type_)}")
    return _derive_class(type_, set())


# ============================================================================
# CLASS EXPANSION
# ============================================================================

def _derive_class(cls: type, visiting: set[type]) -> SchemaNode:
    if cls in visiting:
        logger.warning(
            f"Circular reference to {cls.__qualname__}; using an empty object schema"
        )
        return SchemaNode(kind="object")

    visiting.add(cls)
    try:
        properties: dict[str, SchemaNode] = {}
        required: list[str] = []

        for name, base, extras in _iter_fields(cls):
            if any(isinstance(extra, Hidden) for extra in extras):
                logger.debug(f"Skipping hidden field {cls.__qualname__}.{name}")
                continue

            field_meta = _first(extras, FieldSchema)
            array_meta = _first(extras, ArraySchema)
            description = field_meta.description if field_meta else None
            if not description:
                description = _pydantic_description(cls, name)

            node = _field_node(base, field_meta, array_meta, description, visiting)
            properties[name] = node
            if field_meta is not None and field_meta.required:
                required.append(name)

            logger.debug(f"Added field {cls.__qualname__}.{name} (type: {node.kind})")

        class_meta = get_class_schema(cls)
        return SchemaNode(
            kind="object",
            title=class_meta.title if class_meta and class_meta.title else None,
            description=class_meta.description if class_meta and class_meta.description else None,
            example=class_meta.example if class_meta and class_meta.example else None,
            properties=properties,
            required_names=tuple(required),
        )
    finally:
        visiting.discard(cls)


def _field_node(
    annotation: Any,
    field_meta: Optional[FieldSchema],
    array_meta: Optional[ArraySchema],
    description: Optional[str],
    visiting: set[type],
) -> SchemaNode:
    """Build the node for one field."""
    annotation = _unwrap_optional(annotation)
    kind = field_meta.type if field_meta and field_meta.type else _intrinsic_kind(annotation)
    if kind not in KIND_CONSTRAINTS:
        logger.warning(f"Unknown type override '{kind}'; falling back to intrinsic mapping")
        kind = _intrinsic_kind(annotation)

    values: dict[str, Any] = {"kind": kind, "description": description or None}
    if field_meta is not None:
        values.update(_field_constraints(field_meta))
    if kind in ("string", "integer") and not values.get("enum_values"):
        values["enum_values"] = _enum_members(annotation)

    if kind == "array":
        if array_meta is not None:
            if array_meta.min_items is not None:
                values["min_items"] = array_meta.min_items
            if array_meta.max_items is not None:
                values["max_items"] = array_meta.max_items
            if array_meta.unique_items:
                values["unique_items"] = True
        item_type = array_meta.item_type if array_meta and array_meta.item_type else _element_type(annotation)
        values["items"] = _item_node(item_type, visiting)

    if kind == "object" and _is_expandable(annotation):
        nested = _derive_class(annotation, visiting)
        values["properties"] = dict(nested.properties or {})
        values["required_names"] = nested.required_names

    allowed = set(KIND_CONSTRAINTS[kind])
    return SchemaNode(**{
        key: value for key, value in values.items()
        if key not in _CONSTRAINT_ATTRS or key in allowed
    })


def _item_node(item_type: Any, visiting: set[type]) -> SchemaNode:
    """Build the element node of an array."""
    if item_type is None:
        return SchemaNode(kind="object")

    item_type, _ = _split_annotated(item_type)
    item_type = _unwrap_optional(item_type)
    kind = _intrinsic_kind(item_type)

    if kind == "object":
        if _is_expandable(item_type):
            nested = _derive_class(item_type, visiting)
            return SchemaNode(
                kind="object",
                properties=dict(nested.properties or {}),
                required_names=nested.required_names,
            )
        return SchemaNode(kind="object")
    if kind == "array":
        return SchemaNode(kind="array", items=_item_node(_element_type(item_type), visiting))
    enum_values = _enum_members(item_type)
    return SchemaNode(kind=kind, enum_values=enum_values if kind in ("string", "integer") else ())


_CONSTRAINT_ATTRS = frozenset(
    attr for attrs in KIND_CONSTRAINTS.values() for attr in attrs
)


def _field_constraints(meta: FieldSchema) -> dict[str, Any]:
    """Collect the constraints set on a FieldSchema (unset values skipped)."""
    values: dict[str, Any] = {}
    for attr in ("min_length", "max_length", "minimum", "maximum", "min_items", "max_items"):
        value = getattr(meta, attr)
        if value is not None:
            values[attr] = value
    for attr in ("pattern", "format", "example"):
        value = getattr(meta, attr)
        if value:
            values[attr] = value
    if meta.exclusive_minimum:
        values["exclusive_minimum"] = True
    if meta.exclusive_maximum:
        values["exclusive_maximum"] = True
    if meta.enum_values:
        values["enum_values"] = tuple(meta.enum_values)
    return values


# ============================================================================
# TYPE INSPECTION
# ============================================================================

def _iter_fields(cls: type) -> list[tuple[str, Any, tuple[Any, ...]]]:
    """``(name, annotation, metadata)`` per field of ``cls``, in declaration order."""
    model_fields = getattr(cls, "model_fields", None)
    if isinstance(model_fields, dict):
        # pydantic keeps Annotated extras in FieldInfo.metadata
        return [
            (name, info.annotation, tuple(info.metadata))
            for name, info in model_fields.items()
            if not name.startswith("_")
        ]

    hints = _resolve_hints(cls)

    if dataclasses.is_dataclass(cls):
        order = [f.name for f in dataclasses.fields(cls)]
        hints = {name: hints[name] for name in order if name in hints}

    fields = []
    for name, hint in hints.items():
        base, extras = _split_annotated(hint)
        if name.startswith("_") or _is_classvar(base):
            continue
        fields.append((name, base, extras))
    return fields


def _resolve_hints(cls: type) -> dict[str, Any]:
    """Resolved annotations of ``cls`` and its bases, base classes first.

    Each field is resolved on its own, so one unresolvable annotation only
    affects that field.
    """
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        try:
            raw = inspect.get_annotations(klass)
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"Could not read annotations of {klass.__qualname__}: {exc}")
            raw = dict(vars(klass).get("__annotations__", {}))

        localns = {klass.__name__: klass, cls.__name__: cls}
        for name, annotation in raw.items():
            hints[name] = _resolve_annotation(klass, name, annotation, localns)
    return hints


def _resolve_annotation(klass: type, name: str, annotation: Any, localns: dict[str, Any]) -> Any:
    """Evaluate one (possibly string) annotation in the module of ``klass``.

    An unresolvable annotation becomes ``object`` (an empty object schema).
    For an ``Annotated[...]`` string, the metadata that can still be
    evaluated is kept, so ``Hidden`` and ``FieldSchema`` keep working.
    """
    single = type(klass.__name__, (), {"__annotations__": {name: annotation}, "__module__": klass.__module__})
    try:
        return typing.get_type_hints(single, localns=localns, include_extras=True)[name]
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            f"Could not resolve annotation of {klass.__qualname__}.{name} ({exc}); "
            f"using an empty object schema"
        )

    if not isinstance(annotation, str):
        return annotation
    module = sys.modules.get(klass.__module__)
    globalns = dict(vars(module)) if module is not None else {}
    extras = _annotated_extras(annotation, globalns, localns)
    return typing.Annotated[(object, *extras)] if extras else object


def _annotated_extras(source: str, globalns: dict[str, Any], localns: dict[str, Any]) -> tuple[Any, ...]:
    """Evaluate the metadata part of an ``Annotated[Base, meta, ...]`` string."""
    try:
        tree = ast.parse(source, mode="eval").body
    except SyntaxError:
        return ()
    if not isinstance(tree, ast.Subscript) or not isinstance(tree.slice, ast.Tuple):
        return ()
    if ast.unparse(tree.value).split(".")[-1] != "Annotated":
        return ()

    extras = []
    for node in tree.slice.elts[1:]:
        try:
            code = compile(ast.Expression(body=node), "<annotation>", "eval")
            extras.append(eval(code, globalns, localns))
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"Skipping unresolvable annotation metadata {ast.unparse(node)}: {exc}")
    return tuple(extras)


def _is_classvar(annotation: Any) -> bool:
    return annotation is typing.ClassVar or typing.get_origin(annotation) is typing.ClassVar


def _split_annotated(annotation: Any) -> tuple[Any, tuple[Any, ...]]:
    """``Annotated[X, a, b]`` -> ``(X, (a, b))``; anything else -> ``(annotation, ())``."""
    if typing.get_origin(annotation) is typing.Annotated:
        base, *extras = typing.get_args(annotation)
        return base, tuple(extras)
    return annotation, ()


def _unwrap_optional(annotation: Any) -> Any:
    """``Optional[X]`` / ``X | None`` -> ``X``. Other unions are left as is."""
    args = typing.get_args(annotation)
    if _is_union(annotation):
        non_none = [arg for arg in args if arg is not type(None)]
        if len(non_none) == 1:
            return _split_annotated(non_none[0])[0]
    return annotation


def _is_union(annotation: Any) -> bool:
    origin = typing.get_origin(annotation)
    if origin is typing.Union:
        return True
    return origin is types.UnionType


def _intrinsic_kind(annotation: Any) -> str:
    """Map a Python type to its JSON kind."""
    target = typing.get_origin(annotation) or annotation
    if not isinstance(target, type):
        return "object"
    if issubclass(target, enum.Enum):
        members = [member.value for member in target]
        if members and all(isinstance(v, int) and not isinstance(v, bool) for v in members):
            return "integer"
        return "string"
    if issubclass(target, str):
        return "string"
    if issubclass(target, bool):
        return "boolean"
    if issubclass(target, _INTEGER_TYPES):
        return "integer"
    if issubclass(target, _NUMBER_TYPES):
        return "number"
    if issubclass(target, (bytes, bytearray)) or issubclass(target, _MAPPING_ORIGINS):
        return "object"
    if issubclass(target, _ARRAY_ORIGINS):
        return "array"
    return "object"


def _element_type(annotation: Any) -> Any:
    """Element type of a collection annotation (``list[str]`` -> ``str``)."""
    args = [arg for arg in typing.get_args(annotation) if arg is not Ellipsis]
    return args[0] if args else None


def _is_expandable(annotation: Any) -> bool:
    """True for user classes whose fields can be derived."""
    if not isinstance(annotation, type) or typing.get_origin(annotation) is not None:
        return False
    if annotation is object or issubclass(annotation, _MAPPING_ORIGINS):
        return False
    if annotation.__module__ == "builtins":
        return False
    return _intrinsic_kind(annotation) not in SCALAR_KINDS


def _enum_members(annotation: Any) -> tuple[Any, ...]:
    if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
        return tuple(member.value for member in annotation)
    return ()


def _pydantic_description(cls: type, name: str) -> Optional[str]:
    """``Field(description=...)`` of a pydantic model field, if any."""
    model_fields = getattr(cls, "model_fields", None)
    if not isinstance(model_fields, dict) or name not in model_fields:
        return None
    return getattr(model_fields[name], "description", None)


def _first(extras: tuple[Any, ...], kind: type) -> Optional[Any]:
    return next((extra for extra in extras if isinstance(extra, kind)), None)
