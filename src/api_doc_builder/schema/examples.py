"""Compose request/response examples from property-level example values.

When an operation declares no explicit example for a payload, an example
object is assembled from the ``example`` constraints of the payload type's
properties. With ``generate_defaults`` enabled, properties without an example
get a plausible value derived from their format, bounds or type.
"""

from typing import Any

from api_doc_builder.diagnostics import UnsupportedTypeError
from api_doc_builder.facts.base import ExampleConfigPayload, SchemaConstraints, TypeDescriptor, TypeKind
from api_doc_builder.schema.catalog import TypeCatalog
from api_doc_builder.schema.mapper import coerce_example, primitive_schema

FORMAT_DEFAULTS: dict[str, str] = {
    "email": "user@example.com",
    "uuid": "550e8400-e29b-41d4-a716-446655440000",
    "date-time": "2024-01-15T10:30:00Z",
    "date": "2024-01-15",
    "uri": "https://example.com",
    "url": "https://example.com",
    "hostname": "example.com",
    "ipv4": "192.168.1.1",
    "ipv6": "2001:0db8:85a3:0000:0000:8a2e:0370:7334",
    "time": "10:30:00",
    "password": "********",
    "byte": "U3dhZ2dlciByb2Nrcw==",
    "binary": "<binary>",
}

MAX_DEFAULT_STRING_LENGTH = 50


class ExampleComposer:
    """Builds example values for type descriptors of one build."""

    def __init__(self, catalog: TypeCatalog, compose_from_properties: bool = True, generate_defaults: bool = False):
        self.catalog = catalog
        self.compose_from_properties = compose_from_properties
        self.generate_defaults = generate_defaults

    @classmethod
    def from_config(cls, catalog: TypeCatalog, config: ExampleConfigPayload | None) -> "ExampleComposer":
        config = config or ExampleConfigPayload()
        return cls(catalog, config.compose_from_properties, config.generate_defaults)

    def compose(self, descriptor: TypeDescriptor) -> Any | None:
        """Return a composed example, or None when nothing can be said about the type."""
        if not self.compose_from_properties:
            return None
        return self._compose(self.catalog.normalize(descriptor), None, frozenset())

    def _compose(self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None, seen: frozenset) -> Any:
        kind = descriptor.kind
        if kind is TypeKind.NULLABLE and descriptor.element is not None:
            return self._compose(descriptor.element, constraints, seen)
        if kind is TypeKind.REFERENCE:
            target = self.catalog.lookup(descriptor.name) if descriptor.name else None
            return None if target is None else self._compose(target, constraints, seen)

        if constraints is not None and constraints.example is not None:
            return coerce_example(constraints.example, _schema_type(descriptor))

        if kind is TypeKind.OBJECT:
            if descriptor.name and descriptor.name in seen:
                return None
            seen = seen | {descriptor.name} if descriptor.name else seen
            result = {}
            for m in descriptor.members:
                if m.ignored:
                    continue
                value = self._compose(m.type, m.constraints, seen)
                if value is not None:
                    result[m.name] = value
            return result or None
        if kind is TypeKind.ARRAY and descriptor.element is not None:
            item = self._compose(descriptor.element, None, seen)
            return None if item is None else [item]
        if kind is TypeKind.MAP and descriptor.element is not None:
            value = self._compose(descriptor.element, None, seen)
            return None if value is None else {"additionalProp1": value}
        if not self.generate_defaults:
            return None
        if kind is TypeKind.ENUM:
            return descriptor.values[0] if descriptor.values else None
        if kind is TypeKind.PRIMITIVE:
            return _default_for_primitive(descriptor, constraints or SchemaConstraints())
        return None


def _schema_type(descriptor: TypeDescriptor) -> str | None:
    if descriptor.kind in (TypeKind.OBJECT, TypeKind.MAP):
        return "object"
    if descriptor.kind is TypeKind.ARRAY:
        return "array"
    if descriptor.kind is TypeKind.PRIMITIVE:
        try:
            return primitive_schema(descriptor.name)[0]
        except UnsupportedTypeError:
            return None
    return "string"


def _default_for_primitive(descriptor: TypeDescriptor, constraints: SchemaConstraints) -> Any:
    try:
        type_, format_ = primitive_schema(descriptor.name)
    except UnsupportedTypeError:
        return None
    format_ = constraints.format or format_

    if type_ == "string" and format_ and format_.lower() in FORMAT_DEFAULTS:
        return FORMAT_DEFAULTS[format_.lower()]
    if type_ in ("integer", "number") and (constraints.minimum is not None or constraints.maximum is not None):
        return _numeric_default(type_, constraints.minimum, constraints.maximum)
    if type_ == "string" and (constraints.min_length is not None or constraints.max_length is not None):
        return _string_default(constraints.min_length, constraints.max_length)

    if type_ == "integer":
        return 0
    if type_ == "number":
        return 0.0
    if type_ == "boolean":
        return False
    return "string"


def _numeric_default(type_: str, minimum: float | None, maximum: float | None) -> int | float:
    if minimum is not None and maximum is not None:
        value = (minimum + maximum) / 2.0
    elif minimum is not None:
        value = minimum
    else:
        value = maximum
    if type_ == "integer":
        return int(round(value))
    return float(value)


def _string_default(min_length: int | None, max_length: int | None) -> str:
    base = "string"
    if min_length is not None and max_length is not None:
        length = (min_length + max_length) // 2
    elif min_length is not None:
        length = min_length
    else:
        length = min(max_length, MAX_DEFAULT_STRING_LENGTH)
    length = max(1, length)
    if length <= len(base):
        return base[:length]
    return base + "x" * (length - len(base))
