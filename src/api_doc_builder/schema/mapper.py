"""Mapping of type descriptors to OpenAPI Schema Objects.

``map_type`` produces the schema body of a descriptor. ``schema_for`` is used
for nested positions (properties, items, map values): named objects, shared
types and references are routed through the Schema Registry and come back as
``$ref`` schemas, everything else is mapped inline.
"""

import json
import math
import sys
from typing import TYPE_CHECKING, Any

from api_doc_builder.diagnostics import BuildError, ConstraintRangeError, UnsupportedTypeError
from api_doc_builder.facts.base import SchemaConstraints, TypeDescriptor, TypeKind
from api_doc_builder.schema.nodes import SchemaNode

if TYPE_CHECKING:
    from api_doc_builder.schema.registry import SchemaRegistry

# primitive name (lower-case) -> (type, format)
PRIMITIVE_TYPES: dict[str, tuple[str, str | None]] = {
    "string": ("string", None),
    "char": ("string", None),
    "int": ("integer", "int32"),
    "int32": ("integer", "int32"),
    "int16": ("integer", "int32"),
    "short": ("integer", "int32"),
    "byte": ("integer", "int32"),
    "int64": ("integer", "int64"),
    "long": ("integer", "int64"),
    "float": ("number", "float"),
    "single": ("number", "float"),
    "double": ("number", "double"),
    "decimal": ("number", "double"),
    "bool": ("boolean", None),
    "boolean": ("boolean", None),
    "datetime": ("string", "date-time"),
    "date-time": ("string", "date-time"),
    "datetimeoffset": ("string", "date-time"),
    "date": ("string", "date"),
    "time": ("string", "time"),
    "guid": ("string", "uuid"),
    "uuid": ("string", "uuid"),
    "uri": ("string", "uri"),
    "binary": ("string", "binary"),
    "bytes": ("string", "binary"),
}

INT32_RANGE = (-(2**31), 2**31 - 1)
INT64_RANGE = (-(2**63), 2**63 - 1)
FLOAT_MAX = 3.4028234663852886e38
DOUBLE_MAX = sys.float_info.max
LENGTH_MAX = 2**31 - 1


def primitive_schema(name: str | None) -> tuple[str, str | None]:
    """Look up the (type, format) pair of a primitive type name."""
    try:
        return PRIMITIVE_TYPES[(name or "").strip().lower()]
    except KeyError:
        raise UnsupportedTypeError(f"unsupported primitive type '{name}'") from None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name}")


def _finite_float(text: str) -> float:
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {text}")
    return number


def parse_structured(text: str) -> dict | list | None:
    """Decode text holding a JSON object or array; None for anything else.

    NaN and Infinity are rejected, JSON output has no spelling for them.
    """
    try:
        value = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
    except ValueError:
        return None
    return value if isinstance(value, (dict, list)) else None


def coerce_example(value: Any, schema_type: str | None) -> Any:
    """Convert a string example to the schema's type when it parses, else keep it."""
    if not isinstance(value, str):
        return value
    try:
        if schema_type == "integer":
            return int(value)
        if schema_type == "number":
            number = float(value)
            return number if math.isfinite(number) else value
    except ValueError:
        return value
    if schema_type == "boolean" and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if schema_type in ("array", "object"):
        parsed = parse_structured(value)
        return value if parsed is None else parsed
    return value


class TypeSchemaMapper:
    """Maps type descriptors to schema nodes for one SchemaRegistry."""

    def __init__(self, registry: "SchemaRegistry"):
        self.registry = registry

    def map_type(self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None) -> SchemaNode:
        """Build the schema body of a descriptor with its constraints applied."""
        if descriptor.kind is TypeKind.NULLABLE:
            return self._nullable(self.schema_for(self._element(descriptor), constraints))
        if descriptor.kind is TypeKind.REFERENCE:
            return self.registry.reference(descriptor.name, constraints).as_schema()

        if descriptor.kind is TypeKind.PRIMITIVE:
            type_, format_ = primitive_schema(descriptor.name)
            schema = SchemaNode(type=type_, format=format_)
        elif descriptor.kind is TypeKind.ENUM:
            schema = self._map_enum(descriptor)
        elif descriptor.kind is TypeKind.ARRAY:
            schema = SchemaNode(type="array", items=self.schema_for(self._element(descriptor)))
        elif descriptor.kind is TypeKind.MAP:
            schema = SchemaNode(type="object", additional_properties=self.schema_for(self._element(descriptor)))
        else:
            schema = self._map_object(descriptor)

        if constraints is not None and not constraints.is_empty():
            schema = self.apply_constraints(schema, constraints)
        return schema

    def schema_for(self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None) -> SchemaNode:
        """Schema for a nested position: a ``$ref`` for component types, inline otherwise."""
        if descriptor.kind is TypeKind.REFERENCE or self.registry.is_component(descriptor):
            return self.registry.register_normalized(descriptor, constraints).as_schema()
        return self.map_type(descriptor, constraints)

    def apply_constraints(self, schema: SchemaNode, constraints: SchemaConstraints) -> SchemaNode:
        """Overlay declared constraints on a mapped schema, checking numeric ranges."""
        update: dict[str, Any] = {}
        if constraints.description is not None:
            update["description"] = constraints.description
        if constraints.format:
            update["format"] = constraints.format
        if constraints.pattern is not None:
            update["pattern"] = constraints.pattern

        format_ = update.get("format", schema.format)
        for field in ("minimum", "maximum"):
            bound = getattr(constraints, field)
            if bound is not None:
                _check_bound(field, bound, schema.type, format_)
                update[field] = bound
        if constraints.exclusive_minimum:
            update["exclusive_minimum"] = True
        if constraints.exclusive_maximum:
            update["exclusive_maximum"] = True

        for field in ("min_length", "max_length"):
            length = getattr(constraints, field)
            if length is not None:
                if not 0 <= length <= LENGTH_MAX:
                    raise ConstraintRangeError(f"{field} {length} is outside 0..{LENGTH_MAX}")
                update[field] = length

        if constraints.example is not None:
            update["example"] = coerce_example(constraints.example, schema.type)
        if constraints.default is not None:
            update["default"] = coerce_example(constraints.default, schema.type)

        if not update:
            return schema
        return schema.model_copy(update=update)

    def _map_enum(self, descriptor: TypeDescriptor) -> SchemaNode:
        if not descriptor.values:
            raise UnsupportedTypeError(f"enum '{descriptor.name or '<anonymous>'}' declares no values")
        type_, format_ = "string", None
        if descriptor.element is not None:
            if descriptor.element.kind is not TypeKind.PRIMITIVE:
                raise UnsupportedTypeError(f"enum '{descriptor.name}' must have a primitive underlying type")
            type_, format_ = primitive_schema(descriptor.element.name)
        return SchemaNode(type=type_, format=format_, enum=list(descriptor.values))

    def _map_object(self, descriptor: TypeDescriptor) -> SchemaNode:
        owner = descriptor.name or "<anonymous>"
        properties: dict[str, SchemaNode] = {}
        required: list[str] = []
        for m in descriptor.members:
            if m.ignored:
                continue
            if m.name in properties:
                raise UnsupportedTypeError(f"{owner} declares member '{m.name}' more than once")
            constraints = None if m.constraints.is_empty() else m.constraints
            try:
                properties[m.name] = self.schema_for(m.type, constraints)
            except BuildError as e:
                if not e.located:
                    e.message = f"{owner}.{m.name}: {e.message}"
                    e.located = True
                raise
            if not m.is_nullable:
                required.append(m.name)
        return SchemaNode(type="object", properties=properties or None, required=required or None)

    def _element(self, descriptor: TypeDescriptor) -> TypeDescriptor:
        if descriptor.element is None:
            raise UnsupportedTypeError(f"{descriptor.kind.value} type has no element type")
        return descriptor.element

    @staticmethod
    def _nullable(schema: SchemaNode) -> SchemaNode:
        if schema.is_reference:
            # siblings of $ref are ignored in OpenAPI 3.0
            return SchemaNode(all_of=[schema], nullable=True)
        return schema.model_copy(update={"nullable": True})


def _check_bound(field: str, bound: int | float, schema_type: str | None, format_: str | None) -> None:
    if isinstance(bound, float) and not math.isfinite(bound):
        raise ConstraintRangeError(f"{field} {bound} is not a finite number")
    if schema_type == "integer":
        low, high = INT32_RANGE if format_ == "int32" else INT64_RANGE
        if not low <= bound <= high:
            raise ConstraintRangeError(f"{field} {bound} is outside the {format_ or 'int64'} range")
    elif schema_type == "number":
        limit = FLOAT_MAX if format_ == "float" else DOUBLE_MAX
        if not -limit <= bound <= limit:
            raise ConstraintRangeError(f"{field} {bound} is outside the {format_ or 'double'} range")
