"""Deduplicated, stably named component schemas.

Components are keyed by a structural fingerprint of the descriptor plus the
constraints applied to it. The first fingerprint to claim a natural name keeps
it; later, different shapes with the same natural name are suffixed ``_2``,
``_3`` ... in first-seen order. A name is reserved before its body is mapped,
so a type that reaches itself again through a reference gets its ``$ref``
back immediately instead of recursing forever.
"""

import hashlib
import json
import logging
import re
from typing import Any

from api_doc_builder.diagnostics import BuildError, UnsupportedTypeError
from api_doc_builder.facts.base import SchemaConstraints, TypeDescriptor, TypeKind
from api_doc_builder.schema.catalog import TypeCatalog
from api_doc_builder.schema.mapper import TypeSchemaMapper
from api_doc_builder.schema.nodes import COMPONENT_PREFIX, SchemaNode, SchemaRef

logger = logging.getLogger(__name__)

_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")
_SHAREABLE = (TypeKind.PRIMITIVE, TypeKind.ENUM, TypeKind.ARRAY, TypeKind.MAP)


def fingerprint(descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None) -> str:
    """Canonical structural hash of a descriptor and the constraints applied to it."""
    canonical = {"type": _canonical(descriptor), "constraints": _canonical_constraints(constraints)}
    text = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _canonical(descriptor: TypeDescriptor) -> dict[str, Any]:
    if descriptor.kind is TypeKind.REFERENCE:
        return {"ref": descriptor.name}
    name = descriptor.name
    if descriptor.kind is TypeKind.PRIMITIVE and name:
        name = name.strip().lower()
    data: dict[str, Any] = {"kind": descriptor.kind.value, "name": name}
    if descriptor.members:
        # member order is part of the shape, ignored members are not
        data["members"] = [
            [m.name, m.optional, _canonical(m.type), _canonical_constraints(m.constraints)]
            for m in descriptor.members
            if not m.ignored
        ]
    if descriptor.element is not None:
        data["element"] = _canonical(descriptor.element)
    if descriptor.values:
        data["values"] = list(descriptor.values)
    return data


def _canonical_constraints(constraints: SchemaConstraints | None) -> dict[str, Any] | None:
    if constraints is None or constraints.is_empty():
        return None
    return constraints.model_dump(mode="json", exclude_defaults=True)


def component_name(descriptor: TypeDescriptor) -> str:
    """Natural component name of a descriptor, derived from its declared identifier."""
    if descriptor.name and descriptor.kind is not TypeKind.PRIMITIVE:
        base = descriptor.name
    elif descriptor.kind is TypeKind.ARRAY and descriptor.element is not None:
        base = "ArrayOf" + _capitalize(component_name(descriptor.element))
    elif descriptor.kind is TypeKind.MAP and descriptor.element is not None:
        base = "MapOf" + _capitalize(component_name(descriptor.element))
    elif descriptor.kind is TypeKind.NULLABLE and descriptor.element is not None:
        base = component_name(descriptor.element)
    else:
        base = descriptor.name or "Schema"
    return _NAME_UNSAFE.sub("_", base).strip("_") or "Schema"


def _capitalize(name: str) -> str:
    return name[:1].upper() + name[1:]


class SchemaRegistry:
    """Component schemas of one build. Never share an instance between builds."""

    def __init__(self, catalog: TypeCatalog | None = None):
        self.catalog = catalog or TypeCatalog()
        self.mapper = TypeSchemaMapper(self)
        self._names: dict[str, str] = {}  # fingerprint -> component name
        self._schemas: dict[str, SchemaNode] = {}  # component name -> schema
        self._pending: set[str] = set()  # fingerprints whose body is being mapped

    def register(self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None) -> SchemaRef:
        """Register a descriptor as a component and return its reference."""
        return self.register_normalized(self.catalog.normalize(descriptor), constraints)

    def register_normalized(
        self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None
    ) -> SchemaRef:
        if descriptor.kind is TypeKind.REFERENCE:
            return self.reference(descriptor.name, constraints)
        if descriptor.kind is TypeKind.NULLABLE:
            # nullability belongs to the use site, the component is the wrapped type
            if descriptor.element is None:
                raise UnsupportedTypeError("nullable type has no element type")
            return self.register_normalized(descriptor.element, constraints)
        if constraints is not None and constraints.is_empty():
            constraints = None

        key = fingerprint(descriptor, constraints)
        name = self._names.get(key)
        if name is not None:
            if key in self._pending:
                logger.debug("Cyclic reference to %s resolved by name", name)
            return SchemaRef(name=name)

        name = self._allocate(component_name(descriptor))
        self._names[key] = name
        self._pending.add(key)
        try:
            schema = self.mapper.map_type(descriptor)
            if constraints is not None:
                schema = self.mapper.apply_constraints(schema, constraints)
        except BuildError:
            del self._names[key]
            raise
        finally:
            self._pending.discard(key)

        self._schemas[name] = schema
        logger.debug("Registered component %s", name)
        return SchemaRef(name=name)

    def reference(self, name: str | None, constraints: SchemaConstraints | None = None) -> SchemaRef:
        """Register the declared object type a reference descriptor points at."""
        target = self.catalog.lookup(name) if name else None
        if target is None:
            raise UnsupportedTypeError(f"unresolved type reference '{name}'")
        return self.register_normalized(target, constraints)

    def schema_for(self, descriptor: TypeDescriptor, constraints: SchemaConstraints | None = None) -> SchemaNode:
        """Schema to place at a use site: ``$ref`` for component types, inline otherwise."""
        return self.mapper.schema_for(self.catalog.normalize(descriptor), constraints)

    def is_component(self, descriptor: TypeDescriptor) -> bool:
        if descriptor.is_named_object:
            return True
        return descriptor.shared and descriptor.kind in _SHAREABLE

    def resolve(self, ref: SchemaRef | str) -> SchemaNode:
        """Return the registered schema behind a reference or ``#/components/schemas`` pointer."""
        name = ref.name if isinstance(ref, SchemaRef) else ref.removeprefix(COMPONENT_PREFIX)
        try:
            return self._schemas[name]
        except KeyError:
            raise KeyError(f"no component schema named '{name}'") from None

    @property
    def components(self) -> dict[str, SchemaNode]:
        """Registered schemas keyed by component name, sorted by name."""
        return dict(sorted(self._schemas.items()))

    def _allocate(self, base: str) -> str:
        taken = set(self._names.values())
        candidate = base
        suffix = 2
        while candidate in taken:
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def __contains__(self, name: str) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)
