"""Type catalog: folds property-level facts into type descriptors and resolves references.

Property facts are keyed by ``<TypeName>.<member>``. Named object types are
recorded the first time they are seen so ``reference`` descriptors (the only
way to express a recursive type in a finite descriptor tree) can be resolved
by name.
"""

import logging

from api_doc_builder.facts.base import FactKind, SchemaConstraints, TypeDescriptor, TypeKind

logger = logging.getLogger(__name__)


class TypeCatalog:
    """Named object types of one build plus the property facts that decorate them."""

    def __init__(
        self,
        property_constraints: dict[str, SchemaConstraints] | None = None,
        ignored_properties: set[str] | None = None,
    ):
        self._constraints = dict(property_constraints or {})
        self._ignored = set(ignored_properties or ())
        self._declared: dict[str, TypeDescriptor] = {}
        self._matched: set[str] = set()

    @classmethod
    def from_index(cls, index) -> "TypeCatalog":
        """Build the catalog from the property facts and type descriptors of a FactIndex."""
        constraints: dict[str, SchemaConstraints] = {}
        ignored: set[str] = set()
        for resolved in index.properties():
            target = resolved.fact.scope.target
            if resolved.kind is FactKind.IGNORE:
                ignored.add(target)
            elif resolved.kind is FactKind.SCHEMA_CONSTRAINT:
                constraints[target] = constraints.get(target, SchemaConstraints()).merged(resolved.payload)

        catalog = cls(constraints, ignored)
        for descriptor in index.descriptors():
            catalog.declare(descriptor)
        return catalog

    def normalize(self, descriptor: TypeDescriptor) -> TypeDescriptor:
        """Return the descriptor with property-level constraints and ignores folded in."""
        if descriptor.kind is TypeKind.OBJECT:
            members = []
            for m in descriptor.members:
                key = f"{descriptor.name}.{m.name}" if descriptor.name else None
                constraints = m.constraints
                ignored = m.ignored
                if key is not None and key in self._constraints:
                    constraints = constraints.merged(self._constraints[key])
                    self._matched.add(key)
                if key is not None and key in self._ignored:
                    ignored = True
                    self._matched.add(key)
                members.append(m.model_copy(update={
                    "type": self.normalize(m.type),
                    "constraints": constraints,
                    "ignored": ignored,
                }))
            return descriptor.model_copy(update={"members": members})
        if descriptor.element is not None:
            return descriptor.model_copy(update={"element": self.normalize(descriptor.element)})
        return descriptor

    def declare(self, descriptor: TypeDescriptor) -> TypeDescriptor:
        """Normalize a descriptor and record every named object type inside it."""
        normalized = self.normalize(descriptor)
        self._record(normalized)
        return normalized

    def _record(self, descriptor: TypeDescriptor) -> None:
        if descriptor.is_named_object:
            if descriptor.name in self._declared:
                return
            self._declared[descriptor.name] = descriptor
            logger.debug("Declared type %s", descriptor.name)
            for m in descriptor.members:
                self._record(m.type)
        elif descriptor.element is not None:
            self._record(descriptor.element)

    def lookup(self, name: str) -> TypeDescriptor | None:
        return self._declared.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._declared

    def unmatched_properties(self) -> list[str]:
        """Property fact targets that never matched a declared member."""
        targets = list(self._constraints) + sorted(self._ignored - set(self._constraints))
        return [t for t in targets if t not in self._matched]
