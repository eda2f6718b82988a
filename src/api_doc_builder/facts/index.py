"""Groups a flat fact list by scope so builders can look facts up cheaply."""

import logging
from typing import Iterator, NamedTuple

from pydantic import BaseModel, ValidationError

from api_doc_builder.diagnostics import DiagnosticBag, InvalidFactError
from api_doc_builder.facts.base import (
    ApiFact,
    FactKind,
    OperationPayload,
    ParameterPayload,
    ResponseHeaderPayload,
    ResponseTypePayload,
    ScopeLevel,
    TypeDescriptor,
)

logger = logging.getLogger(__name__)

ALLOWED_LEVELS: dict[FactKind, set[ScopeLevel]] = {
    FactKind.INFO: {ScopeLevel.ASSEMBLY},
    FactKind.SERVER: {ScopeLevel.ASSEMBLY},
    FactKind.SECURITY_SCHEME: {ScopeLevel.ASSEMBLY},
    FactKind.TAG_GROUP: {ScopeLevel.ASSEMBLY},
    FactKind.EXAMPLE_CONFIG: {ScopeLevel.ASSEMBLY},
    FactKind.OUTPUT: {ScopeLevel.ASSEMBLY},
    FactKind.TAG: {ScopeLevel.ASSEMBLY, ScopeLevel.TYPE, ScopeLevel.MEMBER},
    FactKind.SECURITY: {ScopeLevel.ASSEMBLY, ScopeLevel.TYPE, ScopeLevel.MEMBER},
    FactKind.EXTERNAL_DOCS: {ScopeLevel.ASSEMBLY, ScopeLevel.MEMBER},
    FactKind.DEPRECATED: {ScopeLevel.TYPE, ScopeLevel.MEMBER},
    FactKind.OPERATION: {ScopeLevel.MEMBER},
    FactKind.OPERATION_ID: {ScopeLevel.MEMBER},
    FactKind.RESPONSE_TYPE: {ScopeLevel.MEMBER},
    FactKind.RESPONSE_HEADER: {ScopeLevel.MEMBER},
    FactKind.EXAMPLE: {ScopeLevel.MEMBER},
    FactKind.PARAMETER: {ScopeLevel.PARAMETER},
    FactKind.SCHEMA_CONSTRAINT: {ScopeLevel.PARAMETER, ScopeLevel.PROPERTY},
    FactKind.IGNORE: {ScopeLevel.PARAMETER, ScopeLevel.PROPERTY},
}


class ResolvedFact(NamedTuple):
    fact: ApiFact
    payload: BaseModel

    @property
    def kind(self) -> FactKind:
        return self.fact.kind

    @property
    def scope(self) -> str:
        return str(self.fact.scope)


class FactIndex:
    """Validated facts grouped by scope level and target, in declaration order."""

    def __init__(self, facts: list[ApiFact], diagnostics: DiagnosticBag):
        self.diagnostics = diagnostics
        self.facts: list[ResolvedFact] = []
        self._by_scope: dict[tuple[ScopeLevel, str], list[ResolvedFact]] = {}
        self._parameters: dict[str, list[ResolvedFact]] = {}

        for fact in facts:
            resolved = self._resolve(fact)
            if resolved is None:
                continue
            self.facts.append(resolved)
            key = (fact.scope.level, fact.scope.target)
            self._by_scope.setdefault(key, []).append(resolved)
            if fact.scope.level is ScopeLevel.PARAMETER:
                self._parameters.setdefault(fact.scope.parent, []).append(resolved)

        logger.debug("Indexed %d of %d facts", len(self.facts), len(facts))

    def _resolve(self, fact: ApiFact) -> ResolvedFact | None:
        if fact.scope.level not in ALLOWED_LEVELS[fact.kind]:
            self.diagnostics.report(InvalidFactError(
                f"'{fact.kind.value}' facts cannot be declared at {fact.scope.level.value} scope",
                str(fact.scope),
            ))
            return None
        if fact.scope.level is not ScopeLevel.ASSEMBLY and not fact.scope.target:
            self.diagnostics.report(InvalidFactError(
                f"'{fact.kind.value}' fact at {fact.scope.level.value} scope has no target",
                str(fact.scope),
            ))
            return None
        try:
            payload = fact.parse_payload()
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            self.diagnostics.report(InvalidFactError(
                f"invalid '{fact.kind.value}' payload: {location}: {first['msg']}",
                str(fact.scope),
            ))
            return None
        return ResolvedFact(fact, payload)

    def assembly(self, kind: FactKind) -> list[ResolvedFact]:
        return [r for r in self._by_scope.get((ScopeLevel.ASSEMBLY, ""), []) if r.kind is kind]

    def at(self, level: ScopeLevel, target: str, kind: FactKind | None = None) -> list[ResolvedFact]:
        facts = self._by_scope.get((level, target), [])
        if kind is None:
            return list(facts)
        return [r for r in facts if r.kind is kind]

    def operations(self) -> list[ResolvedFact]:
        return [r for r in self.facts if r.kind is FactKind.OPERATION]

    def related(self, member_target: str) -> list[ResolvedFact]:
        """Facts that shape one operation: its type, the member and its parameters."""
        type_target = member_target.rpartition(".")[0]
        related = self.at(ScopeLevel.TYPE, type_target) if type_target else []
        related += [r for r in self.at(ScopeLevel.MEMBER, member_target) if r.kind is not FactKind.OPERATION]
        related += self._parameters.get(member_target, [])
        return related

    def properties(self) -> list[ResolvedFact]:
        return [r for r in self.facts if r.fact.scope.level is ScopeLevel.PROPERTY]

    def descriptors(self) -> Iterator[TypeDescriptor]:
        """Every type descriptor carried by a payload, in declaration order."""
        for resolved in self.facts:
            payload = resolved.payload
            if isinstance(payload, OperationPayload) and payload.return_type is not None:
                yield payload.return_type
            elif isinstance(payload, (ParameterPayload, ResponseHeaderPayload)):
                yield payload.type
            elif isinstance(payload, ResponseTypePayload) and payload.type is not None:
                yield payload.type

    def check_orphans(self) -> None:
        """Warn about member, type and parameter facts no operation will consume."""
        members = {r.fact.scope.target for r in self.operations()}
        types = {target.rpartition(".")[0] for target in members}
        for resolved in self.facts:
            scope = resolved.fact.scope
            if scope.level is ScopeLevel.MEMBER:
                orphan = scope.target not in members
            elif scope.level is ScopeLevel.PARAMETER:
                orphan = scope.parent not in members
            elif scope.level is ScopeLevel.TYPE:
                orphan = scope.target not in types
            else:
                continue
            if orphan:
                self.diagnostics.warn(
                    "OrphanFact",
                    f"'{resolved.kind.value}' fact does not belong to any declared operation",
                    str(scope),
                )
