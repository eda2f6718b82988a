"""Construction of one OperationNode per declared route and method.

Failures in one part of an operation (a parameter, a response, the id) are
reported to the build diagnostics and the builder carries on with the rest,
so a single run lists every problem of the fact set.
"""

import logging
import re
from http import HTTPStatus
from typing import Any

from api_doc_builder.diagnostics import (
    BuildError,
    DiagnosticBag,
    DuplicateFactError,
    DuplicateOperationIdError,
    DuplicateRequestBodyError,
    InvalidFactError,
    MissingPathParameterError,
    UnknownPathParameterError,
)
from api_doc_builder.document.nodes import (
    ExampleNode,
    ExternalDocsNode,
    HeaderNode,
    MediaTypeNode,
    OperationNode,
    ParameterNode,
    RequestBodyNode,
    ResponseNode,
)
from api_doc_builder.facts.base import (
    FactKind,
    OperationPayload,
    ParameterSource,
    SchemaConstraints,
    ScopeLevel,
    TypeDescriptor,
    TypeKind,
)
from api_doc_builder.facts.index import ResolvedFact
from api_doc_builder.schema.examples import ExampleComposer
from api_doc_builder.schema.mapper import parse_structured
from api_doc_builder.schema.registry import SchemaRegistry

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
PATH_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")
PARAMETER_ORDER = (ParameterSource.QUERY, ParameterSource.HEADER, ParameterSource.COOKIE)

STATUS_DESCRIPTIONS = {
    200: "Success",
    201: "Created",
    202: "Accepted",
    204: "No Content",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
}


def path_placeholders(path: str) -> list[str]:
    """Placeholder names of a path template in order; ``{proxy+}`` yields ``proxy``."""
    return [name.rstrip("+") for name in PATH_PLACEHOLDER.findall(path)]


def status_description(status_code: int) -> str:
    if status_code in STATUS_DESCRIPTIONS:
        return STATUS_DESCRIPTIONS[status_code]
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Response"


def example_value(value: Any) -> Any:
    """Embed string examples holding a JSON object or array as JSON, keep anything else as given."""
    if isinstance(value, str):
        parsed = parse_structured(value)
        return value if parsed is None else parsed
    return value


class OperationBuilder:
    """Builds operations for one document; owns the operation-id table."""

    def __init__(self, registry: SchemaRegistry, diagnostics: DiagnosticBag, examples: ExampleComposer | None = None):
        self.registry = registry
        self.diagnostics = diagnostics
        self.examples = examples or ExampleComposer(registry.catalog)
        self._used_ids: dict[str, tuple[str, str]] = {}  # casefolded id -> (id, path)
        self._reserved: dict[str, tuple[str, str]] = {}  # explicit ids: casefolded id -> (path, owner scope)

    def build_all(self, routes: list[tuple[ResolvedFact, list[ResolvedFact]]]) -> list[OperationNode]:
        """Build every route; explicit operation ids are claimed before any id is derived."""
        for route, related in routes:
            explicit = _explicit_id(route.payload, _by_kind(related))
            if explicit:
                self._reserved.setdefault(explicit.casefold(), (route.payload.path, route.scope))
        return [self.build(route, related) for route, related in routes]

    def build(self, route: ResolvedFact, related: list[ResolvedFact]) -> OperationNode:
        """Assemble the operation for one route fact and the facts scoped to its member."""
        payload: OperationPayload = route.payload
        scope = route.scope
        facts = _by_kind(related)

        parameters, request_body = self._build_parameters(payload, related, scope)
        responses = self._build_responses(payload, facts, scope)
        if request_body is not None:
            request_body = self._attach_request_examples(request_body, facts, scope)
        elif any(r.payload.request for r in facts[FactKind.EXAMPLE]):
            self.diagnostics.warn("OrphanExample", "request example declared but the operation has no body", scope)

        operation_id = None
        try:
            operation_id = self._operation_id(payload, facts, route)
        except BuildError as e:
            self._report(e, scope)

        deprecated = payload.deprecated or bool(facts[FactKind.DEPRECATED])
        operation = OperationNode(
            method=payload.method,
            path=payload.path,
            scope=scope,
            tags=self._tags(facts, route),
            summary=payload.summary,
            description=payload.description,
            external_docs=self._external_docs(facts, scope),
            operation_id=operation_id,
            parameters=parameters or None,
            request_body=request_body,
            responses=responses,
            deprecated=True if deprecated else None,
            security=[{r.payload.scheme: list(r.payload.scopes)} for r in facts[FactKind.SECURITY]] or None,
        )
        logger.debug("Built %s %s (%s)", payload.method, payload.path, operation_id)
        return operation

    # --- parameters ---------------------------------------------------------

    def _build_parameters(
        self, payload: OperationPayload, related: list[ResolvedFact], scope: str
    ) -> tuple[list[ParameterNode], RequestBodyNode | None]:
        declared: dict[str, ResolvedFact] = {}
        constraints: dict[str, SchemaConstraints] = {}
        ignored: set[str] = set()
        for r in related:
            if r.fact.scope.level is not ScopeLevel.PARAMETER:
                continue
            target = r.fact.scope.target
            if r.kind is FactKind.PARAMETER:
                if target in declared:
                    self._report(DuplicateFactError("parameter declared more than once", r.scope), scope)
                    continue
                declared[target] = r
            elif r.kind is FactKind.SCHEMA_CONSTRAINT:
                constraints[target] = constraints.get(target, SchemaConstraints()).merged(r.payload)
            elif r.kind is FactKind.IGNORE:
                ignored.add(target)

        for target in list(constraints) + sorted(ignored):
            if target not in declared:
                self.diagnostics.warn("OrphanFact", "constraint or ignore fact for an undeclared parameter", f"parameter:{target}")

        by_source: dict[ParameterSource, list[ParameterNode]] = {source: [] for source in ParameterSource}
        request_body = None
        seen: set[tuple[str, ParameterSource]] = set()
        for target, r in declared.items():
            param = r.payload
            if target in ignored or param.source is ParameterSource.SERVICES:
                continue
            name = param.name or r.fact.scope.leaf
            param_constraints = constraints.get(target)
            try:
                schema = self.registry.schema_for(param.type, param_constraints)
            except BuildError as e:
                self._report(e, r.scope)
                continue

            if param.source is ParameterSource.BODY:
                if request_body is not None:
                    self._report(DuplicateRequestBodyError("operation binds more than one body parameter", r.scope), scope)
                    continue
                request_body = RequestBodyNode(
                    description=param.description,
                    content={JSON_MEDIA_TYPE: MediaTypeNode(schema_=schema, example=self._composed_example(param.type))},
                    required=None if _is_nullable(param.type) else True,
                )
                continue

            if (name, param.source) in seen:
                self._report(DuplicateFactError(f"{param.source.value} parameter '{name}' declared more than once", r.scope), scope)
                continue
            seen.add((name, param.source))
            required = param.source is ParameterSource.PATH or bool(param.required)
            by_source[param.source].append(ParameterNode(
                name=name,
                location=param.source.value,
                description=param.description,
                required=True if required else None,
                schema_=schema,
            ))

        ordered = self._order_path_parameters(payload.path, by_source[ParameterSource.PATH], scope)
        for source in PARAMETER_ORDER:
            ordered.extend(by_source[source])
        return ordered, request_body

    def _order_path_parameters(self, path: str, bound: list[ParameterNode], scope: str) -> list[ParameterNode]:
        by_name = {p.name: p for p in bound}
        placeholders = path_placeholders(path)
        ordered = []
        for i, placeholder in enumerate(placeholders):
            if placeholder in placeholders[:i]:
                self._report(InvalidFactError(
                    f"path placeholder '{{{placeholder}}}' appears more than once in '{path}'", scope
                ), scope)
            elif placeholder in by_name:
                ordered.append(by_name[placeholder])
            else:
                self._report(MissingPathParameterError(
                    f"path placeholder '{{{placeholder}}}' in '{path}' has no bound parameter", scope
                ), scope)
        for p in bound:
            if p.name not in placeholders:
                self._report(UnknownPathParameterError(
                    f"path parameter '{p.name}' does not appear in '{path}'", scope
                ), scope)
        return ordered

    # --- responses ----------------------------------------------------------

    def _build_responses(self, payload: OperationPayload, facts: dict, scope: str) -> dict[str, ResponseNode]:
        declared: dict[int, tuple[str, TypeDescriptor | None]] = {}
        for r in facts[FactKind.RESPONSE_TYPE]:
            code = r.payload.status_code
            if code in declared:
                self._report(DuplicateFactError(f"response {code} declared more than once", r.scope), scope)
                continue
            declared[code] = (r.payload.description or status_description(code), r.payload.type)
        if not declared:
            if payload.return_type is None:
                declared[204] = (status_description(204), None)
            else:
                declared[200] = (status_description(200), payload.return_type)

        headers = self._response_headers(facts[FactKind.RESPONSE_HEADER], declared, scope)
        examples = self._response_examples(facts[FactKind.EXAMPLE], declared, scope)

        responses: dict[str, ResponseNode] = {}
        for code in sorted(declared):
            description, type_ = declared[code]
            content = None
            if type_ is not None:
                try:
                    schema = self.registry.schema_for(type_)
                except BuildError as e:
                    self._report(e, scope)
                    continue
                code_examples = examples.get(code)
                content = {JSON_MEDIA_TYPE: MediaTypeNode(
                    schema_=schema,
                    example=None if code_examples else self._composed_example(type_),
                    examples=code_examples or None,
                )}
            responses[str(code)] = ResponseNode(description=description, headers=headers.get(code) or None, content=content)
        return responses

    def _response_headers(self, header_facts: list[ResolvedFact], declared: dict, scope: str) -> dict[int, dict[str, HeaderNode]]:
        headers: dict[int, dict[str, HeaderNode]] = {code: {} for code in declared}
        for r in header_facts:
            header = r.payload
            if header.status_code is None:
                codes = list(declared)
            elif header.status_code in declared:
                codes = [header.status_code]
            else:
                self.diagnostics.warn(
                    "OrphanResponseHeader", f"header '{header.name}' targets undeclared response {header.status_code}", r.scope
                )
                continue
            try:
                schema = self.registry.schema_for(header.type)
            except BuildError as e:
                self._report(e, r.scope)
                continue
            node = HeaderNode(description=header.description, required=True if header.required else None, schema_=schema)
            for code in codes:
                if header.name in headers[code]:
                    self._report(DuplicateFactError(f"header '{header.name}' declared twice for response {code}", r.scope), scope)
                    continue
                headers[code][header.name] = node
        return headers

    def _response_examples(self, example_facts: list[ResolvedFact], declared: dict, scope: str) -> dict[int, dict[str, ExampleNode]]:
        examples: dict[int, dict[str, ExampleNode]] = {}
        for r in example_facts:
            example = r.payload
            if example.request:
                continue
            if example.status_code not in declared or declared[example.status_code][1] is None:
                self.diagnostics.warn(
                    "OrphanExample", f"example '{example.name}' targets response {example.status_code} without content", r.scope
                )
                continue
            named = examples.setdefault(example.status_code, {})
            if example.name in named:
                self._report(DuplicateFactError(f"example '{example.name}' declared twice", r.scope), scope)
                continue
            named[example.name] = ExampleNode(summary=example.summary, value=example_value(example.value))
        return examples

    def _attach_request_examples(self, body: RequestBodyNode, facts: dict, scope: str) -> RequestBodyNode:
        named: dict[str, ExampleNode] = {}
        for r in facts[FactKind.EXAMPLE]:
            example = r.payload
            if not example.request:
                continue
            if example.name in named:
                self._report(DuplicateFactError(f"request example '{example.name}' declared twice", r.scope), scope)
                continue
            named[example.name] = ExampleNode(summary=example.summary, value=example_value(example.value))
        if not named:
            return body
        media = body.content[JSON_MEDIA_TYPE].model_copy(update={"examples": named, "example": None})
        return body.model_copy(update={"content": {JSON_MEDIA_TYPE: media}})

    def _composed_example(self, descriptor: TypeDescriptor) -> Any:
        return self.examples.compose(descriptor)

    # --- identity and metadata ----------------------------------------------

    def _operation_id(self, payload: OperationPayload, facts: dict, route: ResolvedFact) -> str:
        explicit_facts = facts[FactKind.OPERATION_ID]
        if len(explicit_facts) > 1:
            raise DuplicateFactError("operation id declared more than once", explicit_facts[1].scope)
        explicit = _explicit_id(payload, facts)

        if explicit:
            candidate, derived = explicit, False
        else:
            name = payload.function_name or route.fact.scope.leaf
            candidate, derived = name[:1].lower() + name[1:], True

        existing_path = self._taken(candidate, route.scope)
        if existing_path is None:
            self._used_ids[candidate.casefold()] = (candidate, payload.path)
            return candidate

        if derived and existing_path == payload.path:
            alternative = candidate + payload.method.capitalize()
            if self._taken(alternative, route.scope) is None:
                self._used_ids[alternative.casefold()] = (alternative, payload.path)
                return alternative
            raise DuplicateOperationIdError(f"operation id '{alternative}' is already used", route.scope)
        raise DuplicateOperationIdError(
            f"operation id '{candidate}' is already used by an operation on '{existing_path}'", route.scope
        )

    def _taken(self, candidate: str, scope: str) -> str | None:
        """Path of the operation holding ``candidate``, counting explicit ids claimed by other members."""
        key = candidate.casefold()
        if key in self._used_ids:
            return self._used_ids[key][1]
        reserved = self._reserved.get(key)
        if reserved is not None and reserved[1] != scope:
            return reserved[0]
        return None

    def _tags(self, facts: dict, route: ResolvedFact) -> list[str] | None:
        tags: list[str] = []
        for r in facts[FactKind.TAG]:
            if r.payload.name not in tags:
                tags.append(r.payload.name)
        if not tags and route.fact.scope.parent:
            tags.append(route.fact.scope.parent.rpartition(".")[2])
        return tags or None

    def _external_docs(self, facts: dict, scope: str) -> ExternalDocsNode | None:
        docs = facts[FactKind.EXTERNAL_DOCS]
        if not docs:
            return None
        if len(docs) > 1:
            self._report(DuplicateFactError("external docs declared more than once", docs[1].scope), scope)
        return ExternalDocsNode(url=docs[0].payload.url, description=docs[0].payload.description)

    def _report(self, error: BuildError, scope: str) -> None:
        if error.scope is None:
            error.scope = scope
        self.diagnostics.report(error)


def _explicit_id(payload: OperationPayload, facts: dict) -> str | None:
    explicit_facts = facts[FactKind.OPERATION_ID]
    return explicit_facts[0].payload.operation_id if explicit_facts else payload.operation_id


def _by_kind(related: list[ResolvedFact]) -> dict[FactKind, list[ResolvedFact]]:
    grouped: dict[FactKind, list[ResolvedFact]] = {kind: [] for kind in FactKind}
    for r in related:
        grouped[r.kind].append(r)
    return grouped


def _is_nullable(descriptor: TypeDescriptor) -> bool:
    return descriptor.kind is TypeKind.NULLABLE
