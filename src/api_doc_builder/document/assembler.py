"""Assembly of the document from assembly-level facts and the built operations."""

import logging

from api_doc_builder.diagnostics import (
    DiagnosticBag,
    DuplicateApiInfoError,
    DuplicateFactError,
    DuplicateRouteError,
    DuplicateSecuritySchemeError,
    DuplicateServerError,
    DuplicateTagError,
    InvalidFactError,
    MissingApiInfoError,
    UndefinedSecuritySchemeError,
)
from api_doc_builder.document.nodes import (
    ComponentsNode,
    ContactNode,
    DocumentNode,
    ExternalDocsNode,
    InfoNode,
    LicenseNode,
    OAuthFlowNode,
    OAuthFlowsNode,
    OperationNode,
    SecuritySchemeNode,
    ServerNode,
    TagGroupNode,
    TagNode,
)
from api_doc_builder.facts.base import FactKind, InfoPayload, SecuritySchemePayload, SecuritySchemeType
from api_doc_builder.facts.index import FactIndex
from api_doc_builder.schema.nodes import SchemaNode

logger = logging.getLogger(__name__)

METHOD_ORDER = ("GET", "POST", "PUT", "PATCH", "DELETE")


def method_rank(method: str) -> int:
    """Position of a method in the path item; unlisted methods sort after DELETE."""
    method = method.upper()
    return METHOD_ORDER.index(method) if method in METHOD_ORDER else len(METHOD_ORDER)


class DocumentAssembler:
    """Builds the DocumentNode of one build and reports document-level conflicts."""

    def __init__(self, diagnostics: DiagnosticBag):
        self.diagnostics = diagnostics

    def assemble(
        self, operations: list[OperationNode], index: FactIndex, components: dict[str, SchemaNode]
    ) -> DocumentNode:
        info = self._info(index)
        servers = self._servers(index)
        schemes = self._security_schemes(index)
        tags = self._tags(index, operations)
        tag_groups = self._tag_groups(index)
        paths = self._paths(operations)
        security = [{r.payload.scheme: list(r.payload.scopes)} for r in index.assembly(FactKind.SECURITY)]
        self._check_security(operations, security, schemes)

        external_docs = None
        docs = index.assembly(FactKind.EXTERNAL_DOCS)
        if len(docs) > 1:
            self.diagnostics.report(DuplicateFactError("document external docs declared more than once", docs[1].scope))
        if docs:
            external_docs = ExternalDocsNode(url=docs[0].payload.url, description=docs[0].payload.description)

        defined_schemes = {name: node for name, node in schemes.items() if node is not None}
        components_node = None
        if components or defined_schemes:
            components_node = ComponentsNode(
                schemas=dict(sorted(components.items())) or None,
                security_schemes=dict(sorted(defined_schemes.items())) or None,
            )

        document = DocumentNode(
            info=info,
            servers=servers or None,
            paths=paths,
            components=components_node,
            security=security or None,
            tags=tags or None,
            external_docs=external_docs,
            tag_groups=tag_groups or None,
        )
        logger.info("Assembled document with %d paths and %d components", len(paths), len(components))
        return document

    def _info(self, index: FactIndex) -> InfoNode:
        facts = index.assembly(FactKind.INFO)
        if not facts:
            self.diagnostics.report(MissingApiInfoError("no info fact declared; title and version are required", "assembly"))
            return InfoNode(title="", version="")
        for duplicate in facts[1:]:
            self.diagnostics.report(DuplicateApiInfoError("info declared more than once", duplicate.scope))

        payload: InfoPayload = facts[0].payload
        contact = None
        if payload.contact_name or payload.contact_email or payload.contact_url:
            contact = ContactNode(name=payload.contact_name, url=payload.contact_url, email=payload.contact_email)
        license_ = LicenseNode(name=payload.license_name, url=payload.license_url) if payload.license_name else None
        return InfoNode(
            title=payload.title,
            description=payload.description,
            terms_of_service=payload.terms_of_service,
            contact=contact,
            license=license_,
            version=payload.version,
        )

    def _servers(self, index: FactIndex) -> list[ServerNode]:
        servers: list[ServerNode] = []
        urls: set[str] = set()
        for r in index.assembly(FactKind.SERVER):
            if r.payload.url in urls:
                self.diagnostics.report(DuplicateServerError(f"server '{r.payload.url}' declared more than once", r.scope))
                continue
            urls.add(r.payload.url)
            servers.append(ServerNode(url=r.payload.url, description=r.payload.description))
        return servers

    def _security_schemes(self, index: FactIndex) -> dict[str, SecuritySchemeNode | None]:
        # a declared scheme that fails to build maps to None so it still counts as defined
        schemes: dict[str, SecuritySchemeNode | None] = {}
        for r in index.assembly(FactKind.SECURITY_SCHEME):
            payload: SecuritySchemePayload = r.payload
            if payload.name in schemes:
                self.diagnostics.report(DuplicateSecuritySchemeError(
                    f"security scheme '{payload.name}' declared more than once", r.scope
                ))
                continue
            try:
                schemes[payload.name] = security_scheme_node(payload)
            except InvalidFactError as e:
                e.scope = r.scope
                self.diagnostics.report(e)
                schemes[payload.name] = None
        return schemes

    def _tags(self, index: FactIndex, operations: list[OperationNode]) -> list[TagNode]:
        tags: list[TagNode] = []
        names: set[str] = set()
        for r in index.assembly(FactKind.TAG):
            payload = r.payload
            if payload.name in names:
                self.diagnostics.report(DuplicateTagError(f"tag '{payload.name}' declared more than once", r.scope))
                continue
            names.add(payload.name)
            docs = None
            if payload.external_docs_url:
                docs = ExternalDocsNode(url=payload.external_docs_url, description=payload.external_docs_description)
            tags.append(TagNode(name=payload.name, description=payload.description, external_docs=docs))

        # referenced tags without a definition are listed by name
        for operation in operations:
            for name in operation.tags or []:
                if name not in names:
                    names.add(name)
                    tags.append(TagNode(name=name))
        return tags

    def _tag_groups(self, index: FactIndex) -> list[TagGroupNode]:
        groups: list[TagGroupNode] = []
        names: set[str] = set()
        for r in index.assembly(FactKind.TAG_GROUP):
            if r.payload.name in names:
                self.diagnostics.report(DuplicateTagError(f"tag group '{r.payload.name}' declared more than once", r.scope))
                continue
            names.add(r.payload.name)
            groups.append(TagGroupNode(name=r.payload.name, tags=list(r.payload.tags)))
        return groups

    def _paths(self, operations: list[OperationNode]) -> dict[str, dict[str, OperationNode]]:
        grouped: dict[str, list[OperationNode]] = {}
        routes: set[tuple[str, str]] = set()
        for operation in operations:
            route = (operation.path, operation.method)
            if route in routes:
                self.diagnostics.report(DuplicateRouteError(
                    f"{operation.method} {operation.path} is declared more than once", operation.scope
                ))
                continue
            routes.add(route)
            grouped.setdefault(operation.path, []).append(operation)

        # sorted() is stable, so unlisted methods keep first-seen order
        return {
            path: {op.method.lower(): op for op in sorted(ops, key=lambda op: method_rank(op.method))}
            for path, ops in grouped.items()
        }

    def _check_security(
        self, operations: list[OperationNode], security: list[dict[str, list[str]]], schemes: dict
    ) -> None:
        for requirement in security:
            for name in requirement:
                if name not in schemes:
                    self.diagnostics.report(UndefinedSecuritySchemeError(
                        f"document security references undefined scheme '{name}'", "assembly"
                    ))
        for operation in operations:
            for name in operation.security_schemes():
                if name not in schemes:
                    self.diagnostics.report(UndefinedSecuritySchemeError(
                        f"{operation.method} {operation.path} references undefined scheme '{name}'", operation.scope
                    ))


def security_scheme_node(payload: SecuritySchemePayload) -> SecuritySchemeNode:
    """Translate a security scheme fact into its OpenAPI object.

    Raises InvalidFactError when the fact lacks what its scheme type needs.
    """
    if payload.type is SecuritySchemeType.API_KEY:
        return SecuritySchemeNode(
            type=payload.type.value,
            description=payload.description,
            name=payload.api_key_name or payload.name,
            location=payload.api_key_location,
        )
    if payload.type is SecuritySchemeType.HTTP:
        return SecuritySchemeNode(
            type=payload.type.value,
            description=payload.description,
            scheme=payload.http_scheme or "bearer",
            bearer_format=payload.bearer_format,
        )
    if payload.type is SecuritySchemeType.OPEN_ID_CONNECT:
        if not payload.open_id_connect_url:
            raise InvalidFactError(f"openIdConnect scheme '{payload.name}' needs open_id_connect_url")
        return SecuritySchemeNode(
            type=payload.type.value,
            description=payload.description,
            open_id_connect_url=payload.open_id_connect_url,
        )

    # oauth2
    if payload.authorization_url and payload.token_url:
        flow = OAuthFlowNode(authorization_url=payload.authorization_url, token_url=payload.token_url, scopes=payload.scopes)
        flows = OAuthFlowsNode(authorization_code=flow)
    elif payload.token_url:
        flows = OAuthFlowsNode(client_credentials=OAuthFlowNode(token_url=payload.token_url, scopes=payload.scopes))
    elif payload.authorization_url:
        flows = OAuthFlowsNode(implicit=OAuthFlowNode(authorization_url=payload.authorization_url, scopes=payload.scopes))
    else:
        raise InvalidFactError(f"oauth2 scheme '{payload.name}' needs an authorization_url or token_url")
    return SecuritySchemeNode(type=payload.type.value, description=payload.description, flows=flows)
