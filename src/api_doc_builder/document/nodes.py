"""OpenAPI document object model.

Every node is immutable once built. Field declaration order is the fixed
serialization order of the emitted JSON.
"""

from typing import Any, Iterator

from pydantic import Field

from api_doc_builder.schema.nodes import Node, SchemaNode

OPENAPI_VERSION = "3.0.1"


class ExternalDocsNode(Node):
    description: str | None = None
    url: str


class ContactNode(Node):
    name: str | None = None
    url: str | None = None
    email: str | None = None


class LicenseNode(Node):
    name: str
    url: str | None = None


class InfoNode(Node):
    title: str
    description: str | None = None
    terms_of_service: str | None = None
    contact: ContactNode | None = None
    license: LicenseNode | None = None
    version: str


class ServerNode(Node):
    url: str
    description: str | None = None


class ExampleNode(Node):
    summary: str | None = None
    value: Any = None


class MediaTypeNode(Node):
    schema_: SchemaNode | None = Field(default=None, alias="schema")
    example: Any = None
    examples: dict[str, ExampleNode] | None = None


class HeaderNode(Node):
    description: str | None = None
    required: bool | None = None
    schema_: SchemaNode | None = Field(default=None, alias="schema")


class ResponseNode(Node):
    description: str
    headers: dict[str, HeaderNode] | None = None
    content: dict[str, MediaTypeNode] | None = None


class RequestBodyNode(Node):
    description: str | None = None
    content: dict[str, MediaTypeNode]
    required: bool | None = None


class ParameterNode(Node):
    name: str
    location: str = Field(alias="in")  # path / query / header / cookie
    description: str | None = None
    required: bool | None = None
    schema_: SchemaNode | None = Field(default=None, alias="schema")


class OperationNode(Node):
    """One HTTP method on one path template."""

    method: str = Field(exclude=True)
    path: str = Field(exclude=True)
    scope: str | None = Field(default=None, exclude=True)

    tags: list[str] | None = None
    summary: str | None = None
    description: str | None = None
    external_docs: ExternalDocsNode | None = None
    operation_id: str | None = None
    parameters: list[ParameterNode] | None = None
    request_body: RequestBodyNode | None = None
    responses: dict[str, ResponseNode]
    deprecated: bool | None = None
    security: list[dict[str, list[str]]] | None = None

    def security_schemes(self) -> list[str]:
        return [name for requirement in self.security or [] for name in requirement]


class OAuthFlowNode(Node):
    authorization_url: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    scopes: dict[str, str] = {}


class OAuthFlowsNode(Node):
    implicit: OAuthFlowNode | None = None
    password: OAuthFlowNode | None = None
    client_credentials: OAuthFlowNode | None = None
    authorization_code: OAuthFlowNode | None = None


class SecuritySchemeNode(Node):
    type: str
    description: str | None = None
    name: str | None = None
    location: str | None = Field(default=None, alias="in")
    scheme: str | None = None
    bearer_format: str | None = None
    flows: OAuthFlowsNode | None = None
    open_id_connect_url: str | None = None


class TagNode(Node):
    name: str
    description: str | None = None
    external_docs: ExternalDocsNode | None = None


class TagGroupNode(Node):
    name: str
    tags: list[str]


class ComponentsNode(Node):
    schemas: dict[str, SchemaNode] | None = None
    security_schemes: dict[str, SecuritySchemeNode] | None = None


class DocumentNode(Node):
    """Root of the assembled document: paths map to methods map to operations."""

    openapi: str = OPENAPI_VERSION
    info: InfoNode
    servers: list[ServerNode] | None = None
    paths: dict[str, dict[str, OperationNode]] = {}
    components: ComponentsNode | None = None
    security: list[dict[str, list[str]]] | None = None
    tags: list[TagNode] | None = None
    external_docs: ExternalDocsNode | None = None
    tag_groups: list[TagGroupNode] | None = Field(default=None, alias="x-tagGroups")

    def operations(self) -> Iterator[OperationNode]:
        for methods in self.paths.values():
            yield from methods.values()

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-compatible data with empty fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
