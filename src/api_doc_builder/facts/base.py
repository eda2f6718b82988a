"""Data contract between the metadata scanner and the document builder.

The scanner reduces source annotations to a flat, ordered list of ``ApiFact``
records. Each fact has a kind, the scope it was declared on and a
kind-specific payload; payloads are validated lazily so one malformed fact
becomes a diagnostic instead of aborting the whole load.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FactKind(str, Enum):
    INFO = "info"
    SERVER = "server"
    TAG = "tag"
    SECURITY_SCHEME = "security_scheme"
    OPERATION = "operation"
    PARAMETER = "parameter"
    RESPONSE_TYPE = "response_type"
    RESPONSE_HEADER = "response_header"
    EXAMPLE = "example"
    SCHEMA_CONSTRAINT = "schema_constraint"
    IGNORE = "ignore"
    EXTERNAL_DOCS = "external_docs"
    OPERATION_ID = "operation_id"
    DEPRECATED = "deprecated"
    SECURITY = "security"
    TAG_GROUP = "tag_group"
    EXAMPLE_CONFIG = "example_config"
    OUTPUT = "output"


class ScopeLevel(str, Enum):
    ASSEMBLY = "assembly"
    TYPE = "type"
    MEMBER = "member"
    PARAMETER = "parameter"
    PROPERTY = "property"


class Scope(BaseModel):
    """Where a fact was declared, e.g. ``member:ProductFunctions.GetProduct``."""

    model_config = ConfigDict(frozen=True)

    level: ScopeLevel
    target: str = ""

    @model_validator(mode="before")
    @classmethod
    def _parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            level, _, target = data.partition(":")
            return {"level": level.strip(), "target": target.strip()}
        return data

    @property
    def parent(self) -> str:
        """Target without its last segment (the member of a parameter, the type of a property)."""
        return self.target.rpartition(".")[0]

    @property
    def leaf(self) -> str:
        return self.target.rpartition(".")[2]

    def __str__(self) -> str:
        if not self.target:
            return self.level.value
        return f"{self.level.value}:{self.target}"


class TypeKind(str, Enum):
    PRIMITIVE = "primitive"
    OBJECT = "object"
    ARRAY = "array"
    MAP = "map"
    ENUM = "enum"
    NULLABLE = "nullable"
    REFERENCE = "reference"


class SchemaConstraints(BaseModel):
    """Schema-level overrides declared on a property or parameter."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    format: str | None = None
    example: Any = None
    pattern: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    min_length: int | None = None
    max_length: int | None = None
    default: Any = None

    def merged(self, other: "SchemaConstraints") -> "SchemaConstraints":
        """Return a copy where every field explicitly set on ``other`` wins."""
        data = self.model_dump(exclude_unset=True)
        data.update(other.model_dump(exclude_unset=True))
        return SchemaConstraints(**data)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_defaults=True)


class TypeDescriptor(BaseModel):
    """Language-neutral shape of a data type.

    ``element`` is the item type of an array, the value type of a map, the
    wrapped type of a nullable and the optional underlying primitive of an
    enum. A plain string is shorthand for a primitive of that name.
    """

    model_config = ConfigDict(frozen=True)

    kind: TypeKind
    name: str | None = None
    members: list["MemberDescriptor"] = []
    element: "TypeDescriptor | None" = None
    values: list[Any] = []
    shared: bool = False  # scanner marked the type as a reusable model

    @model_validator(mode="before")
    @classmethod
    def _parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"kind": TypeKind.PRIMITIVE, "name": data}
        return data

    @property
    def is_named_object(self) -> bool:
        return self.kind is TypeKind.OBJECT and bool(self.name)


class MemberDescriptor(BaseModel):
    """A named member of an object type together with its property-level facts."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: TypeDescriptor
    constraints: SchemaConstraints = Field(default_factory=SchemaConstraints)
    ignored: bool = False
    optional: bool = False

    @property
    def is_nullable(self) -> bool:
        return self.optional or self.type.kind is TypeKind.NULLABLE


TypeDescriptor.model_rebuild()
MemberDescriptor.model_rebuild()


def primitive(name: str) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.PRIMITIVE, name=name)


def object_type(name: str | None, members: list[MemberDescriptor], shared: bool = False) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.OBJECT, name=name, members=members, shared=shared)


def member(name: str, type_: TypeDescriptor | str, **kwargs: Any) -> MemberDescriptor:
    if isinstance(type_, str):
        type_ = primitive(type_)
    return MemberDescriptor(name=name, type=type_, **kwargs)


def array_of(element: TypeDescriptor | str) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.ARRAY, element=element)


def map_of(element: TypeDescriptor | str) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.MAP, element=element)


def nullable(element: TypeDescriptor | str) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.NULLABLE, element=element)


def enum_of(name: str | None, values: list[Any], underlying: str | None = None, shared: bool = False) -> TypeDescriptor:
    element = primitive(underlying) if underlying else None
    return TypeDescriptor(kind=TypeKind.ENUM, name=name, values=values, element=element, shared=shared)


def reference(name: str) -> TypeDescriptor:
    return TypeDescriptor(kind=TypeKind.REFERENCE, name=name)


# --- payloads ---------------------------------------------------------------


class Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class InfoPayload(Payload):
    title: str
    version: str
    description: str | None = None
    terms_of_service: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_url: str | None = None
    license_name: str | None = None
    license_url: str | None = None


class ServerPayload(Payload):
    url: str
    description: str | None = None


class TagPayload(Payload):
    name: str
    description: str | None = None
    external_docs_url: str | None = None
    external_docs_description: str | None = None


class TagGroupPayload(Payload):
    name: str
    tags: list[str] = []


class SecuritySchemeType(str, Enum):
    API_KEY = "apiKey"
    HTTP = "http"
    OAUTH2 = "oauth2"
    OPEN_ID_CONNECT = "openIdConnect"


class SecuritySchemePayload(Payload):
    name: str
    type: SecuritySchemeType = SecuritySchemeType.API_KEY
    description: str | None = None
    api_key_name: str | None = None
    api_key_location: str = "header"  # header / query / cookie
    http_scheme: str | None = None
    bearer_format: str | None = None
    open_id_connect_url: str | None = None
    authorization_url: str | None = None
    token_url: str | None = None
    scopes: dict[str, str] = {}


class SecurityPayload(Payload):
    scheme: str
    scopes: list[str] = []


class OperationPayload(Payload):
    method: str  # GET / POST / PUT / PATCH / DELETE / HEAD / OPTIONS
    path: str  # /products/{id}
    function_name: str | None = None
    return_type: TypeDescriptor | None = None
    summary: str | None = None
    description: str | None = None
    deprecated: bool = False
    operation_id: str | None = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.strip().upper()


class OperationIdPayload(Payload):
    operation_id: str


class MarkerPayload(Payload):
    """Payload of facts whose presence is the whole message (deprecated, ignore)."""

    reason: str | None = None


class ParameterSource(str, Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"
    BODY = "body"
    SERVICES = "services"  # injected by the host, never part of the API surface


class ParameterPayload(Payload):
    name: str | None = None  # wire name, defaults to the last scope segment
    source: ParameterSource
    type: TypeDescriptor
    required: bool | None = None
    description: str | None = None


class ResponseTypePayload(Payload):
    status_code: int = 200
    type: TypeDescriptor | None = None
    description: str | None = None


class ResponseHeaderPayload(Payload):
    name: str
    status_code: int | None = None  # None applies to every declared response
    description: str | None = None
    type: TypeDescriptor = Field(default_factory=lambda: primitive("string"))
    required: bool = False


class ExamplePayload(Payload):
    name: str
    value: Any
    summary: str | None = None
    status_code: int = 200
    request: bool = False


class ExternalDocsPayload(Payload):
    url: str
    description: str | None = None


class ExampleConfigPayload(Payload):
    compose_from_properties: bool = True
    generate_defaults: bool = False


class OutputPayload(Payload):
    name: str = "openapi"
    file_name: str = "openapi.json"
    tags: list[str] = []  # empty means every operation


class ConstraintPayload(SchemaConstraints):
    model_config = ConfigDict(frozen=True, extra="forbid")


PAYLOAD_MODELS: dict[FactKind, type[BaseModel]] = {
    FactKind.INFO: InfoPayload,
    FactKind.SERVER: ServerPayload,
    FactKind.TAG: TagPayload,
    FactKind.SECURITY_SCHEME: SecuritySchemePayload,
    FactKind.OPERATION: OperationPayload,
    FactKind.PARAMETER: ParameterPayload,
    FactKind.RESPONSE_TYPE: ResponseTypePayload,
    FactKind.RESPONSE_HEADER: ResponseHeaderPayload,
    FactKind.EXAMPLE: ExamplePayload,
    FactKind.SCHEMA_CONSTRAINT: ConstraintPayload,
    FactKind.IGNORE: MarkerPayload,
    FactKind.EXTERNAL_DOCS: ExternalDocsPayload,
    FactKind.OPERATION_ID: OperationIdPayload,
    FactKind.DEPRECATED: MarkerPayload,
    FactKind.SECURITY: SecurityPayload,
    FactKind.TAG_GROUP: TagGroupPayload,
    FactKind.EXAMPLE_CONFIG: ExampleConfigPayload,
    FactKind.OUTPUT: OutputPayload,
}


class ApiFact(BaseModel):
    """A single piece of declared API metadata."""

    model_config = ConfigDict(frozen=True)

    kind: FactKind
    scope: Scope
    payload: dict[str, Any] = {}

    def parse_payload(self) -> BaseModel:
        """Validate the payload against the model for this kind.

        Raises pydantic.ValidationError when the payload is malformed.
        """
        return PAYLOAD_MODELS[self.kind].model_validate(self.payload)
