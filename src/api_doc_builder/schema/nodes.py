"""OpenAPI Schema Object model.

Field declaration order is the serialization order; fields left as ``None``
are omitted from the emitted document.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

COMPONENT_PREFIX = "#/components/schemas/"


class Node(BaseModel):
    """Base for every emitted OpenAPI object: immutable, camelCase on the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class SchemaNode(Node):
    ref: str | None = Field(default=None, alias="$ref")
    all_of: list["SchemaNode"] | None = None
    type: str | None = None
    format: str | None = None
    description: str | None = None
    nullable: bool | None = None
    enum: list[Any] | None = None
    pattern: str | None = None
    minimum: int | float | None = None
    exclusive_minimum: bool | None = None
    maximum: int | float | None = None
    exclusive_maximum: bool | None = None
    min_length: int | None = None
    max_length: int | None = None
    default: Any = None
    items: "SchemaNode | None" = None
    properties: dict[str, "SchemaNode"] | None = None
    additional_properties: "SchemaNode | None" = None
    required: list[str] | None = None
    example: Any = None

    @property
    def is_reference(self) -> bool:
        return self.ref is not None


SchemaNode.model_rebuild()


class SchemaRef(BaseModel):
    """Handle to a registered component schema."""

    model_config = ConfigDict(frozen=True)

    name: str

    @property
    def pointer(self) -> str:
        return f"{COMPONENT_PREFIX}{self.name}"

    def as_schema(self) -> SchemaNode:
        return SchemaNode(ref=self.pointer)
