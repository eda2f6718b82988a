import pytest

from api_doc_builder.diagnostics import DiagnosticBag
from api_doc_builder.document.operation import OperationBuilder, example_value, path_placeholders, status_description
from api_doc_builder.facts.base import ApiFact
from api_doc_builder.facts.index import FactIndex
from api_doc_builder.schema.catalog import TypeCatalog
from api_doc_builder.schema.registry import SchemaRegistry

PRODUCT = {
    "kind": "object",
    "name": "Product",
    "members": [
        {"name": "id", "type": "string"},
        {"name": "name", "type": "string"},
    ],
}


def _operation(member: str, method: str, path: str, **payload) -> dict:
    return {"kind": "operation", "scope": f"member:{member}", "payload": {"method": method, "path": path, **payload}}


def _param(member: str, name: str, source: str, /, type_="string", **payload) -> dict:
    return {
        "kind": "parameter",
        "scope": f"parameter:{member}.{name}",
        "payload": {"source": source, "type": type_, **payload},
    }


def _fact(kind: str, member: str, **payload) -> dict:
    return {"kind": kind, "scope": f"member:{member}", "payload": payload}


def _build(*facts: dict):
    """Build every operation in the fact list; returns (operations, diagnostics)."""
    bag = DiagnosticBag()
    index = FactIndex([ApiFact.model_validate(f) for f in facts], bag)
    registry = SchemaRegistry(TypeCatalog.from_index(index))
    builder = OperationBuilder(registry, bag)
    operations = builder.build_all([(route, index.related(route.fact.scope.target)) for route in index.operations()])
    return operations, bag


def _dump(node) -> dict:
    return node.model_dump(mode="json", by_alias=True, exclude_none=True)


GET = "Products.GetProduct"


class TestHelpers:
    def test_path_placeholders(self):
        assert path_placeholders("/stores/{storeId}/products/{id}") == ["storeId", "id"]
        assert path_placeholders("/files/{proxy+}") == ["proxy"]
        assert path_placeholders("/health") == []

    def test_status_description(self):
        assert status_description(200) == "Success"
        assert status_description(204) == "No Content"
        assert status_description(418) == "I'm a Teapot"
        assert status_description(299) == "Response"

    def test_example_value(self):
        assert example_value('{"id": "p-1"}') == {"id": "p-1"}
        assert example_value("plain text") == "plain text"
        assert example_value(42) == 42

    def test_example_value_keeps_json_scalars_as_text(self):
        assert example_value("null") == "null"
        assert example_value("123") == "123"
        assert example_value("NaN") == "NaN"
        assert example_value("[1, NaN]") == "[1, NaN]"


class TestParameters:
    def test_order_path_query_header_cookie(self):
        [op], bag = _build(
            _operation(GET, "GET", "/stores/{storeId}/products/{id}"),
            _param(GET, "session", "cookie"),
            _param(GET, "trace", "header", name="X-Trace"),
            _param(GET, "id", "path"),
            _param(GET, "q", "query"),
            _param(GET, "storeId", "path", type_="int64"),
            _param(GET, "page", "query", type_="int32"),
        )
        assert not bag.has_errors
        assert [(p.name, p.location) for p in op.parameters] == [
            ("storeId", "path"), ("id", "path"), ("q", "query"), ("page", "query"),
            ("X-Trace", "header"), ("session", "cookie"),
        ]

    def test_path_parameters_required(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products/{id}"),
            _param(GET, "id", "path"),
            _param(GET, "q", "query"),
            _param(GET, "limit", "query", required=True),
        )
        assert _dump(op.parameters[0]) == {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}
        assert "required" not in _dump(op.parameters[1])
        assert op.parameters[2].required is True

    def test_missing_path_parameter(self):
        _, bag = _build(_operation(GET, "GET", "/products/{id}"))
        assert bag.codes() == ["MissingPathParameterError"]
        assert bag.errors[0].scope == f"member:{GET}"

    def test_unknown_path_parameter(self):
        _, bag = _build(_operation(GET, "GET", "/products"), _param(GET, "id", "path"))
        assert bag.codes() == ["UnknownPathParameterError"]

    def test_repeated_placeholder(self):
        [op], bag = _build(_operation(GET, "GET", "/a/{id}/b/{id}"), _param(GET, "id", "path"))
        assert bag.codes() == ["InvalidFactError"]
        assert bag.errors[0].scope == f"member:{GET}"
        assert [p.name for p in op.parameters] == ["id"]

    def test_greedy_placeholder(self):
        [op], bag = _build(_operation(GET, "GET", "/files/{proxy+}"), _param(GET, "proxy", "path"))
        assert not bag.has_errors
        assert op.parameters[0].name == "proxy"

    def test_services_and_ignored_skipped(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products"),
            _param(GET, "logger", "services", type_="string"),
            _param(GET, "debug", "query"),
            {"kind": "ignore", "scope": f"parameter:{GET}.debug"},
            _param(GET, "q", "query"),
        )
        assert not bag.has_errors
        assert [p.name for p in op.parameters] == ["q"]

    def test_parameter_constraints(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products"),
            _param(GET, "limit", "query", type_="int32"),
            {"kind": "schema_constraint", "scope": f"parameter:{GET}.limit", "payload": {"minimum": 1, "maximum": 100}},
        )
        assert _dump(op.parameters[0])["schema"] == {"type": "integer", "format": "int32", "minimum": 1, "maximum": 100}

    def test_parameter_constraint_out_of_range(self):
        _, bag = _build(
            _operation(GET, "GET", "/products"),
            _param(GET, "limit", "query", type_="int32"),
            {"kind": "schema_constraint", "scope": f"parameter:{GET}.limit", "payload": {"maximum": 2**40}},
        )
        assert bag.codes() == ["ConstraintRangeError"]
        assert bag.errors[0].scope == f"parameter:{GET}.limit"

    def test_duplicate_parameter_name(self):
        _, bag = _build(
            _operation(GET, "GET", "/products"),
            _param(GET, "q", "query"),
            _param(GET, "query", "query", name="q"),
        )
        assert bag.codes() == ["DuplicateFactError"]

    def test_unsupported_parameter_type(self):
        _, bag = _build(_operation(GET, "GET", "/products"), _param(GET, "q", "query", type_="money"))
        assert bag.codes() == ["UnsupportedTypeError"]


class TestRequestBody:
    CREATE = "Products.CreateProduct"

    def test_body_parameter_becomes_request_body(self):
        [op], bag = _build(
            _operation(self.CREATE, "POST", "/products", return_type=PRODUCT),
            _param(self.CREATE, "product", "body", type_=PRODUCT, description="Product to create"),
        )
        assert not bag.has_errors
        assert op.parameters is None
        assert _dump(op.request_body) == {
            "description": "Product to create",
            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Product"}}},
            "required": True,
        }

    def test_nullable_body_not_required(self):
        [op], _ = _build(
            _operation(self.CREATE, "POST", "/products"),
            _param(self.CREATE, "product", "body", type_={"kind": "nullable", "element": PRODUCT}),
        )
        assert op.request_body.required is None

    def test_two_bodies(self):
        _, bag = _build(
            _operation(self.CREATE, "POST", "/products"),
            _param(self.CREATE, "product", "body", type_=PRODUCT),
            _param(self.CREATE, "extra", "body", type_="string"),
        )
        assert bag.codes() == ["DuplicateRequestBodyError"]

    def test_request_examples(self):
        [op], bag = _build(
            _operation(self.CREATE, "POST", "/products"),
            _param(self.CREATE, "product", "body", type_=PRODUCT),
            _fact("example", self.CREATE, name="lamp", value='{"id": "p-1", "name": "Lamp"}', request=True),
        )
        assert not bag.has_errors
        media = _dump(op.request_body)["content"]["application/json"]
        assert media["examples"] == {"lamp": {"value": {"id": "p-1", "name": "Lamp"}}}
        assert "example" not in media

    def test_request_example_without_body_warns(self):
        _, bag = _build(
            _operation(GET, "GET", "/products"),
            _fact("example", GET, name="x", value="1", request=True),
        )
        assert bag.codes() == ["OrphanExample"]
        assert not bag.has_errors


class TestResponses:
    def test_default_200_from_return_type(self):
        [op], _ = _build(_operation(GET, "GET", "/products", return_type=PRODUCT))
        assert _dump(op)["responses"] == {
            "200": {
                "description": "Success",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Product"}}},
            },
        }

    def test_no_return_type_gives_204(self):
        [op], _ = _build(_operation(GET, "DELETE", "/products"))
        assert _dump(op)["responses"] == {"204": {"description": "No Content"}}

    def test_response_facts_sorted_by_status(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products", return_type=PRODUCT),
            _fact("response_type", GET, status_code=404, description="Product not found"),
            _fact("response_type", GET, status_code=200, type=PRODUCT),
        )
        assert list(op.responses) == ["200", "404"]
        assert op.responses["404"].description == "Product not found"
        assert op.responses["404"].content is None

    def test_array_response_inline(self):
        [op], _ = _build(_operation(GET, "GET", "/products", return_type={"kind": "array", "element": PRODUCT}))
        schema = _dump(op)["responses"]["200"]["content"]["application/json"]["schema"]
        assert schema == {"type": "array", "items": {"$ref": "#/components/schemas/Product"}}

    def test_duplicate_status(self):
        _, bag = _build(
            _operation(GET, "GET", "/products"),
            _fact("response_type", GET, status_code=200, type="string"),
            _fact("response_type", GET, status_code=200, type="int32"),
        )
        assert bag.codes() == ["DuplicateFactError"]

    def test_headers_filtered_by_status(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products"),
            _fact("response_type", GET, status_code=200, type="string"),
            _fact("response_type", GET, status_code=404),
            _fact("response_header", GET, name="X-Rate-Limit", type="int32"),
            _fact("response_header", GET, name="ETag", status_code=200, description="Version tag"),
        )
        assert not bag.has_errors
        assert list(op.responses["200"].headers) == ["X-Rate-Limit", "ETag"]
        assert list(op.responses["404"].headers) == ["X-Rate-Limit"]
        assert _dump(op.responses["200"].headers["ETag"]) == {"description": "Version tag", "schema": {"type": "string"}}

    def test_header_for_undeclared_status_warns(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products", return_type="string"),
            _fact("response_header", GET, name="Retry-After", status_code=503),
        )
        assert bag.codes() == ["OrphanResponseHeader"]
        assert not bag.has_errors
        assert op.responses["200"].headers is None

    def test_duplicate_header(self):
        _, bag = _build(
            _operation(GET, "GET", "/products", return_type="string"),
            _fact("response_header", GET, name="ETag"),
            _fact("response_header", GET, name="ETag", status_code=200),
        )
        assert bag.codes() == ["DuplicateFactError"]

    def test_response_examples(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products/{id}", return_type=PRODUCT),
            _param(GET, "id", "path"),
            _fact("example", GET, name="lamp", summary="A lamp", value='{"id": "p-1", "name": "Lamp"}'),
            _fact("example", GET, name="missing", status_code=404, value="not found"),
        )
        assert bag.codes() == ["OrphanExample"]
        media = _dump(op)["responses"]["200"]["content"]["application/json"]
        assert media["examples"] == {"lamp": {"summary": "A lamp", "value": {"id": "p-1", "name": "Lamp"}}}

    def test_scalar_example_values_kept(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products", return_type="string"),
            _fact("example", GET, name="n", value="null"),
            _fact("example", GET, name="s", value="123"),
        )
        assert not bag.has_errors
        media = _dump(op)["responses"]["200"]["content"]["application/json"]
        assert media["examples"] == {"n": {"value": "null"}, "s": {"value": "123"}}

    def test_composed_example_from_properties(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products", return_type=PRODUCT),
            {"kind": "schema_constraint", "scope": "property:Product.id", "payload": {"example": "p-1"}},
        )
        media = _dump(op)["responses"]["200"]["content"]["application/json"]
        assert media["example"] == {"id": "p-1"}


class TestOperationId:
    def test_derived_from_function_name(self):
        [op], _ = _build(_operation(GET, "GET", "/products", function_name="GetProduct"))
        assert op.operation_id == "getProduct"

    def test_derived_from_member_name(self):
        [op], _ = _build(_operation("Products.ListAll", "GET", "/products"))
        assert op.operation_id == "listAll"

    def test_fact_wins_over_payload(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products", operation_id="fromPayload"),
            _fact("operation_id", GET, operation_id="fromFact"),
        )
        assert op.operation_id == "fromFact"

    def test_same_path_collision_appends_method(self):
        ops, bag = _build(
            _operation("Products.Product", "GET", "/products"),
            _operation("Admin.Product", "DELETE", "/products"),
        )
        assert not bag.has_errors
        assert [op.operation_id for op in ops] == ["product", "productDelete"]

    def test_different_paths_collide(self):
        _, bag = _build(
            _operation("Products.GetProduct", "GET", "/products"),
            _operation("Legacy.GetProduct", "GET", "/legacy/products"),
        )
        assert bag.codes() == ["DuplicateOperationIdError"]
        assert bag.errors[0].scope == "member:Legacy.GetProduct"

    def test_explicit_ids_collide_case_insensitively(self):
        _, bag = _build(
            _operation("Products.A", "GET", "/a", operation_id="getProduct"),
            _operation("Products.B", "GET", "/b", operation_id="GetProduct"),
        )
        assert bag.codes() == ["DuplicateOperationIdError"]

    def test_explicit_id_never_suffixed(self):
        _, bag = _build(
            _operation("Products.A", "GET", "/products", operation_id="products"),
            _operation("Products.B", "POST", "/products", operation_id="products"),
        )
        assert bag.codes() == ["DuplicateOperationIdError"]

    @pytest.mark.parametrize("explicit_first", [True, False])
    def test_explicit_id_wins_in_any_order(self, explicit_first):
        derived = _operation("Products.GetProduct", "GET", "/a")
        explicit = _operation("Products.Create", "POST", "/a", operation_id="getProduct")
        ops, bag = _build(*([explicit, derived] if explicit_first else [derived, explicit]))
        assert not bag.has_errors
        ids = {op.method: op.operation_id for op in ops}
        assert ids == {"GET": "getProductGet", "POST": "getProduct"}

    def test_derived_id_on_other_path_collides_with_explicit(self):
        _, bag = _build(
            _operation("Products.GetProduct", "GET", "/a"),
            _operation("Products.Create", "POST", "/b", operation_id="getProduct"),
        )
        assert bag.codes() == ["DuplicateOperationIdError"]
        assert bag.errors[0].scope == "member:Products.GetProduct"

    def test_second_collision(self):
        _, bag = _build(
            _operation("A.Product", "GET", "/products"),
            _operation("B.ProductDelete", "POST", "/products"),
            _operation("C.Product", "DELETE", "/products"),
        )
        assert bag.codes() == ["DuplicateOperationIdError"]
        assert bag.errors[0].scope == "member:C.Product"


class TestMetadata:
    @pytest.mark.parametrize("facts,payload,expected", [
        ([], {}, None),
        ([{"kind": "deprecated", "scope": f"member:{GET}"}], {}, True),
        ([], {"deprecated": True}, True),
        ([{"kind": "deprecated", "scope": f"member:{GET}"}], {"deprecated": False}, True),
        ([{"kind": "deprecated", "scope": "type:Products"}], {}, True),
    ])
    def test_deprecation_signals_ored(self, facts, payload, expected):
        [op], _ = _build(_operation(GET, "GET", "/products", **payload), *facts)
        assert op.deprecated is expected

    def test_default_tag_is_declaring_type(self):
        [op], _ = _build(_operation("Catalog.ProductFunctions.GetProduct", "GET", "/products"))
        assert op.tags == ["ProductFunctions"]

    def test_tags_deduplicated_in_order(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products"),
            _fact("tag", GET, name="products"),
            _fact("tag", GET, name="catalog"),
            _fact("tag", GET, name="products"),
            {"kind": "tag", "scope": "type:Products", "payload": {"name": "public"}},
        )
        assert op.tags == ["public", "products", "catalog"]

    def test_security_requirements(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products"),
            _fact("security", GET, scheme="oauth", scopes=["read"]),
            _fact("security", GET, scheme="apiKey"),
        )
        assert op.security == [{"oauth": ["read"]}, {"apiKey": []}]
        assert op.security_schemes() == ["oauth", "apiKey"]

    def test_external_docs(self):
        [op], _ = _build(
            _operation(GET, "GET", "/products", summary="Get a product", description="Long text"),
            _fact("external_docs", GET, url="https://docs.example.com/products"),
        )
        data = _dump(op)
        assert data["externalDocs"] == {"url": "https://docs.example.com/products"}
        assert list(data)[:4] == ["tags", "summary", "description", "externalDocs"]

    def test_node_excludes_route_fields(self):
        [op], _ = _build(_operation(GET, "GET", "/products"))
        data = _dump(op)
        assert "method" not in data
        assert "path" not in data
        assert op.method == "GET"
        assert op.path == "/products"

    def test_errors_do_not_stop_other_parts(self):
        [op], bag = _build(
            _operation(GET, "GET", "/products/{id}", return_type="string"),
            _param(GET, "q", "query", type_="money"),
        )
        assert bag.codes() == ["UnsupportedTypeError", "MissingPathParameterError"]
        assert op.operation_id == "getProduct"
        assert list(op.responses) == ["200"]
