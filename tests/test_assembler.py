import pytest

from api_doc_builder.diagnostics import InvalidFactError
from api_doc_builder.document.assembler import method_rank, security_scheme_node
from api_doc_builder.document.pipeline import build
from api_doc_builder.facts.base import ApiFact, SecuritySchemePayload

INFO = {"kind": "info", "scope": "assembly", "payload": {"title": "Products API", "version": "1.0"}}


def _assembly(kind: str, **payload) -> dict:
    return {"kind": kind, "scope": "assembly", "payload": payload}


def _operation(member: str, method: str, path: str, **payload) -> dict:
    return {"kind": "operation", "scope": f"member:{member}", "payload": {"method": method, "path": path, **payload}}


def _build(*facts: dict):
    return build([ApiFact.model_validate(f) for f in facts])


class TestInfo:
    def test_missing_info(self):
        result = _build(_operation("Products.List", "GET", "/products"))
        assert result.diagnostics.codes() == ["MissingApiInfoError"]
        assert not result.ok

    def test_duplicate_info(self):
        result = _build(INFO, _assembly("info", title="Other", version="2"))
        assert result.diagnostics.codes() == ["DuplicateApiInfoError"]
        assert result.document.info.title == "Products API"

    def test_contact_and_license(self):
        result = _build(_assembly(
            "info", title="Store", version="1", terms_of_service="https://example.com/tos",
            contact_name="Team", contact_email="team@example.com", license_name="MIT",
            license_url="https://opensource.org/licenses/MIT",
        ))
        assert result.document.to_dict()["info"] == {
            "title": "Store",
            "termsOfService": "https://example.com/tos",
            "contact": {"name": "Team", "email": "team@example.com"},
            "license": {"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
            "version": "1",
        }


class TestCollections:
    def test_servers_in_order(self):
        result = _build(INFO, _assembly("server", url="https://a.example.com"), _assembly("server", url="https://b.example.com"))
        assert [s.url for s in result.document.servers] == ["https://a.example.com", "https://b.example.com"]

    def test_duplicate_server(self):
        result = _build(INFO, _assembly("server", url="https://a.example.com"), _assembly("server", url="https://a.example.com"))
        assert result.diagnostics.codes() == ["DuplicateServerError"]

    def test_duplicate_tag(self):
        result = _build(INFO, _assembly("tag", name="products"), _assembly("tag", name="products"))
        assert result.diagnostics.codes() == ["DuplicateTagError"]

    def test_undefined_tags_appended_name_only(self):
        result = _build(
            INFO,
            _assembly("tag", name="orders", description="Order management", external_docs_url="https://docs.example.com"),
            _operation("Products.List", "GET", "/products"),
        )
        assert result.ok
        assert result.document.to_dict()["tags"] == [
            {"name": "orders", "description": "Order management", "externalDocs": {"url": "https://docs.example.com"}},
            {"name": "Products"},
        ]

    def test_document_external_docs(self):
        result = _build(INFO, _assembly("external_docs", url="https://docs.example.com", description="Guide"))
        assert result.document.to_dict()["externalDocs"] == {"description": "Guide", "url": "https://docs.example.com"}

    def test_duplicate_external_docs(self):
        result = _build(INFO, _assembly("external_docs", url="https://a"), _assembly("external_docs", url="https://b"))
        assert result.diagnostics.codes() == ["DuplicateFactError"]

    def test_tag_groups(self):
        result = _build(INFO, _assembly("tag_group", name="Catalog", tags=["products", "categories"]))
        assert result.document.to_dict()["x-tagGroups"] == [{"name": "Catalog", "tags": ["products", "categories"]}]

    def test_duplicate_tag_group(self):
        result = _build(INFO, _assembly("tag_group", name="Catalog"), _assembly("tag_group", name="Catalog"))
        assert result.diagnostics.codes() == ["DuplicateTagError"]


class TestPaths:
    def test_method_order(self):
        result = _build(
            INFO,
            _operation("Products.Options", "OPTIONS", "/products"),
            _operation("Products.Delete", "DELETE", "/products"),
            _operation("Products.Head", "HEAD", "/products"),
            _operation("Products.Create", "POST", "/products"),
            _operation("Products.List", "GET", "/products"),
        )
        assert result.ok
        assert list(result.document.paths["/products"]) == ["get", "post", "delete", "options", "head"]

    def test_paths_first_seen_order(self):
        result = _build(
            INFO,
            _operation("Orders.List", "GET", "/orders"),
            _operation("Products.List", "GET", "/products"),
            _operation("Orders.Create", "POST", "/orders"),
        )
        assert list(result.document.paths) == ["/orders", "/products"]

    def test_duplicate_route(self):
        result = _build(
            INFO,
            _operation("Products.List", "GET", "/products"),
            _operation("Legacy.ListAll", "get", "/products"),
        )
        assert result.diagnostics.codes() == ["DuplicateRouteError"]
        assert result.diagnostics.errors[0].scope == "member:Legacy.ListAll"

    def test_method_rank(self):
        assert method_rank("get") < method_rank("POST") < method_rank("DELETE") < method_rank("TRACE")


class TestSecurity:
    def test_schemes_sorted_in_components(self):
        result = _build(
            INFO,
            _assembly("security_scheme", name="zeta", type="http", http_scheme="basic"),
            _assembly("security_scheme", name="alpha", type="apiKey", api_key_name="X-Key"),
        )
        data = result.document.to_dict()
        assert list(data["components"]["securitySchemes"]) == ["alpha", "zeta"]
        assert data["components"]["securitySchemes"]["alpha"] == {"type": "apiKey", "name": "X-Key", "in": "header"}

    def test_duplicate_scheme(self):
        result = _build(INFO, _assembly("security_scheme", name="key"), _assembly("security_scheme", name="key"))
        assert result.diagnostics.codes() == ["DuplicateSecuritySchemeError"]

    def test_undefined_scheme_on_operation(self):
        result = _build(
            INFO,
            _operation("Products.List", "GET", "/products"),
            {"kind": "security", "scope": "member:Products.List", "payload": {"scheme": "oauth"}},
        )
        assert result.diagnostics.codes() == ["UndefinedSecuritySchemeError"]

    def test_undefined_scheme_on_document(self):
        result = _build(INFO, _assembly("security", scheme="missing"))
        assert result.diagnostics.codes() == ["UndefinedSecuritySchemeError"]

    def test_document_security(self):
        result = _build(
            INFO,
            _assembly("security_scheme", name="bearer", type="http", bearer_format="JWT"),
            _assembly("security", scheme="bearer"),
        )
        assert result.ok
        data = result.document.to_dict()
        assert data["security"] == [{"bearer": []}]
        assert data["components"]["securitySchemes"]["bearer"] == {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}

    def test_invalid_scheme_reported_once(self):
        result = _build(
            INFO,
            _assembly("security_scheme", name="oidc", type="openIdConnect"),
            _assembly("security", scheme="oidc"),
        )
        assert result.diagnostics.codes() == ["InvalidFactError"]


class TestSecuritySchemeNode:
    def _dump(self, **payload) -> dict:
        node = security_scheme_node(SecuritySchemePayload(name="oauth", type="oauth2", **payload))
        return node.model_dump(mode="json", by_alias=True, exclude_none=True)

    def test_authorization_code_flow(self):
        data = self._dump(authorization_url="https://a/authorize", token_url="https://a/token", scopes={"read": "Read"})
        assert data["flows"] == {
            "authorizationCode": {
                "authorizationUrl": "https://a/authorize",
                "tokenUrl": "https://a/token",
                "scopes": {"read": "Read"},
            },
        }

    def test_client_credentials_flow(self):
        assert list(self._dump(token_url="https://a/token")["flows"]) == ["clientCredentials"]

    def test_implicit_flow(self):
        assert list(self._dump(authorization_url="https://a/authorize")["flows"]) == ["implicit"]

    def test_oauth_without_urls(self):
        with pytest.raises(InvalidFactError):
            security_scheme_node(SecuritySchemePayload(name="oauth", type="oauth2"))

    def test_open_id_connect(self):
        node = security_scheme_node(SecuritySchemePayload(
            name="oidc", type="openIdConnect", open_id_connect_url="https://a/.well-known/openid-configuration",
        ))
        assert node.open_id_connect_url.endswith("openid-configuration")
