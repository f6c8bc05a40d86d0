"""Tests for the OAuth discovery routes."""

import httpx
from starlette.applications import Starlette
from starlette.testclient import TestClient

from mcp_gate.metadata import create_metadata_routes, protected_resource_metadata
from mcp_gate.models import AuthorizationServerConfig, GatewayConfig, ResourceConfig

AS_METADATA_URL = (
    "https://auth.example.com/res-123/.well-known/oauth-authorization-server"
)


def _client(config, handler=None) -> TestClient:
    http_client = None
    if handler is not None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    app = Starlette(routes=create_metadata_routes(config, http_client=http_client))
    return TestClient(app)


class TestProtectedResourceMetadata:
    """Tests for protected_resource_metadata."""

    def test_document(self, gateway_config):
        """The document names the resource and its authorization server."""
        assert protected_resource_metadata(gateway_config) == {
            "resource": "http://localhost:3002",
            "authorization_servers": ["https://auth.example.com/resources/res-123"],
            "bearer_methods_supported": ["header"],
            "resource_documentation": "http://localhost:3002/docs",
            "scopes_supported": ["usr:read"],
        }

    def test_custom_resource(self):
        """Explicit resource settings are reflected in the document."""
        config = GatewayConfig(
            authorization_server=AuthorizationServerConfig(url="https://auth.example.com"),
            resource=ResourceConfig(
                base_url="https://mcp.example.com",
                documentation_url="https://docs.example.com",
                scopes_supported=["usr:read", "usr:write"],
            ),
        )
        document = protected_resource_metadata(config)
        assert document["resource"] == "https://mcp.example.com"
        assert document["authorization_servers"] == ["https://auth.example.com"]
        assert document["resource_documentation"] == "https://docs.example.com"
        assert document["scopes_supported"] == ["usr:read", "usr:write"]


class TestMetadataRoutes:
    """Tests for the discovery routes."""

    def test_protected_resource_route(self, gateway_config):
        """The protected resource document is served with cache headers."""
        client = _client(gateway_config)
        response = client.get("/.well-known/oauth-protected-resource")

        assert response.status_code == 200
        assert response.json() == protected_resource_metadata(gateway_config)
        assert response.headers["cache-control"] == "public, max-age=3600"

    def test_authorization_server_proxy(self, gateway_config):
        """Authorization server metadata is relayed from upstream."""
        upstream = {"issuer": "https://auth.example.com", "token_endpoint": "x"}

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == AS_METADATA_URL
            return httpx.Response(200, json=upstream)

        client = _client(gateway_config, handler)
        response = client.get("/.well-known/oauth-authorization-server")

        assert response.status_code == 200
        assert response.json() == upstream

    def test_authorization_server_upstream_error(self, gateway_config):
        """Upstream errors become a generic 500 without the upstream body."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="internal upstream details")

        client = _client(gateway_config, handler)
        response = client.get("/.well-known/oauth-authorization-server")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to fetch authorization server metadata"
        }

    def test_authorization_server_unreachable(self, gateway_config):
        """Connection failures become a 500."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(gateway_config, handler)
        response = client.get("/.well-known/oauth-authorization-server")
        assert response.status_code == 500

    def test_authorization_server_invalid_json(self, gateway_config):
        """A body that is not JSON becomes a 500."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        client = _client(gateway_config, handler)
        response = client.get("/.well-known/oauth-authorization-server")
        assert response.status_code == 500
