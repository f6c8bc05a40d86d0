"""OAuth discovery documents served by MCP Gate.

Clients that receive a 401 follow the ``resource_metadata`` link in the
challenge to find the authorization server (RFC 9728), then read that
server's own metadata (RFC 8414). Both are served without authentication.
"""

import logging
from typing import Any

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcp_gate.models import GatewayConfig

logger = logging.getLogger(__name__)

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"
METADATA_CACHE_CONTROL = "public, max-age=3600"


def protected_resource_metadata(config: GatewayConfig) -> dict[str, Any]:
    """Build the OAuth 2.0 Protected Resource Metadata document."""
    return {
        "resource": config.resource.resource_uri,
        "authorization_servers": [config.authorization_server.authorization_server_uri],
        "bearer_methods_supported": ["header"],
        "resource_documentation": config.resource.resolved_documentation_url,
        "scopes_supported": list(config.resource.scopes_supported),
    }


def create_metadata_routes(
    config: GatewayConfig, http_client: httpx.AsyncClient | None = None
) -> list[Route]:
    """Create the discovery routes.

    Args:
        config: Gateway configuration
        http_client: Client used to reach the authorization server; a
            short-lived one is created per request when omitted

    Returns:
        Routes for the protected resource document and the authorization
        server metadata proxy
    """
    document = protected_resource_metadata(config)
    upstream_url = config.authorization_server.resolved_metadata_url
    timeout = config.authorization_server.fetch_timeout

    async def oauth_protected_resource(request: Request) -> JSONResponse:
        """Serve OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        return JSONResponse(document, headers={"Cache-Control": METADATA_CACHE_CONTROL})

    async def _fetch_upstream() -> httpx.Response:
        if http_client is not None:
            return await http_client.get(upstream_url, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(upstream_url)

    async def oauth_authorization_server(request: Request) -> JSONResponse:
        """Relay the authorization server's metadata (RFC 8414)."""
        try:
            response = await _fetch_upstream()
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Failed to fetch authorization server metadata from %s: %s",
                upstream_url,
                e,
            )
            return JSONResponse(
                {"error": "Failed to fetch authorization server metadata"},
                status_code=500,
            )
        return JSONResponse(data)

    return [
        Route(PROTECTED_RESOURCE_PATH, oauth_protected_resource, methods=["GET"]),
        Route(AUTHORIZATION_SERVER_PATH, oauth_authorization_server, methods=["GET"]),
    ]
