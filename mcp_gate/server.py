"""Application wiring for MCP Gate.

Builds the FastMCP server with its tools, puts the authentication gate in
front of it and adds the discovery routes.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route

from mcp_gate.auth import AuthMiddleware, RequestContext, get_request_context
from mcp_gate.debug import timed_operation
from mcp_gate.keys import HttpKeySetFetcher, KeySetCache, KeySetFetcher
from mcp_gate.metadata import create_metadata_routes
from mcp_gate.models import GatewayConfig
from mcp_gate.operations import OperationDescriptor, OperationRegistry
from mcp_gate.tokens import TokenVerifier

logger = logging.getLogger(__name__)

READ_SCOPE = "usr:read"


def current_request_context() -> RequestContext | None:
    """Return the gate's context for the HTTP request being served, if any."""
    try:
        request = get_http_request()
    except RuntimeError:
        return None
    return get_request_context(request)


def register_operation(
    mcp: FastMCP,
    registry: OperationRegistry,
    fn: Callable[..., Awaitable[Any]],
    *,
    name: str | None = None,
    required_scopes: Iterable[str] = (),
    description: str | None = None,
) -> OperationDescriptor:
    """Register a tool on the MCP server and its scopes in the registry."""
    tool_name = name or fn.__name__
    tool_description = description or (fn.__doc__ or "").strip()
    descriptor = registry.register(
        tool_name, required_scopes=required_scopes, description=tool_description
    )
    mcp.tool(
        timed_operation(fn, operation_name=tool_name),
        name=tool_name,
        description=tool_description,
    )
    return descriptor


async def greet_user(name: str) -> str:
    """Greet a user by name."""
    context = current_request_context()
    if context is not None:
        logger.info(
            "[req=%s] Greeting '%s' for client '%s'",
            context.request_id,
            name,
            context.identity.client_id,
        )
    return f"Hello, {name}!"


def create_mcp(config: GatewayConfig, registry: OperationRegistry) -> FastMCP:
    """Create the FastMCP server and register its tools."""
    mcp = FastMCP(config.server.name, version=config.server.version)
    register_operation(mcp, registry, greet_user, required_scopes=[READ_SCOPE])
    return mcp


def create_app(
    config: GatewayConfig,
    *,
    key_fetcher: KeySetFetcher | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Starlette:
    """Create the gated ASGI application.

    Args:
        config: Gateway configuration
        key_fetcher: Source of the signing key set; defaults to fetching the
            configured JWKS URI over HTTP
        http_client: Shared client for outbound requests to the authorization
            server

    Returns:
        Starlette app serving the discovery routes and, behind the gate, the
        MCP streamable-HTTP endpoint at ``resource.mcp_path``
    """
    auth_server = config.authorization_server
    registry = OperationRegistry()
    mcp = create_mcp(config, registry)

    if key_fetcher is None:
        key_fetcher = HttpKeySetFetcher(
            auth_server.resolved_jwks_uri,
            timeout=auth_server.fetch_timeout,
            client=http_client,
        )
    key_cache = KeySetCache(
        key_fetcher,
        ttl=auth_server.key_cache_ttl,
        min_refresh_interval=auth_server.key_refresh_interval,
    )
    verifier = TokenVerifier(
        key_cache,
        issuer=auth_server.expected_issuer,
        audience=config.resource.resource_uri,
        algorithms=auth_server.algorithms,
        leeway=auth_server.leeway,
    )

    mcp_app = mcp.http_app(path=config.resource.mcp_path)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info(
            "%s %s protecting %s (issuer %s)",
            config.server.name,
            config.server.version,
            config.resource.resource_uri,
            auth_server.expected_issuer,
        )
        async with mcp_app.lifespan(mcp_app):
            yield

    routes: list[Route | Mount] = []
    routes.extend(create_metadata_routes(config, http_client=http_client))
    routes.append(Mount("/", app=mcp_app))

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["WWW-Authenticate"],
        ),
        Middleware(
            AuthMiddleware,
            verifier=verifier,
            registry=registry,
            resource_metadata_url=config.resource.resource_metadata_url,
            rpc_path=config.resource.mcp_path,
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.mcp = mcp
    app.state.registry = registry
    app.state.key_cache = key_cache
    app.state.verifier = verifier
    return app


def run(
    config: GatewayConfig, host: str | None = None, port: int | None = None
) -> None:  # pragma: no cover
    """Serve the gated app with uvicorn."""
    import uvicorn

    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.resource.host,
        port=port or config.resource.port,
        log_level=config.log_level.lower(),
    )
