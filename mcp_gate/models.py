"""Configuration models for MCP Gate."""

from pydantic import BaseModel, ConfigDict


class AuthorizationServerConfig(BaseModel):
    """Configuration for the external OAuth authorization server.

    Only ``url`` is required; the issuer, JWKS endpoint and metadata document
    location are derived from it unless given explicitly.
    """

    url: str
    resource_id: str | None = None
    issuer: str | None = None
    jwks_uri: str | None = None
    metadata_url: str | None = None
    algorithms: list[str] = ["RS256"]
    key_cache_ttl: float = 3600.0
    key_refresh_interval: float = 30.0
    fetch_timeout: float = 10.0
    leeway: int = 0

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    @property
    def expected_issuer(self) -> str:
        """Issuer claim tokens must carry. Compared exactly."""
        return self.issuer if self.issuer is not None else self.url

    @property
    def resolved_jwks_uri(self) -> str:
        return self.jwks_uri or f"{self.base_url}/keys"

    @property
    def authorization_server_uri(self) -> str:
        """Authorization server advertised in the protected resource metadata."""
        if self.resource_id:
            return f"{self.base_url}/resources/{self.resource_id}"
        return self.base_url

    @property
    def resolved_metadata_url(self) -> str:
        if self.metadata_url:
            return self.metadata_url
        if self.resource_id:
            return (
                f"{self.base_url}/{self.resource_id}"
                "/.well-known/oauth-authorization-server"
            )
        return f"{self.base_url}/.well-known/oauth-authorization-server"


class ResourceConfig(BaseModel):
    """Configuration for this resource server (the protected MCP endpoint)."""

    host: str = "localhost"
    port: int = 3002
    base_url: str | None = None
    mcp_path: str = "/"
    documentation_url: str | None = None
    scopes_supported: list[str] = ["usr:read"]

    @property
    def resource_uri(self) -> str:
        """Canonical resource identifier; tokens must name it as audience."""
        if self.base_url:
            return self.base_url
        return f"http://{self.host}:{self.port}"

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.resource_uri.rstrip('/')}/.well-known/oauth-protected-resource"

    @property
    def resolved_documentation_url(self) -> str:
        return self.documentation_url or f"{self.resource_uri.rstrip('/')}/docs"


class ServerInfoConfig(BaseModel):
    """Identity of the MCP server, forwarded to the RPC layer."""

    name: str = "greeting-mcp"
    version: str = "1.0.0"


class GatewayConfig(BaseModel):
    """Root configuration for MCP Gate."""

    model_config = ConfigDict(extra="forbid")

    authorization_server: AuthorizationServerConfig
    resource: ResourceConfig = ResourceConfig()
    server: ServerInfoConfig = ServerInfoConfig()
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"
