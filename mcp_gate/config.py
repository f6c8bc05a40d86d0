"""Configuration loading for MCP Gate."""

import os
import re
import urllib.parse
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from mcp_gate.exceptions import ConfigError
from mcp_gate.models import (
    AuthorizationServerConfig,
    GatewayConfig,
    ResourceConfig,
    ServerInfoConfig,
)

if TYPE_CHECKING:
    from mcp_gate.operations import OperationRegistry

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")
SYMMETRIC_ALGORITHMS = ("HS256", "HS384", "HS512", "none")


def _substitute_env_vars(obj):
    """Recursively substitute ${VAR} with environment variables."""
    if isinstance(obj, str):
        pattern = r"\$\{([^}]+)\}"
        return re.sub(pattern, lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    elif isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    return obj


def load_config(path: str | Path) -> GatewayConfig:
    """Load configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    data = _substitute_env_vars(data)
    return GatewayConfig(**data)


def load_config_from_env(environ: Mapping[str, str] | None = None) -> GatewayConfig:
    """Build configuration from environment variables.

    Recognised variables: SK_ENV_URL (required), MCP_SERVER_ID, TOKEN_ISSUER,
    JWKS_URI, PORT, SERVER_NAME, SERVER_VERSION, LOG_LEVEL and CORS_ORIGINS
    (comma separated).
    """
    env = os.environ if environ is None else environ

    auth_server_url = env.get("SK_ENV_URL")
    if not auth_server_url:
        raise ConfigError("SK_ENV_URL must be set to the authorization server URL")

    port = env.get("PORT", "3002")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got '{port}'") from None

    authorization_server = AuthorizationServerConfig(
        url=auth_server_url,
        resource_id=env.get("MCP_SERVER_ID") or None,
        issuer=env.get("TOKEN_ISSUER") or None,
        jwks_uri=env.get("JWKS_URI") or None,
    )
    server = ServerInfoConfig(
        name=env.get("SERVER_NAME", ServerInfoConfig().name),
        version=env.get("SERVER_VERSION", ServerInfoConfig().version),
    )

    data: dict = {
        "authorization_server": authorization_server,
        "resource": ResourceConfig(port=port_number),
        "server": server,
        "log_level": env.get("LOG_LEVEL", "INFO"),
    }
    if env.get("CORS_ORIGINS"):
        data["cors_origins"] = [
            origin.strip() for origin in env["CORS_ORIGINS"].split(",") if origin.strip()
        ]
    return GatewayConfig(**data)


def _is_secure_url(url: str) -> bool:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme == "https":
        return True
    return parsed.scheme == "http" and (parsed.hostname or "") in LOOPBACK_HOSTS


def validate_config(
    config: GatewayConfig, registry: "OperationRegistry | None" = None
) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []
    auth_server = config.authorization_server

    for algorithm in auth_server.algorithms:
        if algorithm in SYMMETRIC_ALGORITHMS:
            errors.append(
                f"Algorithm '{algorithm}' is not allowed; "
                "tokens must be verified with the server's public keys"
            )
    if not auth_server.algorithms:
        errors.append("At least one signing algorithm must be configured")

    if not _is_secure_url(auth_server.resolved_jwks_uri):
        errors.append(f"JWKS URI must use HTTPS: {auth_server.resolved_jwks_uri}")
    if not _is_secure_url(auth_server.url):
        errors.append(f"Authorization server URL must use HTTPS: {auth_server.url}")

    if auth_server.key_cache_ttl <= 0:
        errors.append("key_cache_ttl must be positive")
    if auth_server.fetch_timeout <= 0:
        errors.append("fetch_timeout must be positive")
    if auth_server.leeway < 0:
        errors.append("leeway must not be negative")

    if not config.resource.mcp_path.startswith("/"):
        errors.append(f"mcp_path must start with '/': {config.resource.mcp_path}")

    if registry is not None:
        supported = set(config.resource.scopes_supported)
        for operation in registry:
            for scope in operation.required_scopes:
                if scope not in supported:
                    errors.append(
                        f"Operation '{operation.name}' requires scope '{scope}' "
                        "which is not listed in scopes_supported"
                    )

    return errors
