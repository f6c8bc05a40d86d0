"""CLI commands for mcp-gate."""

import json
import time

import click
import jwt
from pydantic import ValidationError

from mcp_gate.config import load_config, load_config_from_env, validate_config
from mcp_gate.exceptions import ConfigError
from mcp_gate.models import GatewayConfig
from mcp_gate.operations import OperationRegistry


def config_option():
    """Decorator for --config option."""
    return click.option(
        "--config", "-c",
        default=None,
        type=click.Path(exists=False),
        help="Config file path (default: read from environment variables)"
    )


def env_file_option():
    """Decorator for --env-file option."""
    return click.option(
        "--env-file", "-e",
        default=".env",
        type=click.Path(),
        help="Path to .env file (default: .env)"
    )


def get_config(config: str | None, env_file: str | None = None) -> GatewayConfig:
    """Load configuration from a YAML file, or from the environment."""
    from dotenv import load_dotenv

    if env_file:
        load_dotenv(env_file)

    try:
        if config:
            return load_config(config)
        return load_config_from_env()
    except (FileNotFoundError, ConfigError, ValidationError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def build_registry(cfg: GatewayConfig) -> OperationRegistry:
    """Build the operation registry the server would use."""
    from mcp_gate.server import create_mcp

    registry = OperationRegistry()
    create_mcp(cfg, registry)
    return registry


@click.group()
def main():
    """MCP Gate: OAuth bearer token gate for an MCP server."""
    pass


@main.command()
@config_option()
@env_file_option()
@click.option("--host", "-H", default=None, help="Host to bind (default: from config)")
@click.option("--port", "-p", default=None, type=int, help="Port to bind (default: from config)")
def serve(config: str | None, env_file: str, host: str | None, port: int | None):  # pragma: no cover
    """Start the gated MCP server."""
    from mcp_gate.debug import configure_logging
    from mcp_gate.server import run

    cfg = get_config(config, env_file)
    configure_logging(cfg.log_level)
    run(cfg, host=host, port=port)


@main.command()
@config_option()
@env_file_option()
def validate(config: str | None, env_file: str):
    """Validate configuration."""
    cfg = get_config(config, env_file)
    errors = validate_config(cfg, build_registry(cfg))
    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        raise SystemExit(1)
    click.echo("Configuration is valid.")


@main.command()
@config_option()
@env_file_option()
def metadata(config: str | None, env_file: str):
    """Print the protected resource metadata document."""
    from mcp_gate.metadata import protected_resource_metadata

    cfg = get_config(config, env_file)
    click.echo(json.dumps(protected_resource_metadata(cfg), indent=2))


@main.command()
@config_option()
@env_file_option()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def operations(config: str | None, env_file: str, as_json: bool):
    """List operations and the scopes they require."""
    cfg = get_config(config, env_file)
    registry = build_registry(cfg)

    if as_json:
        output = {
            op.name: {
                "required_scopes": list(op.required_scopes),
                "description": op.description,
            }
            for op in registry
        }
        click.echo(json.dumps(output, indent=2))
        return

    for op in registry:
        scopes = ", ".join(op.required_scopes) or "(none)"
        click.echo(f"{op.name}: {scopes}")


@main.command("inspect-token")
@click.argument("token")
@config_option()
@env_file_option()
def inspect_token(token: str, config: str | None, env_file: str):
    """Decode a token WITHOUT verifying it and compare it with the config.

    Useful for working out why a token is rejected. The signature is not
    checked.
    """
    cfg = get_config(config, env_file)

    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        click.echo(f"Error: Token could not be decoded: {e}", err=True)
        raise SystemExit(1)

    expected_issuer = cfg.authorization_server.expected_issuer
    expected_audience = cfg.resource.resource_uri
    audience = claims.get("aud")
    audiences = [audience] if isinstance(audience, str) else audience or []
    exp = claims.get("exp")

    click.echo(f"kid: {header.get('kid')}")
    click.echo(f"alg: {header.get('alg')}")
    click.echo(f"client_id: {claims.get('client_id') or claims.get('azp')}")
    click.echo(f"scope: {claims.get('scope')}")

    problems = []
    if claims.get("iss") != expected_issuer:
        problems.append(f"iss is '{claims.get('iss')}', expected '{expected_issuer}'")
    if expected_audience not in audiences:
        problems.append(f"aud is {audience!r}, expected '{expected_audience}'")
    if header.get("alg") not in cfg.authorization_server.algorithms:
        problems.append(f"alg '{header.get('alg')}' is not an allowed algorithm")
    if not isinstance(exp, (int, float)):
        problems.append("exp claim is missing")
    elif exp <= time.time():
        problems.append(f"token expired at {int(exp)}")

    if problems:
        for problem in problems:
            click.echo(f"Mismatch: {problem}", err=True)
        raise SystemExit(1)
    click.echo("Claims match the gateway configuration (signature not checked).")
