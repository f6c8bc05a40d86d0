"""Pytest fixtures for mcp_gate tests."""

import json
import time

import jwt
import pytest
import yaml
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

ISSUER = "https://auth.example.com"
AUDIENCE = "http://localhost:3002"
KID = "key-1"


def public_jwk(private_key, kid: str) -> dict:
    """Build the public JWK for an RSA private key."""
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


class StaticFetcher:
    """Key set fetcher that serves a fixed JWKS and counts calls."""

    def __init__(self, jwks: dict):
        self.jwks = jwks
        self.calls = 0

    async def __call__(self) -> dict:
        self.calls += 1
        return self.jwks


@pytest.fixture(scope="session")
def private_key():
    """RSA signing key, generated once for the whole test run."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_private_key():
    """A second RSA key the authorization server does not publish."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(private_key):
    """JWKS document publishing the signing key under KID."""
    return {"keys": [public_jwk(private_key, KID)]}


@pytest.fixture
def fetcher(jwks):
    return StaticFetcher(jwks)


@pytest.fixture
def make_token(private_key):
    """Factory for signed access tokens.

    Claims default to a valid token for AUDIENCE with scope ``usr:read``;
    pass keyword overrides, or a value of None to drop a claim.
    """

    def _make(key=None, kid=KID, algorithm="RS256", headers=None, **overrides):
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": AUDIENCE,
            "sub": "user-42",
            "client_id": "client-abc",
            "scope": "usr:read",
            "iat": now,
            "exp": now + 600,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}

        token_headers = dict(headers or {})
        if kid is not None:
            token_headers["kid"] = kid
        return jwt.encode(
            claims, key or private_key, algorithm=algorithm, headers=token_headers
        )

    return _make


@pytest.fixture
def gateway_config():
    """GatewayConfig pointing at a fake authorization server."""
    from mcp_gate.models import AuthorizationServerConfig, GatewayConfig

    return GatewayConfig(
        authorization_server=AuthorizationServerConfig(url=ISSUER, resource_id="res-123")
    )


@pytest.fixture
def sample_config_yaml(tmp_path):
    """Write a sample gateway config file and return its path."""
    config_data = {
        "authorization_server": {
            "url": ISSUER,
            "resource_id": "res-123",
            "fetch_timeout": 5,
        },
        "resource": {
            "port": 3002,
            "scopes_supported": ["usr:read"],
        },
        "server": {
            "name": "greeting-mcp",
            "version": "1.0.0",
        },
    }
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump(config_data))
    return config_file
