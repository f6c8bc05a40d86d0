"""Bearer token verification for MCP Gate.

Tokens are JWT access tokens signed by the external authorization server.
Verification checks, in order: shape, signing key, signature, issuer,
audience, expiry. Any failure raises TokenVerificationError; the reason is
for logs only and is never shown to the client.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable

import jwt

from mcp_gate.exceptions import (
    FailureReason,
    KeyFetchError,
    KeyNotFoundError,
    TokenVerificationError,
)
from mcp_gate.keys import KeySetCache

# Claims mapped onto VerifiedIdentity fields rather than extra_claims
_IDENTITY_CLAIMS = frozenset(
    {"iss", "sub", "aud", "exp", "nbf", "iat", "jti", "scope", "client_id", "azp"}
)

# The gate checks these claims itself, in a fixed order
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


@dataclass(frozen=True)
class VerifiedIdentity:
    """Caller identity built from a verified access token.

    Lives for one request only.
    """

    token: str = field(repr=False)
    client_id: str
    scopes: frozenset[str]
    expires_at: int
    resource: str
    issuer: str
    subject: str | None = None
    extra_claims: Mapping[str, Any] = field(default_factory=dict)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


def parse_scopes(value: Any) -> frozenset[str]:
    """Parse a ``scope`` claim: space-delimited string, or a list of strings."""
    if isinstance(value, str):
        return frozenset(value.split())
    if isinstance(value, (list, tuple)):
        return frozenset(str(item) for item in value if item)
    return frozenset()


class TokenVerifier:
    """Verifies signed bearer tokens against the authorization server's keys."""

    def __init__(
        self,
        keys: KeySetCache,
        issuer: str,
        audience: str,
        *,
        algorithms: tuple[str, ...] | list[str] = ("RS256",),
        leeway: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.keys = keys
        self.issuer = issuer
        self.audience = audience
        self.algorithms = tuple(algorithms)
        self.leeway = leeway
        self._clock = clock

    async def verify(
        self,
        token: str,
        *,
        issuer: str | None = None,
        audience: str | None = None,
    ) -> VerifiedIdentity:
        """Verify a token and return the caller's identity.

        Args:
            token: Raw bearer token
            issuer: Expected issuer, defaults to the configured one
            audience: Expected audience, defaults to the configured one

        Raises:
            TokenVerificationError: If the token fails any check
        """
        expected_issuer = issuer if issuer is not None else self.issuer
        expected_audience = audience if audience is not None else self.audience

        if not token or token.count(".") != 2 or not all(token.split(".")):
            raise TokenVerificationError(
                FailureReason.MALFORMED_TOKEN, "not a three-segment signed token"
            )

        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise TokenVerificationError(
                FailureReason.MALFORMED_TOKEN, f"unreadable header: {e}"
            ) from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenVerificationError(
                FailureReason.MALFORMED_TOKEN, "header has no 'kid'"
            )
        alg = header.get("alg")
        if alg not in self.algorithms:
            raise TokenVerificationError(
                FailureReason.INVALID_SIGNATURE, f"algorithm '{alg}' is not allowed"
            )

        try:
            key = await self.keys.get_key(kid)
        except KeyNotFoundError as e:
            raise TokenVerificationError(FailureReason.UNKNOWN_KEY, str(e)) from e
        except KeyFetchError as e:
            raise TokenVerificationError(FailureReason.KEY_FETCH_FAILED, str(e)) from e
        if key.algorithm_name != alg:
            raise TokenVerificationError(
                FailureReason.INVALID_SIGNATURE,
                f"key '{kid}' is for {key.algorithm_name}, token uses {alg}",
            )

        claims = self._decode(token, key.key)

        token_issuer = claims.get("iss")
        if token_issuer != expected_issuer:
            raise TokenVerificationError(
                FailureReason.ISSUER_MISMATCH,
                f"expected '{expected_issuer}', got '{token_issuer}'",
            )

        token_audience = claims.get("aud")
        if isinstance(token_audience, str):
            audiences = [token_audience]
        elif isinstance(token_audience, list):
            audiences = token_audience
        else:
            audiences = []
        if expected_audience not in audiences:
            raise TokenVerificationError(
                FailureReason.AUDIENCE_MISMATCH,
                f"expected '{expected_audience}', got {token_audience!r}",
            )

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenVerificationError(FailureReason.EXPIRED, "missing 'exp' claim")
        if self._clock() >= exp + self.leeway:
            raise TokenVerificationError(FailureReason.EXPIRED, f"expired at {exp}")

        return self._build_identity(token, claims, expected_issuer, expected_audience)

    def _decode(self, token: str, key: Any) -> dict[str, Any]:
        try:
            return jwt.decode(
                token, key, algorithms=list(self.algorithms), options=_DECODE_OPTIONS
            )
        except jwt.InvalidSignatureError as e:
            raise TokenVerificationError(
                FailureReason.INVALID_SIGNATURE, "signature does not verify"
            ) from e
        except jwt.InvalidAlgorithmError as e:
            raise TokenVerificationError(FailureReason.INVALID_SIGNATURE, str(e)) from e
        except jwt.InvalidTokenError as e:
            raise TokenVerificationError(FailureReason.MALFORMED_TOKEN, str(e)) from e

    def _build_identity(
        self, token: str, claims: dict[str, Any], issuer: str, audience: str
    ) -> VerifiedIdentity:
        subject = claims.get("sub")
        client_id = claims.get("client_id") or claims.get("azp") or ""
        extra = {k: v for k, v in claims.items() if k not in _IDENTITY_CLAIMS}
        return VerifiedIdentity(
            token=token,
            client_id=str(client_id),
            subject=str(subject) if subject else None,
            scopes=parse_scopes(claims.get("scope")),
            expires_at=int(claims["exp"]),
            resource=audience,
            issuer=issuer,
            extra_claims=MappingProxyType(extra),
        )
