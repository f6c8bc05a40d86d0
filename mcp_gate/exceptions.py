"""Exception types for MCP Gate."""

from enum import Enum


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigError(GatewayError):
    """Raised when configuration is missing or invalid."""


class KeySetError(GatewayError):
    """Base class for key set cache errors."""


class KeyFetchError(KeySetError):
    """Raised when the authorization server's key set could not be fetched."""

    def __init__(self, jwks_uri: str, reason: str):
        self.jwks_uri = jwks_uri
        self.reason = reason
        super().__init__(f"Failed to fetch key set from {jwks_uri}: {reason}")


class KeyNotFoundError(KeySetError):
    """Raised when no key in the latest key set matches a key id."""

    def __init__(self, kid: str):
        self.kid = kid
        super().__init__(f"No signing key with id '{kid}'")


class FailureReason(str, Enum):
    """Internal cause of a failed authentication. Logged, never returned."""

    MISSING_TOKEN = "missing_token"
    MALFORMED_TOKEN = "malformed_token"
    INVALID_SIGNATURE = "invalid_signature"
    ISSUER_MISMATCH = "issuer_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    EXPIRED = "expired"
    KEY_FETCH_FAILED = "key_fetch_failed"
    UNKNOWN_KEY = "unknown_key"


class TokenVerificationError(GatewayError):
    """Raised when a bearer token fails verification.

    Callers see a single error kind; ``reason`` and ``detail`` exist for logs.
    """

    public_description = "Invalid or expired token"

    def __init__(self, reason: FailureReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)
