"""Authentication and authorization gate for MCP Gate HTTP endpoints.

AuthMiddleware sits in front of the MCP streamable-HTTP app and decides, per
request, whether to forward it or reject it:

1. Discovery documents (``/.well-known/...``) and the ``initialize``
   handshake are forwarded without a token, since clients fetch them before
   they have one.
2. Everything else needs ``Authorization: Bearer <token>``; the token is
   verified by a TokenVerifier.
3. ``tools/call`` requests for registered operations must carry every scope
   the operation requires.

Rejections follow RFC 6750 and RFC 9728: a JSON error body plus a
``WWW-Authenticate`` challenge pointing at the protected resource metadata.
Only the OAuth error codes are returned; the specific cause is logged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from mcp_gate.debug import set_request_id, token_preview
from mcp_gate.exceptions import FailureReason, TokenVerificationError
from mcp_gate.operations import OperationDescriptor, OperationRegistry
from mcp_gate.scopes import ScopeAuthorizer, ScopeDecision
from mcp_gate.tokens import TokenVerifier, VerifiedIdentity

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

REQUEST_CONTEXT_KEY = "mcp_gate.request_context"
HANDSHAKE_METHOD = "initialize"
OPERATION_CALL_METHOD = "tools/call"


@dataclass(frozen=True)
class Challenge:
    """An OAuth bearer challenge, rendered into ``WWW-Authenticate``."""

    error: str
    description: str
    resource_metadata: str | None = None
    scope: str | None = None

    def header(self) -> str:
        parts = [f'error="{self.error}"', f'error_description="{self.description}"']
        if self.resource_metadata:
            parts.append(f'resource_metadata="{self.resource_metadata}"')
        if self.scope:
            parts.append(f'scope="{self.scope}"')
        return "Bearer " + ", ".join(parts)


@dataclass(frozen=True)
class RequestContext:
    """Verified caller context attached to an authorized request."""

    identity: VerifiedIdentity
    operations: tuple[OperationDescriptor, ...] = ()
    request_id: str | None = None


def get_request_context(request: Request | Mapping[str, Any]) -> RequestContext | None:
    """Return the RequestContext the gate attached, or None if exempt.

    Accepts a Starlette request or a raw ASGI scope.
    """
    scope = request.scope if isinstance(request, Request) else request
    context = scope.get(REQUEST_CONTEXT_KEY)
    return context if isinstance(context, RequestContext) else None


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that authenticates and scope-checks incoming requests."""

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        registry: OperationRegistry,
        resource_metadata_url: str | None = None,
        exclude_paths: list[str] | None = None,
        rpc_path: str = "/",
    ):
        super().__init__(app)
        self.verifier = verifier
        self.authorizer = ScopeAuthorizer(registry)
        self.resource_metadata_url = resource_metadata_url
        self.exclude_paths = exclude_paths or ["/.well-known/"]
        self.rpc_path = rpc_path

    def extract_token(self, request: Request) -> str | None:
        """Extract the Bearer token. Returns None if absent or malformed."""
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            return auth_header[7:].strip() or None
        return None

    async def _read_payload(self, request: Request) -> Any:
        """Parse a JSON-RPC body. Returns None for anything that is not JSON."""
        if request.method != "POST":
            return None
        body = await request.body()
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError:
            return None

    @staticmethod
    def _messages(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict):
            return [payload]
        if isinstance(payload, list):
            return [message for message in payload if isinstance(message, dict)]
        return []

    def _is_exempt(self, request: Request, payload: Any) -> bool:
        path = request.url.path
        if any(path.startswith(p) for p in self.exclude_paths):
            return True
        return (
            request.method == "POST"
            and path == self.rpc_path
            and isinstance(payload, dict)
            and payload.get("method") == HANDSHAKE_METHOD
        )

    def _unauthorized(self, error: str, description: str) -> JSONResponse:
        challenge = Challenge(
            error=error,
            description=description,
            resource_metadata=self.resource_metadata_url,
        )
        return JSONResponse(
            {"error": error, "error_description": description},
            status_code=401,
            headers={"WWW-Authenticate": challenge.header()},
        )

    def _forbidden(self, decision: ScopeDecision) -> JSONResponse:
        scope = " ".join(decision.required)
        description = f"Required scopes: {', '.join(decision.required)}"
        challenge = Challenge(
            error="insufficient_scope",
            description=description,
            resource_metadata=self.resource_metadata_url,
            scope=scope,
        )
        return JSONResponse(
            {
                "error": "insufficient_scope",
                "error_description": description,
                "scope": scope,
            },
            status_code=403,
            headers={"WWW-Authenticate": challenge.header()},
        )

    async def dispatch(self, request: Request, call_next):
        """Authenticate and authorize before passing the request to the app."""
        request_id = set_request_id()
        payload = await self._read_payload(request)

        if self._is_exempt(request, payload):
            logger.debug(
                "[req=%s] %s %s exempt from authentication",
                request_id,
                request.method,
                request.url.path,
            )
            return await call_next(request)

        token = self.extract_token(request)
        if not token:
            logger.warning(
                "[req=%s] Rejected %s %s: %s",
                request_id,
                request.method,
                request.url.path,
                FailureReason.MISSING_TOKEN.value,
            )
            return self._unauthorized("unauthorized", "Missing or invalid Bearer token")

        try:
            identity = await self.verifier.verify(token)
        except TokenVerificationError as e:
            log = logger.error if e.reason is FailureReason.KEY_FETCH_FAILED else logger.warning
            log(
                "[req=%s] Rejected token %s: %s",
                request_id,
                token_preview(token),
                e,
            )
            return self._unauthorized("invalid_token", e.public_description)

        operations: list[OperationDescriptor] = []
        for message in self._messages(payload):
            if message.get("method") != OPERATION_CALL_METHOD:
                continue
            params = message.get("params")
            name = params.get("name") if isinstance(params, dict) else None
            if not isinstance(name, str):
                continue

            operation, decision = self.authorizer.authorize_operation(identity, name)
            if decision is None:
                logger.debug(
                    "[req=%s] Operation '%s' is not registered, skipping scope check",
                    request_id,
                    name,
                )
                continue
            if not decision.allowed:
                logger.warning(
                    "[req=%s] Insufficient scope for '%s': required=%s granted=%s",
                    request_id,
                    name,
                    list(decision.required),
                    sorted(identity.scopes),
                )
                return self._forbidden(decision)
            operations.append(operation)

        request.scope[REQUEST_CONTEXT_KEY] = RequestContext(
            identity=identity,
            operations=tuple(operations),
            request_id=request_id,
        )
        logger.info(
            "[req=%s] Authenticated client '%s' for %s %s",
            request_id,
            identity.client_id,
            request.method,
            request.url.path,
        )
        return await call_next(request)
