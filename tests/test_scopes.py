"""Tests for scope authorization."""

import time

from mcp_gate.operations import OperationRegistry, UnknownOperation
from mcp_gate.scopes import ScopeAuthorizer, authorize
from mcp_gate.tokens import VerifiedIdentity


def _identity(*scopes: str) -> VerifiedIdentity:
    return VerifiedIdentity(
        token="t",
        client_id="client-abc",
        scopes=frozenset(scopes),
        expires_at=int(time.time()) + 60,
        resource="http://localhost:3002",
        issuer="https://auth.example.com",
    )


class TestAuthorize:
    """Tests for authorize."""

    def test_all_scopes_granted(self):
        """Allowed when every required scope is granted."""
        decision = authorize(_identity("usr:read", "usr:write"), ["usr:read"])
        assert decision.allowed
        assert decision.missing == ()

    def test_every_scope_is_required(self):
        """Required scopes are ANDed, not ORed."""
        decision = authorize(_identity("usr:read"), ["usr:read", "usr:write"])
        assert not decision.allowed
        assert decision.missing == ("usr:write",)

    def test_missing_keeps_required_order(self):
        """Missing scopes are listed in the order they were required."""
        decision = authorize(_identity(), ["c", "a", "b"])
        assert decision.required == ("c", "a", "b")
        assert decision.missing == ("c", "a", "b")

    def test_no_required_scopes(self):
        """An operation without required scopes is always allowed."""
        assert authorize(_identity(), []).allowed

    def test_scopes_are_exact_strings(self):
        """Scopes are compared as exact strings; there is no hierarchy."""
        decision = authorize(_identity("usr"), ["usr:read"])
        assert not decision.allowed


class TestScopeAuthorizer:
    """Tests for ScopeAuthorizer."""

    def test_known_operation(self):
        """Known operations are checked against their required scopes."""
        registry = OperationRegistry()
        registry.register("greet_user", required_scopes=["usr:read"])
        authorizer = ScopeAuthorizer(registry)

        operation, decision = authorizer.authorize_operation(_identity(), "greet_user")

        assert operation.name == "greet_user"
        assert decision is not None
        assert decision.missing == ("usr:read",)

    def test_unknown_operation_not_checked(self):
        """Unknown operations get no decision."""
        authorizer = ScopeAuthorizer(OperationRegistry())
        operation, decision = authorizer.authorize_operation(_identity(), "nope")
        assert isinstance(operation, UnknownOperation)
        assert decision is None
