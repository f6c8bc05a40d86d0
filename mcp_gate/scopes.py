"""Scope authorization for operation calls."""

from collections.abc import Iterable
from dataclasses import dataclass

from mcp_gate.operations import OperationDescriptor, OperationRegistry, UnknownOperation
from mcp_gate.tokens import VerifiedIdentity


@dataclass(frozen=True)
class ScopeDecision:
    """Outcome of comparing granted scopes with required scopes.

    ``missing`` keeps the order of ``required``; it is empty when allowed.
    """

    required: tuple[str, ...]
    missing: tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return not self.missing


def authorize(identity: VerifiedIdentity, required_scopes: Iterable[str]) -> ScopeDecision:
    """Allow only if every required scope was granted."""
    required = tuple(dict.fromkeys(required_scopes))
    missing = tuple(scope for scope in required if scope not in identity.scopes)
    return ScopeDecision(required=required, missing=missing)


class ScopeAuthorizer:
    """Authorizes calls to named operations using an OperationRegistry."""

    def __init__(self, registry: OperationRegistry):
        self.registry = registry

    def authorize_operation(
        self, identity: VerifiedIdentity, name: str
    ) -> tuple[OperationDescriptor | UnknownOperation, ScopeDecision | None]:
        """Resolve ``name`` and check the identity's scopes against it.

        Returns the lookup result and the decision; the decision is None for
        unknown operations, which are not scope-checked.
        """
        operation = self.registry.resolve(name)
        if isinstance(operation, UnknownOperation):
            return operation, None
        return operation, authorize(identity, operation.required_scopes)
