"""Registry of RPC operations and the scopes they require."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class OperationDescriptor:
    """A named operation and the scopes a caller must hold to invoke it."""

    name: str
    required_scopes: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class UnknownOperation:
    """Lookup result for a name the registry does not know.

    Scope enforcement is skipped for unknown operations; the RPC layer
    rejects them on its own terms.
    """

    name: str


class OperationRegistry:
    """Maps operation names to their descriptors.

    Populated once at startup by the RPC layer; the gate only reads it.
    """

    def __init__(self, operations: Iterable[OperationDescriptor] = ()):
        self._operations: dict[str, OperationDescriptor] = {}
        for operation in operations:
            self.add(operation)

    def add(self, operation: OperationDescriptor) -> OperationDescriptor:
        if operation.name in self._operations:
            raise ValueError(f"Operation '{operation.name}' is already registered")
        self._operations[operation.name] = operation
        return operation

    def register(
        self,
        name: str,
        required_scopes: Iterable[str] = (),
        description: str = "",
    ) -> OperationDescriptor:
        """Register an operation. Duplicate scopes are dropped, order is kept."""
        scopes = tuple(dict.fromkeys(required_scopes))
        return self.add(
            OperationDescriptor(name=name, required_scopes=scopes, description=description)
        )

    def resolve(self, name: str) -> OperationDescriptor | UnknownOperation:
        """Look up an operation by name."""
        operation = self._operations.get(name)
        if operation is None:
            return UnknownOperation(name=name)
        return operation

    def scopes(self) -> list[str]:
        """All scopes required by any registered operation, sorted."""
        return sorted({s for op in self._operations.values() for s in op.required_scopes})

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[OperationDescriptor]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)
