"""Error taxonomy for reconciliation runs.

Definitional errors are raised before any provider call is made. Provider
errors describe the outcome of a single provider call and carry a
``transient`` flag the executor uses to decide whether to retry. State errors
surface from the state store; nothing is persisted when they are raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .model import LockInfo, ResourceAddress


class ConvergeError(Exception):
    """Base class for all reconciliation errors."""


# Definitional errors -----------------------------------------------------------


class DefinitionError(ConvergeError):
    """The desired configuration cannot be planned."""


class ParseError(DefinitionError):
    """The configuration document is malformed."""

    def __init__(self, message: str, *, location: str | None = None) -> None:
        super().__init__(f"{location}: {message}" if location else message)
        self.location = location


class DuplicateAddressError(DefinitionError):
    def __init__(self, address: ResourceAddress) -> None:
        super().__init__(f"Resource {address} is declared more than once")
        self.address = address


class UnresolvedReferenceError(DefinitionError):
    def __init__(self, referrer: ResourceAddress, missing: ResourceAddress) -> None:
        super().__init__(f"Resource {referrer} refers to undeclared resource {missing}")
        self.referrer = referrer
        self.missing = missing


class CycleError(DefinitionError):
    """A dependency cycle; ``path`` starts and ends at the same node."""

    def __init__(self, path: Sequence[object]) -> None:
        self.path = tuple(path)
        rendered = " -> ".join(str(item) for item in self.path)
        super().__init__(f"Dependency cycle detected: {rendered}")


class UnknownProviderError(DefinitionError):
    def __init__(self, binding: str, addresses: Sequence[ResourceAddress]) -> None:
        listed = ", ".join(sorted(str(address) for address in addresses))
        super().__init__(f"No provider client configured for binding {binding!r} ({listed})")
        self.binding = binding
        self.addresses = tuple(addresses)


# Provider errors ---------------------------------------------------------------


class ProviderError(ConvergeError):
    """Raised by provider clients for a failed create/update/delete/read call."""

    transient: ClassVar[bool] = False
    kind: ClassVar[str] = "provider"


class TransientProviderError(ProviderError):
    transient = True
    kind = "transient"


class RateLimitedError(TransientProviderError):
    kind = "rate_limited"

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderTimeoutError(TransientProviderError):
    kind = "timeout"


class PermanentProviderError(ProviderError):
    kind = "permanent"


class ValidationRejectedError(PermanentProviderError):
    kind = "validation"


class PermissionDeniedError(PermanentProviderError):
    kind = "permission"


class ConflictError(PermanentProviderError):
    kind = "conflict"


class ResourceNotFoundError(PermanentProviderError):
    kind = "not_found"


# State errors ------------------------------------------------------------------


class StateError(ConvergeError):
    """Raised by the state store and its backends."""


class LockConflictError(StateError):
    def __init__(self, key: str, *, holder: LockInfo | None = None) -> None:
        message = f"State lock {key!r} is already held"
        if holder is not None:
            message += (
                f" (held by {holder.owner} for {holder.operation} since {holder.acquired_at})"
            )
        super().__init__(message)
        self.key = key
        self.holder = holder


class PersistenceError(StateError):
    """The snapshot could not be written; nothing was persisted."""


class StaleStateError(PersistenceError):
    def __init__(self, *, expected_serial: int, current_serial: int) -> None:
        super().__init__(
            f"State changed during the run: planned against serial {expected_serial}, "
            f"backend is at serial {current_serial}"
        )
        self.expected_serial = expected_serial
        self.current_serial = current_serial


class OperationCancelledError(ConvergeError):
    """The run was cancelled before the operation could start or retry."""
