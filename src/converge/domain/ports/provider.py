"""Provider client port: the capability that mutates external resources."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping


@runtime_checkable
class ProviderClient(Protocol):
    """Create, update, delete and read resources of any type.

    Create, update and read return the provider's view of the resource,
    which must include its ``id``. Failures are reported by raising
    ``converge.domain.errors.ProviderError`` subclasses. ``timeout`` bounds a
    single call; exceeding it raises ``ProviderTimeoutError``.
    """

    def create_resource(
        self,
        resource_type: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]: ...

    def update_resource(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Mapping[str, object],
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]: ...

    def delete_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> None: ...

    def read_resource(
        self,
        resource_type: str,
        resource_id: str,
        *,
        timeout: float | None = None,
    ) -> Mapping[str, object]: ...


type ProviderClients = Mapping[str, ProviderClient]
