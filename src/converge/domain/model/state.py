"""Last-applied state of managed resources."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING
from uuid import uuid4

from .values import lookup_path

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from datetime import datetime

    from .addresses import ResourceAddress


def new_lineage() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class DeposedObject:
    """Old instance of a replaced resource whose delete has not succeeded yet."""

    resource_id: str
    provider: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceState:
    """One resource as the provider last reported it.

    ``inputs`` are the resolved attributes sent to the provider; ``outputs`` are
    the attributes the provider returned (including ``id``). ``dependencies``
    records what the resource depended on when it was applied, so it can be
    deleted in the right order after it disappears from the configuration.
    ``deposed`` lists old instances left behind by a replacement; they are
    deleted on a later run.
    """

    address: ResourceAddress
    provider: str
    resource_id: str
    inputs: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    outputs: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    dependencies: tuple[ResourceAddress, ...] = ()
    deposed: tuple[DeposedObject, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))

    def attribute(self, path: str) -> object:
        """Return an attribute value, preferring provider outputs over inputs."""

        try:
            return lookup_path(self.outputs, path)
        except KeyError:
            return lookup_path(self.inputs, path)


@dataclass(frozen=True, slots=True, kw_only=True)
class StateSnapshot:
    """Versioned mapping from address to last-applied state.

    ``serial`` increases by one with every commit; ``lineage`` identifies the
    workspace history the serial belongs to; ``lock_token`` is the token of the
    lock held by the commit that wrote the snapshot.
    """

    serial: int = 0
    lineage: str = field(default_factory=new_lineage)
    lock_token: str | None = None
    resources: Mapping[ResourceAddress, ResourceState] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "resources", MappingProxyType(dict(self.resources)))

    @classmethod
    def empty(cls) -> StateSnapshot:
        return cls()

    @property
    def addresses(self) -> tuple[ResourceAddress, ...]:
        return tuple(sorted(self.resources))

    def get(self, address: ResourceAddress) -> ResourceState | None:
        return self.resources.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self.resources

    def __iter__(self) -> Iterator[ResourceState]:
        for address in self.addresses:
            yield self.resources[address]

    def __len__(self) -> int:
        return len(self.resources)

    def evolve(
        self,
        resources: Mapping[ResourceAddress, ResourceState],
        *,
        serial: int,
        lock_token: str | None,
    ) -> StateSnapshot:
        return replace(self, resources=resources, serial=serial, lock_token=lock_token)


@dataclass(frozen=True, slots=True, kw_only=True)
class LockInfo:
    """An acquired (or observed) state lock; the token proves ownership."""

    key: str
    token: str
    owner: str
    operation: str
    acquired_at: datetime
