"""Change set types shared by the differ, scheduler and report."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from converge.domain.model import (
        DeposedObject,
        ReplacePolicy,
        ResourceAddress,
        ResourceNode,
        ResourceState,
    )


class ChangeAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    NOOP = "noop"


@dataclass(frozen=True, slots=True, kw_only=True)
class ChangeEntry:
    """Planned action for one address.

    ``planned_attributes`` is the desired attribute set resolved as far as the
    plan allows; values that depend on resources not yet created are
    ``UNKNOWN``. ``changed_attributes`` names the attributes that differ from
    the prior inputs. ``deposed`` are old instances still to be deleted.
    """

    address: ResourceAddress
    action: ChangeAction
    prior: ResourceState | None = None
    desired: ResourceNode | None = None
    planned_attributes: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    changed_attributes: tuple[str, ...] = ()
    replace_policy: ReplacePolicy | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "planned_attributes", MappingProxyType(dict(self.planned_attributes))
        )

    @property
    def prior_attributes(self) -> Mapping[str, object] | None:
        return self.prior.inputs if self.prior is not None else None

    @property
    def deposed(self) -> tuple[DeposedObject, ...]:
        return self.prior.deposed if self.prior is not None else ()

    @property
    def is_pending(self) -> bool:
        """True when the entry needs a provider call: a change or deposed objects to delete."""

        return self.action is not ChangeAction.NOOP or bool(self.deposed)

    @property
    def desired_attributes(self) -> Mapping[str, object] | None:
        return self.planned_attributes if self.desired is not None else None


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Exactly one ``ChangeEntry`` per address in desired or prior state."""

    _entries: Mapping[ResourceAddress, ChangeEntry] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )

    @classmethod
    def of(cls, entries: Iterable[ChangeEntry]) -> ChangeSet:
        by_address: dict[ResourceAddress, ChangeEntry] = {}
        for entry in entries:
            if entry.address in by_address:
                raise ValueError(f"Change set already has an entry for {entry.address}")
            by_address[entry.address] = entry
        return cls(MappingProxyType(by_address))

    @property
    def entries(self) -> tuple[ChangeEntry, ...]:
        return tuple(self._entries[address] for address in sorted(self._entries))

    @property
    def pending(self) -> tuple[ChangeEntry, ...]:
        return tuple(entry for entry in self.entries if entry.is_pending)

    @property
    def is_noop(self) -> bool:
        return not self.pending

    def entry_for(self, address: ResourceAddress) -> ChangeEntry | None:
        return self._entries.get(address)

    def summary(self) -> dict[ChangeAction, int]:
        counts = dict.fromkeys(ChangeAction, 0)
        for entry in self._entries.values():
            counts[entry.action] += 1
        return counts

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __iter__(self) -> Iterator[ChangeEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self._entries)
