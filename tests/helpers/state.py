"""In-memory state backend and snapshot builders for tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from converge.domain.errors import LockConflictError, PersistenceError
from converge.domain.model import (
    DeposedObject,
    LockInfo,
    ResourceAddress,
    ResourceState,
    StateSnapshot,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.ports import StateBackend


@dataclass(slots=True)
class InMemoryStateBackend:
    snapshots: list[StateSnapshot] = field(default_factory=list[StateSnapshot])
    locks: dict[str, LockInfo] = field(default_factory=dict[str, LockInfo])
    fail_writes: bool = False
    released: list[LockInfo] = field(default_factory=list[LockInfo])

    def read(self) -> StateSnapshot:
        return self.snapshots[-1] if self.snapshots else StateSnapshot.empty()

    def write(self, snapshot: StateSnapshot, *, lock: LockInfo) -> None:
        if self.fail_writes:
            raise PersistenceError("disk full")
        holder = self.locks.get(lock.key)
        if holder is None or holder.token != lock.token:
            raise PersistenceError(f"lock {lock.key} not held")
        self.snapshots.append(snapshot)

    def acquire_lock(self, key: str, *, operation: str, owner: str) -> LockInfo:
        if key in self.locks:
            raise LockConflictError(key, holder=self.locks[key])
        lock = LockInfo(
            key=key,
            token=uuid4().hex,
            owner=owner,
            operation=operation,
            acquired_at=datetime.now(UTC),
        )
        self.locks[key] = lock
        return lock

    def release_lock(self, lock: LockInfo) -> None:
        holder = self.locks.get(lock.key)
        if holder is not None and holder.token == lock.token:
            del self.locks[lock.key]
            self.released.append(lock)

    def lock_info(self, key: str) -> LockInfo | None:
        return self.locks.get(key)

    def force_unlock(self, key: str) -> bool:
        return self.locks.pop(key, None) is not None


def address(text: str) -> ResourceAddress:
    return ResourceAddress.parse(text)


def make_state(
    text: str,
    *,
    resource_id: str | None = None,
    inputs: Mapping[str, object] | None = None,
    outputs: Mapping[str, object] | None = None,
    provider: str = "default",
    dependencies: tuple[str, ...] = (),
    deposed: tuple[str, ...] = (),
) -> ResourceState:
    parsed = address(text)
    effective_id = resource_id or f"{parsed.type}-{parsed.name}"
    effective_inputs = dict(inputs or {})
    return ResourceState(
        address=parsed,
        provider=provider,
        resource_id=effective_id,
        inputs=effective_inputs,
        outputs=dict(outputs) if outputs is not None else {**effective_inputs, "id": effective_id},
        dependencies=tuple(address(item) for item in dependencies),
        deposed=tuple(DeposedObject(resource_id=item, provider=provider) for item in deposed),
    )


def make_snapshot(*states: ResourceState, serial: int = 1) -> StateSnapshot:
    return StateSnapshot(serial=serial, resources={state.address: state for state in states})


if TYPE_CHECKING:
    _backend_check: StateBackend = InMemoryStateBackend()
