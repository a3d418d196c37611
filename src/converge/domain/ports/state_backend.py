"""State backend port: snapshot blob storage plus a mutual-exclusion lock."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from converge.domain.model import LockInfo, StateSnapshot


@runtime_checkable
class StateBackend(Protocol):
    """Persist snapshots atomically and hand out exclusive locks.

    ``read`` returns the latest snapshot (an empty one with serial 0 when
    nothing was written yet). ``write`` persists the whole snapshot or nothing
    and must reject writers that do not hold ``lock``. ``acquire_lock`` never
    waits: it raises ``LockConflictError`` when the key is already held.
    """

    def read(self) -> StateSnapshot: ...

    def write(self, snapshot: StateSnapshot, *, lock: LockInfo) -> None: ...

    def acquire_lock(self, key: str, *, operation: str, owner: str) -> LockInfo: ...

    def release_lock(self, lock: LockInfo) -> None: ...

    def lock_info(self, key: str) -> LockInfo | None: ...

    def force_unlock(self, key: str) -> bool: ...
