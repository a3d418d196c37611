"""State store: merge apply results into a new snapshot under the state lock.

A commit is all-or-nothing. The lock is taken without waiting, the backend
serial must still match the one the plan was made against, and the lock is
released on every path out.
"""

from __future__ import annotations

import getpass
import socket
from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING

from converge.domain.errors import StaleStateError
from converge.domain.model import DeposedObject

from .execute import Outcome
from .schedule import StepAction

if TYPE_CHECKING:
    from collections.abc import Iterable

    from converge.domain.model import ResourceAddress, ResourceState, StateSnapshot
    from converge.domain.ports import StateBackend

    from .execute import ApplyResult

log = getLogger(__name__)


def default_owner() -> str:
    try:
        user = getpass.getuser()
    except OSError:
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


def merge_results(
    prior: StateSnapshot,
    results: Iterable[ApplyResult],
) -> dict[ResourceAddress, ResourceState]:
    """Fold results over the prior resources, in result order.

    A delete only removes the entry when it still records the deleted
    provider object, so the old half of a create-before-destroy replacement
    cannot remove the new instance. When that old half does not succeed, the
    old instance is kept as a deposed object of the new one. Purged deposed
    objects are dropped whatever the outcome of the step that removed them.
    """

    resources = dict(prior.resources)
    for result in results:
        current = resources.get(result.address)
        if current is not None and result.purged:
            current = replace(
                current,
                deposed=tuple(
                    old for old in current.deposed if old.resource_id not in result.purged
                ),
            )
            resources[result.address] = current

        if result.outcome is not Outcome.SUCCEEDED:
            if result.action is StepAction.DELETE and result.replacing:
                _depose(resources, prior.get(result.address))
            continue
        if result.state is not None:
            deposed = current.deposed if current is not None else ()
            resources[result.address] = replace(result.state, deposed=deposed)
        elif result.action is StepAction.DELETE:
            if current is not None and current.resource_id == result.resource_id:
                del resources[result.address]
    return resources


def _depose(
    resources: dict[ResourceAddress, ResourceState], old: ResourceState | None
) -> None:
    if old is None:
        return
    current = resources.get(old.address)
    if current is None or current.resource_id == old.resource_id:
        return
    if any(item.resource_id == old.resource_id for item in current.deposed):
        return
    log.warning(
        "%s: old instance %s was not deleted; recorded as deposed", old.address, old.resource_id
    )
    deposed = DeposedObject(resource_id=old.resource_id, provider=old.provider)
    resources[old.address] = replace(current, deposed=(*current.deposed, deposed))


@dataclass(slots=True)
class StateStore:
    backend: StateBackend
    lock_key: str
    owner: str = field(default_factory=default_owner)

    def read(self) -> StateSnapshot:
        return self.backend.read()

    def commit(
        self,
        results: Iterable[ApplyResult],
        prior: StateSnapshot,
        *,
        operation: str = "apply",
    ) -> StateSnapshot:
        """Persist ``prior`` plus the succeeded ``results`` as serial ``prior.serial + 1``.

        Raises ``LockConflictError`` when another writer holds the lock,
        ``StaleStateError`` when the backend moved past ``prior`` and
        ``PersistenceError`` when the write fails.
        """

        results = tuple(results)
        lock = self.backend.acquire_lock(self.lock_key, operation=operation, owner=self.owner)
        try:
            current = self.backend.read()
            if current.serial != prior.serial:
                raise StaleStateError(expected_serial=prior.serial, current_serial=current.serial)

            snapshot = prior.evolve(
                merge_results(prior, results),
                serial=current.serial + 1,
                lock_token=lock.token,
            )
            self.backend.write(snapshot, lock=lock)
        finally:
            self.backend.release_lock(lock)

        log.info(
            "Committed state serial %s (%s resource(s), %s result(s) merged)",
            snapshot.serial,
            len(snapshot),
            sum(1 for result in results if result.succeeded),
        )
        return snapshot
