from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect

from converge.adapters.sqlalchemy import SqlAlchemyStateBackend, state_backend
from converge.adapters.sqlalchemy.unit_of_work import StartupError, is_started, shutdown, startup
from converge.domain.errors import LockConflictError, PersistenceError
from converge.domain.model import StateSnapshot
from converge.domain.ports import StateBackend
from converge.domain.reconciliation import ApplyResult, Outcome, StateStore, StepAction
from tests.helpers.state import address, make_snapshot, make_state

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

LOCK_KEY = "test/state"


def test_migrations_create_state_tables(sqlite_engine: Engine) -> None:
    tables = set(inspect(sqlite_engine).get_table_names())

    assert {"state_snapshot", "state_lock"} <= tables


def test_empty_workspace_reads_serial_zero(sqlite_backend: SqlAlchemyStateBackend) -> None:
    snapshot = sqlite_backend.read()

    assert snapshot.serial == 0
    assert len(snapshot) == 0
    assert isinstance(sqlite_backend, StateBackend)


def test_write_requires_held_lock(sqlite_backend: SqlAlchemyStateBackend) -> None:
    lock = sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="tester@host")
    sqlite_backend.release_lock(lock)

    with pytest.raises(PersistenceError, match="not held"):
        sqlite_backend.write(make_snapshot(serial=1), lock=lock)

    assert sqlite_backend.serials() == ()


def test_written_snapshots_are_read_back_latest_first(
    sqlite_backend: SqlAlchemyStateBackend,
) -> None:
    lock = sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="tester@host")
    first = make_snapshot(make_state("network.main", resource_id="net-1"), serial=1)
    second = first.evolve(
        {
            **first.resources,
            address("subnet.a"): make_state("subnet.a", dependencies=("network.main",)),
        },
        serial=2,
        lock_token=lock.token,
    )
    try:
        sqlite_backend.write(first, lock=lock)
        sqlite_backend.write(second, lock=lock)
    finally:
        sqlite_backend.release_lock(lock)

    latest = sqlite_backend.read()
    assert latest.serial == 2
    assert latest.lineage == first.lineage
    assert latest.addresses == (address("network.main"), address("subnet.a"))
    assert sqlite_backend.serials() == (1, 2)


def test_duplicate_serial_is_rejected(sqlite_backend: SqlAlchemyStateBackend) -> None:
    lock = sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="tester@host")
    try:
        sqlite_backend.write(make_snapshot(serial=1), lock=lock)
        with pytest.raises(PersistenceError, match="already exists"):
            sqlite_backend.write(make_snapshot(serial=1), lock=lock)
    finally:
        sqlite_backend.release_lock(lock)


def test_second_lock_conflicts_and_reports_holder(
    sqlite_backend: SqlAlchemyStateBackend,
) -> None:
    held = sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="first@host")

    with pytest.raises(LockConflictError) as excinfo:
        sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="second@host")

    holder = excinfo.value.holder
    assert holder is not None
    assert holder.owner == "first@host"
    assert holder.token == held.token


def test_release_with_wrong_token_keeps_lock(sqlite_backend: SqlAlchemyStateBackend) -> None:
    held = sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="first@host")
    impostor = type(held)(
        key=held.key,
        token="not-the-token",
        owner="second@host",
        operation="apply",
        acquired_at=held.acquired_at,
    )

    sqlite_backend.release_lock(impostor)

    info = sqlite_backend.lock_info(LOCK_KEY)
    assert info is not None and info.token == held.token


def test_force_unlock_releases_abandoned_lock(sqlite_backend: SqlAlchemyStateBackend) -> None:
    sqlite_backend.acquire_lock(LOCK_KEY, operation="apply", owner="crashed@host")

    assert sqlite_backend.force_unlock(LOCK_KEY)
    assert sqlite_backend.lock_info(LOCK_KEY) is None
    assert not sqlite_backend.force_unlock(LOCK_KEY)


def test_workspaces_are_isolated(sqlite_engine: Engine) -> None:
    staging = SqlAlchemyStateBackend(sqlite_engine, workspace="staging")
    production = SqlAlchemyStateBackend(sqlite_engine, workspace="production")
    store = StateStore(backend=staging, lock_key="staging/state", owner="tester@host")
    result = ApplyResult(
        address=address("network.main"),
        action=StepAction.CREATE,
        outcome=Outcome.SUCCEEDED,
        state=make_state("network.main"),
        resource_id="network-main",
    )

    store.commit([result], StateSnapshot.empty())

    assert staging.read().serial == 1
    assert production.read().serial == 0


def test_startup_manages_engine(sqlite_engine: Engine) -> None:
    shutdown()
    with pytest.raises(StartupError):
        state_backend("default")

    startup(engine=sqlite_engine, force=True)
    try:
        assert is_started()
        with pytest.raises(StartupError):
            startup(engine=sqlite_engine)
        assert state_backend("default").read().serial == 0
    finally:
        shutdown()

    assert not is_started()
