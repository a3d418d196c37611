"""SQLAlchemy implementation of the state backend port.

Every committed serial is stored as its own row, so a write is a single
insert inside one transaction and a half-written snapshot can never be read.
The lock is a row keyed by lock key; the primary key makes acquisition an
insert-or-conflict without waiting.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from converge.adapters.state_codec import decode_snapshot, encode_snapshot
from converge.domain.errors import LockConflictError, PersistenceError
from converge.domain.model import LockInfo, StateSnapshot

from .mappings import state_lock_table, state_snapshot_table

if TYPE_CHECKING:
    from sqlalchemy import Connection, Row
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class SqlAlchemyStateBackend:
    def __init__(self, engine: Engine, *, workspace: str) -> None:
        self.engine = engine
        self.workspace = workspace

    def read(self) -> StateSnapshot:
        try:
            with self.engine.connect() as connection:
                row = connection.execute(
                    select(state_snapshot_table.c.payload)
                    .where(state_snapshot_table.c.workspace == self.workspace)
                    .order_by(state_snapshot_table.c.serial.desc())
                    .limit(1)
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read state for {self.workspace!r}: {exc}") from exc
        if row is None:
            return StateSnapshot.empty()
        return decode_snapshot(row.payload)

    def serials(self) -> tuple[int, ...]:
        with self.engine.connect() as connection:
            rows = connection.execute(
                select(state_snapshot_table.c.serial)
                .where(state_snapshot_table.c.workspace == self.workspace)
                .order_by(state_snapshot_table.c.serial)
            )
            return tuple(row.serial for row in rows)

    def write(self, snapshot: StateSnapshot, *, lock: LockInfo) -> None:
        payload = encode_snapshot(snapshot)
        try:
            with self.engine.begin() as connection:
                holder = self._lock_row(connection, lock.key)
                if holder is None or holder.token != lock.token:
                    raise PersistenceError(
                        f"Refusing to write state: lock {lock.key!r} is not held by this run"
                    )
                connection.execute(
                    insert(state_snapshot_table).values(
                        workspace=self.workspace,
                        serial=snapshot.serial,
                        lineage=snapshot.lineage,
                        lock_token=snapshot.lock_token,
                        payload=payload,
                        written_at=datetime.now(UTC),
                    )
                )
        except IntegrityError as exc:
            raise PersistenceError(
                f"State serial {snapshot.serial} already exists for {self.workspace!r}"
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not write state for {self.workspace!r}: {exc}") from exc
        log.debug("Wrote state %s serial %s", self.workspace, snapshot.serial)

    def acquire_lock(self, key: str, *, operation: str, owner: str) -> LockInfo:
        lock = LockInfo(
            key=key,
            token=uuid4().hex,
            owner=owner,
            operation=operation,
            acquired_at=datetime.now(UTC),
        )
        try:
            with self.engine.begin() as connection:
                connection.execute(
                    insert(state_lock_table).values(
                        key=lock.key,
                        token=lock.token,
                        owner=lock.owner,
                        operation=lock.operation,
                        acquired_at=lock.acquired_at,
                    )
                )
        except IntegrityError as exc:
            raise LockConflictError(key, holder=self.lock_info(key)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not acquire lock {key!r}: {exc}") from exc
        log.debug("Acquired lock %s (%s)", key, operation)
        return lock

    def release_lock(self, lock: LockInfo) -> None:
        try:
            with self.engine.begin() as connection:
                connection.execute(
                    delete(state_lock_table).where(
                        state_lock_table.c.key == lock.key,
                        state_lock_table.c.token == lock.token,
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not release lock {lock.key!r}: {exc}") from exc
        log.debug("Released lock %s", lock.key)

    def lock_info(self, key: str) -> LockInfo | None:
        with self.engine.connect() as connection:
            row = self._lock_row(connection, key)
        if row is None:
            return None
        return LockInfo(
            key=row.key,
            token=row.token,
            owner=row.owner,
            operation=row.operation,
            acquired_at=row.acquired_at,
        )

    def force_unlock(self, key: str) -> bool:
        with self.engine.begin() as connection:
            result = connection.execute(
                delete(state_lock_table).where(state_lock_table.c.key == key)
            )
        released = result.rowcount > 0
        if released:
            log.warning("Force-released lock %s", key)
        return released

    @staticmethod
    def _lock_row(connection: Connection, key: str) -> Row[Any] | None:
        return connection.execute(
            select(
                state_lock_table.c.key,
                state_lock_table.c.token,
                state_lock_table.c.owner,
                state_lock_table.c.operation,
                state_lock_table.c.acquired_at,
            ).where(state_lock_table.c.key == key)
        ).first()
