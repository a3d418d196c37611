"""SQLAlchemy table metadata for persisted state and state locks."""

from __future__ import annotations

from datetime import UTC, datetime
from sqlalchemy import (
    Column,
    DateTime,
    Dialect,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    orm,
)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# One row per committed serial; the newest row is the current state.
state_snapshot_table = Table(
    "state_snapshot",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("workspace", String(255), nullable=False),
    Column("serial", Integer, nullable=False),
    Column("lineage", String(36), nullable=False),
    Column("lock_token", String(64), nullable=True),
    Column("payload", Text, nullable=False),
    Column("written_at", UTCDateTime(), nullable=False),
    UniqueConstraint("workspace", "serial"),
)

state_lock_table = Table(
    "state_lock",
    mapper_registry.metadata,
    Column("key", String(255), primary_key=True),
    Column("token", String(64), nullable=False),
    Column("owner", String(255), nullable=False),
    Column("operation", String(64), nullable=False),
    Column("acquired_at", UTCDateTime(), nullable=False),
)
