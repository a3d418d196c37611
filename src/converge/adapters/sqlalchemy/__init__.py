"""SQLAlchemy adapter package for converge state persistence."""

from __future__ import annotations

from .backend import SqlAlchemyStateBackend
from .mappings import (
    mapper_registry,
    state_lock_table,
    state_snapshot_table,
)
from .unit_of_work import (
    StartupError,
    is_started,
    shutdown,
    startup,
    state_backend,
)

__all__ = [
    "SqlAlchemyStateBackend",
    "StartupError",
    "is_started",
    "mapper_registry",
    "shutdown",
    "startup",
    "state_backend",
    "state_lock_table",
    "state_snapshot_table",
]
