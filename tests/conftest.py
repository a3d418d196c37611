from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from converge.adapters.sqlalchemy import SqlAlchemyStateBackend
from converge.adapters.sqlalchemy.migrations import upgrade_head
from converge.adapters.sqlalchemy.unit_of_work import shutdown, startup
from converge.config import BackoffPolicy, ExecutionConfig
from tests.helpers.providers import FakeProvider
from tests.helpers.state import InMemoryStateBackend

os.environ.setdefault("CONVERGE_DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_backend(sqlite_engine: Engine) -> SqlAlchemyStateBackend:
    return SqlAlchemyStateBackend(sqlite_engine, workspace="test")


@pytest.fixture
def started_adapter(sqlite_engine: Engine) -> Iterator[Engine]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield sqlite_engine
    finally:
        shutdown()


@pytest.fixture
def memory_backend() -> InMemoryStateBackend:
    return InMemoryStateBackend()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fast_execution() -> ExecutionConfig:
    """Execution settings with instant backoff so retries do not sleep."""

    return ExecutionConfig(
        parallelism=4,
        default_timeout_seconds=5.0,
        backoff=BackoffPolicy(total=2, backoff_factor=0.0, backoff_jitter=0.0),
    )
