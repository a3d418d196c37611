"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from converge.adapters.config_document import load_document
from converge.adapters.http_provider import HttpProviderClient
from converge.adapters.sqlalchemy.unit_of_work import is_started, startup, state_backend
from converge.config import get_execution_config, get_provider_config, get_state_config
from converge.domain.model import ResourceAddress
from converge.domain.reconciliation import (
    ApplyExecutor,
    ReconciliationEngine,
    Refresher,
    StateStore,
    render_plan,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable, Mapping
    from pathlib import Path

    from converge.config import ExecutionConfig
    from converge.domain.model import ResourceState, StateSnapshot
    from converge.domain.ports import ProviderClient, StateBackend
    from converge.domain.reconciliation import PlannedRun, RunReport

type ProviderFactory = Callable[[str], ProviderClient]

log = getLogger(__name__)


def http_provider_factory(binding: str) -> ProviderClient:
    return HttpProviderClient(get_provider_config(binding))


def build_providers(
    bindings: Iterable[str],
    *,
    factory: ProviderFactory | None = None,
) -> dict[str, ProviderClient]:
    effective_factory = factory or http_provider_factory
    return {binding: effective_factory(binding) for binding in sorted(set(bindings))}


def close_providers(providers: Mapping[str, ProviderClient]) -> None:
    for client in providers.values():
        close = getattr(client, "close", None)
        if callable(close):
            close()


def _resolve_backend(backend: StateBackend | None, workspace: str) -> StateBackend:
    if backend is not None:
        return backend
    if not is_started():
        startup()
    return state_backend(workspace)


def build_engine(
    *,
    backend: StateBackend | None = None,
    workspace: str | None = None,
    execution: ExecutionConfig | None = None,
) -> ReconciliationEngine:
    state_config = get_state_config(workspace=workspace)
    execution_config = execution or get_execution_config()
    store = StateStore(
        backend=_resolve_backend(backend, state_config.workspace),
        lock_key=state_config.lock_key,
    )
    return ReconciliationEngine(
        store=store,
        executor=ApplyExecutor(config=execution_config),
        refresh=Refresher(config=execution_config),
    )


def plan_configuration(
    path: Path | str,
    *,
    workspace: str | None = None,
    refresh: bool = False,
    destroy: bool = False,
    backend: StateBackend | None = None,
    provider_factory: ProviderFactory | None = None,
) -> PlannedRun:
    """Load ``path`` and plan it against the workspace state."""

    document = load_document(path)
    engine = build_engine(backend=backend, workspace=workspace)

    providers: dict[str, ProviderClient] = {}
    if refresh:
        providers = build_providers(
            (state.provider for state in engine.store.read()), factory=provider_factory
        )
    try:
        planned = engine.plan(document, providers=providers, refresh=refresh, destroy=destroy)
    finally:
        close_providers(providers)

    log.info("Plan for %s:\n%s", path, render_plan(planned.changeset))
    return planned


def apply_configuration(
    path: Path | str,
    *,
    workspace: str | None = None,
    refresh: bool = False,
    destroy: bool = False,
    backend: StateBackend | None = None,
    provider_factory: ProviderFactory | None = None,
    cancellation: threading.Event | None = None,
) -> RunReport:
    """Plan ``path`` and apply it, committing every step that succeeded."""

    document = load_document(path)
    engine = build_engine(backend=backend, workspace=workspace)

    bindings = {declaration.provider for declaration in document.resources}
    for state in engine.store.read():
        bindings.add(state.provider)
        bindings.update(old.provider for old in state.deposed)
    providers = build_providers(bindings, factory=provider_factory)
    try:
        planned = engine.plan(document, providers=providers, refresh=refresh, destroy=destroy)
        log.info("Plan for %s:\n%s", path, render_plan(planned.changeset))
        if planned.is_noop:
            log.info("Nothing to apply")
        report = engine.apply(planned, providers, cancellation=cancellation)
    finally:
        close_providers(providers)

    log.info("%s", report.render())
    return report


def list_state(
    *,
    workspace: str | None = None,
    backend: StateBackend | None = None,
) -> StateSnapshot:
    state_config = get_state_config(workspace=workspace)
    return _resolve_backend(backend, state_config.workspace).read()


def show_resource(
    address: str,
    *,
    workspace: str | None = None,
    backend: StateBackend | None = None,
) -> ResourceState:
    """Return the recorded state of ``address``; ``KeyError`` when absent."""

    parsed = ResourceAddress.parse(address)
    snapshot = list_state(workspace=workspace, backend=backend)
    state = snapshot.get(parsed)
    if state is None:
        raise KeyError(f"{parsed} is not in state serial {snapshot.serial}")
    return state


def force_unlock(
    *,
    workspace: str | None = None,
    backend: StateBackend | None = None,
) -> bool:
    state_config = get_state_config(workspace=workspace)
    resolved = _resolve_backend(backend, state_config.workspace)
    holder = resolved.lock_info(state_config.lock_key)
    if holder is not None:
        log.warning(
            "Releasing lock %s held by %s for %s since %s",
            holder.key,
            holder.owner,
            holder.operation,
            holder.acquired_at,
        )
    return resolved.force_unlock(state_config.lock_key)
