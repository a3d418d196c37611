"""Orchestrator for the reconciliation subsystem.

The engine composes the stage interfaces (build, diff, schedule, execute,
commit) without prescribing concrete adapters: provider clients and the
state backend are injected, and each stage can be swapped for tests.

A run has two halves. ``plan`` is pure apart from reading (and optionally
refreshing) state; ``apply`` makes provider calls and commits whatever
succeeded.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from converge.domain.errors import UnknownProviderError

from .builder import build
from .diff import diff
from .execute import ApplyExecutor
from .graph import ResourceGraph
from .refresh import Refresher
from .report import build_report
from .schedule import schedule

if TYPE_CHECKING:
    import threading

    from converge.domain.model import (
        ConfigurationDocument,
        ResourceAddress,
        ResourceTypeRegistry,
        StateSnapshot,
    )
    from converge.domain.ports import ProviderClients

    from .builder import BuildGraph
    from .changes import ChangeSet
    from .diff import DiffStates
    from .refresh import RefreshState
    from .report import RunReport
    from .schedule import ExecutionPlan, ScheduleChanges
    from .state_store import StateStore

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class PlannedRun:
    """Everything ``apply`` needs, captured at plan time."""

    graph: ResourceGraph
    prior: StateSnapshot
    changeset: ChangeSet
    plan: ExecutionPlan
    registry: ResourceTypeRegistry
    operation: str = "apply"

    @property
    def is_noop(self) -> bool:
        return self.changeset.is_noop


@dataclass(slots=True)
class ReconciliationEngine:
    """Run reconciliation from configuration document to committed state."""

    store: StateStore
    build: BuildGraph = build
    diff: DiffStates = diff
    schedule: ScheduleChanges = schedule
    executor: ApplyExecutor = field(default_factory=ApplyExecutor)
    refresh: RefreshState = field(default_factory=Refresher)

    def plan(
        self,
        document: ConfigurationDocument,
        *,
        providers: ProviderClients | None = None,
        refresh: bool = False,
        destroy: bool = False,
    ) -> PlannedRun:
        """Build, diff and schedule ``document`` against the stored state.

        With ``destroy`` the desired graph is empty, so every recorded
        resource is planned for deletion. ``refresh`` reads every recorded
        resource back from ``providers`` first.
        """

        registry = document.registry()
        graph = ResourceGraph.empty() if destroy else self.build(document)
        prior = self.store.read()
        if refresh:
            if providers is None:
                raise ValueError("refresh requires provider clients")
            prior = self.refresh(prior, providers, registry=registry)

        changeset = self.diff(graph, prior, registry=registry)
        plan = self.schedule(changeset, graph)
        log.info(
            "Planned %s resource(s) against state serial %s: %s",
            len(changeset),
            prior.serial,
            ", ".join(
                f"{action}={count}" for action, count in changeset.summary().items() if count
            ),
        )
        return PlannedRun(
            graph=graph,
            prior=prior,
            changeset=changeset,
            plan=plan,
            registry=registry,
            operation="destroy" if destroy else "apply",
        )

    def apply(
        self,
        planned: PlannedRun,
        providers: ProviderClients,
        *,
        cancellation: threading.Event | None = None,
    ) -> RunReport:
        """Execute ``planned`` and commit every succeeded step.

        Raises ``UnknownProviderError`` before any provider call when a step
        is bound to a provider that is not configured. A commit is only made
        when at least one step succeeded or deleted a deposed object.
        """

        check_providers(planned.plan, providers)

        results = tuple(
            self.executor.execute(
                planned.plan,
                providers,
                prior=planned.prior,
                registry=planned.registry,
                cancellation=cancellation,
            )
        )

        if not any(result.succeeded or result.purged for result in results):
            log.info("No step succeeded; state left at serial %s", planned.prior.serial)
            return build_report(results, snapshot=planned.prior, committed=False)

        snapshot = self.store.commit(results, planned.prior, operation=planned.operation)
        return build_report(results, snapshot=snapshot, committed=True)


def check_providers(plan: ExecutionPlan, providers: ProviderClients) -> None:
    unbound: dict[str, list[ResourceAddress]] = defaultdict(list)
    for step in plan.steps:
        for binding in step.bindings - set(providers):
            unbound[binding].append(step.address)
    if unbound:
        binding = min(unbound)
        raise UnknownProviderError(binding, sorted(set(unbound[binding])))
