"""Plan scheduler: order a change set into batches of independent steps.

Every pending change becomes one or two steps, plus a purge step for an
entry that is kept but still has deposed objects. For a dependency ``A -> B``
(B depends on A) the step graph gets these edges:

1) desired edges: A's create/update runs before B's create/update
2) prior-recorded edges only: B's delete runs before A's delete
3) when A's old instance is deleted while B is applied without a delete of
   its own (A deleted, or replaced create-before-destroy), B's create/update
   runs before that delete
4) inside a replacement: create then delete, or delete then create
5) a purge step runs after the entry's own step and every step of its
   current or recorded dependents

A replacement downstream of a destroy-before-create replacement is itself
scheduled destroy-before-create, otherwise rules 1-4 would form a cycle.

Batches are topological generations of the step graph: every step in batch
``n`` only waits on steps in earlier batches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

import networkx as nx

from converge.domain.errors import CycleError
from converge.domain.model import ReplacePolicy

from .changes import ChangeAction, ChangeEntry, ChangeSet

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from converge.domain.model import DeposedObject, ResourceAddress

    from .graph import ResourceGraph

log = getLogger(__name__)


class StepAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PURGE = "purge"


_ACTION_RANK = {
    StepAction.DELETE: 0,
    StepAction.CREATE: 1,
    StepAction.UPDATE: 2,
    StepAction.PURGE: 3,
}

type StepKey = tuple[ResourceAddress, StepAction]


@dataclass(frozen=True, slots=True, kw_only=True)
class PlanStep:
    """One provider action.

    ``replacing`` marks the two halves of a replacement; ``dependencies`` are
    the addresses the resulting resource depends on, recorded in state so a
    later run can delete it in the right order.
    A delete, and the purge step of an entry that is otherwise kept, also
    deletes the entry's deposed objects.
    """

    address: ResourceAddress
    action: StepAction
    change: ChangeEntry
    replacing: bool = False
    policy: ReplacePolicy | None = None
    dependencies: tuple[ResourceAddress, ...] = ()

    @property
    def key(self) -> StepKey:
        return (self.address, self.action)

    @property
    def provider(self) -> str:
        if self.action in {StepAction.DELETE, StepAction.PURGE}:
            if self.change.prior is None:
                raise ValueError(f"{self.action} step for {self.address} has no prior state")
            return self.change.prior.provider
        if self.change.desired is None:
            raise ValueError(f"{self.action} step for {self.address} has no desired node")
        return self.change.desired.provider

    @property
    def deposed(self) -> tuple[DeposedObject, ...]:
        """Old instances this step deletes before anything else."""

        if self.action in {StepAction.DELETE, StepAction.PURGE}:
            return self.change.deposed
        return ()

    @property
    def bindings(self) -> frozenset[str]:
        """Provider bindings the step calls."""

        return frozenset({self.provider, *(old.provider for old in self.deposed)})

    def __str__(self) -> str:
        suffix = " (replace)" if self.replacing else ""
        return f"{self.action} {self.address}{suffix}"


def _sort_key(key: StepKey) -> tuple[str, int]:
    address, action = key
    return (str(address), _ACTION_RANK[action])


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    batches: tuple[tuple[PlanStep, ...], ...] = ()
    _upstream: Mapping[StepKey, frozenset[StepKey]] = field(
        default_factory=lambda: MappingProxyType({}), repr=False
    )

    @property
    def steps(self) -> tuple[PlanStep, ...]:
        return tuple(step for batch in self.batches for step in batch)

    @property
    def is_empty(self) -> bool:
        return not self.batches

    def upstream_of(self, step: PlanStep) -> frozenset[StepKey]:
        """Steps that must succeed before ``step`` may start."""

        return self._upstream.get(step.key, frozenset())

    def batch_index(self, address: ResourceAddress, action: StepAction) -> int | None:
        for index, batch in enumerate(self.batches):
            if any(step.key == (address, action) for step in batch):
                return index
        return None

    def __iter__(self) -> Iterator[tuple[PlanStep, ...]]:
        return iter(self.batches)


class ScheduleChanges(Protocol):
    """Order a change set into an execution plan."""

    def __call__(self, changeset: ChangeSet, graph: ResourceGraph) -> ExecutionPlan: ...


def schedule(changeset: ChangeSet, graph: ResourceGraph) -> ExecutionPlan:
    policies = _effective_policies(changeset, graph)
    steps = {step.key: step for step in _steps_for(changeset, graph, policies)}

    step_graph: nx.DiGraph[StepKey] = nx.DiGraph()
    step_graph.add_nodes_from(sorted(steps, key=_sort_key))

    desired_pairs = {(edge.source, edge.target) for edge in graph.edges}
    prior_pairs = {
        (dependency, entry.address)
        for entry in changeset.pending
        if entry.prior is not None
        for dependency in entry.prior.dependencies
    }

    for upstream, downstream in sorted(desired_pairs | prior_pairs, key=str):
        for before, after in _ordering_edges(
            upstream,
            downstream,
            steps,
            policies,
            changeset,
            in_desired=(upstream, downstream) in desired_pairs,
            in_prior=(upstream, downstream) in prior_pairs,
        ):
            step_graph.add_edge(before, after)

    for entry in changeset.pending:
        if entry.action is ChangeAction.REPLACE:
            create = (entry.address, StepAction.CREATE)
            delete = (entry.address, StepAction.DELETE)
            if policies[entry.address] is ReplacePolicy.DESTROY_BEFORE_CREATE:
                step_graph.add_edge(delete, create)
            else:
                step_graph.add_edge(create, delete)

    for entry in changeset.pending:
        purge = (entry.address, StepAction.PURGE)
        if purge not in steps:
            continue
        dependents = set(graph.dependents_of(entry.address)) if entry.address in graph else set()
        dependents.update(
            downstream for upstream, downstream in prior_pairs if upstream == entry.address
        )
        for key in steps:
            if key != purge and (key[0] == entry.address or key[0] in dependents):
                step_graph.add_edge(key, purge)

    try:
        cycle = nx.find_cycle(step_graph)
    except nx.NetworkXNoCycle:
        cycle = None
    if cycle is not None:
        path = [_render_key(edge[0]) for edge in cycle]
        path.append(_render_key(cycle[-1][1]))
        raise CycleError(path)

    batches = tuple(
        tuple(steps[key] for key in sorted(generation, key=_sort_key))
        for generation in nx.topological_generations(step_graph)
    )
    upstream = {key: frozenset(step_graph.predecessors(key)) for key in steps}

    log.debug("Scheduled %s step(s) in %s batch(es)", len(steps), len(batches))
    return ExecutionPlan(batches=batches, _upstream=MappingProxyType(upstream))


def _render_key(key: StepKey) -> str:
    address, action = key
    return f"{action} {address}"


def _effective_policies(
    changeset: ChangeSet,
    graph: ResourceGraph,
) -> dict[ResourceAddress, ReplacePolicy]:
    policies: dict[ResourceAddress, ReplacePolicy] = {}
    for address in graph.topological_order():
        entry = changeset.entry_for(address)
        if entry is None or entry.action is not ChangeAction.REPLACE:
            continue
        policy = entry.replace_policy or ReplacePolicy.CREATE_BEFORE_DESTROY
        if policy is ReplacePolicy.CREATE_BEFORE_DESTROY and any(
            policies.get(dependency) is ReplacePolicy.DESTROY_BEFORE_CREATE
            for dependency in graph.dependencies_of(address)
        ):
            log.info(
                "Replacing %s destroy-before-create because a dependency is replaced that way",
                address,
            )
            policy = ReplacePolicy.DESTROY_BEFORE_CREATE
        policies[address] = policy
    return policies


def _steps_for(
    changeset: ChangeSet,
    graph: ResourceGraph,
    policies: Mapping[ResourceAddress, ReplacePolicy],
) -> Iterator[PlanStep]:
    for entry in changeset.pending:
        dependencies = graph.dependencies_of(entry.address) if entry.address in graph else ()
        match entry.action:
            case ChangeAction.CREATE:
                yield PlanStep(
                    address=entry.address,
                    action=StepAction.CREATE,
                    change=entry,
                    dependencies=dependencies,
                )
            case ChangeAction.UPDATE:
                yield PlanStep(
                    address=entry.address,
                    action=StepAction.UPDATE,
                    change=entry,
                    dependencies=dependencies,
                )
            case ChangeAction.DELETE:
                yield PlanStep(address=entry.address, action=StepAction.DELETE, change=entry)
            case ChangeAction.REPLACE:
                policy = policies[entry.address]
                yield PlanStep(
                    address=entry.address,
                    action=StepAction.CREATE,
                    change=entry,
                    replacing=True,
                    policy=policy,
                    dependencies=dependencies,
                )
                yield PlanStep(
                    address=entry.address,
                    action=StepAction.DELETE,
                    change=entry,
                    replacing=True,
                    policy=policy,
                )
            case ChangeAction.NOOP:
                pass
        if entry.deposed and entry.action in {ChangeAction.UPDATE, ChangeAction.NOOP}:
            yield PlanStep(address=entry.address, action=StepAction.PURGE, change=entry)


def _apply_key(steps: Mapping[StepKey, PlanStep], address: ResourceAddress) -> StepKey | None:
    for action in (StepAction.CREATE, StepAction.UPDATE):
        if (address, action) in steps:
            return (address, action)
    return None


def _delete_key(steps: Mapping[StepKey, PlanStep], address: ResourceAddress) -> StepKey | None:
    key = (address, StepAction.DELETE)
    return key if key in steps else None


def _ordering_edges(
    upstream: ResourceAddress,
    downstream: ResourceAddress,
    steps: Mapping[StepKey, PlanStep],
    policies: Mapping[ResourceAddress, ReplacePolicy],
    changeset: ChangeSet,
    *,
    in_desired: bool,
    in_prior: bool,
) -> Iterable[tuple[StepKey, StepKey]]:
    upstream_apply = _apply_key(steps, upstream)
    downstream_apply = _apply_key(steps, downstream)
    upstream_delete = _delete_key(steps, upstream)
    downstream_delete = _delete_key(steps, downstream)

    if in_desired and upstream_apply and downstream_apply:
        yield (upstream_apply, downstream_apply)

    if in_prior and upstream_delete and downstream_delete:
        yield (downstream_delete, upstream_delete)

    if upstream_delete and downstream_apply and downstream_delete is None:
        entry = changeset.entry_for(upstream)
        old_instance_outlives_create = entry is not None and (
            entry.action is ChangeAction.DELETE
            or policies.get(upstream) is ReplacePolicy.CREATE_BEFORE_DESTROY
        )
        if old_instance_outlives_create:
            yield (downstream_apply, upstream_delete)
