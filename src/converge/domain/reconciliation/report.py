"""Run report: per-address outcome of an apply."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .changes import ChangeAction
from .execute import ApplyResult, Outcome
from .schedule import StepAction

if TYPE_CHECKING:
    from collections.abc import Iterable

    from converge.domain.model import ResourceAddress, StateSnapshot

    from .changes import ChangeSet
    from .execute import ApplyError


@dataclass(frozen=True, slots=True, kw_only=True)
class NodeReport:
    """Aggregate of every step run for one address.

    A node failed when any of its steps failed, is skipped when all of them
    were skipped, and succeeded otherwise.
    """

    address: ResourceAddress
    outcome: Outcome
    results: tuple[ApplyResult, ...]

    @property
    def errors(self) -> tuple[ApplyError, ...]:
        return tuple(result.error for result in self.results if result.error is not None)


@dataclass(frozen=True, slots=True, kw_only=True)
class RunReport:
    nodes: tuple[NodeReport, ...] = ()
    results: tuple[ApplyResult, ...] = ()
    snapshot: StateSnapshot | None = None
    committed: bool = False

    @property
    def failed(self) -> tuple[NodeReport, ...]:
        return self._with(Outcome.FAILED)

    @property
    def skipped(self) -> tuple[NodeReport, ...]:
        return self._with(Outcome.SKIPPED)

    @property
    def succeeded(self) -> tuple[NodeReport, ...]:
        return self._with(Outcome.SUCCEEDED)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def node(self, address: ResourceAddress) -> NodeReport | None:
        for node in self.nodes:
            if node.address == address:
                return node
        return None

    def _with(self, outcome: Outcome) -> tuple[NodeReport, ...]:
        return tuple(node for node in self.nodes if node.outcome is outcome)

    def render(self) -> str:
        lines = [
            f"Apply finished: {len(self.succeeded)} succeeded, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped"
        ]
        for node in self.nodes:
            actions = ", ".join(
                f"{result.action}{' (replace)' if result.replacing else ''}"
                for result in node.results
            )
            lines.append(f"  {node.outcome:<9} {node.address} [{actions}]")
            lines.extend(f"      {error.kind}: {error.message}" for error in node.errors)
        if self.snapshot is not None:
            state = "committed" if self.committed else "unchanged"
            lines.append(f"State {state} at serial {self.snapshot.serial}")
        return "\n".join(lines)


def build_report(
    results: Iterable[ApplyResult],
    *,
    snapshot: StateSnapshot | None = None,
    committed: bool = False,
) -> RunReport:
    results = tuple(results)
    grouped: dict[ResourceAddress, list[ApplyResult]] = defaultdict(list)
    for result in results:
        grouped[result.address].append(result)

    nodes = tuple(
        NodeReport(
            address=address,
            outcome=_node_outcome(grouped[address]),
            results=tuple(grouped[address]),
        )
        for address in sorted(grouped)
    )
    return RunReport(nodes=nodes, results=results, snapshot=snapshot, committed=committed)


def render_plan(changeset: ChangeSet) -> str:
    """Human-readable plan summary listing every pending change."""

    if changeset.is_noop:
        return "No changes. Infrastructure matches the configuration."
    lines: list[str] = []
    for entry in changeset.pending:
        if entry.action is not ChangeAction.NOOP:
            detail = ""
            if entry.changed_attributes:
                detail = f" ({', '.join(entry.changed_attributes)})"
            lines.append(f"  {entry.action:<7} {entry.address}{detail}")
        if entry.deposed:
            deposed_ids = ", ".join(old.resource_id for old in entry.deposed)
            lines.append(f"  {StepAction.PURGE:<7} {entry.address} (deposed {deposed_ids})")
    counts = changeset.summary()
    planned = [
        f"{count} to {action}"
        for action, count in counts.items()
        if count and action is not ChangeAction.NOOP
    ]
    deposed = sum(len(entry.deposed) for entry in changeset.pending)
    if deposed:
        planned.append(f"{deposed} deposed to delete")
    lines.append("Plan: " + ", ".join(planned))
    return "\n".join(lines)


def _node_outcome(results: Iterable[ApplyResult]) -> Outcome:
    outcomes = {result.outcome for result in results}
    if Outcome.FAILED in outcomes:
        return Outcome.FAILED
    if outcomes == {Outcome.SKIPPED}:
        return Outcome.SKIPPED
    return Outcome.SUCCEEDED
