"""State differ: desired graph versus last-applied snapshot.

Nodes are visited in dependency order so that a reference can be resolved
against the action already planned for its target:

- target being created or replaced: the value is ``UNKNOWN``
- target being updated: ``UNKNOWN`` unless the attribute is ``id`` (kept by
  an update) or one of its unchanged inputs, since the provider reports the
  new values only once the update has run
- otherwise: the target's prior outputs (falling back to prior inputs)

An ``UNKNOWN`` value always counts as a change, which is how a replacement
propagates to resources that reference the replaced one.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from converge.domain.model import (
    ID_ATTRIBUTE,
    UNKNOWN,
    ResourceTypeRegistry,
    contains_unknown,
    resolve_attributes,
)

from .changes import ChangeAction, ChangeEntry, ChangeSet

if TYPE_CHECKING:
    from collections.abc import Mapping

    from converge.domain.model import (
        Reference,
        ResourceAddress,
        ResourceNode,
        ResourceState,
        StateSnapshot,
    )

    from .graph import ResourceGraph

log = getLogger(__name__)


class DiffStates(Protocol):
    """Compare a desired graph with a prior snapshot."""

    def __call__(
        self,
        graph: ResourceGraph,
        prior: StateSnapshot,
        *,
        registry: ResourceTypeRegistry | None = None,
    ) -> ChangeSet: ...


def diff(
    graph: ResourceGraph,
    prior: StateSnapshot,
    *,
    registry: ResourceTypeRegistry | None = None,
) -> ChangeSet:
    types = registry or ResourceTypeRegistry()
    planned: dict[ResourceAddress, ChangeEntry] = {}

    def lookup(reference: Reference) -> object:
        return _planned_value(planned[reference.address], reference)

    for address in graph.topological_order():
        node = graph.node(address)
        resolved = resolve_attributes(node.attributes, lookup)
        planned[address] = _entry_for(node, resolved, prior.get(address), types)

    for state in prior:
        if state.address not in graph:
            planned[state.address] = ChangeEntry(
                address=state.address,
                action=ChangeAction.DELETE,
                prior=state,
            )

    changeset = ChangeSet.of(planned.values())
    log.debug(
        "Diff summary: %s",
        ", ".join(f"{action}={count}" for action, count in changeset.summary().items()),
    )
    return changeset


def _entry_for(
    node: ResourceNode,
    resolved: dict[str, object],
    prior: ResourceState | None,
    types: ResourceTypeRegistry,
) -> ChangeEntry:
    if prior is None:
        return ChangeEntry(
            address=node.address,
            action=ChangeAction.CREATE,
            desired=node,
            planned_attributes=resolved,
            changed_attributes=tuple(sorted(resolved)),
        )

    changed = changed_attributes(resolved, prior.inputs)
    provider_changed = prior.provider != node.provider
    if not changed and not provider_changed:
        return ChangeEntry(
            address=node.address,
            action=ChangeAction.NOOP,
            prior=prior,
            desired=node,
            planned_attributes=resolved,
        )

    schema = types.schema_for(node.type)
    if provider_changed or schema.requires_replacement(changed):
        return ChangeEntry(
            address=node.address,
            action=ChangeAction.REPLACE,
            prior=prior,
            desired=node,
            planned_attributes=resolved,
            changed_attributes=changed,
            replace_policy=schema.replace_policy,
        )

    return ChangeEntry(
        address=node.address,
        action=ChangeAction.UPDATE,
        prior=prior,
        desired=node,
        planned_attributes=resolved,
        changed_attributes=changed,
    )


def changed_attributes(
    desired: Mapping[str, object],
    prior: Mapping[str, object],
) -> tuple[str, ...]:
    changed: list[str] = []
    for name in sorted(set(desired) | set(prior)):
        if name not in desired or name not in prior:
            changed.append(name)
            continue
        value = desired[name]
        if contains_unknown(value) or value != prior[name]:
            changed.append(name)
    return tuple(changed)


def _planned_value(target: ChangeEntry, reference: Reference) -> object:
    if target.action in {ChangeAction.CREATE, ChangeAction.REPLACE} or target.prior is None:
        return UNKNOWN

    top_level = reference.attribute.split(".", 1)[0]
    if target.action is ChangeAction.UPDATE and top_level != ID_ATTRIBUTE:
        unchanged_input = (
            top_level in target.planned_attributes
            and top_level not in target.changed_attributes
        )
        if not unchanged_input:
            return UNKNOWN

    try:
        return target.prior.attribute(reference.attribute)
    except KeyError:
        return UNKNOWN
