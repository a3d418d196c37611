"""Resource graph builder.

Turns a tokenized configuration document into a validated ``ResourceGraph``:

1) parse every declaration into a ``ResourceNode`` (attribute strings become
   tagged values, ``${...}`` expressions become ``Reference`` objects)
2) reject duplicate addresses
3) record references and ``depends_on`` entries as edges, rejecting any that
   point at undeclared resources
4) reject cycles, reporting the full path

The builder is a pure transformation; nothing here touches a provider.
"""

from __future__ import annotations

import re
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from converge.domain.errors import (
    CycleError,
    DuplicateAddressError,
    ParseError,
    UnresolvedReferenceError,
)
from converge.domain.model import (
    DependencyEdge,
    EdgeKind,
    ResourceAddress,
    ResourceNode,
    parse_value,
)
from converge.domain.model.addresses import IDENTIFIER_PATTERN

from .graph import ResourceGraph

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from converge.domain.model import ConfigurationDocument, ResourceDeclaration

log = getLogger(__name__)

_BINDING = re.compile(rf"^{IDENTIFIER_PATTERN}$")


class BuildGraph(Protocol):
    """Build a validated dependency graph from a configuration document."""

    def __call__(self, document: ConfigurationDocument) -> ResourceGraph: ...


def build(document: ConfigurationDocument) -> ResourceGraph:
    nodes: dict[ResourceAddress, ResourceNode] = {}
    for index, declaration in enumerate(document.resources):
        location = declaration.location or f"resources[{index}]"
        node = _parse_declaration(declaration, location=location)
        if node.address in nodes:
            raise DuplicateAddressError(node.address)
        nodes[node.address] = node

    edges = tuple(_collect_edges(nodes))
    graph = ResourceGraph.from_parts(nodes.values(), edges)

    cycle = graph.find_cycle()
    if cycle is not None:
        raise CycleError(cycle)

    log.debug("Built resource graph: nodes=%s, edges=%s", len(graph), len(graph.edges))
    return graph


def _parse_declaration(declaration: ResourceDeclaration, *, location: str) -> ResourceNode:
    try:
        address = ResourceAddress(type=declaration.type, name=declaration.name)
    except ParseError as exc:
        raise ParseError(str(exc), location=location) from exc

    if not _BINDING.match(declaration.provider):
        raise ParseError(f"Invalid provider binding {declaration.provider!r}", location=location)

    attributes = {
        name: parse_value(raw, location=f"{location}.attributes.{name}")
        for name, raw in declaration.attributes.items()
    }

    depends_on: list[ResourceAddress] = []
    for position, text in enumerate(declaration.depends_on):
        try:
            depends_on.append(ResourceAddress.parse(text))
        except ParseError as exc:
            raise ParseError(str(exc), location=f"{location}.depends_on[{position}]") from exc

    return ResourceNode(
        address=address,
        attributes=attributes,
        provider=declaration.provider,
        depends_on=tuple(dict.fromkeys(depends_on)),
    )


def _collect_edges(nodes: Mapping[ResourceAddress, ResourceNode]) -> Iterator[DependencyEdge]:
    for node in nodes.values():
        for dependency in node.depends_on:
            if dependency not in nodes:
                raise UnresolvedReferenceError(node.address, dependency)
            yield DependencyEdge(
                source=dependency,
                target=node.address,
                kind=EdgeKind.EXPLICIT,
            )
        for reference in node.references():
            if reference.address not in nodes:
                raise UnresolvedReferenceError(node.address, reference.address)
            yield DependencyEdge(
                source=reference.address,
                target=node.address,
                kind=EdgeKind.IMPLICIT_REFERENCE,
            )
