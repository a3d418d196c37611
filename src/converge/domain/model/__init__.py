"""Domain model (pure, dependency-light)."""

from __future__ import annotations

from .addresses import ResourceAddress
from .document import ConfigurationDocument, ResourceDeclaration
from .resources import (
    DEFAULT_PROVIDER,
    ID_ATTRIBUTE,
    DependencyEdge,
    EdgeKind,
    ReplacePolicy,
    ResourceNode,
    ResourceTypeRegistry,
    ResourceTypeSchema,
)
from .state import DeposedObject, LockInfo, ResourceState, StateSnapshot, new_lineage
from .values import (
    UNKNOWN,
    AttributeValue,
    Interpolation,
    ListValue,
    LiteralValue,
    MapValue,
    Reference,
    ReferenceLookup,
    contains_unknown,
    lookup_path,
    parse_reference,
    parse_value,
    references_in,
    resolve_attributes,
    resolve_value,
)

__all__ = [
    "DEFAULT_PROVIDER",
    "ID_ATTRIBUTE",
    "UNKNOWN",
    "AttributeValue",
    "ConfigurationDocument",
    "DependencyEdge",
    "DeposedObject",
    "EdgeKind",
    "Interpolation",
    "ListValue",
    "LiteralValue",
    "LockInfo",
    "MapValue",
    "Reference",
    "ReferenceLookup",
    "ReplacePolicy",
    "ResourceAddress",
    "ResourceDeclaration",
    "ResourceNode",
    "ResourceState",
    "ResourceTypeRegistry",
    "ResourceTypeSchema",
    "StateSnapshot",
    "contains_unknown",
    "lookup_path",
    "new_lineage",
    "parse_reference",
    "parse_value",
    "references_in",
    "resolve_attributes",
    "resolve_value",
]
