"""Desired resource nodes, dependency edges and per-type capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from .values import references_in

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .addresses import ResourceAddress
    from .values import AttributeValue, Reference

DEFAULT_PROVIDER: Final[str] = "default"
ID_ATTRIBUTE: Final[str] = "id"


class EdgeKind(StrEnum):
    """Why one resource must be ordered relative to another."""

    EXPLICIT = "explicit"
    IMPLICIT_REFERENCE = "implicit-reference"
    IMPLICIT_ORDERING = "implicit-ordering"


@dataclass(frozen=True, slots=True)
class DependencyEdge:
    """``target`` depends on ``source``."""

    source: ResourceAddress
    target: ResourceAddress
    kind: EdgeKind


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceNode:
    address: ResourceAddress
    attributes: Mapping[str, AttributeValue] = field(
        default_factory=lambda: MappingProxyType({})
    )
    provider: str = DEFAULT_PROVIDER
    depends_on: tuple[ResourceAddress, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def type(self) -> str:
        return self.address.type

    @property
    def name(self) -> str:
        return self.address.name

    def references(self) -> tuple[Reference, ...]:
        return tuple(
            reference for value in self.attributes.values() for reference in references_in(value)
        )


class ReplacePolicy(StrEnum):
    CREATE_BEFORE_DESTROY = "create_before_destroy"
    DESTROY_BEFORE_CREATE = "destroy_before_create"


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceTypeSchema:
    """Capability flags a resource type declares.

    ``replace_on`` lists top-level attributes that cannot be changed in place.
    ``replace_policy`` decides the order of the two halves of a replacement;
    destroy-before-create is for types whose identity cannot exist twice.
    """

    name: str
    replace_on: frozenset[str] = frozenset()
    replace_policy: ReplacePolicy = ReplacePolicy.CREATE_BEFORE_DESTROY
    timeout_seconds: float | None = None

    def requires_replacement(self, changed: Iterable[str]) -> bool:
        return any(attribute in self.replace_on for attribute in changed)


@dataclass(slots=True)
class ResourceTypeRegistry:
    _schemas: dict[str, ResourceTypeSchema] = field(
        default_factory=dict["str", "ResourceTypeSchema"], repr=False
    )

    @classmethod
    def of(cls, *schemas: ResourceTypeSchema) -> ResourceTypeRegistry:
        registry = cls()
        for schema in schemas:
            registry.register(schema)
        return registry

    @property
    def schemas(self) -> tuple[ResourceTypeSchema, ...]:
        return tuple(self._schemas.values())

    def register(self, schema: ResourceTypeSchema) -> None:
        self._schemas[schema.name] = schema

    def schema_for(self, resource_type: str) -> ResourceTypeSchema:
        schema = self._schemas.get(resource_type)
        if schema is None:
            return ResourceTypeSchema(name=resource_type)
        return schema

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._schemas
