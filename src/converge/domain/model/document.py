"""Tokenized configuration document handed to the graph builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from .resources import DEFAULT_PROVIDER, ResourceTypeRegistry, ResourceTypeSchema

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceDeclaration:
    """One resource block as written, before references are parsed.

    ``location`` is a human-readable pointer back into the source document
    used in error messages.
    """

    type: str
    name: str
    attributes: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    provider: str = DEFAULT_PROVIDER
    depends_on: tuple[str, ...] = ()
    location: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ConfigurationDocument:
    resources: tuple[ResourceDeclaration, ...] = ()
    types: tuple[ResourceTypeSchema, ...] = ()

    def registry(self) -> ResourceTypeRegistry:
        return ResourceTypeRegistry.of(*self.types)
