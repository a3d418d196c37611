"""Load configuration documents from YAML, JSON or TOML files.

The file is decoded into a mapping, validated with pydantic and converted
into the domain ``ConfigurationDocument``. Attribute strings are passed
through untouched; ``${...}`` expressions are parsed by the graph builder.
"""

from __future__ import annotations

import json
import tomllib
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from converge.domain.errors import ParseError
from converge.domain.model import (
    DEFAULT_PROVIDER,
    ConfigurationDocument,
    ReplacePolicy,
    ResourceDeclaration,
    ResourceTypeSchema,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

log = getLogger(__name__)

YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class DocumentBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TypeSchemaModel(DocumentBaseModel):
    replace_on: list[str] = Field(default_factory=list)
    replace_policy: ReplacePolicy = ReplacePolicy.CREATE_BEFORE_DESTROY
    timeout_seconds: float | None = Field(default=None, gt=0)


class ResourceModel(DocumentBaseModel):
    type: str
    name: str
    provider: str = DEFAULT_PROVIDER
    depends_on: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class DocumentModel(DocumentBaseModel):
    types: dict[str, TypeSchemaModel] = Field(default_factory=dict)
    resources: list[ResourceModel] = Field(default_factory=list)


def parse_document(
    data: Mapping[str, object],
    *,
    source: str | None = None,
) -> ConfigurationDocument:
    """Validate a decoded document and convert it to domain types."""

    try:
        model = DocumentModel.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        if source:
            location = f"{source}:{location}" if location else source
        raise ParseError(
            f"{first['msg']} ({exc.error_count()} error(s))", location=location or None
        ) from exc

    prefix = f"{source}:" if source else ""
    resources = tuple(
        ResourceDeclaration(
            type=resource.type,
            name=resource.name,
            attributes=resource.attributes,
            provider=resource.provider,
            depends_on=tuple(resource.depends_on),
            location=f"{prefix}resources[{index}]",
        )
        for index, resource in enumerate(model.resources)
    )
    types = tuple(
        ResourceTypeSchema(
            name=name,
            replace_on=frozenset(schema.replace_on),
            replace_policy=schema.replace_policy,
            timeout_seconds=schema.timeout_seconds,
        )
        for name, schema in model.types.items()
    )
    return ConfigurationDocument(resources=resources, types=types)


def load_document(path: Path | str) -> ConfigurationDocument:
    """Read ``path`` and parse it as a configuration document.

    The format is chosen by suffix: ``.yaml``/``.yml``, ``.json`` or ``.toml``.
    """

    file_path = Path(path)
    suffix = file_path.suffix.lower()
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ParseError(f"Cannot read configuration: {exc}", location=str(file_path)) from exc

    data = decode_document(text, suffix=suffix, source=str(file_path))
    log.debug("Loaded configuration document %s", file_path)
    return parse_document(data, source=str(file_path))


def decode_document(text: str, *, suffix: str, source: str) -> Mapping[str, object]:
    try:
        if suffix in YAML_SUFFIXES:
            data = yaml.safe_load(text)
        elif suffix == ".json":
            data = json.loads(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        else:
            raise ParseError(f"Unsupported configuration format {suffix!r}", location=source)
    except (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ParseError(f"Cannot decode configuration: {exc}", location=source) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError("Configuration document must be a mapping", location=source)
    return data  # pyright: ignore[reportUnknownVariableType]
