"""Resource addresses: the ``type.name`` identity of a managed resource."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from converge.domain.errors import ParseError

IDENTIFIER_PATTERN: Final[str] = r"[A-Za-z_][A-Za-z0-9_-]*"
_IDENTIFIER = re.compile(rf"^{IDENTIFIER_PATTERN}$")


@dataclass(frozen=True, slots=True, order=True)
class ResourceAddress:
    type: str
    name: str

    def __post_init__(self) -> None:
        for part, value in (("type", self.type), ("name", self.name)):
            if not _IDENTIFIER.match(value):
                raise ParseError(f"Invalid resource {part} {value!r}")

    def __str__(self) -> str:
        return f"{self.type}.{self.name}"

    @classmethod
    def parse(cls, text: str) -> ResourceAddress:
        resource_type, sep, name = text.strip().partition(".")
        if not sep:
            raise ParseError(f"Resource address must look like 'type.name', got {text!r}")
        return cls(type=resource_type, name=name)
