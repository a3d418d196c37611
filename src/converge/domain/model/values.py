"""Tagged attribute values.

Configuration attributes are parsed into one of five shapes so that nothing at
apply time has to guess whether a string is a literal or a pointer to another
resource:

- ``LiteralValue``: plain JSON-compatible data with no references inside
- ``Reference``: a whole-string ``${type.name.attribute}`` expression
- ``Interpolation``: literal text mixed with references
- ``ListValue`` / ``MapValue``: containers with at least one reference below

Resolution replaces references with concrete values. During planning a
reference to something not yet created resolves to ``UNKNOWN``.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, cast

from converge.domain.errors import ParseError

from .addresses import ResourceAddress

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


class _Unknown:
    """Sentinel for a value that is only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __copy__(self) -> _Unknown:
        return self

    def __deepcopy__(self, memo: object) -> _Unknown:
        return self


UNKNOWN: Final = _Unknown()

_EXPRESSION = re.compile(r"(?<!\$)\$\{([^{}]*)\}")
_ESCAPED_OPEN = "$${"


@dataclass(frozen=True, slots=True)
class LiteralValue:
    value: object


@dataclass(frozen=True, slots=True)
class Reference:
    address: ResourceAddress
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.address}.{self.attribute}}}"


@dataclass(frozen=True, slots=True)
class Interpolation:
    parts: tuple[str | Reference, ...]


@dataclass(frozen=True, slots=True)
class ListValue:
    items: tuple[AttributeValue, ...]


@dataclass(frozen=True, slots=True)
class MapValue:
    entries: tuple[tuple[str, AttributeValue], ...]


type AttributeValue = LiteralValue | Reference | Interpolation | ListValue | MapValue
type ReferenceLookup = Callable[[Reference], object]


# Parsing -----------------------------------------------------------------------


def parse_reference(expression: str, *, location: str | None = None) -> Reference:
    parts = expression.strip().split(".", 2)
    if len(parts) != 3 or not all(parts):  # noqa: PLR2004
        raise ParseError(
            f"Reference must look like '${{type.name.attribute}}', got '${{{expression}}}'",
            location=location,
        )
    resource_type, name, attribute = parts
    try:
        address = ResourceAddress(type=resource_type, name=name)
    except ParseError as exc:
        raise ParseError(str(exc), location=location) from exc
    return Reference(address=address, attribute=attribute)


def _parse_string(raw: str, *, location: str) -> AttributeValue:
    parts: list[str | Reference] = []
    cursor = 0
    for match in _EXPRESSION.finditer(raw):
        literal = raw[cursor : match.start()]
        _check_unterminated(literal, raw=raw, location=location)
        if literal:
            parts.append(literal.replace(_ESCAPED_OPEN, "${"))
        parts.append(parse_reference(match.group(1), location=location))
        cursor = match.end()
    tail = raw[cursor:]
    _check_unterminated(tail, raw=raw, location=location)

    if not any(isinstance(part, Reference) for part in parts):
        return LiteralValue(raw.replace(_ESCAPED_OPEN, "${"))
    if tail:
        parts.append(tail.replace(_ESCAPED_OPEN, "${"))
    if len(parts) == 1:
        return cast(Reference, parts[0])
    return Interpolation(parts=tuple(parts))


def _check_unterminated(segment: str, *, raw: str, location: str) -> None:
    unescaped = segment.replace(_ESCAPED_OPEN, "")
    if "${" in unescaped:
        raise ParseError(f"Unterminated or malformed expression in {raw!r}", location=location)


def parse_value(raw: object, *, location: str) -> AttributeValue:
    """Parse raw document data into a tagged attribute value."""

    if isinstance(raw, str):
        return _parse_string(raw, location=location)
    if isinstance(raw, Mapping):
        mapping = cast(Mapping[object, object], raw)
        entries: list[tuple[str, AttributeValue]] = []
        for key, item in mapping.items():
            if not isinstance(key, str):
                raise ParseError(f"Attribute keys must be strings, got {key!r}", location=location)
            entries.append((key, parse_value(item, location=f"{location}.{key}")))
        if all(isinstance(value, LiteralValue) for _, value in entries):
            return LiteralValue({key: _literal(value) for key, value in entries})
        return MapValue(entries=tuple(entries))
    if isinstance(raw, list | tuple):
        sequence = cast(list[object] | tuple[object, ...], raw)
        items = tuple(
            parse_value(item, location=f"{location}[{index}]")
            for index, item in enumerate(sequence)
        )
        if all(isinstance(item, LiteralValue) for item in items):
            return LiteralValue([_literal(item) for item in items])
        return ListValue(items=items)
    if raw is None or isinstance(raw, bool | int | float):
        return LiteralValue(raw)
    raise ParseError(f"Unsupported attribute value {raw!r}", location=location)


def _literal(value: AttributeValue) -> object:
    return cast(LiteralValue, value).value


# Traversal and resolution ------------------------------------------------------


def references_in(value: AttributeValue) -> Iterator[Reference]:
    match value:
        case Reference():
            yield value
        case Interpolation(parts=parts):
            for part in parts:
                if isinstance(part, Reference):
                    yield part
        case ListValue(items=items):
            for item in items:
                yield from references_in(item)
        case MapValue(entries=entries):
            for _, item in entries:
                yield from references_in(item)
        case LiteralValue():
            return


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def resolve_value(value: AttributeValue, lookup: ReferenceLookup) -> object:
    """Return the concrete value, or ``UNKNOWN`` where a reference is not known yet."""

    match value:
        case LiteralValue(value=literal):
            return copy.deepcopy(literal)
        case Reference():
            return lookup(value)
        case Interpolation(parts=parts):
            rendered: list[str] = []
            for part in parts:
                if isinstance(part, str):
                    rendered.append(part)
                    continue
                resolved = lookup(part)
                if resolved is UNKNOWN:
                    return UNKNOWN
                rendered.append(_stringify(resolved))
            return "".join(rendered)
        case ListValue(items=items):
            return [resolve_value(item, lookup) for item in items]
        case MapValue(entries=entries):
            return {key: resolve_value(item, lookup) for key, item in entries}


def resolve_attributes(
    attributes: Mapping[str, AttributeValue],
    lookup: ReferenceLookup,
) -> dict[str, object]:
    return {name: resolve_value(value, lookup) for name, value in attributes.items()}


def contains_unknown(value: object) -> bool:
    if value is UNKNOWN:
        return True
    if isinstance(value, Mapping):
        return any(contains_unknown(item) for item in cast(Mapping[object, object], value).values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(item) for item in cast(list[object], value))
    return False


def lookup_path(attributes: Mapping[str, object], path: str) -> object:
    """Walk a dotted attribute path through nested mappings; raise ``KeyError`` if absent."""

    current: object = attributes
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            raise KeyError(path)
        current = cast(Mapping[str, object], current)[segment]
    return current
