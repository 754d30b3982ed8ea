"""Span fields and attributes, and their display forms."""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SPAWN_LOCATION = "spawn.location"
TASK_NAME = "task.name"
TASK_ID = "task.id"

_REGISTRY_PATH = re.compile(r".*/\.cargo(/registry/src/[^/]*/|/git/checkouts/)")


class FieldKind(enum.IntEnum):
    """The kind of a field value; kinds order as declared."""

    BOOL = 0
    STR = 1
    U64 = 2
    I64 = 3
    DEBUG = 4


@dataclass(frozen=True, order=True)
class FieldValue:
    """A typed field value, ordered by kind and then by value."""

    kind: FieldKind
    value: Any

    def ensure_nonempty(self) -> FieldValue | None:
        """Return None for an empty string value, else the value itself."""
        if self.kind in (FieldKind.STR, FieldKind.DEBUG) and not self.value:
            return None
        return self

    def truncate_registry_path(self) -> FieldValue:
        """Shorten package-registry paths in string values."""
        if self.kind in (FieldKind.STR, FieldKind.DEBUG):
            return FieldValue(FieldKind.DEBUG, truncate_registry_path(self.value))
        return self

    def __str__(self) -> str:
        if self.kind is FieldKind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)


@dataclass
class Metadata:
    """Metadata describing a span's field names and target."""

    id: int
    target: str
    field_names: list[str] = field(default_factory=list)


@dataclass
class WireField:
    """A field as received: named directly or by index into metadata."""

    name: str | None = None
    name_index: int | None = None
    metadata_id: int | None = None
    value: FieldValue | None = None


@dataclass
class WireAttribute:
    """An attribute as received: a field with an optional unit."""

    field: WireField | None = None
    unit: str | None = None


@dataclass
class Location:
    """A source location."""

    file: str | None = None
    module_path: str | None = None
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        if self.file is not None:
            text = self.file
        elif self.module_path is not None:
            text = self.module_path
        else:
            text = "<unknown location>"
        if self.line is not None:
            text += f":{self.line}"
            if self.column is not None:
                text += f":{self.column}"
        return text


def _name_rank(name: str) -> tuple[int, str]:
    if name == TASK_NAME:
        return (0, "")
    if name == SPAWN_LOCATION:
        return (2, "")
    return (1, name)


@dataclass(frozen=True)
class Field:
    """A named field value. Sorting puts the task name first and the spawn location last."""

    name: str
    value: FieldValue

    @classmethod
    def from_wire(cls, wire: WireField, meta: Metadata) -> Field | None:
        """Build a field from its wire form, or return None if it is invalid or empty."""
        if wire.name is not None:
            name = wire.name
        elif wire.name_index is not None:
            idx = wire.name_index
            if wire.metadata_id != meta.id:
                logger.warning(
                    "skipping malformed field name (metadata id mismatch): "
                    "meta_id=%s field_meta_id=%s name_index=%s",
                    meta.id,
                    wire.metadata_id,
                    idx,
                )
                return None
            if not 0 <= idx < len(meta.field_names):
                logger.warning(
                    "missing field name for index: meta_id=%s name_index=%s", meta.id, idx
                )
                return None
            name = meta.field_names[idx]
        else:
            return None

        if wire.value is None:
            logger.warning("missing field value for field %r", name)
            return None
        value = wire.value.ensure_nonempty()
        if value is None:
            return None
        if name == SPAWN_LOCATION:
            value = value.truncate_registry_path()
        return cls(name, value)

    def __lt__(self, other: Field) -> bool:
        if not isinstance(other, Field):
            return NotImplemented
        return _name_rank(self.name) < _name_rank(other.name)


@dataclass(frozen=True)
class Attribute:
    """A field with an optional unit, ordered by field and then by unit."""

    field: Field
    unit: str | None = None

    @classmethod
    def from_wire(cls, wire: WireAttribute, meta: Metadata) -> Attribute | None:
        if wire.field is None:
            return None
        converted = Field.from_wire(wire.field, meta)
        if converted is None:
            return None
        return cls(converted, wire.unit)

    def _key(self) -> tuple[tuple[int, str], bool, str]:
        return (_name_rank(self.field.name), self.unit is not None, self.unit or "")

    def __lt__(self, other: Attribute) -> bool:
        if not isinstance(other, Attribute):
            return NotImplemented
        return self._key() < other._key()


def truncate_registry_path(s: str) -> str:
    """Replace a package-registry or git-checkout prefix with ``<cargo>/``."""
    return _REGISTRY_PATH.sub("<cargo>/", s, count=1)


def format_location(location: Location | None) -> str:
    """Render a location for display, shortening registry paths."""
    if location is None:
        return "<unknown location>"
    if location.file is not None:
        location = dataclasses.replace(location, file=truncate_registry_path(location.file))
    return f"{location} "


def format_fields(fields: list[Field]) -> list[list[tuple[str, str]]]:
    """Render fields in display order as lists of ``(text, style)`` segments.

    Styles are ``"key"``, ``"delim"`` and ``"value"``.
    """
    return [
        [(f.name, "key"), ("=", "delim"), (f"{f.value} ", "value")]
        for f in sorted(fields)
    ]


def format_attributes(attributes: list[Attribute]) -> list[list[tuple[str, str]]]:
    """Render attributes in display order as lists of ``(text, style)`` segments.

    Styles are ``"key"``, ``"delim"``, ``"value"``, ``"unit"`` and ``"raw"``.
    """
    formatted = []
    for attr in sorted(attributes):
        segments = [
            (attr.field.name, "key"),
            ("=", "delim"),
            (str(attr.field.value), "value"),
        ]
        if attr.unit is not None:
            segments.append((attr.unit, "unit"))
        segments.append((" ", "raw"))
        formatted.append(segments)
    return formatted