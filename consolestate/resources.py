"""Tracked resources: their statistics and the state that holds them."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from consolestate.fields import (
    Attribute,
    Location,
    Metadata,
    WireAttribute,
    format_attributes,
    format_location,
)
from consolestate.store import Id, Ids, Store, Visibility

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


class KnownKind(enum.IntEnum):
    """Resource kinds known by number on the wire."""

    TIMER = 0


class TypeVisibility(enum.IntEnum):
    """Whether a resource type is public API or internal."""

    PUBLIC = 0
    INTERNAL = 1

    def render(self, utf8: bool) -> tuple[str, str]:
        """Return the ``(text, style)`` shown for this visibility."""
        if self is TypeVisibility.INTERNAL:
            return ("\U0001F512" if utf8 else "INT", "red")
        return ("\u2705" if utf8 else "PUB", "green")


def kind_from_wire(kind: int | str) -> str:
    """Return the display name of a resource kind.

    A string names the kind directly; a number must be a :class:`KnownKind`.
    Raises ``ValueError`` for an unknown number.
    """
    if isinstance(kind, str):
        return kind
    if kind == KnownKind.TIMER:
        return "Timer"
    raise ValueError(f"failed to parse known kind from {int(kind)}")


@dataclass(frozen=True)
class ResourceStats:
    """Statistics reported for a resource."""

    created_at: datetime
    dropped_at: datetime | None = None
    attributes: list[WireAttribute] = field(default_factory=list)

    def _total(self) -> timedelta | None:
        if self.dropped_at is None:
            return None
        return _elapsed(self.dropped_at, self.created_at)


@dataclass
class NewResource:
    """A newly reported resource as it arrives from the remote."""

    id: int | None = None
    metadata_id: int | None = None
    kind: int | str | None = None
    concrete_type: str = ""
    parent_resource_id: int | None = None
    location: Location | None = None
    is_internal: bool = False


@dataclass
class ResourceUpdate:
    """A batch of new resources and stats updates keyed by span ID."""

    new_resources: list[NewResource] = field(default_factory=list)
    stats_update: dict[int, ResourceStats] = field(default_factory=dict)
    dropped_events: int = 0


def _formatted(stats: ResourceStats, meta: Metadata) -> list[list[tuple[str, str]]]:
    attributes = [
        attr
        for attr in (Attribute.from_wire(wire, meta) for wire in stats.attributes)
        if attr is not None
    ]
    return format_attributes(attributes)


@dataclass(eq=False)
class Resource:
    """A resource tracked by the console."""

    id: Id
    span_id: int
    meta_id: int
    kind: str
    stats: ResourceStats
    target: str
    concrete_type: str
    id_str: str = ""
    parent: str = "n/a"
    parent_id: str = "n/a"
    location: str = ""
    type_visibility: TypeVisibility = TypeVisibility.PUBLIC
    formatted_attributes: list[list[tuple[str, str]]] = field(default_factory=list)

    def total(self, since: datetime) -> timedelta:
        """Lifetime if dropped, otherwise the time from creation to ``since``."""
        total = self.stats._total()
        if total is not None:
            return total
        return _elapsed(since, self.stats.created_at)

    def dropped(self) -> bool:
        return self.stats.dropped_at is not None


class SortBy(enum.IntEnum):
    """Columns the resource list can be sorted by."""

    RID = 0
    KIND = 1
    CONCRETE_TYPE = 2
    TARGET = 3
    TOTAL = 4

    @classmethod
    def from_index(cls, idx: int) -> SortBy:
        """Return the column at ``idx``; raises ValueError for an unknown index."""
        try:
            return cls(idx)
        except ValueError:
            raise ValueError(f"no resource sort column at index {idx}") from None

    def sort(self, now: datetime, resources: list[Resource]) -> None:
        """Sort ``resources`` in place by this column."""
        key: Callable[[Resource], Any]
        if self is SortBy.RID:
            key = lambda r: r.id
        elif self is SortBy.KIND:
            key = lambda r: r.kind
        elif self is SortBy.CONCRETE_TYPE:
            key = lambda r: r.concrete_type
        elif self is SortBy.TARGET:
            key = lambda r: r.target
        else:
            key = lambda r: r.total(now)
        resources.sort(key=key)


class ResourcesState:
    """All known resources."""

    def __init__(self) -> None:
        self._resources: Store[Resource] = Store()
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        """The allocator of sequential resource IDs."""
        return self._resources.ids

    def take_new_resources(self) -> list[Resource]:
        """Return the resources added since the previous call."""
        return self._resources.take_new_items()

    def __iter__(self) -> Iterator[Resource]:
        return self._resources.values()

    def __len__(self) -> int:
        return len(self._resources)

    def update_resources(
        self,
        metas: Mapping[int, Metadata],
        update: ResourceUpdate,
        visibility: Visibility,
    ) -> None:
        """Add new resources and apply stats updates."""
        parents: dict[Id, Resource] = {}
        for new in update.new_resources:
            if new.parent_resource_id is None:
                continue
            parent = self._resources.get_by_span(new.parent_resource_id)
            if parent is not None:
                parents[parent.id] = parent

        stats_update = dict(update.stats_update)

        def build(ids: Ids, new: NewResource) -> tuple[Id, Resource] | None:
            if new.id is None:
                logger.warning("skipping resource with no id: %r", new)
            if new.metadata_id is None:
                logger.warning("resource has no metadata ID, skipping: %r", new)
                return None
            meta = metas.get(new.metadata_id)
            if meta is None:
                logger.warning(
                    "no metadata for resource, skipping: meta_id=%s", new.metadata_id
                )
                return None
            if new.kind is None:
                return None
            try:
                kind = kind_from_wire(new.kind)
            except ValueError as err:
                logger.warning("resource kind cannot be parsed: %s", err)
                return None

            if new.id is None:
                return None
            span_id = new.id
            stats = stats_update.pop(span_id, None)
            if stats is None:
                return None
            formatted = _formatted(stats, meta)

            id_ = ids.id_for(span_id)
            parent_id = (
                None
                if new.parent_resource_id is None
                else ids.id_for(new.parent_resource_id)
            )
            if parent_id is None:
                parent = "n/a"
            else:
                found = parents.get(parent_id)
                if found is not None:
                    parent = f"{found.id} ({found.target}::{found.concrete_type})"
                else:
                    parent = str(parent_id)

            resource = Resource(
                id=id_,
                span_id=span_id,
                meta_id=new.metadata_id,
                kind=kind,
                stats=stats,
                target=meta.target,
                concrete_type=new.concrete_type,
                id_str=str(id_),
                parent=parent,
                parent_id="n/a" if parent_id is None else str(parent_id),
                location=format_location(new.location),
                type_visibility=(
                    TypeVisibility.INTERNAL if new.is_internal else TypeVisibility.PUBLIC
                ),
                formatted_attributes=formatted,
            )
            return id_, resource

        self._resources.insert_with(visibility, update.new_resources, build)

        self.dropped_events += update.dropped_events

        for stats, resource in self._resources.updated(stats_update):
            meta = metas.get(resource.meta_id)
            if meta is not None:
                resource.stats = stats
                resource.formatted_attributes = _formatted(stats, meta)

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget resources dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, resource: Resource) -> bool:
            dropped_at = resource.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > _elapsed(now, dropped_at)

        self._resources.retain(keep)

    def get(self, id: Id) -> Resource | None:
        return self._resources.get(id)