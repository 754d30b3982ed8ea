"""Storage of items keyed by remote span IDs and local sequential IDs."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

_U64_MODULUS = 1 << 64


class Visibility(enum.Enum):
    """Whether the list an update belongs to is currently on screen."""

    SHOW = enum.auto()
    HIDE = enum.auto()


@dataclass(frozen=True, order=True)
class Id:
    """A rewritten sequential ID, distinct from the remote span ID."""

    value: int

    def __str__(self) -> str:
        return str(self.value)


class Ids:
    """Maps remote span IDs to sequential IDs, handing out new ones on demand."""

    def __init__(self) -> None:
        self._next = 1
        self._map: dict[int, Id] = {}

    def id_for(self, span_id: int) -> Id:
        """Return the sequential ID for ``span_id``, allocating one if needed."""
        existing = self._map.get(span_id)
        if existing is not None:
            return existing
        new_id = Id(self._next)
        self._map[span_id] = new_id
        self._next = (self._next + 1) % _U64_MODULUS
        return new_id

    def __repr__(self) -> str:
        return f"Ids(next={self._next}, map={self._map!r})"


class Store(Generic[T]):
    """Items associated with a span ID and a sequential :class:`Id`."""

    def __init__(self) -> None:
        self._ids = Ids()
        self._items: dict[Id, T] = {}
        self._new_items: list[tuple[Id, T]] = []

    @property
    def ids(self) -> Ids:
        """The ID allocator for this store."""
        return self._ids

    def get(self, id: Id) -> T | None:
        return self._items.get(id)

    def get_by_span(self, span_id: int) -> T | None:
        id_ = self._ids._map.get(span_id)
        if id_ is None:
            return None
        return self.get(id_)

    def insert_with(
        self,
        visibility: Visibility,
        items: Iterable[U],
        f: Callable[[Ids, U], tuple[Id, T] | None],
    ) -> None:
        """Map each item through ``f`` and insert every result that is not None.

        When the list is visible, previously collected new items are discarded
        before the insert.
        """
        if visibility is Visibility.SHOW:
            self._new_items.clear()
        for raw in items:
            mapped = f(self._ids, raw)
            if mapped is None:
                continue
            id_, item = mapped
            self._items[id_] = item
            self._new_items.append((id_, item))

    def updated(
        self, update: Mapping[int, Any] | Iterable[tuple[int, Any]]
    ) -> Iterator[tuple[Any, T]]:
        """Yield ``(update, item)`` for each span ID that names a stored item."""
        pairs = update.items() if isinstance(update, Mapping) else update
        for span_id, value in pairs:
            id_ = self._ids._map.get(span_id)
            if id_ is None:
                continue
            item = self._items.get(id_)
            if item is None:
                continue
            yield value, item

    def retain(self, predicate: Callable[[Id, T], bool]) -> None:
        """Remove every item for which ``predicate(id, item)`` is false."""
        self._items = {k: v for k, v in self._items.items() if predicate(k, v)}
        self._new_items = [
            (id_, item) for id_, item in self._new_items if self._items.get(id_) is item
        ]

    def take_new_items(self) -> list[T]:
        """Return and forget the items added since the previous call."""
        taken = [item for _, item in self._new_items]
        self._new_items.clear()
        return taken

    def values(self) -> Iterator[T]:
        return iter(self._items.values())

    def __iter__(self) -> Iterator[tuple[Id, T]]:
        """Iterate over ``(id, item)`` pairs."""
        return iter(self._items.items())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Store(ids={self._ids!r}, items={len(self._items)}, new={len(self._new_items)})"