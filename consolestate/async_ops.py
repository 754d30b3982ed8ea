"""Tracked async operations on resources and the state that holds them."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from consolestate.fields import Attribute, Metadata, WireAttribute, format_attributes
from consolestate.store import Id, Ids, Store, Visibility

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


@dataclass(frozen=True)
class AsyncOpStats:
    """Statistics reported for an async op; ``task_id`` is the task's span ID."""

    created_at: datetime
    dropped_at: datetime | None = None
    polls: int = 0
    busy: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    task_id: int | None = None
    attributes: list[WireAttribute] = field(default_factory=list)

    def _total(self) -> timedelta | None:
        if self.dropped_at is None:
            return None
        return _elapsed(self.dropped_at, self.created_at)

    def _idle(self) -> timedelta | None:
        total = self._total()
        if total is None:
            return None
        idle = total - self.busy
        return idle if idle > _ZERO else _ZERO


@dataclass
class NewAsyncOp:
    """A newly reported async op as it arrives from the remote."""

    id: int | None = None
    metadata_id: int | None = None
    resource_id: int | None = None
    parent_async_op_id: int | None = None
    source: str = ""


@dataclass
class AsyncOpUpdate:
    """A batch of new async ops and stats updates keyed by span ID."""

    new_async_ops: list[NewAsyncOp] = field(default_factory=list)
    stats_update: dict[int, AsyncOpStats] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass(eq=False)
class AsyncOp:
    """An async operation on a resource."""

    id: Id
    resource_id: Id
    meta_id: int
    stats: AsyncOpStats
    parent_id: str = "n/a"
    source: str = ""
    task_id: Id | None = None
    task_id_str: str = "n/a"
    formatted_attributes: list[list[tuple[str, str]]] = field(default_factory=list)

    def total(self, since: datetime) -> timedelta:
        """Lifetime if dropped, otherwise the time from creation to ``since``."""
        total = self.stats._total()
        if total is not None:
            return total
        return _elapsed(since, self.stats.created_at)

    def busy(self, since: datetime) -> timedelta:
        """Busy time, counting a poll still in progress up to ``since``."""
        started = self.stats.last_poll_started
        if started is not None and self.stats.last_poll_ended is None:
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def idle(self, since: datetime) -> timedelta:
        idle = self.stats._idle()
        if idle is not None:
            return idle
        remaining = self.total(since) - self.busy(since)
        return remaining if remaining >= _ZERO else _ZERO

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    def dropped(self) -> bool:
        return self.stats.dropped_at is not None

    def _apply(self, stats: AsyncOpStats, meta: Metadata, task_ids: Ids) -> None:
        self.stats = stats
        self.task_id = None if stats.task_id is None else task_ids.id_for(stats.task_id)
        self.task_id_str = "n/a" if self.task_id is None else str(self.task_id)
        attributes = [
            attr
            for attr in (Attribute.from_wire(wire, meta) for wire in stats.attributes)
            if attr is not None
        ]
        self.formatted_attributes = format_attributes(attributes)


class SortBy(enum.IntEnum):
    """Columns the async op list can be sorted by."""

    AID = 0
    TASK = 1
    SOURCE = 2
    TOTAL = 3
    BUSY = 4
    IDLE = 5
    POLLS = 6

    @classmethod
    def from_index(cls, idx: int) -> SortBy:
        """Return the column at ``idx``; raises ValueError for an unknown index."""
        try:
            return cls(idx)
        except ValueError:
            raise ValueError(f"no async op sort column at index {idx}") from None

    def sort(self, now: datetime, ops: list[AsyncOp]) -> None:
        """Sort ``ops`` in place by this column."""
        key: Callable[[AsyncOp], Any]
        if self is SortBy.AID:
            key = lambda op: op.id
        elif self is SortBy.TASK:
            key = lambda op: (
                op.task_id is not None,
                0 if op.task_id is None else op.task_id.value,
            )
        elif self is SortBy.SOURCE:
            key = lambda op: op.source
        elif self is SortBy.TOTAL:
            key = lambda op: op.total(now)
        elif self is SortBy.BUSY:
            key = lambda op: op.busy(now)
        elif self is SortBy.IDLE:
            key = lambda op: op.idle(now)
        else:
            key = lambda op: op.stats.polls
        ops.sort(key=key)


class AsyncOpsState:
    """All known async ops."""

    def __init__(self) -> None:
        self._ops: Store[AsyncOp] = Store()
        self.dropped_events = 0

    def take_new_async_ops(self) -> list[AsyncOp]:
        """Return the async ops added since the previous call."""
        return self._ops.take_new_items()

    def async_ops(self) -> list[AsyncOp]:
        """Return all async ops."""
        return list(self._ops.values())

    def __iter__(self) -> Iterator[AsyncOp]:
        return self._ops.values()

    def __len__(self) -> int:
        return len(self._ops)

    def update_async_ops(
        self,
        metas: Mapping[int, Metadata],
        update: AsyncOpUpdate,
        resource_ids: Ids,
        task_ids: Ids,
        visibility: Visibility,
    ) -> None:
        """Add new async ops and apply stats updates."""
        stats_update = dict(update.stats_update)

        def build(ids: Ids, new: NewAsyncOp) -> tuple[Id, AsyncOp] | None:
            if new.id is None:
                logger.warning("skipping async op with no id: %r", new)
            if new.metadata_id is None:
                logger.warning("async op has no metadata ID, skipping: %r", new)
                return None
            meta = metas.get(new.metadata_id)
            if meta is None:
                logger.warning(
                    "no metadata for async op, skipping: meta_id=%s", new.metadata_id
                )
                return None
            if new.id is None:
                return None
            span_id = new.id
            stats = stats_update.pop(span_id, None)
            if stats is None:
                return None
            task_id = None if stats.task_id is None else task_ids.id_for(stats.task_id)

            id_ = ids.id_for(span_id)
            if new.resource_id is None:
                return None
            resource_id = resource_ids.id_for(new.resource_id)
            parent_id = (
                "n/a"
                if new.parent_async_op_id is None
                else str(ids.id_for(new.parent_async_op_id))
            )
            op = AsyncOp(
                id=id_,
                resource_id=resource_id,
                meta_id=new.metadata_id,
                stats=stats,
                parent_id=parent_id,
                source=new.source,
                task_id=task_id,
            )
            op._apply(stats, meta, task_ids)
            return id_, op

        self._ops.insert_with(visibility, update.new_async_ops, build)

        for stats, op in self._ops.updated(stats_update):
            meta = metas.get(op.meta_id)
            if meta is not None:
                op._apply(stats, meta, task_ids)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget async ops dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, op: AsyncOp) -> bool:
            dropped_at = op.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > _elapsed(now, dropped_at)

        self._ops.retain(keep)