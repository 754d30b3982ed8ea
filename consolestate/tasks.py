"""Tracked tasks: their statistics, derived timings and the state that holds them."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from consolestate.fields import (
    TASK_ID,
    TASK_NAME,
    Field,
    FieldKind,
    Metadata,
    Location,
    WireField,
    format_fields,
    format_location,
)
from consolestate.store import Id, Ids, Store, Visibility
from consolestate.util import percent_of

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)

Linter = Callable[["Task"], Any]
"""A check run against a task; returns a warning, or None when the task is fine."""


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


def _later(a: datetime | None, b: datetime | None) -> bool:
    """Compare optional times where a missing time comes before any present one."""
    if a is None:
        return False
    if b is None:
        return True
    return a > b


@dataclass(frozen=True)
class TaskStats:
    """Statistics reported for a task."""

    created_at: datetime
    dropped_at: datetime | None = None
    polls: int = 0
    busy: timedelta = _ZERO
    scheduled: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    last_wake: datetime | None = None
    self_wakes: int = 0

    def total(self) -> timedelta | None:
        """Lifetime of a dropped task, or None while it is alive."""
        if self.dropped_at is None:
            return None
        return _elapsed(self.dropped_at, self.created_at)

    def idle(self) -> timedelta | None:
        """Idle time of a dropped task, or None while it is alive."""
        total = self.total()
        if total is None:
            return None
        idle = total - (self.busy + self.scheduled)
        return idle if idle > _ZERO else _ZERO


@dataclass
class NewTask:
    """A newly reported task as it arrives from the remote."""

    id: int | None = None
    metadata_id: int | None = None
    fields: list[WireField] = field(default_factory=list)
    location: Location | None = None


@dataclass
class TaskUpdate:
    """A batch of new tasks and stats updates keyed by span ID."""

    new_tasks: list[NewTask] = field(default_factory=list)
    stats_update: dict[int, TaskStats] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class Details:
    """Detailed information about a single task."""

    span_id: int
    poll_times_histogram: Any | None = None
    scheduled_times_histogram: Any | None = None


class TaskState(enum.IntEnum):
    """What a task is doing right now; states order as declared."""

    COMPLETED = 0
    IDLE = 1
    RUNNING = 2
    SCHEDULED = 3

    def render(self, utf8: bool) -> tuple[str, str]:
        """Return the ``(text, style)`` shown for this state."""
        if self is TaskState.RUNNING:
            return ("\u25B6" if utf8 else "BUSY", "green")
        if self is TaskState.SCHEDULED:
            return ("\u23EB" if utf8 else "SCHED", "raw")
        if self is TaskState.IDLE:
            return ("\u23F8" if utf8 else "IDLE", "raw")
        return ("\u23F9" if utf8 else "DONE", "raw")


@dataclass(eq=False)
class Task:
    """A task tracked by the console."""

    id: Id
    span_id: int
    stats: TaskStats
    target: str
    task_id: int | None = None
    name: str | None = None
    short_desc: str = ""
    id_str: str = ""
    formatted_fields: list[list[tuple[str, str]]] = field(default_factory=list)
    warnings: list[Any] = field(default_factory=list)
    location: str = ""

    def is_running(self) -> bool:
        """True if the task is being polled now."""
        return _later(self.stats.last_poll_started, self.stats.last_poll_ended)

    def is_scheduled(self) -> bool:
        return _later(self.stats.last_wake, self.stats.last_poll_started)

    def is_completed(self) -> bool:
        return self.stats.total() is not None

    def state(self) -> TaskState:
        if self.is_completed():
            return TaskState.COMPLETED
        if self.is_running():
            return TaskState.RUNNING
        if self.is_scheduled():
            return TaskState.SCHEDULED
        return TaskState.IDLE

    def total(self, since: datetime) -> timedelta:
        total = self.stats.total()
        if total is not None:
            return total
        return _elapsed(since, self.stats.created_at)

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and self.is_running():
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def scheduled(self, since: datetime) -> timedelta:
        wake = self.stats.last_wake
        if wake is not None and self.is_scheduled():
            return self.stats.scheduled + _elapsed(since, wake)
        return self.stats.scheduled

    def idle(self, since: datetime) -> timedelta:
        idle = self.stats.idle()
        if idle is not None:
            return idle
        remaining = self.total(since) - (self.busy(since) + self.scheduled(since))
        return remaining if remaining >= _ZERO else _ZERO

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    def since_wake(self, now: datetime) -> timedelta | None:
        """Time since the last wake, or None if never woken or woken after ``now``."""
        wake = self.stats.last_wake
        if wake is None or wake > now:
            return None
        return now - wake

    def waker_count(self) -> int:
        """Current number of live wakers."""
        return max(0, self.stats.waker_clones - self.stats.waker_drops)

    def self_wake_percent(self) -> int:
        """Percentage of the task's wakes that were self-wakes."""
        return percent_of(self.stats.self_wakes, self.stats.wakes)

    def is_awakened(self) -> bool:
        """True if the task has been woken and not yet polled since."""
        return self.stats.polls == 0 or _later(
            self.stats.last_wake, self.stats.last_poll_started
        )

    def _lint(self, linters: Iterable[Linter]) -> None:
        self.warnings = []
        for lint in linters:
            warning = lint(self)
            if warning is not None:
                logger.info("found a warning for task %s: %r", self.id, warning)
                self.warnings.append(warning)


def _optional_key(value: Any, empty: Any) -> tuple[bool, Any]:
    return (value is not None, empty if value is None else value)


class SortBy(enum.IntEnum):
    """Columns the task list can be sorted by."""

    WARNS = 0
    TID = 1
    STATE = 2
    NAME = 3
    TOTAL = 4
    BUSY = 5
    SCHEDULED = 6
    IDLE = 7
    POLLS = 8
    TARGET = 9
    LOCATION = 10

    @classmethod
    def from_index(cls, idx: int) -> SortBy:
        """Return the column at ``idx``; raises ValueError for an unknown index."""
        try:
            return cls(idx)
        except ValueError:
            raise ValueError(f"no task sort column at index {idx}") from None

    def sort(self, now: datetime, tasks: list[Task]) -> None:
        """Sort ``tasks`` in place by this column."""
        key: Callable[[Task], Any]
        if self is SortBy.TID:
            key = lambda t: _optional_key(t.task_id, 0)
        elif self is SortBy.NAME:
            key = lambda t: _optional_key(t.name, "")
        elif self is SortBy.STATE:
            key = lambda t: t.state()
        elif self is SortBy.WARNS:
            key = lambda t: len(t.warnings)
        elif self is SortBy.TOTAL:
            key = lambda t: t.total(now)
        elif self is SortBy.IDLE:
            key = lambda t: t.idle(now)
        elif self is SortBy.SCHEDULED:
            key = lambda t: t.scheduled(now)
        elif self is SortBy.BUSY:
            key = lambda t: t.busy(now)
        elif self is SortBy.POLLS:
            key = lambda t: t.stats.polls
        elif self is SortBy.TARGET:
            key = lambda t: t.target
        else:
            key = lambda t: t.location
        tasks.sort(key=key)


def _short_desc(task_id: int | None, name: str | None) -> str:
    if task_id is not None and name is not None:
        return f"{task_id} ({name})"
    if task_id is not None:
        return str(task_id)
    if name is not None:
        return name
    return ""


class TasksState:
    """All known tasks, plus the linters run against them."""

    def __init__(self, linters: Iterable[Linter] = ()) -> None:
        self._tasks: Store[Task] = Store()
        self.linters: list[Linter] = list(linters)
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        """The allocator of sequential task IDs."""
        return self._tasks.ids

    def take_new_tasks(self) -> list[Task]:
        """Return the tasks added since the previous call."""
        return self._tasks.take_new_items()

    def __iter__(self):
        return self._tasks.values()

    def __len__(self) -> int:
        return len(self._tasks)

    def update_tasks(
        self,
        metas: Mapping[int, Metadata],
        update: TaskUpdate,
        visibility: Visibility,
    ) -> None:
        """Add new tasks and apply stats updates."""
        stats_update = dict(update.stats_update)
        linters = self.linters

        def build(ids: Ids, new: NewTask) -> tuple[Id, Task] | None:
            if new.id is None:
                logger.warning("skipping task with no id: %r", new)
            if new.metadata_id is None:
                logger.warning("task has no metadata ID, skipping: %r", new)
                return None
            meta = metas.get(new.metadata_id)
            if meta is None:
                logger.warning(
                    "no metadata for task, skipping: meta_id=%s", new.metadata_id
                )
                return None

            name: str | None = None
            task_id: int | None = None
            fields: list[Field] = []
            for wire in new.fields:
                converted = Field.from_wire(wire, meta)
                if converted is None:
                    continue
                if converted.name == TASK_NAME:
                    name = str(converted.value)
                elif converted.name == TASK_ID:
                    task_id = (
                        converted.value.value
                        if converted.value.kind is FieldKind.U64
                        else None
                    )
                else:
                    fields.append(converted)

            formatted = format_fields(fields)
            if new.id is None:
                return None
            span_id = new.id
            stats = stats_update.pop(span_id, None)
            if stats is None:
                return None
            location = format_location(new.location)
            id_ = ids.id_for(span_id)

            task = Task(
                id=id_,
                span_id=span_id,
                stats=stats,
                target=meta.target,
                task_id=task_id,
                name=name,
                short_desc=_short_desc(task_id, name),
                id_str="" if task_id is None else str(task_id),
                formatted_fields=formatted,
                location=location,
            )
            task._lint(linters)
            return id_, task

        self._tasks.insert_with(visibility, update.new_tasks, build)

        for stats, task in self._tasks.updated(stats_update):
            task.stats = stats
            task._lint(linters)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget tasks dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, task: Task) -> bool:
            dropped_at = task.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > _elapsed(now, dropped_at)

        self._tasks.retain(keep)

    def task(self, id: Id) -> Task | None:
        return self._tasks.get(id)