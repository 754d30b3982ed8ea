"""The console's overall view of the remote: metadata, tasks, resources and async ops."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from consolestate.async_ops import AsyncOpsState, AsyncOpUpdate
from consolestate.fields import Metadata
from consolestate.resources import ResourcesState, ResourceUpdate
from consolestate.store import Visibility
from consolestate.tasks import Details, Linter, TasksState, TaskUpdate


class ViewKind(enum.Enum):
    """The view currently on screen, which decides what counts as visible."""

    TASKS_LIST = enum.auto()
    RESOURCES_LIST = enum.auto()
    TASK_INSTANCE = enum.auto()
    RESOURCE_INSTANCE = enum.auto()


@dataclass
class Update:
    """One update from the remote; every part of it is optional."""

    now: datetime | None = None
    new_metadata: list[Metadata] = field(default_factory=list)
    task_update: TaskUpdate | None = None
    resource_update: ResourceUpdate | None = None
    async_op_update: AsyncOpUpdate | None = None


@dataclass
class TaskDetailsUpdate:
    """Detailed data about one task, identified by its span ID."""

    task_id: int | None = None
    poll_times_histogram: Any | None = None
    scheduled_times_histogram: Any | None = None


def _visibility(shown: bool) -> Visibility:
    return Visibility.SHOW if shown else Visibility.HIDE


class State:
    """Everything the console knows about the remote process."""

    def __init__(
        self,
        retain_for: timedelta | None = None,
        task_linters: Iterable[Linter] = (),
    ) -> None:
        self.metas: dict[int, Metadata] = {}
        self.last_updated_at: datetime | None = None
        self.retain_for = retain_for
        self.tasks_state = TasksState(task_linters)
        self.resources_state = ResourcesState()
        self.async_ops_state = AsyncOpsState()
        self.task_details: Details | None = None
        self._paused = False

    def update(self, current_view: ViewKind, update: Update) -> None:
        """Apply an update from the remote."""
        if update.now is not None:
            self.last_updated_at = update.now

        for meta in update.new_metadata:
            self.metas[meta.id] = meta

        if update.task_update is not None:
            self.tasks_state.update_tasks(
                self.metas,
                update.task_update,
                _visibility(current_view is ViewKind.TASKS_LIST),
            )

        if update.resource_update is not None:
            self.resources_state.update_resources(
                self.metas,
                update.resource_update,
                _visibility(current_view is ViewKind.RESOURCES_LIST),
            )

        if update.async_op_update is not None:
            self.async_ops_state.update_async_ops(
                self.metas,
                update.async_op_update,
                self.resources_state.ids,
                self.tasks_state.ids,
                _visibility(current_view is ViewKind.RESOURCE_INSTANCE),
            )

    def retain_active(self) -> None:
        """Forget items dropped longer ago than the retention period; no-op while paused."""
        if self.is_paused():
            return
        now = self.last_updated_at
        retain_for = self.retain_for
        if now is None or retain_for is None:
            return
        self.tasks_state.retain_active(now, retain_for)
        self.resources_state.retain_active(now, retain_for)
        self.async_ops_state.retain_active(now, retain_for)

    def update_task_details(self, update: TaskDetailsUpdate) -> None:
        """Replace the current task details; updates without a task ID are ignored."""
        if update.task_id is None:
            return
        self.task_details = Details(
            span_id=update.task_id,
            poll_times_histogram=update.poll_times_histogram,
            scheduled_times_histogram=update.scheduled_times_histogram,
        )

    def unset_task_details(self) -> None:
        self.task_details = None

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def is_paused(self) -> bool:
        return self._paused