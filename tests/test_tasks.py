from datetime import datetime, timedelta

import pytest

from consolestate.fields import FieldKind, FieldValue, Metadata, WireField
from consolestate.store import Id, Visibility
from consolestate.tasks import (
    NewTask,
    SortBy,
    Task,
    TaskState,
    TaskStats,
    TasksState,
    TaskUpdate,
)

BASE = datetime(2024, 1, 1, 12, 0, 0)
META = Metadata(id=1, target="app::worker", field_names=["task.name", "kind"])


def sec(n):
    return timedelta(seconds=n)


def make_task(span_id=1, **stats):
    stats.setdefault("created_at", BASE)
    return Task(id=Id(span_id), span_id=span_id, stats=TaskStats(**stats), target="t")


def str_field(name, value):
    return WireField(name=name, value=FieldValue(FieldKind.STR, value))


def test_stats_total_none_while_alive():
    stats = TaskStats(created_at=BASE)
    assert stats.total() is None
    assert stats.idle() is None


def test_stats_total_and_idle_when_dropped():
    stats = TaskStats(created_at=BASE, dropped_at=BASE + sec(10), busy=sec(3), scheduled=sec(2))
    assert stats.total() == sec(10)
    assert stats.idle() == sec(10) - sec(3) - sec(2)


def test_stats_clamp_to_zero():
    stats = TaskStats(created_at=BASE, dropped_at=BASE - sec(1), busy=sec(3))
    assert stats.total() == timedelta(0)
    assert stats.idle() == timedelta(0)


def test_state_transitions():
    assert make_task().state() is TaskState.IDLE
    assert make_task(last_poll_started=BASE + sec(1)).state() is TaskState.RUNNING
    running_then_done = make_task(last_poll_started=BASE + sec(1), last_poll_ended=BASE + sec(2))
    assert running_then_done.state() is TaskState.IDLE
    assert make_task(last_wake=BASE + sec(1)).state() is TaskState.SCHEDULED
    assert make_task(dropped_at=BASE + sec(5), last_poll_started=BASE).state() is TaskState.COMPLETED


def test_busy_includes_current_poll():
    task = make_task(busy=sec(2), last_poll_started=BASE + sec(1))
    assert task.busy(BASE + sec(4)) == sec(2) + sec(3)
    idle_task = make_task(busy=sec(2), last_poll_started=BASE, last_poll_ended=BASE + sec(1))
    assert idle_task.busy(BASE + sec(4)) == sec(2)


def test_scheduled_includes_time_since_wake():
    task = make_task(scheduled=sec(1), last_wake=BASE + sec(2))
    assert task.scheduled(BASE + sec(5)) == sec(1) + sec(3)
    polled = make_task(scheduled=sec(1), last_wake=BASE, last_poll_started=BASE + sec(1),
                       last_poll_ended=BASE + sec(2))
    assert polled.scheduled(BASE + sec(5)) == sec(1)


def test_total_and_idle_for_live_task():
    task = make_task(busy=sec(2), scheduled=sec(1))
    now = BASE + sec(10)
    assert task.total(now) == sec(10)
    assert task.idle(now) == task.total(now) - task.busy(now) - task.scheduled(now)
    assert task.total(BASE - sec(1)) == timedelta(0)


def test_since_wake():
    assert make_task().since_wake(BASE) is None
    task = make_task(last_wake=BASE + sec(2))
    assert task.since_wake(BASE + sec(5)) == sec(3)
    assert task.since_wake(BASE) is None


def test_waker_count_saturates():
    assert make_task(waker_clones=5, waker_drops=2).waker_count() == 3
    assert make_task(waker_clones=1, waker_drops=4).waker_count() == 0


def test_self_wake_percent():
    assert make_task(wakes=10, self_wakes=5).self_wake_percent() == 50
    assert make_task().self_wake_percent() == 0
    assert make_task(wakes=7, self_wakes=7).self_wake_percent() == 100


def test_is_awakened():
    assert make_task(polls=0).is_awakened()
    assert not make_task(polls=1, last_poll_started=BASE, last_poll_ended=BASE).is_awakened()
    assert make_task(polls=1, last_poll_started=BASE, last_wake=BASE + sec(1)).is_awakened()


def test_render():
    assert TaskState.RUNNING.render(False) == ("BUSY", "green")
    assert TaskState.RUNNING.render(True) == ("\u25B6", "green")
    assert TaskState.SCHEDULED.render(False)[0] == "SCHED"
    assert TaskState.IDLE.render(True)[0] == "\u23F8"
    assert TaskState.COMPLETED.render(False)[0] == "DONE"


def test_sort_by_from_index_round_trip():
    for column in SortBy:
        assert SortBy.from_index(int(column)) is column
    with pytest.raises(ValueError):
        SortBy.from_index(len(SortBy))


def test_sort_by_polls_and_tid():
    a = make_task(1, polls=5)
    b = make_task(2, polls=1)
    c = make_task(3, polls=3)
    tasks = [a, b, c]
    SortBy.POLLS.sort(BASE, tasks)
    assert [t.stats.polls for t in tasks] == sorted(t.stats.polls for t in tasks)

    a.task_id, b.task_id, c.task_id = 9, None, 4
    SortBy.TID.sort(BASE, tasks)
    assert [t.task_id for t in tasks] == [None, 4, 9]


def test_sort_by_total():
    early = make_task(1, created_at=BASE)
    late = make_task(2, created_at=BASE + sec(5))
    tasks = [early, late]
    SortBy.TOTAL.sort(BASE + sec(10), tasks)
    assert tasks == [late, early]


def new_update(span_id=10, fields=(), **stats):
    stats.setdefault("created_at", BASE)
    return TaskUpdate(
        new_tasks=[NewTask(id=span_id, metadata_id=META.id, fields=list(fields))],
        stats_update={span_id: TaskStats(**stats)},
    )


def test_update_tasks_creates_task():
    state = TasksState()
    fields = [
        str_field("task.name", "worker"),
        WireField(name="task.id", value=FieldValue(FieldKind.U64, 7)),
        str_field("kind", "task"),
    ]
    state.update_tasks({META.id: META}, new_update(fields=fields), Visibility.SHOW)
    task = state.task(Id(1))
    assert task is not None
    assert task.span_id == 10
    assert task.name == "worker"
    assert task.task_id == 7
    assert task.short_desc == "7 (worker)"
    assert task.id_str == "7"
    assert task.target == META.target
    assert task.location == "<unknown location>"
    assert [seg[0][0] for seg in task.formatted_fields] == ["kind"]
    assert state.take_new_tasks() == [task]
    assert state.take_new_tasks() == []


def test_update_tasks_skips_invalid():
    state = TasksState()
    metas = {META.id: META}
    no_meta = TaskUpdate(new_tasks=[NewTask(id=1)], stats_update={1: TaskStats(created_at=BASE)})
    unknown_meta = TaskUpdate(
        new_tasks=[NewTask(id=2, metadata_id=99)], stats_update={2: TaskStats(created_at=BASE)}
    )
    no_stats = TaskUpdate(new_tasks=[NewTask(id=3, metadata_id=META.id)])
    no_id = TaskUpdate(new_tasks=[NewTask(metadata_id=META.id)])
    for update in (no_meta, unknown_meta, no_stats, no_id):
        state.update_tasks(metas, update, Visibility.HIDE)
    assert len(state) == 0


def test_stats_update_and_dropped_events():
    state = TasksState()
    metas = {META.id: META}
    state.update_tasks(metas, new_update(polls=1), Visibility.HIDE)
    newer = TaskStats(created_at=BASE, polls=4)
    state.update_tasks(
        metas, TaskUpdate(stats_update={10: newer}, dropped_events=3), Visibility.HIDE
    )
    state.update_tasks(metas, TaskUpdate(dropped_events=2), Visibility.HIDE)
    assert state.task(Id(1)).total_polls == 4
    assert state.dropped_events == 5


def test_linters_record_warnings():
    state = TasksState(linters=[lambda t: "many polls" if t.stats.polls > 2 else None])
    metas = {META.id: META}
    state.update_tasks(metas, new_update(polls=1), Visibility.HIDE)
    task = state.task(Id(1))
    assert task.warnings == []
    state.update_tasks(
        metas, TaskUpdate(stats_update={10: TaskStats(created_at=BASE, polls=3)}), Visibility.HIDE
    )
    assert task.warnings == ["many polls"]


def test_retain_active():
    state = TasksState()
    metas = {META.id: META}
    state.update_tasks(metas, new_update(10, dropped_at=BASE + sec(1)), Visibility.HIDE)
    state.update_tasks(metas, new_update(11), Visibility.HIDE)
    state.retain_active(BASE + sec(2), sec(5))
    assert len(state) == 2
    state.retain_active(BASE + sec(10), sec(5))
    assert state.task(Id(1)) is None
    assert state.task(Id(2)) is not None
    assert [t.span_id for t in state.take_new_tasks()] == [11]


def test_visible_update_discards_earlier_new_tasks():
    state = TasksState()
    metas = {META.id: META}
    state.update_tasks(metas, new_update(10), Visibility.HIDE)
    state.update_tasks(metas, new_update(11), Visibility.SHOW)
    assert [t.span_id for t in state.take_new_tasks()] == [11]