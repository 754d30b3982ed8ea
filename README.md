# consolestate

`consolestate` keeps the live picture that an async runtime console shows.
That picture covers the tasks running in a program, the resources they use
(timers, locks, channels, ...) and the async operations in flight on those
resources. You feed it update records. It turns them into plain Python
objects that report their timings, sort by the console's columns and render
as `(text, style)` segments.

It needs only the standard library.

## Installing

```
pip install consolestate
```

## Modules

- `consolestate.store`
  - `Store` holds items under a sequential `Id`.
  - `Ids` gives each remote span id a small number that does not change.
    Numbers start at 1.
  - `Visibility` says whether the list an update belongs to is on screen.
- `consolestate.fields`
  - `Metadata`, `WireField` and `WireAttribute` describe fields as they arrive.
  - `Field`, `FieldValue`/`FieldKind` and `Attribute` are the checked forms.
    Fields sort with `task.name` first and `spawn.location` last.
  - `truncate_registry_path` replaces a package-registry or git-checkout path
    prefix with `<cargo>/`.
  - `format_location`, `format_fields` and `format_attributes` produce text
    for display.
- `consolestate.tasks`
  - `TasksState` holds all tasks and applies `TaskUpdate`s to them.
  - `Task` reports `total`, `busy`, `scheduled`, `idle`, `state()`,
    `waker_count()`, `self_wake_percent()` and more.
  - `TaskState` and `SortBy` cover task states and the sort columns.
  - `Details` holds per-task details.
- `consolestate.resources`
  - `ResourcesState`, `Resource` and `ResourceUpdate` track resources.
  - `TypeVisibility` marks a resource type as public or internal.
  - `kind_from_wire` names a resource kind. A numeric kind that is not a known
    `KnownKind` raises `ValueError`.
  - `SortBy` gives the resource sort columns.
- `consolestate.async_ops`
  - `AsyncOpsState`, `AsyncOp` and `AsyncOpUpdate` track async operations.
  - `SortBy` gives the async-op sort columns.
- `consolestate.state`
  - `State` ties the others together. It stores metadata, applies whole
    `Update`s, keeps the current task `Details`, drops old items and can be
    paused.
- `consolestate.util`
  - `percentage(total, amount)` and `percent_of(amount, total)` compute
    percentages. Both raise `ValueError` when the amount is greater than the
    total.

## Example

```python
from datetime import datetime, timedelta, timezone

from consolestate.fields import FieldKind, FieldValue, Metadata, WireField
from consolestate.state import State, Update, ViewKind
from consolestate.tasks import NewTask, SortBy, TaskStats, TaskUpdate

t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
meta = Metadata(id=1, target="app::worker", field_names=["task.name"])

update = Update(
    now=t0 + timedelta(seconds=2),
    new_metadata=[meta],
    task_update=TaskUpdate(
        new_tasks=[
            NewTask(
                id=42,
                metadata_id=1,
                fields=[
                    WireField(
                        name_index=0,
                        metadata_id=1,
                        value=FieldValue(FieldKind.STR, "worker"),
                    )
                ],
            )
        ],
        stats_update={42: TaskStats(created_at=t0, polls=3, busy=timedelta(milliseconds=500))},
    ),
)

state = State(retain_for=timedelta(seconds=6))
state.update(ViewKind.TASKS_LIST, update)

tasks = state.tasks_state.take_new_tasks()
task = tasks[0]
print(task.id, task.name)                  # 1 worker
print(task.total(state.last_updated_at))   # 0:00:02
print(task.idle(state.last_updated_at))    # 0:00:01.500000

SortBy.from_index(4).sort(state.last_updated_at, tasks)  # by total time
```

The behaviour of `State` has a few rules worth knowing:

- An update whose list is on screen (for example, a task update while the
  view is `ViewKind.TASKS_LIST`) first throws away the new items collected
  earlier. `take_new_tasks()` then returns only that batch.
- A task is created only when its stats arrive in the same update.
- `State(task_linters=...)` takes callables that are run on each task after
  every update. Each one returns a warning, or `None` when the task is fine.
  The warnings end up in `task.warnings`.
- `state.retain_active()` forgets items that were dropped at least
  `retain_for` before the last update.
- While the state is paused (`state.pause()`), `retain_active()` keeps
  everything. `state.resume()` returns to live mode.

## What it does not do

`consolestate` is only the state model.

- It does not connect to an instrumented program and does not decode wire
  messages. You build `Update` and `TaskDetailsUpdate` records yourself.
- It draws no terminal screen.
- It has no command-line program.
- It does not decode histograms. Task details keep whatever histogram objects
  you pass in, unchanged.

## Running the tests

```
pip install -e ".[test]"
pytest
```