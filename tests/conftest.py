# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from taskminder.scheduling.reminder_scheduler import ReminderScheduler
from taskminder.scheduling.trigger_store import SqliteTriggerStore
from taskminder.tasks.lifecycle import TaskLifecycleHooks
from taskminder.tasks.task_store import TaskStore

from .fakes import MONDAY_0800, UTC, MutableClock


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock(MONDAY_0800)


@pytest.fixture()
def task_store(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")


@pytest.fixture()
def trigger_store(tmp_path: Path) -> SqliteTriggerStore:
    return SqliteTriggerStore(tmp_path / "triggers.sqlite3", claim_ttl_seconds=60.0)


@pytest.fixture()
def scheduler(trigger_store: SqliteTriggerStore, clock: MutableClock) -> ReminderScheduler:
    return ReminderScheduler(trigger_store, tz=UTC, clock=clock)


@pytest.fixture()
def hooks(task_store: TaskStore, scheduler: ReminderScheduler) -> TaskLifecycleHooks:
    return TaskLifecycleHooks(task_store, scheduler, default_lead_minutes=30)


@pytest.fixture()
def payload_for(trigger_store: SqliteTriggerStore) -> Callable[[str], dict]:
    """Read back the dispatch payload stored on a task's trigger."""

    def _get(task_id: str) -> dict:
        targets = trigger_store.list_targets(f"task-reminder-{task_id}")
        assert len(targets) == 1
        return dict(targets[0].input)

    return _get
