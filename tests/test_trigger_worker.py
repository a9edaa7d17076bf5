# tests/test_trigger_worker.py

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from taskminder.errors import InternalError
from taskminder.scheduling.dispatcher import ReminderDispatcher
from taskminder.scheduling.reminder_scheduler import DISPATCH_DESTINATION, ReminderRequest
from taskminder.scheduling.trigger_store import TriggerTarget
from taskminder.scheduling.trigger_worker import fire_due_triggers, run_trigger_worker
from taskminder.tasks.task_models import Recipient, ReminderConfig, Task

from .fakes import UTC, RecordingChannel, SentNotification

FIRE_AT = datetime(2025, 3, 10, 8, 30, tzinfo=UTC).timestamp()


def _task(tid: str = "t1") -> Task:
    return Task(
        id=tid,
        owner="alice",
        title="Pay rent",
        due_date="2025-03-10",
        due_time="09:00",
        reminder=ReminderConfig(enabled=True, email_channel=True, lead_minutes=30),
    )


def _dispatcher(scheduler, log: list[SentNotification]) -> ReminderDispatcher:
    return ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )


class NoCleanupScheduler:
    def disarm(self, trigger_handle: str, *, revision: int | None = None) -> bool:
        raise RuntimeError("trigger backend unreachable")


@pytest.mark.asyncio
async def test_tick_fires_due_trigger_and_clears_task_handle(hooks, scheduler, task_store, trigger_store) -> None:
    hooks.create_task(_task(), Recipient(email="alice@example.com"))
    assert task_store.get_task("t1").trigger_handle

    log: list[SentNotification] = []
    report = await fire_due_triggers(
        trigger_store,
        _dispatcher(scheduler, log),
        task_repo=task_store,
        clock=lambda: FIRE_AT + 1,
    )

    assert (report.due, report.claimed) == (1, 1)
    assert len(report.results) == 1
    assert report.results[0].cleaned is True
    assert [n.recipient for n in log] == ["alice@example.com"]

    assert trigger_store.count_triggers() == 0
    assert task_store.get_task("t1").trigger_handle is None


@pytest.mark.asyncio
async def test_tick_before_fire_time_does_nothing(hooks, scheduler, task_store, trigger_store) -> None:
    hooks.create_task(_task(), Recipient(email="alice@example.com"))

    log: list[SentNotification] = []
    report = await fire_due_triggers(trigger_store, _dispatcher(scheduler, log), clock=lambda: FIRE_AT - 1)

    assert (report.due, report.claimed, report.results) == (0, 0, [])
    assert log == []
    assert trigger_store.count_triggers() == 1


@pytest.mark.asyncio
async def test_rearm_during_fire_keeps_new_trigger_and_handle(hooks, scheduler, task_store, trigger_store) -> None:
    hooks.create_task(_task(), Recipient(email="alice@example.com"))
    stale_revision = trigger_store.get_trigger("task-reminder-t1").revision

    class RearmingChannel(RecordingChannel):
        async def send(self, *, recipient: str, subject: str, text: str) -> None:
            hooks.update_reminder(
                "t1",
                ReminderConfig(enabled=True, email_channel=True, lead_minutes=10),
                Recipient(email=recipient),
            )

    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RearmingChannel("email"),
        sms_channel=RecordingChannel("sms"),
    )

    await fire_due_triggers(trigger_store, dispatcher, task_repo=task_store, clock=lambda: FIRE_AT + 1)

    record = trigger_store.get_trigger("task-reminder-t1")
    assert record is not None
    assert record.state == "armed"
    assert record.revision == stale_revision + 1
    assert record.fire_at == datetime(2025, 3, 10, 8, 50, tzinfo=UTC).timestamp()
    assert task_store.get_task("t1").trigger_handle == trigger_store.locator_for("task-reminder-t1")


@pytest.mark.asyncio
async def test_failed_cleanup_refires_after_claim_ttl(hooks, scheduler, task_store, trigger_store) -> None:
    hooks.create_task(_task(), Recipient(email="alice@example.com"))
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        NoCleanupScheduler(),
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    first = await fire_due_triggers(trigger_store, dispatcher, task_repo=task_store, clock=lambda: FIRE_AT + 1)
    assert first.results[0].cleaned is False
    assert trigger_store.get_trigger("task-reminder-t1").state == "firing"
    # Handle is kept while the trigger still exists.
    assert task_store.get_task("t1").trigger_handle

    within_ttl = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 30)
    assert within_ttl.due == 0

    after_ttl = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 62)
    assert after_ttl.claimed == 1
    assert len(log) == 2


@pytest.mark.asyncio
async def test_malformed_target_is_parked(scheduler, trigger_store) -> None:
    revision = trigger_store.put_trigger("task-reminder-bad", fire_at=FIRE_AT)
    trigger_store.put_targets(
        "task-reminder-bad",
        [TriggerTarget("1", DISPATCH_DESTINATION, {"task_id": "bad", "revision": revision})],
    )
    log: list[SentNotification] = []
    dispatcher = _dispatcher(scheduler, log)

    report = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 1)

    assert report.claimed == 1
    assert report.results == []
    assert log == []
    assert trigger_store.get_trigger("task-reminder-bad").state == "dead"

    later = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 3600)
    assert later.due == 0


@pytest.mark.asyncio
async def test_unknown_destination_is_skipped(scheduler, trigger_store) -> None:
    trigger_store.put_trigger("task-reminder-x", fire_at=FIRE_AT)
    trigger_store.put_targets("task-reminder-x", [TriggerTarget("1", "somewhere-else", {"task_id": "x"})])
    log: list[SentNotification] = []

    report = await fire_due_triggers(trigger_store, _dispatcher(scheduler, log), clock=lambda: FIRE_AT + 1)

    assert report.claimed == 1
    assert report.results == []
    assert log == []


def _request(title: str, lead_minutes: int) -> ReminderRequest:
    return ReminderRequest(
        task_id="t1",
        title=title,
        due_date="2025-03-10",
        due_time="09:00",
        lead_minutes=lead_minutes,
        email_channel=True,
        recipient_email="alice@example.com",
    )


@pytest.mark.asyncio
async def test_failed_rearm_leaves_previous_revision_intact(
    scheduler, trigger_store, monkeypatch: pytest.MonkeyPatch
) -> None:
    scheduler.arm(_request("Pay rent", 30))
    name = "task-reminder-t1"

    def broken_encode(data):
        raise RuntimeError("disk full")

    monkeypatch.setattr(trigger_store, "_encode_input", broken_encode)
    with pytest.raises(InternalError):
        scheduler.arm(_request("Pay rent twice", 10))
    monkeypatch.undo()

    record = trigger_store.get_trigger(name)
    assert record.revision == 1
    assert record.fire_at == FIRE_AT
    (target,) = trigger_store.list_targets(name)
    assert target.input["title"] == "Pay rent"
    assert target.input["revision"] == 1

    log: list[SentNotification] = []
    dispatcher = _dispatcher(scheduler, log)
    first = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 1)
    assert first.claimed == 1
    assert len(log) == 1
    assert trigger_store.get_trigger(name) is None

    later = await fire_due_triggers(trigger_store, dispatcher, clock=lambda: FIRE_AT + 3600)
    assert (later.due, later.claimed) == (0, 0)
    assert len(log) == 1


@pytest.mark.asyncio
async def test_target_bound_to_other_revision_is_parked(scheduler, trigger_store) -> None:
    name = "task-reminder-t1"
    revision = trigger_store.put_trigger(name, fire_at=FIRE_AT)
    payload = {
        "task_id": "t1",
        "title": "Pay rent",
        "due_date": "2025-03-10",
        "due_time": "09:00",
        "email_channel": True,
        "recipient_email": "alice@example.com",
        "trigger_handle": trigger_store.locator_for(name),
        "revision": revision - 1,
    }
    trigger_store.put_targets(name, [TriggerTarget("1", DISPATCH_DESTINATION, payload)])
    log: list[SentNotification] = []

    report = await fire_due_triggers(trigger_store, _dispatcher(scheduler, log), clock=lambda: FIRE_AT + 1)

    assert report.claimed == 1
    assert report.results == []
    assert log == []
    assert trigger_store.get_trigger(name).state == "dead"


@pytest.mark.asyncio
async def test_rearm_while_waiting_for_a_slot_does_not_fire_early(
    hooks, scheduler, task_store, trigger_store
) -> None:
    alice = Recipient(email="alice@example.com")
    for tid in ("t1", "t2"):
        task = _task(tid)
        task.title = f"T {tid}"
        hooks.create_task(task, alice)

    log: list[SentNotification] = []

    class RearmingChannel(RecordingChannel):
        async def send(self, *, recipient: str, subject: str, text: str) -> None:
            self.log.append(SentNotification(self.name, recipient, subject, text))
            if '"T t1"' in text:
                hooks.update_reminder(
                    "t2",
                    ReminderConfig(enabled=True, email_channel=True, lead_minutes=10),
                    alice,
                )

    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RearmingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    report = await fire_due_triggers(
        trigger_store,
        dispatcher,
        task_repo=task_store,
        concurrency=1,
        clock=lambda: FIRE_AT + 1,
    )

    assert report.due == 2
    assert [n.subject for n in log] == ["Task Reminder: T t1"]

    record = trigger_store.get_trigger("task-reminder-t2")
    assert record is not None
    assert record.state == "armed"
    assert record.revision == 2
    assert record.fire_at == datetime(2025, 3, 10, 8, 50, tzinfo=UTC).timestamp()
    assert task_store.get_task("t2").trigger_handle == trigger_store.locator_for("task-reminder-t2")


@pytest.mark.asyncio
async def test_worker_loop_fires_and_stops_on_cancel(hooks, scheduler, task_store, trigger_store) -> None:
    # The fixture clock sits in 2025, so the trigger is already due in wall-clock time.
    hooks.create_task(_task(), Recipient(email="alice@example.com"))
    log: list[SentNotification] = []

    runner = asyncio.create_task(
        run_trigger_worker(
            trigger_store,
            _dispatcher(scheduler, log),
            task_repo=task_store,
            interval_seconds=0.01,
            batch_limit=10,
        )
    )

    await asyncio.sleep(0.1)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert len(log) == 1, "Worker should fire the reminder exactly once"
    assert trigger_store.count_triggers() == 0
