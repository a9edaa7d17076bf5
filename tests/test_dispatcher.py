# tests/test_dispatcher.py

from __future__ import annotations

import pytest

from taskminder.errors import ValidationError
from taskminder.notify.message import build_notification_message
from taskminder.scheduling.dispatcher import DispatchPhase, ReminderDispatcher

from .fakes import FailingChannel, RecordingChannel, SentNotification, SlowChannel


def _arm(scheduler, **overrides) -> dict:
    req = {
        "task_id": "t1",
        "title": "Pay rent",
        "due_date": "2025-03-10",
        "due_time": "09:00",
        "lead_minutes": 30,
        "email_channel": True,
        "sms_channel": False,
        "recipient_email": "a@b.com",
        "recipient_phone": "+15551234567",
    }
    req.update(overrides)
    scheduler.arm(req)
    return req


class ExplodingScheduler:
    def disarm(self, trigger_handle: str, *, revision: int | None = None) -> bool:
        raise RuntimeError("trigger backend unreachable")


@pytest.mark.asyncio
async def test_email_only_attempts_one_channel_and_cleans_up(scheduler, trigger_store, payload_for) -> None:
    _arm(scheduler)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    result = await dispatcher.fire(payload_for("t1"))

    assert result.delivered == {"email": True}
    assert "sms" not in result.delivered
    assert result.cleaned is True
    assert result.phase is DispatchPhase.CLEANED
    assert result.to_dict() == {"delivered": {"email": True}, "cleaned": True}
    assert trigger_store.get_trigger("task-reminder-t1") is None

    assert [n.channel for n in log] == ["email"]
    assert log[0].recipient == "a@b.com"
    assert log[0].subject == "Task Reminder: Pay rent"
    assert log[0].text == 'Reminder: Your task "Pay rent" is due on 2025-03-10 at 09:00.'


@pytest.mark.asyncio
async def test_failed_email_still_cleans_up(scheduler, trigger_store, payload_for) -> None:
    _arm(scheduler)
    failing = FailingChannel("email")
    dispatcher = ReminderDispatcher(scheduler, email_channel=failing, sms_channel=RecordingChannel("sms"))

    result = await dispatcher.fire(payload_for("t1"))

    assert failing.calls == 1
    assert result.delivered == {"email": False}
    assert "provider down" in result.errors["email"]
    assert result.cleaned is True
    assert trigger_store.count_triggers() == 0


@pytest.mark.asyncio
async def test_channels_run_email_then_sms_and_fail_independently(scheduler, payload_for) -> None:
    _arm(scheduler, sms_channel=True)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=FailingChannel("email"),
        sms_channel=RecordingChannel("sms", log),
    )

    result = await dispatcher.fire(payload_for("t1"))

    assert result.delivered == {"email": False, "sms": True}
    assert log[0].recipient == "+15551234567"
    assert result.cleaned is True


@pytest.mark.asyncio
async def test_sms_body_is_truncated_to_160_chars(scheduler, payload_for) -> None:
    title = "x" * 200
    _arm(scheduler, title=title, sms_channel=True)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    await dispatcher.fire(payload_for("t1"))

    email, sms = log
    full = build_notification_message(title, "2025-03-10", "09:00")
    assert email.text == full
    assert len(sms.text) == 160
    assert sms.text.endswith("...")
    assert sms.text[:157] == full[:157]


@pytest.mark.asyncio
async def test_slow_channel_times_out_and_does_not_block_cleanup(scheduler, trigger_store, payload_for) -> None:
    _arm(scheduler, sms_channel=True)
    slow = SlowChannel("email", delay_seconds=5.0)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=slow,
        sms_channel=RecordingChannel("sms", log),
        channel_timeout_seconds=0.05,
    )

    result = await dispatcher.fire(payload_for("t1"))

    assert slow.started == 1
    assert result.delivered == {"email": False, "sms": True}
    assert "timed out" in result.errors["email"]
    assert result.cleaned is True
    assert trigger_store.count_triggers() == 0


@pytest.mark.asyncio
async def test_enabled_channel_without_recipient_is_not_attempted(scheduler, payload_for) -> None:
    _arm(scheduler, sms_channel=True, recipient_phone=None)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    result = await dispatcher.fire(payload_for("t1"))

    assert result.delivered == {"email": True}
    assert [n.channel for n in log] == ["email"]


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["task_id", "title", "due_date", "due_time"])
async def test_malformed_payload_is_rejected_without_delivery_or_cleanup(
    scheduler, trigger_store, payload_for, missing
) -> None:
    _arm(scheduler)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )
    payload = payload_for("t1")
    payload.pop(missing)

    with pytest.raises(ValidationError):
        await dispatcher.fire(payload)

    assert log == []
    assert trigger_store.get_trigger("task-reminder-t1") is not None


@pytest.mark.asyncio
async def test_cleanup_failure_is_reported_not_raised(scheduler, payload_for) -> None:
    _arm(scheduler)
    log: list[SentNotification] = []
    dispatcher = ReminderDispatcher(
        ExplodingScheduler(),
        email_channel=RecordingChannel("email", log),
        sms_channel=RecordingChannel("sms", log),
    )

    result = await dispatcher.fire(payload_for("t1"))

    assert result.delivered == {"email": True}
    assert result.cleaned is False
    assert result.phase is DispatchPhase.DELIVERING


@pytest.mark.asyncio
async def test_fire_for_already_deleted_trigger_still_counts_as_cleaned(scheduler, payload_for) -> None:
    _arm(scheduler)
    payload = payload_for("t1")
    scheduler.disarm("task-reminder-t1")
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=RecordingChannel("email"),
        sms_channel=RecordingChannel("sms"),
    )

    result = await dispatcher.fire(payload)

    assert result.cleaned is True
