# src/taskminder/scheduling/reminder_scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

arm():    due date/time - lead minutes -> one-shot trigger named after the task
disarm(): remove the trigger's targets, then the trigger; already-gone is success

The trigger carries a self-contained payload, so the dispatcher never has to read
the task back from the task store.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any

from ..core.ports import Clock, TriggerStore
from ..errors import InternalError, NotFoundError, TaskminderError, ValidationError
from ..tasks.task_models import parse_due_date, parse_due_time
from .trigger_store import TriggerTarget

logger = logging.getLogger(__name__)

TRIGGER_NAMESPACE = "task-reminder"
DISPATCH_DESTINATION = "reminder-dispatcher"
DISPATCH_TARGET_ID = "1"


def trigger_name_for(task_id: str) -> str:
    return f"{TRIGGER_NAMESPACE}-{task_id}"


def trigger_name_from_handle(handle: str) -> str:
    """Accept either a bare trigger name or a backend locator ending in '#<name>'."""
    return (handle or "").rsplit("#", 1)[-1].strip()


@dataclass(slots=True, frozen=True)
class ReminderRequest:
    task_id: str
    title: str
    due_date: str
    due_time: str
    lead_minutes: int
    email_channel: bool = False
    sms_channel: bool = False
    recipient_email: str | None = None
    recipient_phone: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReminderRequest:
        missing = [k for k in ("task_id", "due_date", "due_time") if not data.get(k)]
        if data.get("lead_minutes") is None:
            missing.append("lead_minutes")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        try:
            lead = int(data["lead_minutes"])
        except (TypeError, ValueError):
            raise ValidationError("lead_minutes must be a non-negative integer") from None
        return cls(
            task_id=str(data["task_id"]),
            title=str(data.get("title") or ""),
            due_date=str(data["due_date"]),
            due_time=str(data["due_time"]),
            lead_minutes=lead,
            email_channel=bool(data.get("email_channel")),
            sms_channel=bool(data.get("sms_channel")),
            recipient_email=data.get("recipient_email") or None,
            recipient_phone=data.get("recipient_phone") or None,
        )


@dataclass(slots=True, frozen=True)
class ArmResult:
    trigger_handle: str
    fire_at: datetime
    revision: int

    def to_dict(self) -> dict[str, Any]:
        return {"trigger_handle": self.trigger_handle, "fire_at": self.fire_at.isoformat()}


class ReminderScheduler:
    def __init__(
        self,
        trigger_store: TriggerStore,
        *,
        tz: tzinfo = timezone.utc,
        clock: Clock | None = None,
    ) -> None:
        self._store = trigger_store
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz))

    def _now(self) -> datetime:
        now = self._clock()
        return now if now.tzinfo is not None else now.replace(tzinfo=self._tz)

    def compute_fire_at(self, due_date: str, due_time: str, lead_minutes: int) -> datetime:
        if lead_minutes < 0:
            raise ValidationError("lead_minutes must be a non-negative integer")
        due = datetime.combine(parse_due_date(due_date), parse_due_time(due_time), tzinfo=self._tz)
        return due - timedelta(minutes=lead_minutes)

    def arm(self, request: ReminderRequest | Mapping[str, Any]) -> ArmResult:
        """
        Register (or replace) the one-shot trigger for a task's reminder.

        Raises ValidationError for bad input or a fire time that is not strictly in
        the future; no trigger is created in that case.
        """
        req = request if isinstance(request, ReminderRequest) else ReminderRequest.from_dict(request)
        if not req.task_id:
            raise ValidationError("Missing required fields: task_id")

        fire_at = self.compute_fire_at(req.due_date, req.due_time, req.lead_minutes)
        now = self._now()
        if fire_at <= now:
            logger.warning(
                "Refusing to arm task_id=%s: fire_at=%s is not after now=%s",
                req.task_id,
                fire_at.isoformat(),
                now.isoformat(),
            )
            raise ValidationError("trigger time in the past")

        name = trigger_name_for(req.task_id)
        handle = self._store.locator_for(name)

        def bind(revision: int) -> list[TriggerTarget]:
            payload = {
                "task_id": req.task_id,
                "title": req.title,
                "due_date": req.due_date,
                "due_time": req.due_time,
                "email_channel": req.email_channel,
                "sms_channel": req.sms_channel,
                "recipient_email": req.recipient_email,
                "recipient_phone": req.recipient_phone,
                "trigger_handle": handle,
                "revision": revision,
            }
            return [TriggerTarget(target_id=DISPATCH_TARGET_ID, destination=DISPATCH_DESTINATION, input=payload)]

        try:
            revision = self._store.put_trigger(
                name,
                fire_at=fire_at.timestamp(),
                description=f"Reminder for task {req.task_id}",
                bind_targets=bind,
            )
        except TaskminderError:
            raise
        except Exception as exc:
            raise InternalError(f"failed to arm reminder for task {req.task_id}") from exc

        logger.info("Armed reminder task_id=%s trigger=%s fire_at=%s", req.task_id, name, fire_at.isoformat())
        return ArmResult(trigger_handle=handle, fire_at=fire_at, revision=revision)

    def disarm(self, trigger_handle: str, *, revision: int | None = None) -> bool:
        """
        Remove the trigger's targets, then the trigger.

        Idempotent: a missing trigger is success. Returns True only if this call
        deleted something. With a revision, a trigger that was re-armed since that
        revision is left alone.
        """
        name = trigger_name_from_handle(trigger_handle)
        if not name:
            raise ValidationError("trigger_handle is required")

        try:
            targets = self._store.list_targets(name)
            if revision is None:
                self._store.remove_targets(name, [t.target_id for t in targets])
            deleted = self._store.delete_trigger(name, revision=revision)
        except NotFoundError:
            logger.info("Trigger %s not found, may have been already deleted", name)
            return False
        except TaskminderError:
            raise
        except Exception as exc:
            raise InternalError(f"failed to disarm trigger {name}") from exc

        if not deleted:
            logger.info("Trigger %s was re-armed after revision %s; leaving it", name, revision)
            return False

        logger.info("Disarmed trigger %s (%d targets)", name, len(targets))
        return True
