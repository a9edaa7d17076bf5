# src/taskminder/scheduling/dispatcher.py

from __future__ import annotations

"""
Reminder dispatcher.

Runs once per fired trigger: Fired -> Delivering -> Cleaned.

- every enabled channel is attempted independently (email, then SMS),
- a failing or slow channel is logged and never blocks the other channel,
- the trigger is deleted afterwards regardless of the delivery outcome.

fire() reports instead of raising: the trigger backend that invokes it has no
caller to hand an exception to. Only a malformed payload raises.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core.ports import NotificationChannel
from ..errors import ChannelDeliveryError, ValidationError
from ..notify.message import build_notification_message, build_subject, truncate_sms
from .reminder_scheduler import ReminderScheduler, trigger_name_from_handle

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("task_id", "title", "due_date", "due_time")


class DispatchPhase(str, Enum):
    FIRED = "fired"
    DELIVERING = "delivering"
    CLEANED = "cleaned"


@dataclass(slots=True)
class DeliveryResult:
    """
    What happened during one fire.

    delivered only has keys for channels that were attempted. cleaned means the
    trigger is gone or superseded; removed means this fire deleted it.
    """

    task_id: str
    delivered: dict[str, bool] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    cleaned: bool = False
    removed: bool = False
    phase: DispatchPhase = DispatchPhase.FIRED

    def to_dict(self) -> dict[str, Any]:
        return {"delivered": dict(self.delivered), "cleaned": self.cleaned}


class ReminderDispatcher:
    def __init__(
        self,
        scheduler: ReminderScheduler,
        *,
        email_channel: NotificationChannel,
        sms_channel: NotificationChannel,
        channel_timeout_seconds: float = 10.0,
    ) -> None:
        self._scheduler = scheduler
        self._email = email_channel
        self._sms = sms_channel
        self._timeout = max(0.01, float(channel_timeout_seconds))

    @staticmethod
    def validate_payload(payload: Mapping[str, Any]) -> None:
        missing = [k for k in REQUIRED_FIELDS if not payload.get(k)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    async def _attempt(
        self,
        channel: NotificationChannel,
        *,
        task_id: str,
        recipient: str,
        subject: str,
        text: str,
    ) -> None:
        try:
            await asyncio.wait_for(
                channel.send(recipient=recipient, subject=subject, text=text),
                timeout=self._timeout,
            )
        except ChannelDeliveryError:
            raise
        except asyncio.TimeoutError as exc:
            raise ChannelDeliveryError(channel.name, f"timed out after {self._timeout:.1f}s") from exc
        except Exception as exc:
            raise ChannelDeliveryError(channel.name, str(exc) or exc.__class__.__name__) from exc
        logger.info("Reminder task_id=%s sent via %s to %s", task_id, channel.name, recipient)

    async def fire(self, payload: Mapping[str, Any]) -> DeliveryResult:
        self.validate_payload(payload)

        task_id = str(payload["task_id"])
        result = DeliveryResult(task_id=task_id)

        text = build_notification_message(str(payload["title"]), str(payload["due_date"]), str(payload["due_time"]))
        subject = build_subject(str(payload["title"]))

        result.phase = DispatchPhase.DELIVERING
        plan: list[tuple[NotificationChannel, str | None, str]] = []
        if payload.get("email_channel"):
            plan.append((self._email, payload.get("recipient_email"), text))
        if payload.get("sms_channel"):
            plan.append((self._sms, payload.get("recipient_phone"), truncate_sms(text)))

        for channel, recipient, body in plan:
            if not recipient:
                logger.warning("Reminder task_id=%s: %s enabled but no recipient; skipping", task_id, channel.name)
                continue
            try:
                await self._attempt(channel, task_id=task_id, recipient=recipient, subject=subject, text=body)
                result.delivered[channel.name] = True
            except ChannelDeliveryError as exc:
                logger.error("Reminder task_id=%s: %s", task_id, exc.message)
                result.delivered[channel.name] = False
                result.errors[channel.name] = exc.reason

        handle = payload.get("trigger_handle")
        if handle and trigger_name_from_handle(str(handle)):
            revision = payload.get("revision")
            try:
                result.removed = self._scheduler.disarm(
                    str(handle), revision=int(revision) if revision is not None else None
                )
                result.cleaned = True
            except Exception:
                logger.exception("Failed to delete trigger after firing task_id=%s", task_id)
        else:
            logger.warning("Reminder task_id=%s carried no trigger handle; nothing to clean", task_id)

        if result.cleaned:
            result.phase = DispatchPhase.CLEANED
        logger.info(
            "Reminder task_id=%s dispatched delivered=%s cleaned=%s",
            task_id,
            result.delivered,
            result.cleaned,
        )
        return result
