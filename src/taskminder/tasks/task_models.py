# src/taskminder/tasks/task_models.py

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, time as dtime
from enum import StrEnum
from typing import Any

from ..errors import ValidationError

# uuid5 namespace for instance ids derived from (template id, date).
INSTANCE_NAMESPACE = uuid.UUID("0f4c7e52-6a8b-4f6e-9a51-3d2b8c1e7a90")


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.MEDIUM


class Weekday(StrEnum):
    """Lower-case canonical weekday vocabulary, in date.weekday() order."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def parse(cls, raw: str) -> Weekday:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            names = ", ".join(d.value for d in cls)
            raise ValidationError(f"Invalid day: {raw!r}. Must be one of: {names}") from None

    @classmethod
    def for_date(cls, d: date) -> Weekday:
        return list(cls)[d.weekday()]


def parse_due_date(raw: str | None) -> date:
    """Parse a strict YYYY-MM-DD date."""
    s = (raw or "").strip()
    if len(s) != 10 or s[4] != "-" or s[7] != "-":
        raise ValidationError("dueDate must be in YYYY-MM-DD format")
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError("dueDate must be in YYYY-MM-DD format") from None


def parse_due_time(raw: str | None) -> dtime:
    """Parse a strict HH:MM clock time."""
    s = (raw or "").strip()
    if len(s) != 5 or s[2] != ":" or not (s[:2] + s[3:]).isdigit():
        raise ValidationError("dueTime must be in HH:MM format")
    hours, minutes = int(s[:2]), int(s[3:])
    if hours > 23 or minutes > 59:
        raise ValidationError("dueTime must be in HH:MM format")
    return dtime(hours, minutes)


def new_task_id() -> str:
    """Time-ordered id: 12 hex digits of epoch milliseconds + 16 random hex digits."""
    ms = int(time.time() * 1000)
    return f"{ms:012x}{os.urandom(8).hex()}"


def instance_id_for(template_id: str, on: date) -> str:
    """Deterministic instance id for one template occurrence on one date."""
    return uuid.uuid5(INSTANCE_NAMESPACE, f"{template_id}:{on.isoformat()}").hex


@dataclass(slots=True, frozen=True)
class Recipient:
    email: str | None = None
    phone: str | None = None


@dataclass(slots=True)
class RecurringConfig:
    """
    Recurrence marker.

    - template: enabled=True, non-empty days
    - instance: enabled=False, base_template_id set
    """

    enabled: bool
    days: frozenset[Weekday] = frozenset()
    base_template_id: str | None = None

    @classmethod
    def template(cls, days: Iterable[str], base_template_id: str | None = None) -> RecurringConfig:
        parsed = frozenset(Weekday.parse(d) for d in days)
        if not parsed:
            raise ValidationError("Recurring tasks must have at least one day selected")
        return cls(enabled=True, days=parsed, base_template_id=base_template_id)

    @classmethod
    def instance_of(cls, base_template_id: str) -> RecurringConfig:
        return cls(enabled=False, days=frozenset(), base_template_id=base_template_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "days": sorted(d.value for d in self.days),
            "base_template_id": self.base_template_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurringConfig:
        raw_days = data.get("days") or []
        if not isinstance(raw_days, list):
            raise ValidationError("recurring.days must be a list")
        return cls(
            enabled=bool(data.get("enabled")),
            days=frozenset(Weekday.parse(d) for d in raw_days),
            base_template_id=data.get("base_template_id"),
        )


@dataclass(slots=True)
class ReminderConfig:
    enabled: bool
    email_channel: bool = False
    sms_channel: bool = False
    lead_minutes: int | None = None
    trigger_handle: str | None = None

    def without_handle(self) -> ReminderConfig:
        return ReminderConfig(
            enabled=self.enabled,
            email_channel=self.email_channel,
            sms_channel=self.sms_channel,
            lead_minutes=self.lead_minutes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "email_channel": bool(self.email_channel),
            "sms_channel": bool(self.sms_channel),
            "lead_minutes": self.lead_minutes,
            "trigger_handle": self.trigger_handle,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReminderConfig:
        lead = data.get("lead_minutes")
        return cls(
            enabled=bool(data.get("enabled")),
            email_channel=bool(data.get("email_channel")),
            sms_channel=bool(data.get("sms_channel")),
            lead_minutes=int(lead) if lead is not None else None,
            trigger_handle=data.get("trigger_handle") or None,
        )


@dataclass(slots=True)
class Task:
    id: str
    owner: str
    title: str
    due_date: str

    priority: Priority = Priority.MEDIUM
    description: str | None = None
    category_id: str | None = None
    due_time: str | None = None

    recurring: RecurringConfig | None = None
    reminder: ReminderConfig | None = None

    completed: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_template(self) -> bool:
        return self.recurring is not None and self.recurring.enabled

    @property
    def is_instance(self) -> bool:
        return (
            self.recurring is not None
            and not self.recurring.enabled
            and bool(self.recurring.base_template_id)
        )

    @property
    def trigger_handle(self) -> str | None:
        return self.reminder.trigger_handle if self.reminder else None


@dataclass(slots=True, frozen=True)
class ScanPage:
    """One page of a paginated scan; last_key is None once the scan is exhausted."""

    items: list[Task]
    last_key: str | None = None
