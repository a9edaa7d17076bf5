# src/taskminder/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..scheduling.dispatcher import ReminderDispatcher
from ..scheduling.recurrence import RecurrenceExpander
from ..scheduling.reminder_scheduler import ReminderScheduler
from ..scheduling.trigger_store import SqliteTriggerStore
from ..tasks.lifecycle import TaskLifecycleHooks
from ..tasks.task_store import TaskStore
from .ports import NotificationChannel


@dataclass
class AppState:
    """
    Process-wide singletons, built once by the composition root and passed around.

    Components receive what they need explicitly; nothing reaches for module globals.
    """

    settings: Any

    task_store: TaskStore
    trigger_store: SqliteTriggerStore
    email_channel: NotificationChannel
    sms_channel: NotificationChannel

    scheduler: ReminderScheduler
    dispatcher: ReminderDispatcher
    hooks: TaskLifecycleHooks
    expander: RecurrenceExpander

    closers: list[Any] = field(default_factory=list)
