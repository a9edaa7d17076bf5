# src/taskminder/tasks/lifecycle.py

from __future__ import annotations

import logging

from ..core.ports import TaskRepo
from ..errors import NotFoundError, TaskminderError, ValidationError
from ..scheduling.reminder_scheduler import ReminderRequest, ReminderScheduler, trigger_name_for
from .task_models import Recipient, ReminderConfig, Task, parse_due_date, parse_due_time

logger = logging.getLogger(__name__)


class TaskLifecycleHooks:
    """
    Glue between task CRUD and the reminder scheduler.

    Persisting the task is the primary operation and its errors propagate.
    Arming and disarming reminders is best-effort: failures are logged and never
    block the task write.
    """

    def __init__(self, task_repo: TaskRepo, scheduler: ReminderScheduler, *, default_lead_minutes: int = 30) -> None:
        self._repo = task_repo
        self._scheduler = scheduler
        self._default_lead = max(0, int(default_lead_minutes))

    @staticmethod
    def validate(task: Task) -> None:
        if not task.id:
            raise ValidationError("task id is required")
        if not task.title or not task.title.strip():
            raise ValidationError("Title and dueDate are required")
        parse_due_date(task.due_date)
        if task.due_time:
            parse_due_time(task.due_time)
        if task.recurring is not None and task.recurring.enabled and not task.recurring.days:
            raise ValidationError("Recurring tasks must have at least one day selected")
        if task.reminder is not None and task.reminder.lead_minutes is not None and task.reminder.lead_minutes < 0:
            raise ValidationError("lead_minutes must be a non-negative integer")

    def _recipient_for(self, task: Task, recipient: Recipient | None) -> Recipient:
        if recipient is not None:
            return recipient
        try:
            contact = self._repo.get_contact(task.owner)
        except Exception:
            logger.exception("get_contact failed owner=%s", task.owner)
            contact = None
        return contact or Recipient()

    def arm_reminder(self, task: Task, recipient: Recipient | None = None) -> str | None:
        """
        Arm the task's reminder if it is enabled and the task has a due time.

        Returns the stored trigger handle, or None when nothing was armed.
        """
        reminder = task.reminder
        if reminder is None or not reminder.enabled or not task.due_time:
            return None

        rcpt = self._recipient_for(task, recipient)
        request = ReminderRequest(
            task_id=task.id,
            title=task.title,
            due_date=task.due_date,
            due_time=task.due_time,
            lead_minutes=reminder.lead_minutes if reminder.lead_minutes is not None else self._default_lead,
            email_channel=reminder.email_channel,
            sms_channel=reminder.sms_channel,
            recipient_email=rcpt.email,
            recipient_phone=rcpt.phone,
        )

        try:
            result = self._scheduler.arm(request)
        except TaskminderError as exc:
            logger.error("Failed to schedule reminder task_id=%s: %s", task.id, exc.message)
            return None
        except Exception:
            logger.exception("Failed to schedule reminder task_id=%s", task.id)
            return None

        try:
            self._repo.set_trigger_handle(task.id, result.trigger_handle)
        except Exception:
            logger.exception("Could not store trigger handle task_id=%s; disarming", task.id)
            self._disarm_quietly(task.id)
            return None

        reminder.trigger_handle = result.trigger_handle
        logger.info("Reminder scheduled task_id=%s fire_at=%s", task.id, result.fire_at.isoformat())
        return result.trigger_handle

    def _disarm_quietly(self, task_id: str) -> None:
        try:
            self._scheduler.disarm(trigger_name_for(task_id))
        except Exception:
            logger.exception("Failed to delete reminder trigger task_id=%s", task_id)

    def create_task(self, task: Task, recipient: Recipient | None = None) -> Task | None:
        """
        Persist a new task, then arm its reminder.

        Returns None (and arms nothing) if a task with this id already exists.
        """
        self.validate(task)
        if task.reminder is not None:
            task.reminder.trigger_handle = None

        if not self._repo.add_task(task):
            return None

        self.arm_reminder(task, recipient)
        return task

    def delete_task(self, task_id: str) -> Task:
        task = self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        # Disarm by the name derived from the id whether or not the row holds a
        # handle: a reminder armed after we read the row is still removed.
        self._disarm_quietly(task.id)

        self._repo.delete_task(task_id)
        logger.info("Task deleted id=%s", task_id)
        return task

    def update_reminder(
        self,
        task_id: str,
        reminder: ReminderConfig | None,
        recipient: Recipient | None = None,
    ) -> Task:
        """Replace a task's reminder settings: disarm the old trigger, arm the new one."""
        task = self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if reminder is not None and reminder.lead_minutes is not None and reminder.lead_minutes < 0:
            raise ValidationError("lead_minutes must be a non-negative integer")

        self._disarm_quietly(task.id)

        if reminder is not None:
            reminder.trigger_handle = None
        self._repo.update_reminder(task_id, reminder)
        task.reminder = reminder

        self.arm_reminder(task, recipient)
        return task
