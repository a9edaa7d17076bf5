# src/taskminder/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- builds the stores and notification channels exactly once,
- wires them into the scheduler, dispatcher, lifecycle hooks and expander.
"""

from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import get_settings
from ..core.ports import NotificationChannel
from ..core.state import AppState
from ..notify.channels import HttpSmsChannel, LoggingChannel, SmtpEmailChannel
from ..scheduling.dispatcher import ReminderDispatcher
from ..scheduling.recurrence import RecurrenceExpander
from ..scheduling.reminder_scheduler import ReminderScheduler
from ..scheduling.trigger_store import SqliteTriggerStore
from ..tasks.lifecycle import TaskLifecycleHooks
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.triggers_db_path.parent.mkdir(parents=True, exist_ok=True)


def resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", name)
        return timezone.utc


def build_channels(settings) -> tuple[NotificationChannel, NotificationChannel]:
    email: NotificationChannel
    sms: NotificationChannel

    if settings.email_configured:
        email = SmtpEmailChannel(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_sender,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout_seconds=settings.channel_timeout_seconds,
        )
    else:
        logger.info("SMTP not configured; email reminders go to the log")
        email = LoggingChannel("email")

    if settings.sms_configured:
        sms = HttpSmsChannel(
            gateway_url=settings.sms_gateway_url,
            api_key=settings.sms_api_key,
            sender_id=settings.sms_sender_id,
            timeout_seconds=settings.channel_timeout_seconds,
        )
    else:
        logger.info("SMS gateway not configured; SMS reminders go to the log")
        sms = LoggingChannel("sms")

    return email, sms


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path)
    trigger_store = SqliteTriggerStore(settings.triggers_db_path, claim_ttl_seconds=settings.claim_ttl_seconds)
    email, sms = build_channels(settings)

    tz = resolve_timezone(settings.timezone)
    scheduler = ReminderScheduler(trigger_store, tz=tz)
    dispatcher = ReminderDispatcher(
        scheduler,
        email_channel=email,
        sms_channel=sms,
        channel_timeout_seconds=settings.channel_timeout_seconds,
    )
    hooks = TaskLifecycleHooks(task_store, scheduler, default_lead_minutes=settings.default_lead_minutes)
    expander = RecurrenceExpander(
        task_store,
        hooks,
        page_size=settings.scan_page_size,
        dedupe=settings.recurring_dedupe,
        tz=tz,
    )

    state = AppState(
        settings=settings,
        task_store=task_store,
        trigger_store=trigger_store,
        email_channel=email,
        sms_channel=sms,
        scheduler=scheduler,
        dispatcher=dispatcher,
        hooks=hooks,
        expander=expander,
    )
    if isinstance(sms, HttpSmsChannel):
        state.closers.append(sms)
    return state


async def close_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    for res in state.closers:
        try:
            await res.aclose()
        except Exception:
            logger.debug("Close failed for %r", res, exc_info=True)
