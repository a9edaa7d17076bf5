# src/taskminder/notify/message.py

from __future__ import annotations

SMS_MAX_CHARS = 160
ELLIPSIS = "..."


def build_notification_message(title: str, due_date: str, due_time: str) -> str:
    return f'Reminder: Your task "{title}" is due on {due_date} at {due_time}.'


def build_subject(title: str) -> str:
    return f"Task Reminder: {title}"


def truncate_sms(text: str, limit: int = SMS_MAX_CHARS) -> str:
    """Cut text to `limit` characters, ending with '...' when anything was dropped."""
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS
