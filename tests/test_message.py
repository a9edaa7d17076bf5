# tests/test_message.py

from __future__ import annotations

from taskminder.notify.message import SMS_MAX_CHARS, build_notification_message, build_subject, truncate_sms


def test_message_format_is_exact() -> None:
    assert (
        build_notification_message("Pay rent", "2025-03-10", "09:00")
        == 'Reminder: Your task "Pay rent" is due on 2025-03-10 at 09:00.'
    )
    assert build_subject("Pay rent") == "Task Reminder: Pay rent"


def test_short_sms_is_unchanged() -> None:
    text = "x" * SMS_MAX_CHARS
    assert truncate_sms(text) == text


def test_long_sms_is_cut_with_ellipsis() -> None:
    text = "y" * (SMS_MAX_CHARS + 1)

    out = truncate_sms(text)

    assert len(out) == 160
    assert out == "y" * 157 + "..."
