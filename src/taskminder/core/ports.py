# src/taskminder/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the scheduling core.

The core depends on Protocols instead of concrete implementations.
This keeps the trigger backend, the task store and the notification providers
swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from ..tasks.task_models import Recipient, ReminderConfig, ScanPage, Task

Clock = Callable[[], datetime]
# Returns the current, timezone-aware time.


class TriggerStore(Protocol):
    """
    Durable registry of one-shot triggers (rule + delivery targets).

    put_trigger upserts by name, so re-arming the same name replaces the schedule;
    targets passed through bind_targets are written in the same transaction.
    delete_trigger raises NotFoundError when the trigger is absent.
    """

    def put_trigger(
        self,
        name: str,
        *,
        fire_at: float,
        description: str = "",
        bind_targets: Callable[[int], list[Any]] | None = None,
    ) -> int: ...
    def put_targets(self, name: str, targets: list[Any]) -> None: ...
    def list_targets(self, name: str) -> list[Any]: ...
    def remove_targets(self, name: str, target_ids: list[str]) -> None: ...
    def delete_trigger(self, name: str, *, revision: int | None = None) -> bool: ...
    def locator_for(self, name: str) -> str: ...
    def get_trigger(self, name: str) -> Any | None: ...

    # Worker API
    def list_due(self, *, now_ts: float, limit: int = 32) -> list[Any]: ...
    def try_claim(self, name: str, *, revision: int, now_ts: float) -> bool: ...
    def mark_dead(self, name: str, *, revision: int) -> None: ...


class TaskRepo(Protocol):
    def add_task(self, task: Task) -> bool: ...
    def get_task(self, task_id: str) -> Task | None: ...
    def delete_task(self, task_id: str) -> bool: ...
    def update_reminder(self, task_id: str, reminder: ReminderConfig | None) -> None: ...
    def set_trigger_handle(self, task_id: str, handle: str) -> None: ...
    def clear_trigger_handle(self, task_id: str, *, expected: str | None = None) -> bool: ...

    # Recurrence API
    def scan_templates(self, *, limit: int = 100, start_key: str | None = None) -> ScanPage: ...

    # Contact book
    def get_contact(self, owner: str) -> Recipient | None: ...


class NotificationChannel(Protocol):
    """
    One independent delivery path (email, SMS).

    send() raises on failure; the dispatcher turns that into ChannelDeliveryError.
    """

    name: str

    def send(self, *, recipient: str, subject: str, text: str) -> Awaitable[None]: ...
