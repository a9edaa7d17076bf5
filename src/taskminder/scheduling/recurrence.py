# src/taskminder/scheduling/recurrence.py

from __future__ import annotations

"""
Recurrence expander.

A daily batch job, run by an external scheduler (cron, a k8s CronJob, ...):
- scan every recurring template, following continuation keys until exhausted,
- keep templates whose weekday set contains today's weekday,
- materialize one dated instance per match through the lifecycle hooks
  (which also arm the instance's reminder when it has one).

One bad template is logged and skipped; it never aborts the run.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any

from ..core.ports import Clock, TaskRepo
from ..errors import InternalError, TaskminderError, TemplateExpansionError, ValidationError
from ..tasks.lifecycle import TaskLifecycleHooks
from ..tasks.task_models import (
    Priority,
    RecurringConfig,
    Task,
    Weekday,
    instance_id_for,
    new_task_id,
    parse_due_date,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExpansionDay:
    """The injectable notion of "today": a calendar date and its weekday name."""

    today: date
    weekday: Weekday

    @classmethod
    def of(cls, d: date) -> ExpansionDay:
        return cls(today=d, weekday=Weekday.for_date(d))

    @classmethod
    def parse(cls, today: str, weekday: str | None = None) -> ExpansionDay:
        d = parse_due_date(today)
        wd = Weekday.parse(weekday) if weekday else Weekday.for_date(d)
        if wd != Weekday.for_date(d):
            raise ValidationError(f"{today} is a {Weekday.for_date(d).value}, not a {wd.value}")
        return cls(today=d, weekday=wd)


@dataclass(slots=True)
class ExpansionReport:
    today: str
    weekday: str
    scanned: int = 0
    matched: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    created_ids: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "today": self.today,
            "weekday": self.weekday,
            "scanned": self.scanned,
            "matched": self.matched,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class RecurrenceExpander:
    def __init__(
        self,
        task_repo: TaskRepo,
        hooks: TaskLifecycleHooks,
        *,
        page_size: int = 100,
        dedupe: bool = True,
        id_factory: Callable[[], str] = new_task_id,
        tz: tzinfo = timezone.utc,
        clock: Clock | None = None,
    ) -> None:
        self._repo = task_repo
        self._hooks = hooks
        self._page_size = max(1, int(page_size))
        self._dedupe = dedupe
        self._id_factory = id_factory
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz))

    def today(self) -> ExpansionDay:
        """The current calendar day in the configured zone, not the host's."""
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tz)
        return ExpansionDay.of(now.astimezone(self._tz).date())

    def scan_all_templates(self) -> list[Task]:
        """
        Full paginated scan. Either returns every template or raises InternalError;
        a partial list is never returned.
        """
        templates: list[Task] = []
        start_key: str | None = None
        pages = 0
        while True:
            try:
                page = self._repo.scan_templates(limit=self._page_size, start_key=start_key)
            except Exception as exc:
                raise InternalError(f"template scan failed after {pages} pages") from exc
            pages += 1
            templates.extend(page.items)
            if not page.last_key:
                break
            if page.last_key == start_key:
                raise InternalError(f"template scan did not advance past key {start_key!r}")
            start_key = page.last_key
        logger.debug("Template scan complete pages=%s templates=%s", pages, len(templates))
        return templates

    def build_instance(self, template: Task, day: ExpansionDay) -> Task:
        if not template.is_template or template.recurring is None:
            raise TemplateExpansionError(template.id, "not a recurring template")
        if not template.title:
            raise TemplateExpansionError(template.id, "template has no title")

        base_id = template.recurring.base_template_id or template.id
        instance_id = instance_id_for(template.id, day.today) if self._dedupe else self._id_factory()
        now = time.time()

        return Task(
            id=instance_id,
            owner=template.owner,
            title=template.title,
            due_date=day.today.isoformat(),
            priority=template.priority or Priority.MEDIUM,
            description=template.description or None,
            category_id=template.category_id or None,
            due_time=template.due_time or None,
            recurring=RecurringConfig.instance_of(base_id),
            reminder=template.reminder.without_handle() if template.reminder else None,
            completed=False,
            created_at=now,
            updated_at=now,
        )

    def run(self, day: ExpansionDay | date | None = None) -> ExpansionReport:
        if day is None:
            day = self.today()
        elif isinstance(day, date):
            day = ExpansionDay.of(day)

        report = ExpansionReport(today=day.today.isoformat(), weekday=day.weekday.value)
        logger.info("Processing recurring tasks day=%s date=%s", report.weekday, report.today)

        templates = self.scan_all_templates()
        report.scanned = len(templates)
        logger.info("Found recurring tasks count=%s", report.scanned)

        for template in templates:
            try:
                days = template.recurring.days if template.recurring else frozenset()
                if day.weekday not in days:
                    logger.debug("Skipping template %s - not scheduled for %s", template.id, report.weekday)
                    continue
                report.matched += 1

                instance = self.build_instance(template, day)
                created = self._hooks.create_task(instance)
                if created is None:
                    report.skipped += 1
                    logger.info("Instance %s for template %s already exists", instance.id, template.id)
                    continue

                report.created += 1
                report.created_ids.append(instance.id)
                logger.info("Created task instance id=%s base=%s", instance.id, instance.recurring.base_template_id)
            except TaskminderError as exc:
                report.failed += 1
                report.failures[template.id] = exc.message
                logger.error("Error processing recurring task id=%s: %s", template.id, exc.message)
            except Exception as exc:
                report.failed += 1
                report.failures[template.id] = str(exc) or exc.__class__.__name__
                logger.exception("Error processing recurring task id=%s", template.id)

        logger.info(
            "Processed %s recurring tasks, created %s instances (skipped=%s failed=%s)",
            report.scanned,
            report.created,
            report.skipped,
            report.failed,
        )
        return report
