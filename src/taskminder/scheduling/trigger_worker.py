# src/taskminder/scheduling/trigger_worker.py

from __future__ import annotations

"""
Trigger worker.

A small polling loop over the trigger store:
- fetches due triggers (earliest fire time first),
- claims them (best-effort) so a trigger revision fires once,
- hands each bound target's input to the reminder dispatcher,
- after a clean fire, drops the task's stored trigger handle.

Delivery and trigger cleanup belong to the dispatcher, not the worker.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..core.ports import TaskRepo, TriggerStore
from ..errors import NotFoundError, ValidationError
from .dispatcher import DeliveryResult, ReminderDispatcher
from .reminder_scheduler import DISPATCH_DESTINATION

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickReport:
    due: int = 0
    claimed: int = 0
    results: list[DeliveryResult] = field(default_factory=list)


async def _fire_one(
    trigger_store: TriggerStore,
    dispatcher: ReminderDispatcher,
    task_repo: TaskRepo | None,
    name: str,
    revision: int,
) -> list[DeliveryResult]:
    try:
        targets = trigger_store.list_targets(name)
    except NotFoundError:
        # Disarmed between listing and claiming.
        return []

    out: list[DeliveryResult] = []
    for target in targets:
        if target.destination != DISPATCH_DESTINATION:
            logger.warning("Trigger %s target %s has unknown destination %s", name, target.target_id, target.destination)
            continue
        if target.input.get("revision") != revision:
            # Targets written for another revision belong to a half-finished re-arm.
            logger.warning(
                "Trigger %s target %s is bound to revision %r, claimed %s; parking",
                name,
                target.target_id,
                target.input.get("revision"),
                revision,
            )
            try:
                trigger_store.mark_dead(name, revision=revision)
            except Exception:
                logger.exception("mark_dead failed trigger=%s", name)
            continue
        try:
            result = await dispatcher.fire(target.input)
        except ValidationError as exc:
            logger.error("Trigger %s carried a malformed payload: %s", name, exc.message)
            try:
                trigger_store.mark_dead(name, revision=revision)
            except Exception:
                logger.exception("mark_dead failed trigger=%s", name)
            continue
        out.append(result)

        # A superseded revision means the task was re-armed; its handle is live again.
        if task_repo is not None and result.removed:
            handle = target.input.get("trigger_handle")
            try:
                if trigger_store.get_trigger(name) is None:
                    task_repo.clear_trigger_handle(result.task_id, expected=handle)
            except Exception:
                logger.exception("clear_trigger_handle failed task_id=%s", result.task_id)
    return out


async def fire_due_triggers(
    trigger_store: TriggerStore,
    dispatcher: ReminderDispatcher,
    *,
    task_repo: TaskRepo | None = None,
    batch_limit: int = 32,
    concurrency: int = 4,
    clock: Callable[[], float] = time.time,
) -> TickReport:
    """One worker tick: fire every trigger that is due now."""
    report = TickReport()
    now_ts = clock()

    try:
        due = trigger_store.list_due(now_ts=now_ts, limit=int(batch_limit))
    except Exception:
        logger.exception("list_due failed")
        return report
    report.due = len(due)

    sem = asyncio.Semaphore(max(1, int(concurrency)))

    async def run(record) -> list[DeliveryResult]:
        # Claim only once a slot is free: a trigger re-armed while waiting has a new
        # revision and the stale claim fails.
        async with sem:
            try:
                claimed = trigger_store.try_claim(record.name, revision=record.revision, now_ts=now_ts)
            except Exception:
                logger.exception("try_claim failed trigger=%s", record.name)
                return []
            if not claimed:
                return []
            report.claimed += 1
            return await _fire_one(trigger_store, dispatcher, task_repo, record.name, record.revision)

    batches = await asyncio.gather(*(run(r) for r in due), return_exceptions=True)
    for record, batch in zip(due, batches):
        if isinstance(batch, BaseException):
            logger.error("Firing trigger %s failed", record.name, exc_info=batch)
            continue
        report.results.extend(batch)
    return report


async def run_trigger_worker(
    trigger_store: TriggerStore,
    dispatcher: ReminderDispatcher,
    *,
    task_repo: TaskRepo | None = None,
    interval_seconds: float = 15.0,
    batch_limit: int = 32,
    concurrency: int = 4,
    clock: Callable[[], float] = time.time,
) -> None:
    """
    Simple polling worker.

    Every interval_seconds runs fire_due_triggers(). Errors are logged and the loop
    keeps going. To stop the worker, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.info("Trigger worker started interval=%.2fs concurrency=%s", sleep_s, concurrency)

    while True:
        report = await fire_due_triggers(
            trigger_store,
            dispatcher,
            task_repo=task_repo,
            batch_limit=batch_limit,
            concurrency=concurrency,
            clock=clock,
        )
        if report.claimed:
            logger.info("Worker tick: due=%s claimed=%s fired=%s", report.due, report.claimed, len(report.results))
        await asyncio.sleep(sleep_s)
