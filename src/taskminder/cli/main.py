# src/taskminder/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one command:
- worker:  poll the trigger store and fire due reminders (until SIGINT/SIGTERM)
- expand:  one recurrence expansion for a day (meant for a daily cron entry)
- contact: record an owner's reminder e-mail/phone
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from ..cli.bootstrap import close_state, create_initial_state
from ..config import get_settings
from ..core.state import AppState
from ..errors import TaskminderError
from ..logging_setup import setup_logging
from ..scheduling.recurrence import ExpansionDay
from ..scheduling.trigger_worker import fire_due_triggers, run_trigger_worker

logger = logging.getLogger(__name__)


async def _run_worker(state: AppState, *, once: bool) -> None:
    settings = state.settings
    try:
        if once:
            report = await fire_due_triggers(
                state.trigger_store,
                state.dispatcher,
                task_repo=state.task_store,
                batch_limit=settings.worker_batch_limit,
                concurrency=settings.worker_concurrency,
            )
            print(json.dumps({"due": report.due, "claimed": report.claimed, "fired": len(report.results)}))
            return

        runner = asyncio.create_task(
            run_trigger_worker(
                state.trigger_store,
                state.dispatcher,
                task_repo=state.task_store,
                interval_seconds=settings.worker_interval_seconds,
                batch_limit=settings.worker_batch_limit,
                concurrency=settings.worker_concurrency,
            )
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, runner.cancel)
            except (NotImplementedError, RuntimeError):
                # Some platforms (Windows) do not support loop signal handlers.
                pass

        try:
            await runner
        except asyncio.CancelledError:
            logger.info("Worker stopped.")
    finally:
        await close_state(state)


def _cmd_worker(state: AppState, args: argparse.Namespace) -> int:
    asyncio.run(_run_worker(state, once=args.once))
    return 0


def _cmd_expand(state: AppState, args: argparse.Namespace) -> int:
    if args.date:
        day = ExpansionDay.parse(args.date, args.weekday)
    else:
        day = state.expander.today()

    report = state.expander.run(day)
    print(json.dumps(report.to_dict()))
    return 1 if report.failed else 0


def _cmd_contact(state: AppState, args: argparse.Namespace) -> int:
    state.task_store.upsert_contact(args.owner, email=args.email, phone=args.phone)
    logger.info("Contact saved for owner=%s", args.owner)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskminder", description="Task reminders and recurring tasks.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_worker = sub.add_parser("worker", help="Fire due reminder triggers.")
    p_worker.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    p_worker.set_defaults(func=_cmd_worker)

    p_expand = sub.add_parser("expand", help="Materialize today's recurring task instances.")
    p_expand.add_argument("--date", help="Day to expand (YYYY-MM-DD); defaults to today.")
    p_expand.add_argument("--weekday", help="Expected weekday name for --date (sanity check).")
    p_expand.set_defaults(func=_cmd_expand)

    p_contact = sub.add_parser("contact", help="Record where an owner's reminders are sent.")
    p_contact.add_argument("owner")
    p_contact.add_argument("--email")
    p_contact.add_argument("--phone")
    p_contact.set_defaults(func=_cmd_contact)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s %s...", settings.app_name, args.command)

    state = create_initial_state(settings=settings)
    try:
        return int(args.func(state, args))
    except TaskminderError as exc:
        logger.error("%s: %s", exc.error_type, exc.message)
        return 2
    finally:
        # The worker closes its own resources inside its event loop.
        if args.command != "worker" and state.closers:
            asyncio.run(close_state(state))


if __name__ == "__main__":
    sys.exit(main())
