"""
Drive audit command line.

Usage:
    drive-audit [--config PATH] [--database-url URL] <command>

Commands:
    start                        Discard any running audit and start a new one
    resume                       Run the next batch of the stored audit now
    status                       Show the current status
    cancel                       Cancel the running audit (rows written so far stay)
    schedule --day DAY --hour H  Run a fresh audit every week
    unschedule                   Remove the weekly audit (a running audit continues)
    worker [--once]              Fire due continuations until interrupted

The Drive access token is read from the environment variable named by
``data_source.access_token_env`` (default ``DRIVE_AUDIT_ACCESS_TOKEN``).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Sequence

import yaml

from audit_batch.domain.types import InvocationOutcome
from audit_batch.ports import DataSourceClient

from scripts.cli.util import fmt_cancel, fmt_handle, fmt_result, fmt_status

_EXIT_CODES = {
    InvocationOutcome.CHECKPOINTED: 0,
    InvocationOutcome.COMPLETED: 0,
    InvocationOutcome.NO_JOB: 0,
    InvocationOutcome.SUPERSEDED: 0,
    InvocationOutcome.STALLED: 2,
    InvocationOutcome.FAILED: 1,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drive-audit",
        description="Resumable audit of Drive files and their permissions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML configuration file (default: packaged defaults.yaml).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override storage.database_url from the configuration.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Structured log level on stderr (default: INFO).",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("start", help="Discard any running audit and start a new one.")
    sub.add_parser("resume", help="Run the next batch of the stored audit now.")
    sub.add_parser("status", help="Show the current status.")
    sub.add_parser("cancel", help="Cancel the running audit.")

    schedule = sub.add_parser("schedule", help="Run a fresh audit every week.")
    schedule.add_argument("--day", default=None, help="Day of week, e.g. MONDAY.")
    schedule.add_argument("--hour", type=int, default=None, help="Hour of day, 0-23.")

    sub.add_parser("unschedule", help="Remove the weekly audit.")

    worker = sub.add_parser("worker", help="Fire due continuations until interrupted.")
    worker.add_argument(
        "--once", action="store_true", help="Fire what is due now and exit.",
    )
    worker.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Polling interval in seconds (default: schedule.tick_interval_seconds).",
    )
    return parser


def main(
    argv: Sequence[str] | None = None,
    data_source: DataSourceClient | None = None,
) -> int:
    args = _build_parser().parse_args(argv)

    # Lazy imports so argument errors fail fast
    from audit_config import get_active_config
    from audit_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from audit_kernel.logging_config import configure_logging

    from audit_batch.orchestrator import AuditOrchestrator

    configure_logging(level=getattr(logging, args.log_level))

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    database_url = args.database_url or config.storage.database_url
    try:
        init_engine_from_url(database_url)
        create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    orchestrator = AuditOrchestrator.from_config(
        config,
        get_session_factory(),
        access_token=os.environ.get(config.data_source.access_token_env),
        data_source=data_source,
    )
    controller = orchestrator.controller

    try:
        if args.command == "start":
            result = controller.start()
            _print(fmt_result(result))
            return _EXIT_CODES[result.outcome]

        if args.command == "resume":
            result = controller.run_invocation()
            if result.outcome == InvocationOutcome.NO_JOB:
                print("No audit to resume. Use 'start' to begin one.")
            else:
                _print(fmt_result(result))
            return _EXIT_CODES[result.outcome]

        if args.command == "status":
            _print(fmt_status(controller.status()))
            return 0

        if args.command == "cancel":
            _print(fmt_cancel(controller.cancel()))
            return 0

        if args.command == "schedule":
            day = args.day or config.schedule.day_of_week
            hour = args.hour if args.hour is not None else config.schedule.hour
            try:
                handle = controller.schedule_recurring(day, hour)
            except ValueError as e:
                print(f"ERROR: {e}", file=sys.stderr)
                return 1
            print(f"Weekly audit scheduled: {fmt_handle(handle)}")
            return 0

        if args.command == "unschedule":
            removed = controller.unschedule_recurring()
            print(f"Removed {removed} weekly schedule(s).")
            return 0

        if args.command == "worker":
            runner = orchestrator.create_runner(args.tick_interval)
            if args.once:
                fired = runner.tick()
                print(f"Fired {fired} continuation(s).")
                return 0
            try:
                runner.run_forever()
            except KeyboardInterrupt:
                runner.stop()
            return 0

        raise AssertionError(f"unhandled command {args.command!r}")
    finally:
        orchestrator.close()


def _print(lines: list[str]) -> None:
    for line in lines:
        print(line)


if __name__ == "__main__":
    sys.exit(main())
