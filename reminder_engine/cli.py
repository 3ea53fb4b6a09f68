from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from reminder_engine.errors import is_store_unavailable
from reminder_engine.logging_utils import setup_json_logging
from reminder_engine.scheduler import describe_cadences
from reminder_engine.services import service_expiry_reminders, support_calendar_reminders
from reminder_engine.services.reminder_jobs import REMINDER_JOBS, get_reminder_job, run_reminder_job_by_name
from reminder_engine.settings import get_settings

logger = logging.getLogger("reminder_engine.cli")

LIST_JOBS_COMMAND = "list-jobs"


def _date_option(raw: str) -> date:
    try:
        return support_calendar_reminders.parse_reference_date(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {raw!r}, expected YYYY-MM-DD") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reminder-engine",
        description="Run reminder jobs once and report how many reminders were sent.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    for job in REMINDER_JOBS.values():
        job_parser = subparsers.add_parser(job.name, help=job.description)
        if job.name == service_expiry_reminders.JOB_NAME:
            job_parser.add_argument(
                "--days",
                default="7,1",
                help="Comma separated days before expiry, each between 0 and 90 (default: 7,1)",
            )
        elif job.name == support_calendar_reminders.JOB_NAME:
            job_parser.add_argument(
                "--date",
                dest="reference_date",
                type=_date_option,
                default=None,
                help="Reference date YYYY-MM-DD; duties on the following day are reminded (default: today)",
            )

    subparsers.add_parser(LIST_JOBS_COMMAND, help="List registered jobs and their cadences")
    return parser


def _job_options(args: argparse.Namespace) -> dict[str, object]:
    if args.command == service_expiry_reminders.JOB_NAME:
        return {"days": service_expiry_reminders.parse_days_option(args.days)}
    if args.command == support_calendar_reminders.JOB_NAME:
        return {"reference_date": args.reference_date}
    return {}


def _print_jobs() -> None:
    cadences = describe_cadences()
    for job in REMINDER_JOBS.values():
        print(f"{job.name}\t{cadences.get(job.name, '-')}\t{job.description}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_json_logging(get_settings().log_level)

    if args.command == LIST_JOBS_COMMAND:
        _print_jobs()
        return 0

    job = get_reminder_job(args.command)
    now_utc = datetime.now(timezone.utc)
    try:
        summary = run_reminder_job_by_name(job.name, now_utc, **_job_options(args))
    except SQLAlchemyError as exc:
        logger.exception(
            "reminder_job_failed",
            extra={"job_name": job.name, "store_unavailable": is_store_unavailable(exc)},
        )
        print(f"ERROR: {job.name} aborted: {exc.__class__.__name__}", file=sys.stderr)
        return 1

    for warning in summary.warnings():
        print(f"WARNING: {warning}", file=sys.stderr)
    print(f"Se enviaron {summary.sent} {job.sent_label}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
