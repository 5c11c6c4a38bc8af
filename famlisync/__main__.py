"""Command-line entry for famlisync.

Examples:
  famlisync agenda                      # grouped agenda for the next 30 days
  famlisync agenda --days 7 --debug
  famlisync watch                       # reprint the agenda whenever it changes
  famlisync expand --freq weekly --anchor 2025-01-06T09:00 --limit 10
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import NoReturn, Optional

from dateutil import parser as date_parser

from famlisync import _init_logging
from famlisync.calendar.models import RecurrenceFrequency, RecurrenceRule
from famlisync.calendar.recurrence import RecurrenceEngine
from famlisync.core.config_manager import ConfigManager, FamliSyncSettings
from famlisync.core.dependencies import DependencyContainer
from famlisync.core.logging_setup import configure_logging
from famlisync.core.timezone_utils import resolve_timezone
from famlisync.domain.event_grouper import DaySection
from famlisync.exceptions import FamliSyncError

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="famlisync",
        description="famlisync - linked family calendar events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--env-file", type=Path, help="Path to a .env file (default: ./.env)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    agenda = sub.add_parser("agenda", help="Print the grouped family agenda")
    agenda.add_argument("--days", type=int, help="Days ahead to show (default: FAMLISYNC_FUTURE_DAYS)")

    watch = sub.add_parser("watch", help="Refresh the agenda every FAMLISYNC_REFRESH_INTERVAL seconds")
    watch.add_argument("--days", type=int, help="Days ahead to show (default: FAMLISYNC_FUTURE_DAYS)")

    expand = sub.add_parser("expand", help="Print the occurrences of a recurrence rule")
    expand.add_argument(
        "--freq", choices=[f.value for f in RecurrenceFrequency], help="Recurrence frequency"
    )
    expand.add_argument("--rrule", help="RRULE value instead of --freq/--interval/--count")
    expand.add_argument("--interval", type=int, default=1)
    expand.add_argument("--count", type=int)
    expand.add_argument("--anchor", required=True, help="ISO-8601 start of the first occurrence")
    expand.add_argument("--limit", type=int, default=10)
    expand.add_argument("--stop-before", help="ISO-8601 exclusive upper bound")
    return parser


def _parse_when(value: str, settings: FamliSyncSettings):
    dt = date_parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=resolve_timezone(settings.timezone))
    return dt


def _format_section(section: DaySection) -> list[str]:
    lines = [f"{section.day:%A %d %B %Y}"]
    for agg in section.events:
        when = agg.time_range or "all day"
        who = ", ".join(agg.member_names)
        line = f"  {when:<13} {agg.title}"
        if agg.location:
            line += f" @ {agg.location}"
        line += f"  [{who}]"
        if agg.driver_name:
            line += f"  driver: {agg.driver_name}"
        if agg.has_recurrence:
            line += "  (repeats)"
        lines.append(line)
        if agg.recurrence_chips:
            lines.append("                next: " + ", ".join(c.label for c in agg.recurrence_chips))
    return lines


def _print_sections(sections: list[DaySection]) -> None:
    if not sections:
        print("No events.")
    for section in sections:
        print("\n".join(_format_section(section)))


async def _run_agenda(settings: FamliSyncSettings, days: Optional[int]) -> int:
    deps = DependencyContainer.build_dependencies(settings, days=days)
    _print_sections(await deps.refresh.refresh() or [])
    return 0


async def _run_watch(settings: FamliSyncSettings, days: Optional[int]) -> int:
    deps = DependencyContainer.build_dependencies(settings, on_agenda=_print_sections, days=days)
    stop_event = asyncio.Event()
    try:
        await deps.run_refresh_loop(stop_event)
    finally:
        stop_event.set()
        await deps.refresh.close()
    return 0


def _run_expand(args: argparse.Namespace, settings: FamliSyncSettings) -> int:
    if args.rrule:
        rule = RecurrenceRule.from_rrule(args.rrule)
    elif args.freq:
        rule = RecurrenceRule(
            frequency=RecurrenceFrequency(args.freq), interval=args.interval, count=args.count
        )
    else:
        print("expand: one of --freq or --rrule is required", file=sys.stderr)
        return 2

    anchor = _parse_when(args.anchor, settings)
    stop_before = _parse_when(args.stop_before, settings) if args.stop_before else None
    engine = RecurrenceEngine(settings.recurrence_horizon_days)
    print(rule.summary(anchor))
    for occurrence in engine.expand(
        rule, anchor, anchor - timedelta(microseconds=1), args.limit, stop_before
    ):
        print(occurrence.isoformat())
    return 0


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the famlisync CLI."""
    args = _create_parser().parse_args(argv)

    _init_logging(os.environ.get("FAMLISYNC_LOG_LEVEL"))
    settings = ConfigManager(args.env_file).load_settings()
    configure_logging(debug_mode=settings.debug, force_debug=True if args.debug else None)

    try:
        if args.command == "agenda":
            code = asyncio.run(_run_agenda(settings, args.days))
        elif args.command == "watch":
            code = asyncio.run(_run_watch(settings, args.days))
        else:
            code = _run_expand(args, settings)
    except (FamliSyncError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
