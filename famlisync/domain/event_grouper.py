"""Fold per-attendee event occurrences into display-level aggregated events.

Occurrences with the same title, start, time range and location are treated as
one real-world happening seen through several calendars. The match is an exact
string comparison; near-duplicates with differing text stay separate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from famlisync.calendar.models import CalendarEvent, RecurrenceRule
from famlisync.calendar.recurrence import RecurrenceEngine
from famlisync.core.timezone_utils import resolve_timezone

logger = logging.getLogger(__name__)

ALL_DAY_KEY = "all-day"

DriverLookup = Callable[[CalendarEvent], Optional[str]]


@dataclass(frozen=True)
class AttendeeOccurrence:
    """One raw occurrence as seen in one family member's calendars."""

    event: CalendarEvent
    member_name: str
    member_color: str
    member_id: Optional[str] = None


@dataclass(frozen=True)
class RecurrenceChip:
    """An upcoming occurrence previewed under a recurring event."""

    start: datetime
    label: str


@dataclass
class AggregatedEvent:
    """Display-only merge of the occurrences sharing one grouping key."""

    key: tuple[str, str, str, str]
    title: str
    start: datetime
    end: datetime
    time_range: Optional[str]
    location: Optional[str]
    is_all_day: bool
    has_recurrence: bool
    recurrence_rule: Optional[RecurrenceRule] = None
    member_names: list[str] = field(default_factory=list)
    member_colors: list[str] = field(default_factory=list)
    member_ids: list[str] = field(default_factory=list)
    calendar_ids: list[str] = field(default_factory=list)
    external_ids: list[str] = field(default_factory=list)
    driver_name: Optional[str] = None
    recurrence_chips: list[RecurrenceChip] = field(default_factory=list)


@dataclass
class DaySection:
    """Aggregated events of one local day, all-day events first."""

    day: date
    all_day: list[AggregatedEvent] = field(default_factory=list)
    timed: list[AggregatedEvent] = field(default_factory=list)

    @property
    def events(self) -> list[AggregatedEvent]:
        return [*self.all_day, *self.timed]


def _color_key(color: str) -> str:
    return color.strip().lstrip("#").upper()


def _append_unique(target: list[str], value: Optional[str]) -> None:
    if value and value not in target:
        target.append(value)


class EventGrouper:
    """Groups occurrences into ``AggregatedEvent``s for one display timezone.

    Args:
        timezone: Zone used to format time ranges and split days
    """

    def __init__(self, timezone: str | ZoneInfo | None = None):
        self.tz = timezone if isinstance(timezone, ZoneInfo) else resolve_timezone(timezone)

    def is_all_day(self, event: CalendarEvent) -> bool:
        """All-day flag, or a span running from local midnight to local midnight."""
        if event.is_all_day:
            return True
        start = event.start.astimezone(self.tz)
        end = event.end.astimezone(self.tz)
        return end > start and start.time() == time() and end.time() == time()

    def format_time_range(self, event: CalendarEvent) -> Optional[str]:
        """``"HH:MM – HH:MM"`` in the display zone, or None for all-day and instant events."""
        if self.is_all_day(event) or event.start == event.end:
            return None
        start = event.start.astimezone(self.tz)
        end = event.end.astimezone(self.tz)
        return f"{start:%H:%M} – {end:%H:%M}"

    def key_for(self, event: CalendarEvent) -> tuple[str, str, str, str]:
        return (
            event.title,
            event.start.astimezone(self.tz).isoformat(),
            self.format_time_range(event) or ALL_DAY_KEY,
            event.location or "",
        )

    def group(
        self,
        items: Iterable[Union[AttendeeOccurrence, AggregatedEvent]],
        driver_lookup: Optional[DriverLookup] = None,
    ) -> list[AggregatedEvent]:
        """Merge occurrences sharing a key into aggregated events.

        The first item under a key seeds the aggregate; later items append
        member names (deduplicated by value) and colors (deduplicated by color
        value), OR the recurrence flag, and fill in a driver name if none is
        known yet. Already aggregated events can be fed back in, so grouping a
        grouped result returns an equal result.

        Args:
            items: Raw occurrences and/or previously aggregated events
            driver_lookup: Resolves the driver name of a raw occurrence

        Returns:
            Aggregated events sorted by start, ties in encounter order
        """
        grouped: dict[tuple[str, str, str, str], AggregatedEvent] = {}
        for item in items:
            incoming = item if isinstance(item, AggregatedEvent) else self._seed(item, driver_lookup)
            existing = grouped.get(incoming.key)
            if existing is None:
                grouped[incoming.key] = replace(
                    incoming,
                    member_names=list(incoming.member_names),
                    member_colors=list(incoming.member_colors),
                    member_ids=list(incoming.member_ids),
                    calendar_ids=list(incoming.calendar_ids),
                    external_ids=list(incoming.external_ids),
                    recurrence_chips=list(incoming.recurrence_chips),
                )
            else:
                self._merge(existing, incoming)

        # dicts keep insertion order and sorted() is stable
        return sorted(grouped.values(), key=lambda agg: agg.start)

    def _seed(
        self, occurrence: AttendeeOccurrence, driver_lookup: Optional[DriverLookup]
    ) -> AggregatedEvent:
        event = occurrence.event
        driver_name = None
        if driver_lookup is not None:
            driver_name = driver_lookup(event)
        return AggregatedEvent(
            key=self.key_for(event),
            title=event.title,
            start=event.start,
            end=event.end,
            time_range=self.format_time_range(event),
            location=event.location,
            is_all_day=self.is_all_day(event),
            has_recurrence=event.has_recurrence,
            recurrence_rule=event.recurrence_rule,
            member_names=[occurrence.member_name],
            member_colors=[occurrence.member_color],
            member_ids=[occurrence.member_id] if occurrence.member_id else [],
            calendar_ids=[event.calendar_id],
            external_ids=[event.external_id],
            driver_name=driver_name,
        )

    @staticmethod
    def _merge(existing: AggregatedEvent, incoming: AggregatedEvent) -> None:
        for name in incoming.member_names:
            _append_unique(existing.member_names, name)
        known_colors = {_color_key(c) for c in existing.member_colors}
        for color in incoming.member_colors:
            if _color_key(color) not in known_colors:
                existing.member_colors.append(color)
                known_colors.add(_color_key(color))
        for member_id in incoming.member_ids:
            _append_unique(existing.member_ids, member_id)
        for calendar_id in incoming.calendar_ids:
            _append_unique(existing.calendar_ids, calendar_id)
        for external_id in incoming.external_ids:
            _append_unique(existing.external_ids, external_id)
        existing.has_recurrence = existing.has_recurrence or incoming.has_recurrence
        if existing.recurrence_rule is None:
            existing.recurrence_rule = incoming.recurrence_rule
        if existing.driver_name is None:
            existing.driver_name = incoming.driver_name

    def split_by_day(self, aggregated: Sequence[AggregatedEvent]) -> list[DaySection]:
        """Bucket aggregated events by local start day.

        All-day events come before timed ones within a day; an all-day event
        spanning several days is listed on each of them.
        """
        sections: dict[date, DaySection] = {}
        for agg in aggregated:
            start_day = agg.start.astimezone(self.tz).date()
            if agg.is_all_day:
                end_day = (agg.end.astimezone(self.tz) - timedelta(microseconds=1)).date()
                last_day = max(start_day, end_day)
                day = start_day
                while day <= last_day:
                    sections.setdefault(day, DaySection(day=day)).all_day.append(agg)
                    day += timedelta(days=1)
            else:
                sections.setdefault(start_day, DaySection(day=start_day)).timed.append(agg)
        return [sections[d] for d in sorted(sections)]


def attach_recurrence_chips(
    aggregated: Sequence[AggregatedEvent],
    upcoming: Sequence[CalendarEvent],
    *,
    limit: int,
    engine: Optional[RecurrenceEngine] = None,
) -> list[AggregatedEvent]:
    """Preview the next occurrences of each recurring aggregated event.

    Expansion of a series stops before the next event with a different title,
    and an occurrence whose end would run into that event is dropped too.

    Args:
        aggregated: Grouped events
        upcoming: All raw events of the same window, used to find the next
            different event
        limit: Maximum chips per event
        engine: Recurrence engine

    Returns:
        Copies of ``aggregated`` with ``recurrence_chips`` filled in
    """
    engine = engine or RecurrenceEngine()
    ordered = sorted(upcoming, key=lambda e: e.start)
    result: list[AggregatedEvent] = []
    for agg in aggregated:
        if agg.recurrence_rule is None or limit <= 0:
            result.append(agg)
            continue
        stop_before = next(
            (e.start for e in ordered if e.start > agg.start and e.title != agg.title), None
        )
        occurrences = engine.expand(
            agg.recurrence_rule,
            agg.start,
            agg.start,
            limit,
            stop_before,
            duration=agg.end - agg.start,
        )
        chips = [RecurrenceChip(start=o, label=f"{o:%a} {o.day} {o:%b}") for o in occurrences]
        result.append(replace(agg, recurrence_chips=chips))
    return result
