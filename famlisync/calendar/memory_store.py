"""In-memory calendar store adapter.

Holds recurring series as a master event plus excluded dates and per-occurrence
overrides, the way iCalendar does. Used directly in tests and as the base of the
``.ics`` directory store.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from famlisync.calendar.models import (
    AvailableCalendar,
    CalendarEvent,
    EventDraft,
    RecurrenceRule,
    Span,
)
from famlisync.calendar.recurrence import RecurrenceEngine, truncate_rule
from famlisync.core.timezone_utils import now_utc
from famlisync.exceptions import (
    CalendarStoreError,
    CalendarUnavailableError,
    EventNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class StoredSeries:
    """A stored event; for recurring events the series master and its exceptions."""

    master: CalendarEvent
    exdates: set[datetime] = field(default_factory=set)
    # original occurrence start -> detached occurrence
    overrides: dict[datetime, CalendarEvent] = field(default_factory=dict)

    def drop_exceptions_from(self, boundary: datetime) -> None:
        self.exdates = {d for d in self.exdates if d < boundary}
        self.overrides = {k: v for k, v in self.overrides.items() if k < boundary}


def _draft_fields(draft: EventDraft) -> dict[str, Any]:
    return {
        "title": draft.title,
        "start": draft.start,
        "end": draft.end,
        "location": draft.location,
        "notes": draft.notes,
        "is_all_day": draft.is_all_day,
        "alarms": list(draft.alarms),
    }


def _overlaps(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    if start == end:
        return window_start <= start < window_end
    return start < window_end and end > window_start


class InMemoryCalendarStore:
    """Calendar store adapter keeping every calendar in process memory.

    Args:
        calendars: Calendars available from the start
        clock: Source of ``last_modified`` stamps (defaults to ``now_utc``)
        engine: Recurrence engine used for expansion
        supports_occurrence_overrides: Whether single occurrences can be edited
    """

    def __init__(
        self,
        calendars: Iterable[AvailableCalendar] = (),
        *,
        clock: Optional[Callable[[], datetime]] = None,
        engine: Optional[RecurrenceEngine] = None,
        supports_occurrence_overrides: bool = True,
    ):
        self._calendars: dict[str, AvailableCalendar] = {c.id: c for c in calendars}
        self._series: dict[str, StoredSeries] = {}
        self._clock = clock or now_utc
        self._engine = engine or RecurrenceEngine()
        self._supports_overrides = supports_occurrence_overrides

    @property
    def supports_occurrence_overrides(self) -> bool:
        return self._supports_overrides

    # ------------------------------------------------------------------
    # Calendar management
    # ------------------------------------------------------------------

    def add_calendar(self, calendar: AvailableCalendar) -> None:
        self._calendars[calendar.id] = calendar
        self._after_mutation(calendar.id)

    def remove_calendar(self, calendar_id: str) -> None:
        """Remove a calendar and every event in it, as if deleted in the store."""
        self._calendars.pop(calendar_id, None)
        for external_id in [k for k, s in self._series.items() if s.master.calendar_id == calendar_id]:
            del self._series[external_id]
        logger.info("Calendar %s removed from store", calendar_id)

    async def list_calendars(self) -> list[AvailableCalendar]:
        return list(self._calendars.values())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_event(self, calendar_id: str, draft: EventDraft) -> CalendarEvent:
        return self._insert(calendar_id, draft, None)

    async def create_recurring_event(
        self, calendar_id: str, draft: EventDraft, rule: RecurrenceRule
    ) -> CalendarEvent:
        rule.validate_rule()
        return self._insert(calendar_id, draft, rule)

    async def update_event(
        self,
        external_id: str,
        draft: EventDraft,
        *,
        span: Span,
        occurrence_start: Optional[datetime] = None,
    ) -> CalendarEvent:
        series = self._require_series(external_id)
        master = series.master

        if master.recurrence_rule is None or occurrence_start is None:
            updated = self._replace_master(series, draft, span)
        elif span == Span.THIS_EVENT:
            if not self._supports_overrides:
                raise CalendarStoreError(
                    "Store cannot edit a single occurrence", calendar_id=master.calendar_id
                )
            updated = self._override_occurrence(series, draft, occurrence_start)
        elif occurrence_start <= master.start:
            updated = self._replace_master(series, draft, span)
        else:
            updated = self._split_series(series, draft, occurrence_start)

        self._after_mutation(master.calendar_id)
        logger.debug("Updated %s in %s (span=%s)", updated.external_id, master.calendar_id, span.value)
        return updated

    async def delete_event(
        self,
        external_id: str,
        *,
        span: Span,
        occurrence_start: Optional[datetime] = None,
    ) -> bool:
        series = self._require_series(external_id)
        master = series.master
        rule = master.recurrence_rule

        whole = (
            rule is None
            or occurrence_start is None
            or (span == Span.FUTURE_EVENTS and occurrence_start <= master.start)
        )
        if whole:
            del self._series[external_id]
            self._after_mutation(master.calendar_id)
            logger.debug("Deleted %s from %s", external_id, master.calendar_id)
            return True

        assert rule is not None and occurrence_start is not None
        self._require_occurrence(series, occurrence_start)
        if span == Span.THIS_EVENT:
            series.exdates.add(occurrence_start)
            series.overrides.pop(occurrence_start, None)
        else:
            truncated = truncate_rule(rule, master.start, occurrence_start)
            series.master = master.model_copy(update={"recurrence_rule": truncated})
            series.drop_exceptions_from(occurrence_start)
        self._touch(series)

        gone = not self._has_remaining_occurrences(series)
        if gone:
            del self._series[external_id]
        self._after_mutation(master.calendar_id)
        logger.debug(
            "Deleted occurrence %s of %s (span=%s, series_gone=%s)",
            occurrence_start.isoformat(),
            external_id,
            span.value,
            gone,
        )
        return gone

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_event(
        self, external_id: str, occurrence_hint: Optional[datetime] = None
    ) -> Optional[CalendarEvent]:
        series = self._series.get(external_id)
        if series is None or series.master.calendar_id not in self._calendars:
            return None
        master = series.master
        if occurrence_hint is None or master.recurrence_rule is None:
            return master
        if occurrence_hint in series.exdates:
            return None
        if occurrence_hint in series.overrides:
            return series.overrides[occurrence_hint]
        if self._engine.is_occurrence(master.recurrence_rule, master.start, occurrence_hint):
            return self._instance(series, occurrence_hint)
        return None

    async def events_in_range(
        self, calendar_ids: Iterable[str], start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        wanted = set(calendar_ids)
        unknown = wanted - self._calendars.keys()
        if unknown:
            logger.debug("Skipping unknown calendars in range query: %s", sorted(unknown))

        results: list[CalendarEvent] = []
        for series in self._series.values():
            master = series.master
            if master.calendar_id not in wanted or master.calendar_id not in self._calendars:
                continue
            rule = master.recurrence_rule
            if rule is None:
                if _overlaps(master.start, master.end, start, end):
                    results.append(master)
                continue

            for occurrence in self._engine.occurrences_between(
                rule, master.start, master.duration, start, end
            ):
                if occurrence in series.exdates or occurrence in series.overrides:
                    continue
                results.append(self._instance(series, occurrence))
            for override in series.overrides.values():
                if _overlaps(override.start, override.end, start, end):
                    results.append(override)

        results.sort(key=lambda e: e.start)
        return results

    async def last_modified(self, external_id: str) -> Optional[datetime]:
        series = self._series.get(external_id)
        return series.master.last_modified if series is not None else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _after_mutation(self, calendar_id: str) -> None:
        """Called after every write to a calendar. Subclasses persist here."""

    def _new_id(self) -> str:
        return uuid.uuid4().hex.upper()

    def _require_calendar(self, calendar_id: str) -> AvailableCalendar:
        calendar = self._calendars.get(calendar_id)
        if calendar is None:
            raise CalendarUnavailableError(
                f"Calendar {calendar_id!r} is not available", calendar_id=calendar_id
            )
        return calendar

    def _require_series(self, external_id: str) -> StoredSeries:
        series = self._series.get(external_id)
        if series is None:
            raise EventNotFoundError(external_id)
        self._require_calendar(series.master.calendar_id)
        return series

    def _require_occurrence(self, series: StoredSeries, occurrence_start: datetime) -> None:
        master = series.master
        rule = master.recurrence_rule
        exists = occurrence_start not in series.exdates and (
            occurrence_start in series.overrides
            or (rule is not None and self._engine.is_occurrence(rule, master.start, occurrence_start))
        )
        if not exists:
            raise EventNotFoundError(
                master.external_id,
                calendar_id=master.calendar_id,
                message=f"No occurrence of {master.external_id!r} at {occurrence_start.isoformat()}",
            )

    def _touch(self, series: StoredSeries) -> datetime:
        now = self._clock()
        series.master = series.master.model_copy(update={"last_modified": now})
        return now

    def _insert(
        self, calendar_id: str, draft: EventDraft, rule: Optional[RecurrenceRule]
    ) -> CalendarEvent:
        self._require_calendar(calendar_id)
        event = CalendarEvent(
            external_id=self._new_id(),
            calendar_id=calendar_id,
            recurrence_rule=rule,
            last_modified=self._clock(),
            **_draft_fields(draft),
        )
        self._series[event.external_id] = StoredSeries(master=event)
        self._after_mutation(calendar_id)
        logger.debug("Created %s in %s", event.external_id, calendar_id)
        return event

    def _instance(self, series: StoredSeries, occurrence_start: datetime) -> CalendarEvent:
        master = series.master
        return master.model_copy(
            update={
                "start": occurrence_start,
                "end": occurrence_start + master.duration,
                "occurrence_start": occurrence_start,
            }
        )

    def _replace_master(self, series: StoredSeries, draft: EventDraft, span: Span) -> CalendarEvent:
        master = series.master
        rule = draft.recurrence_rule if span == Span.FUTURE_EVENTS else master.recurrence_rule
        if rule is not None:
            rule.validate_rule()
        updated = master.model_copy(
            update={**_draft_fields(draft), "recurrence_rule": rule, "last_modified": self._clock()}
        )
        if updated.start != master.start or rule != master.recurrence_rule:
            # exceptions are keyed by the old occurrence times
            series.exdates.clear()
            series.overrides.clear()
        series.master = updated
        return updated

    def _override_occurrence(
        self, series: StoredSeries, draft: EventDraft, occurrence_start: datetime
    ) -> CalendarEvent:
        self._require_occurrence(series, occurrence_start)
        now = self._touch(series)
        override = series.master.model_copy(
            update={
                **_draft_fields(draft),
                "recurrence_rule": None,
                "occurrence_start": occurrence_start,
                "is_detached": True,
                "last_modified": now,
            }
        )
        series.overrides[occurrence_start] = override
        return override

    def _split_series(
        self, series: StoredSeries, draft: EventDraft, occurrence_start: datetime
    ) -> CalendarEvent:
        """Cut the series before ``occurrence_start`` and continue it as a new series."""
        self._require_occurrence(series, occurrence_start)
        master = series.master
        old_rule = master.recurrence_rule
        assert old_rule is not None

        truncated = truncate_rule(old_rule, master.start, occurrence_start)
        new_rule = draft.recurrence_rule
        if new_rule is not None:
            new_rule.validate_rule()
            if new_rule == old_rule and old_rule.count is not None and truncated is not None:
                new_rule = new_rule.model_copy(update={"count": old_rule.count - (truncated.count or 0)})

        now = self._clock()
        series.master = master.model_copy(update={"recurrence_rule": truncated, "last_modified": now})
        series.drop_exceptions_from(occurrence_start)

        continuation = CalendarEvent(
            external_id=self._new_id(),
            calendar_id=master.calendar_id,
            recurrence_rule=new_rule,
            last_modified=now,
            **_draft_fields(draft),
        )
        self._series[continuation.external_id] = StoredSeries(master=continuation)
        logger.debug(
            "Split series %s at %s into %s",
            master.external_id,
            occurrence_start.isoformat(),
            continuation.external_id,
        )
        return continuation

    def _has_remaining_occurrences(self, series: StoredSeries) -> bool:
        master = series.master
        rule = master.recurrence_rule
        if rule is None:
            return True
        if series.overrides:
            return True
        wanted = len(series.exdates) + 1
        # wide enough to reach ``wanted`` occurrences of any frequency
        engine = RecurrenceEngine(horizon_days=400 * rule.interval * wanted)
        candidates = engine.expand(
            rule, master.start, master.start - timedelta(microseconds=1), limit=wanted
        )
        return any(c not in series.exdates for c in candidates)
