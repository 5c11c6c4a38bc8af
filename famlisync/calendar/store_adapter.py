"""Interface to the external per-device calendar store."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from famlisync.calendar.models import (
    AvailableCalendar,
    CalendarEvent,
    EventDraft,
    RecurrenceRule,
    Span,
)


@runtime_checkable
class CalendarStoreAdapter(Protocol):
    """Async access to an external calendar store.

    The engine is never the store's only writer: ``last_modified`` is how other
    writers are detected. Every method is a suspension point.

    Errors are reported with the ``CalendarStoreError`` family:
    ``CalendarUnavailableError`` for calendars that no longer resolve,
    ``CalendarWriteError`` for transient failures, ``EventNotFoundError`` when
    the addressed event or occurrence is gone.
    """

    @property
    def supports_occurrence_overrides(self) -> bool:
        """Whether a single occurrence of a series can be edited on its own."""
        ...

    async def list_calendars(self) -> list[AvailableCalendar]:
        """Return the calendars currently available in the store."""
        ...

    async def create_event(self, calendar_id: str, draft: EventDraft) -> CalendarEvent:
        """Create a one-off event. Any rule on the draft is ignored."""
        ...

    async def create_recurring_event(
        self, calendar_id: str, draft: EventDraft, rule: RecurrenceRule
    ) -> CalendarEvent:
        """Create a recurring series whose first occurrence is the draft's window."""
        ...

    async def update_event(
        self,
        external_id: str,
        draft: EventDraft,
        *,
        span: Span,
        occurrence_start: Optional[datetime] = None,
    ) -> CalendarEvent:
        """Update an event, one occurrence, or an occurrence and the rest of its series.

        With ``Span.FUTURE_EVENTS`` from a later occurrence the store may split
        the series, in which case the returned event carries a new external id.
        """
        ...

    async def delete_event(
        self,
        external_id: str,
        *,
        span: Span,
        occurrence_start: Optional[datetime] = None,
    ) -> bool:
        """Delete an event, one occurrence, or an occurrence and the rest of its series.

        Returns:
            True when nothing of the event remains in the store
        """
        ...

    async def find_event(
        self, external_id: str, occurrence_hint: Optional[datetime] = None
    ) -> Optional[CalendarEvent]:
        """Look up an event, or the occurrence of a series starting at ``occurrence_hint``."""
        ...

    async def events_in_range(
        self, calendar_ids: Iterable[str], start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Events and expanded occurrences overlapping ``[start, end)``, sorted by start."""
        ...

    async def last_modified(self, external_id: str) -> Optional[datetime]:
        """Last modification time of an event, or None if it no longer exists."""
        ...


def find_matching_calendar(
    name: str, candidates: Sequence[AvailableCalendar]
) -> Optional[AvailableCalendar]:
    """Find the calendar whose title matches a person's name.

    Matching is exact after trimming whitespace and ignoring case; the first
    match in ``candidates`` order wins.

    Args:
        name: Person name typed by the user
        candidates: Snapshot of the store's available calendars

    Returns:
        The matching calendar or None
    """
    wanted = name.strip().casefold()
    if not wanted:
        return None
    for calendar in candidates:
        if calendar.title.strip().casefold() == wanted:
            return calendar
    return None
