"""Read-and-regroup pass producing the family agenda."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from famlisync.calendar.models import CalendarEvent
from famlisync.calendar.recurrence import RecurrenceEngine
from famlisync.calendar.store_adapter import CalendarStoreAdapter
from famlisync.domain.event_grouper import (
    AggregatedEvent,
    AttendeeOccurrence,
    DaySection,
    EventGrouper,
    attach_recurrence_chips,
)
from famlisync.domain.family_directory import FamilyDirectory
from famlisync.domain.link_registry import LinkRegistry

logger = logging.getLogger(__name__)


class DriverNameResolver:
    """Driver name of an event copy, looked up through its link record."""

    def __init__(self, registry: LinkRegistry, directory: FamilyDirectory):
        self.registry = registry
        self.directory = directory

    def __call__(self, event: CalendarEvent) -> Optional[str]:
        record = self.registry.get_by_external_id(event.calendar_id, event.external_id)
        if record is None:
            return None
        return self.directory.driver_name(record.driver_ref)


class FamilyAgenda:
    """Pulls every member's calendars and groups them for display.

    Args:
        store: Calendar store adapter
        directory: Family members and drivers
        registry: Link registry used to resolve driver names
        timezone: Display timezone
        chip_limit: Upcoming occurrences previewed per recurring event
        engine: Recurrence engine for the previews
    """

    def __init__(
        self,
        store: CalendarStoreAdapter,
        directory: FamilyDirectory,
        registry: LinkRegistry,
        *,
        timezone: str | ZoneInfo | None = None,
        chip_limit: int = 4,
        engine: Optional[RecurrenceEngine] = None,
    ):
        self.store = store
        self.directory = directory
        self.grouper = EventGrouper(timezone)
        self.driver_lookup = DriverNameResolver(registry, directory)
        self.chip_limit = chip_limit
        self.engine = engine or RecurrenceEngine()

    async def load(self, start: datetime, end: datetime) -> list[AggregatedEvent]:
        """Grouped events of all members overlapping ``[start, end)``."""
        colors = {c.id: c.color for c in await self.store.list_calendars()}
        occurrences: list[AttendeeOccurrence] = []
        seen_events: dict[tuple[str, str, datetime], CalendarEvent] = {}

        for member in self.directory.members():
            calendar_ids = member.visible_calendar_ids()
            if not calendar_ids:
                continue
            for event in await self.store.events_in_range(calendar_ids, start, end):
                occurrences.append(
                    AttendeeOccurrence(
                        event=event,
                        member_name=member.name,
                        member_color=colors.get(event.calendar_id, member.color_hex),
                        member_id=member.id,
                    )
                )
                seen_events[(event.calendar_id, event.external_id, event.start)] = event

        grouped = self.grouper.group(occurrences, driver_lookup=self.driver_lookup)
        logger.debug(
            "Agenda %s..%s: %d occurrences grouped into %d events",
            start.isoformat(),
            end.isoformat(),
            len(occurrences),
            len(grouped),
        )
        return attach_recurrence_chips(
            grouped, list(seen_events.values()), limit=self.chip_limit, engine=self.engine
        )

    async def load_days(self, start: datetime, end: datetime) -> list[DaySection]:
        return self.grouper.split_by_day(await self.load(start, end))
