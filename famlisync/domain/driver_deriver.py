"""Derive and maintain the travel event tied to a driven primary event.

When a family member drives, a "Travel to ..." event ending at the primary
event's start is kept in that member's home calendar. Its id is stored on every
record of the link group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from famlisync.calendar.models import CalendarEvent, EventDraft, Span
from famlisync.calendar.store_adapter import CalendarStoreAdapter
from famlisync.domain.family_directory import FamilyDirectory
from famlisync.domain.link_registry import DriverKind, DriverRef, LinkRegistry
from famlisync.exceptions import CalendarStoreError, EventNotFoundError, RegistryError

logger = logging.getLogger(__name__)


class TravelStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TravelOutcome:
    """What happened to the travel event of a group."""

    status: TravelStatus
    external_id: Optional[str] = None
    calendar_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[Exception] = None


def travel_title(primary_title: str) -> str:
    return f"Travel to {primary_title}"


def travel_window(primary_start: datetime, travel_minutes: int) -> tuple[datetime, datetime]:
    """Travel event window: ends when the primary event starts."""
    return primary_start - timedelta(minutes=travel_minutes), primary_start


class DriverEventDeriver:
    """Creates, moves and removes travel events for family-member drivers."""

    def __init__(
        self,
        store: CalendarStoreAdapter,
        registry: LinkRegistry,
        directory: FamilyDirectory,
    ):
        self.store = store
        self.registry = registry
        self.directory = directory

    async def ensure_travel_event(
        self,
        primary_event: CalendarEvent,
        travel_minutes: Optional[int],
        driver_home_calendar_id: Optional[str],
        *,
        existing_external_id: Optional[str] = None,
        existing_calendar_id: Optional[str] = None,
    ) -> TravelOutcome:
        """Create or update the travel event for ``primary_event``.

        An existing travel event in the same calendar is updated in place. One
        in a different calendar (the driver's home calendar changed) is
        removed and recreated. A missing home calendar or travel time skips
        creation without failing the primary event.

        Args:
            primary_event: Event being driven to
            travel_minutes: Travel time before the primary start
            driver_home_calendar_id: Driver's auto-linked calendar
            existing_external_id: Travel event already tracked for the group
            existing_calendar_id: Calendar of the tracked travel event

        Returns:
            TravelOutcome with the travel event's external id when it exists
        """
        if not driver_home_calendar_id:
            logger.warning("Driver has no home calendar; travel event for %r skipped", primary_event.title)
            return TravelOutcome(TravelStatus.SKIPPED, reason="driver has no home calendar")
        if not travel_minutes or travel_minutes <= 0:
            return TravelOutcome(TravelStatus.SKIPPED, reason="no travel time set")

        start, end = travel_window(primary_event.start, travel_minutes)
        draft = EventDraft(
            title=travel_title(primary_event.title),
            start=start,
            end=end,
            location=primary_event.location,
        )

        if existing_external_id:
            if existing_calendar_id and existing_calendar_id != driver_home_calendar_id:
                await self._delete_quietly(existing_external_id)
            else:
                try:
                    updated = await self.store.update_event(
                        existing_external_id, draft, span=Span.THIS_EVENT
                    )
                    logger.info("Travel event %s moved to %s", updated.external_id, start.isoformat())
                    return TravelOutcome(
                        TravelStatus.UPDATED, updated.external_id, updated.calendar_id
                    )
                except EventNotFoundError:
                    logger.info("Tracked travel event %s is gone; recreating", existing_external_id)
                except CalendarStoreError as exc:
                    logger.warning("Failed to update travel event %s: %s", existing_external_id, exc)
                    return TravelOutcome(TravelStatus.FAILED, existing_external_id, error=exc)

        try:
            created = await self.store.create_event(driver_home_calendar_id, draft)
        except CalendarStoreError as exc:
            logger.warning(
                "Failed to create travel event in %s: %s", driver_home_calendar_id, exc
            )
            return TravelOutcome(TravelStatus.FAILED, calendar_id=driver_home_calendar_id, error=exc)
        logger.info("Travel event %s created in %s", created.external_id, created.calendar_id)
        return TravelOutcome(TravelStatus.CREATED, created.external_id, created.calendar_id)

    async def sync_group(self, group_id: str, primary_event: CalendarEvent) -> TravelOutcome:
        """Bring the group's travel event in line with its driver and primary event."""
        records = self.registry.get(group_id)
        if not records:
            return TravelOutcome(TravelStatus.SKIPPED, reason="group has no records")
        head = records[0]
        driver = head.driver_ref

        if driver is None or driver.kind != DriverKind.FAMILY_MEMBER:
            if head.travel_event_external_id:
                return await self.remove_travel_event(group_id)
            return TravelOutcome(TravelStatus.SKIPPED, reason="no family member is driving")

        outcome = await self.ensure_travel_event(
            primary_event,
            head.driver_travel_minutes,
            self.directory.home_calendar_for(driver),
            existing_external_id=head.travel_event_external_id,
            existing_calendar_id=head.travel_calendar_id,
        )
        if outcome.status in (TravelStatus.CREATED, TravelStatus.UPDATED):
            return self._record_travel(group_id, outcome)
        if outcome.status == TravelStatus.SKIPPED and head.travel_event_external_id:
            # travel time cleared or home calendar unlinked
            await self._delete_quietly(head.travel_event_external_id)
            self._record_travel(group_id, TravelOutcome(TravelStatus.REMOVED))
        return outcome

    async def assign_driver(
        self,
        group_id: str,
        primary_event: CalendarEvent,
        driver: Optional[DriverRef],
        travel_minutes: Optional[int] = None,
    ) -> TravelOutcome:
        """Change the group's driver and/or travel time, re-deriving the travel event.

        A different driver gets a new travel event; the old driver's one is deleted.
        """
        records = self.registry.get(group_id)
        if not records:
            return TravelOutcome(TravelStatus.SKIPPED, reason="group has no records")
        head = records[0]

        changes: dict[str, object] = {
            "driver_ref": driver,
            "driver_travel_minutes": travel_minutes if driver is not None else None,
        }
        if head.driver_ref != driver and head.travel_event_external_id:
            await self._delete_quietly(head.travel_event_external_id)
            changes.update(travel_event_external_id=None, travel_calendar_id=None)
        try:
            self.registry.update_group(group_id, **changes)
        except RegistryError as exc:
            logger.warning("Failed to record driver for group %s: %s", group_id, exc)
            return TravelOutcome(TravelStatus.FAILED, reason="driver not recorded", error=exc)
        return await self.sync_group(group_id, primary_event)

    async def remove_travel_event(self, group_id: str) -> TravelOutcome:
        records = self.registry.get(group_id)
        travel_id = next((r.travel_event_external_id for r in records if r.travel_event_external_id), None)
        if travel_id is None:
            return TravelOutcome(TravelStatus.SKIPPED, reason="no travel event")
        await self._delete_quietly(travel_id)
        self._record_travel(group_id, TravelOutcome(TravelStatus.REMOVED))
        return TravelOutcome(TravelStatus.REMOVED, travel_id)

    def _record_travel(self, group_id: str, outcome: TravelOutcome) -> TravelOutcome:
        try:
            self.registry.update_group(
                group_id,
                travel_event_external_id=outcome.external_id,
                travel_calendar_id=outcome.calendar_id,
            )
        except RegistryError as exc:
            logger.warning("Travel event %s exists but is unlinked: %s", outcome.external_id, exc)
            return TravelOutcome(
                TravelStatus.FAILED,
                outcome.external_id,
                outcome.calendar_id,
                reason="travel event exists in calendar but is unlinked",
                error=exc,
            )
        return outcome

    async def _delete_quietly(self, external_id: str) -> None:
        """Delete a travel event; one that is already gone is fine."""
        try:
            await self.store.delete_event(external_id, span=Span.THIS_EVENT)
            logger.info("Travel event %s removed", external_id)
        except EventNotFoundError:
            logger.debug("Travel event %s already gone", external_id)
        except CalendarStoreError as exc:
            logger.warning("Failed to remove travel event %s: %s", external_id, exc)
