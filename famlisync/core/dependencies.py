"""Dependency container wiring famlisync components from settings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from famlisync.calendar.ics_store import IcsCalendarStore
from famlisync.calendar.recurrence import RecurrenceEngine
from famlisync.calendar.store_adapter import CalendarStoreAdapter
from famlisync.core.config_manager import FamliSyncSettings
from famlisync.core.timezone_utils import now_utc, resolve_timezone
from famlisync.domain.agenda import FamilyAgenda
from famlisync.domain.driver_deriver import DriverEventDeriver
from famlisync.domain.event_grouper import DaySection
from famlisync.domain.family_directory import FamilyDirectory
from famlisync.domain.link_registry import LinkRegistry
from famlisync.domain.notifications import NotificationSink
from famlisync.domain.refresh import RefreshController
from famlisync.domain.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


def agenda_window(
    settings: FamliSyncSettings, now: datetime, days: Optional[int] = None
) -> tuple[datetime, datetime]:
    """Start of today minus the past days, to the end of the last future day."""
    tz = resolve_timezone(settings.timezone)
    today = now.astimezone(tz).replace(hour=0, minute=0, second=0, microsecond=0)
    ahead = days if days is not None else settings.agenda_future_days
    return today - timedelta(days=settings.agenda_past_days), today + timedelta(days=ahead + 1)


@dataclass
class FamliSyncDependencies:
    """Shared components built from one set of settings.

    The coordinator holds the refresh controller's write guard, so an agenda
    reload never publishes data older than a completed group write.
    """

    settings: FamliSyncSettings
    engine: RecurrenceEngine
    store: CalendarStoreAdapter
    registry: LinkRegistry
    directory: FamilyDirectory
    deriver: DriverEventDeriver
    agenda: FamilyAgenda
    refresh: RefreshController[list[DaySection]]
    coordinator: SyncCoordinator
    clock: Callable[[], datetime]

    def agenda_window(self, days: Optional[int] = None) -> tuple[datetime, datetime]:
        return agenda_window(self.settings, self.clock(), days)

    async def run_refresh_loop(self, stop_event: asyncio.Event) -> None:
        """Refresh the agenda every ``refresh_interval_seconds`` until stopped.

        Stores that can detect changes on their own (``poll_changes``) skip
        ticks where nothing changed.
        """
        poll_changes = getattr(self.store, "poll_changes", None)
        await self.refresh.run_periodic(
            self.settings.refresh_interval_seconds, stop_event, poll_changes
        )


class DependencyContainer:
    """Factory for building famlisync dependencies."""

    @staticmethod
    def build_dependencies(
        settings: FamliSyncSettings,
        *,
        store: Optional[CalendarStoreAdapter] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_agenda: Optional[Callable[[list[DaySection]], None]] = None,
        days: Optional[int] = None,
    ) -> FamliSyncDependencies:
        """Build every component from ``settings``.

        Args:
            settings: Resolved settings
            store: Calendar store to use instead of the ICS directory store
            notifier: Reminder sink for the coordinator
            clock: Time source (defaults to ``now_utc``)
            on_agenda: Called with each published agenda
            days: Days ahead for the refreshed agenda (default: settings)

        Returns:
            FamliSyncDependencies with every component wired
        """
        settings = settings.resolved()
        clock = clock or now_utc
        engine = RecurrenceEngine(settings.recurrence_horizon_days)

        if store is None:
            assert settings.ics_dir is not None
            store = IcsCalendarStore(
                settings.ics_dir, timezone=settings.timezone, clock=clock, engine=engine
            )
        registry = LinkRegistry(settings.registry_path)
        directory = FamilyDirectory(settings.directory_path)
        deriver = DriverEventDeriver(store, registry, directory)
        agenda = FamilyAgenda(
            store,
            directory,
            registry,
            timezone=settings.timezone,
            chip_limit=settings.recurrence_chip_limit,
            engine=engine,
        )

        async def load_agenda() -> list[DaySection]:
            return await agenda.load_days(*agenda_window(settings, clock(), days))

        refresh: RefreshController[list[DaySection]] = RefreshController(load_agenda, on_agenda)
        coordinator = SyncCoordinator(
            store,
            registry,
            deriver=deriver,
            notifier=notifier,
            edit_skew=timedelta(seconds=settings.external_edit_skew_seconds),
            clock=clock,
            write_guard=refresh.write_guard,
        )

        deps = FamliSyncDependencies(
            settings=settings,
            engine=engine,
            store=store,
            registry=registry,
            directory=directory,
            deriver=deriver,
            agenda=agenda,
            refresh=refresh,
            coordinator=coordinator,
            clock=clock,
        )
        logger.debug(
            "Built dependencies: edit skew %ss, refresh every %ss, horizon %s days",
            settings.external_edit_skew_seconds,
            settings.refresh_interval_seconds,
            settings.recurrence_horizon_days,
        )
        return deps
