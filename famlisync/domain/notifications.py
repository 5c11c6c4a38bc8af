"""Notification surface for reminder scheduling.

The sync coordinator emits a ``ReminderNotice`` for every event it creates or
updates and a cancellation for every event it removes. Scheduling the actual
reminders is left to whatever sink the caller plugs in.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderNotice:
    """Identity and alert offsets of an event that (re)needs reminders."""

    external_id: str
    calendar_id: str
    title: str
    start: datetime
    alert_offsets_minutes: tuple[int, ...] = ()
    occurrence_start: Optional[datetime] = None
    attendee_ids: tuple[str, ...] = ()

    @property
    def trigger_times(self) -> list[datetime]:
        """Reminder fire times, earliest first."""
        return sorted(self.start - timedelta(minutes=m) for m in self.alert_offsets_minutes)


class NotificationSink(Protocol):
    """Receiver of reminder schedule and cancel signals."""

    def occurrence_scheduled(self, notice: ReminderNotice) -> None: ...

    def occurrence_cancelled(
        self, external_id: str, occurrence_start: Optional[datetime] = None
    ) -> None: ...


class LoggingNotificationSink:
    """Default sink that only logs."""

    def occurrence_scheduled(self, notice: ReminderNotice) -> None:
        logger.debug(
            "Reminder schedule for %s at %s (offsets=%s)",
            notice.external_id,
            notice.start.isoformat(),
            list(notice.alert_offsets_minutes),
        )

    def occurrence_cancelled(
        self, external_id: str, occurrence_start: Optional[datetime] = None
    ) -> None:
        logger.debug(
            "Reminder cancel for %s%s",
            external_id,
            f" at {occurrence_start.isoformat()}" if occurrence_start else "",
        )


@dataclass
class NotificationPreferences:
    """Which calendars and members the user wants reminders for.

    Empty selections mean everything is selected.
    """

    calendar_ids: set[str] = field(default_factory=set)
    member_ids: set[str] = field(default_factory=set)

    def should_notify(self, calendar_id: str, member_ids: Iterable[str] = ()) -> bool:
        if self.calendar_ids and calendar_id not in self.calendar_ids:
            return False
        if self.member_ids and not self.member_ids.intersection(member_ids):
            return False
        return True


class FilteringNotificationSink:
    """Forward only notices the preferences allow. Cancellations always pass."""

    def __init__(self, inner: NotificationSink, preferences: NotificationPreferences):
        self.inner = inner
        self.preferences = preferences

    def occurrence_scheduled(self, notice: ReminderNotice) -> None:
        if not notice.alert_offsets_minutes:
            return
        if not self.preferences.should_notify(notice.calendar_id, notice.attendee_ids):
            logger.debug("Reminder for %s filtered by preferences", notice.external_id)
            return
        self.inner.occurrence_scheduled(notice)

    def occurrence_cancelled(
        self, external_id: str, occurrence_start: Optional[datetime] = None
    ) -> None:
        self.inner.occurrence_cancelled(external_id, occurrence_start)
