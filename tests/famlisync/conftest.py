"""Fixtures shared by the famlisync unit tests.

Everything here is deterministic: a hand-advanced clock, an in-memory calendar
store with three family calendars, and a registry/directory persisted under
``tmp_path``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from famlisync.calendar.memory_store import InMemoryCalendarStore
from famlisync.calendar.models import AvailableCalendar, CalendarEvent, EventDraft, RecurrenceRule, Span
from famlisync.domain.family_directory import FamilyDirectory, FamilyMember
from famlisync.domain.link_registry import LinkRegistry
from famlisync.exceptions import CalendarWriteError

START = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


class FixedClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FlakyCalendarStore(InMemoryCalendarStore):
    """In-memory store whose writes fail for the calendars listed in ``failing``."""

    def __init__(self, calendars: Iterable[AvailableCalendar], **kwargs):
        super().__init__(calendars, **kwargs)
        self.failing: set[str] = set()

    def _check(self, calendar_id: Optional[str]) -> None:
        if calendar_id in self.failing:
            raise CalendarWriteError("simulated store outage", calendar_id=calendar_id)

    def _calendar_of(self, external_id: str) -> Optional[str]:
        series = self._series.get(external_id)
        return series.master.calendar_id if series else None

    async def create_event(self, calendar_id: str, draft: EventDraft) -> CalendarEvent:
        self._check(calendar_id)
        return await super().create_event(calendar_id, draft)

    async def create_recurring_event(
        self, calendar_id: str, draft: EventDraft, rule: RecurrenceRule
    ) -> CalendarEvent:
        self._check(calendar_id)
        return await super().create_recurring_event(calendar_id, draft, rule)

    async def update_event(self, external_id: str, draft: EventDraft, **kwargs) -> CalendarEvent:
        self._check(self._calendar_of(external_id))
        return await super().update_event(external_id, draft, **kwargs)

    async def delete_event(self, external_id: str, *, span: Span, occurrence_start=None) -> bool:
        self._check(self._calendar_of(external_id))
        return await super().delete_event(external_id, span=span, occurrence_start=occurrence_start)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def calendars() -> list[AvailableCalendar]:
    return [
        AvailableCalendar(id="cal-alice", title="Alice", color="#FF3B30"),
        AvailableCalendar(id="cal-bob", title="Bob", color="#34C759"),
        AvailableCalendar(id="cal-carol", title="Carol", color="#5856D6"),
    ]


@pytest.fixture
def store(calendars, clock) -> FlakyCalendarStore:
    return FlakyCalendarStore(calendars, clock=clock)


@pytest.fixture
def registry(tmp_path: Path) -> LinkRegistry:
    return LinkRegistry(tmp_path / "links.json")


@pytest.fixture
def directory(tmp_path: Path) -> FamilyDirectory:
    family = FamilyDirectory(tmp_path / "family.json")
    family.save_member(
        FamilyMember(id="alice", name="Alice", color_hex="#FF3B30", home_calendar_id="cal-alice")
    )
    family.save_member(
        FamilyMember(id="bob", name="Bob", color_hex="#34C759", home_calendar_id="cal-bob")
    )
    family.save_member(
        FamilyMember(id="carol", name="Carol", color_hex="#5856D6", calendar_ids=["cal-carol"])
    )
    return family


@pytest.fixture
def draft() -> EventDraft:
    return EventDraft(
        title="Swim practice",
        start=START,
        end=START + timedelta(hours=1),
        location="Community Pool",
        alarms=[15],
    )
