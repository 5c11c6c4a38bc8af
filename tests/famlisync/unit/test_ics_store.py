"""
Unit tests for famlisync.calendar.ics_store.IcsCalendarStore.

Every test writes through one store instance and reads back through a fresh
instance over the same directory, so what is asserted is what reached disk.
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from famlisync.calendar import ics_store
from famlisync.calendar.ics_store import IcsCalendarStore
from famlisync.calendar.models import (
    AvailableCalendar,
    EventDraft,
    RecurrenceFrequency,
    RecurrenceRule,
    Span,
)
from famlisync.exceptions import CalendarUnavailableError, CalendarWriteError

pytestmark = pytest.mark.unit

START = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)
WINDOW = (datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 3, 1, tzinfo=UTC))

FOREIGN_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//School//Timetable//EN
X-WR-CALNAME:School
BEGIN:VEVENT
UID:school-1
DTSTAMP:20250101T000000Z
DTSTART:20250106T150000Z
DTEND:20250106T160000Z
SUMMARY:Chess club
LOCATION:Room 4
RRULE:FREQ=WEEKLY;BYDAY=MO;COUNT=3
LAST-MODIFIED:20250102T080000Z
END:VEVENT
END:VCALENDAR
"""


def _store(path: Path, clock=None) -> IcsCalendarStore:
    return IcsCalendarStore(path, timezone="UTC", clock=clock)


@pytest.fixture
def family_store(tmp_path: Path, clock) -> IcsCalendarStore:
    store = _store(tmp_path, clock)
    store.add_calendar(AvailableCalendar(id="family", title="Family", color="#FF9500"))
    return store


@pytest.mark.asyncio
async def test_calendar_metadata_round_trips(family_store: IcsCalendarStore, tmp_path: Path) -> None:
    calendars = await _store(tmp_path).list_calendars()

    assert len(calendars) == 1
    assert calendars[0].id == "family"
    assert calendars[0].title == "Family"
    assert calendars[0].color == "#FF9500"


@pytest.mark.asyncio
async def test_recurring_event_with_alarm_is_persisted(
    family_store: IcsCalendarStore, tmp_path: Path, draft: EventDraft, clock
) -> None:
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=3)
    created = await family_store.create_recurring_event("family", draft, rule)

    events = await _store(tmp_path).events_in_range(["family"], *WINDOW)

    assert [e.start for e in events] == [START + timedelta(weeks=n) for n in range(3)]
    first = events[0]
    assert first.external_id == created.external_id
    assert first.title == "Swim practice"
    assert first.location == "Community Pool"
    assert first.alarms == [15]
    assert first.recurrence_rule == rule
    assert first.last_modified == clock.now


@pytest.mark.asyncio
async def test_exceptions_and_overrides_are_persisted(
    family_store: IcsCalendarStore, tmp_path: Path, draft: EventDraft
) -> None:
    series = await family_store.create_recurring_event(
        "family", draft, RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=4)
    )
    week1 = START + timedelta(weeks=1)
    week2 = START + timedelta(weeks=2)
    moved = draft.model_copy(update={"start": week1 + timedelta(hours=1), "end": week1 + timedelta(hours=2)})
    await family_store.update_event(series.external_id, moved, span=Span.THIS_EVENT, occurrence_start=week1)
    await family_store.delete_event(series.external_id, span=Span.THIS_EVENT, occurrence_start=week2)

    reloaded = _store(tmp_path)
    starts = [e.start for e in await reloaded.events_in_range(["family"], *WINDOW)]

    assert starts == [START, week1 + timedelta(hours=1), START + timedelta(weeks=3)]
    detached = await reloaded.find_event(series.external_id, week1)
    assert detached is not None and detached.is_detached
    assert await reloaded.find_event(series.external_id, week2) is None


@pytest.mark.asyncio
async def test_all_day_event_round_trips_as_date(family_store: IcsCalendarStore, tmp_path: Path) -> None:
    day = datetime(2025, 1, 10, tzinfo=UTC)
    await family_store.create_event(
        "family", EventDraft(title="Inset day", start=day, end=day + timedelta(days=1), is_all_day=True)
    )

    assert ";VALUE=DATE:20250110" in (tmp_path / "family.ics").read_text()
    events = await _store(tmp_path).events_in_range(["family"], *WINDOW)
    assert len(events) == 1
    assert events[0].is_all_day
    assert (events[0].start, events[0].end) == (day, day + timedelta(days=1))


@pytest.mark.asyncio
async def test_foreign_file_loads_with_closest_supported_rule(tmp_path: Path) -> None:
    (tmp_path / "school.ics").write_text(FOREIGN_ICS)

    store = _store(tmp_path)
    events = await store.events_in_range(["school"], *WINDOW)

    assert [c.title for c in await store.list_calendars()] == ["School"]
    assert len(events) == 3
    assert events[0].title == "Chess club"
    assert events[0].location == "Room 4"
    assert events[0].last_modified == datetime(2025, 1, 2, 8, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_poll_changes_reloads_after_external_write(family_store: IcsCalendarStore, tmp_path: Path) -> None:
    assert family_store.poll_changes() is False

    (tmp_path / "school.ics").write_text(FOREIGN_ICS)

    assert family_store.poll_changes() is True
    assert {c.id for c in await family_store.list_calendars()} == {"family", "school"}
    assert family_store.poll_changes() is False


def test_unusable_calendar_id_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(CalendarUnavailableError):
        _store(tmp_path).add_calendar(AvailableCalendar(id="../escape", title="Nope"))


def test_remove_calendar_deletes_its_file(family_store: IcsCalendarStore, tmp_path: Path) -> None:
    assert (tmp_path / "family.ics").exists()
    family_store.remove_calendar("family")
    assert not (tmp_path / "family.ics").exists()


@pytest.mark.asyncio
async def test_failed_write_reverts_to_file_contents(
    family_store: IcsCalendarStore, draft: EventDraft, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_write(path, text):
        raise OSError("disk full")

    monkeypatch.setattr(ics_store, "atomic_write_text", broken_write)

    with pytest.raises(CalendarWriteError) as exc_info:
        await family_store.create_event("family", draft)

    assert exc_info.value.retryable
    assert await family_store.events_in_range(["family"], *WINDOW) == []
