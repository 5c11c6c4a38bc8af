"""Unit tests for the in-memory calendar store adapter."""

from datetime import UTC, datetime, timedelta

import pytest

from famlisync.calendar.memory_store import InMemoryCalendarStore
from famlisync.calendar.models import (
    AvailableCalendar,
    EventDraft,
    RecurrenceFrequency,
    RecurrenceRule,
    Span,
)
from famlisync.calendar.store_adapter import CalendarStoreAdapter, find_matching_calendar
from famlisync.exceptions import CalendarStoreError, CalendarUnavailableError, EventNotFoundError

pytestmark = pytest.mark.unit

START = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)
WINDOW = (datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 3, 1, tzinfo=UTC))
WEEKLY = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY)


def _week(n: int) -> datetime:
    return START + timedelta(weeks=n)


def test_memory_store_satisfies_adapter_protocol(store) -> None:
    assert isinstance(store, CalendarStoreAdapter)


@pytest.mark.asyncio
async def test_create_and_find_single_event(store, draft, clock) -> None:
    created = await store.create_event("cal-alice", draft)

    assert created.external_id
    assert created.last_modified == clock.now
    found = await store.find_event(created.external_id)
    assert found == created
    assert await store.last_modified(created.external_id) == clock.now


@pytest.mark.asyncio
async def test_create_in_unknown_calendar_fails(store, draft) -> None:
    with pytest.raises(CalendarUnavailableError) as exc_info:
        await store.create_event("cal-nobody", draft)
    assert exc_info.value.calendar_id == "cal-nobody"
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_events_in_range_expands_series(store, draft) -> None:
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=4)
    series = await store.create_recurring_event("cal-alice", draft, rule)

    events = await store.events_in_range(["cal-alice", "cal-unknown"], *WINDOW)

    assert [e.start for e in events] == [_week(n) for n in range(4)]
    assert all(e.external_id == series.external_id for e in events)
    assert [e.occurrence_start for e in events] == [_week(n) for n in range(4)]


@pytest.mark.asyncio
async def test_update_single_occurrence_detaches_it(store, draft) -> None:
    series = await store.create_recurring_event("cal-alice", draft, WEEKLY)
    moved = draft.model_copy(update={"start": _week(1) + timedelta(hours=2), "end": _week(1) + timedelta(hours=3)})

    override = await store.update_event(
        series.external_id, moved, span=Span.THIS_EVENT, occurrence_start=_week(1)
    )

    assert override.is_detached
    assert override.occurrence_start == _week(1)
    assert await store.find_event(series.external_id, _week(1)) == override
    starts = [e.start for e in await store.events_in_range(["cal-alice"], START, _week(3))]
    assert starts == [_week(0), _week(1) + timedelta(hours=2), _week(2)]


@pytest.mark.asyncio
async def test_store_without_overrides_rejects_single_occurrence_edit(calendars, draft) -> None:
    store = InMemoryCalendarStore(calendars, supports_occurrence_overrides=False)
    series = await store.create_recurring_event("cal-alice", draft, WEEKLY)

    with pytest.raises(CalendarStoreError):
        await store.update_event(
            series.external_id, draft, span=Span.THIS_EVENT, occurrence_start=_week(1)
        )


@pytest.mark.asyncio
async def test_update_future_events_splits_series(store, draft) -> None:
    series = await store.create_recurring_event("cal-alice", draft, WEEKLY)
    renamed = draft.model_copy(
        update={"title": "Swim squad", "start": _week(2), "end": _week(2) + timedelta(hours=1), "recurrence_rule": WEEKLY}
    )

    continuation = await store.update_event(
        series.external_id, renamed, span=Span.FUTURE_EVENTS, occurrence_start=_week(2)
    )

    assert continuation.external_id != series.external_id
    events = await store.events_in_range(["cal-alice"], START, _week(4))
    assert [(e.title, e.start) for e in events] == [
        ("Swim practice", _week(0)),
        ("Swim practice", _week(1)),
        ("Swim squad", _week(2)),
        ("Swim squad", _week(3)),
    ]


@pytest.mark.asyncio
async def test_split_of_count_rule_keeps_total_occurrences(store, draft) -> None:
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=4)
    series = await store.create_recurring_event("cal-alice", draft, rule)
    later = draft.model_copy(
        update={"start": _week(2), "end": _week(2) + timedelta(hours=1), "recurrence_rule": rule}
    )

    continuation = await store.update_event(
        series.external_id, later, span=Span.FUTURE_EVENTS, occurrence_start=_week(2)
    )

    assert continuation.recurrence_rule is not None
    assert continuation.recurrence_rule.count == 2
    original = await store.find_event(series.external_id)
    assert original is not None and original.recurrence_rule is not None
    assert original.recurrence_rule.count == 2
    assert len(await store.events_in_range(["cal-alice"], *WINDOW)) == 4


@pytest.mark.asyncio
async def test_delete_single_occurrence_adds_exception(store, draft) -> None:
    series = await store.create_recurring_event("cal-alice", draft, WEEKLY)

    gone = await store.delete_event(series.external_id, span=Span.THIS_EVENT, occurrence_start=_week(2))

    assert gone is False
    assert await store.find_event(series.external_id, _week(2)) is None
    starts = [e.start for e in await store.events_in_range(["cal-alice"], START, _week(4))]
    assert starts == [_week(0), _week(1), _week(3)]


@pytest.mark.asyncio
async def test_delete_future_events_truncates_series(store, draft) -> None:
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=4)
    series = await store.create_recurring_event("cal-alice", draft, rule)

    gone = await store.delete_event(series.external_id, span=Span.FUTURE_EVENTS, occurrence_start=_week(2))

    assert gone is False
    starts = [e.start for e in await store.events_in_range(["cal-alice"], *WINDOW)]
    assert starts == [_week(0), _week(1)]


@pytest.mark.asyncio
async def test_deleting_last_remaining_occurrence_removes_series(store, draft) -> None:
    rule = RecurrenceRule(frequency=RecurrenceFrequency.WEEKLY, count=2)
    series = await store.create_recurring_event("cal-alice", draft, rule)

    assert await store.delete_event(series.external_id, span=Span.THIS_EVENT, occurrence_start=_week(0)) is False
    assert await store.delete_event(series.external_id, span=Span.THIS_EVENT, occurrence_start=_week(1)) is True
    assert await store.find_event(series.external_id) is None


@pytest.mark.asyncio
async def test_delete_unknown_event_or_occurrence_raises_not_found(store, draft) -> None:
    with pytest.raises(EventNotFoundError):
        await store.delete_event("missing", span=Span.THIS_EVENT)

    series = await store.create_recurring_event("cal-alice", draft, WEEKLY)
    with pytest.raises(EventNotFoundError):
        await store.delete_event(
            series.external_id, span=Span.THIS_EVENT, occurrence_start=START + timedelta(days=3)
        )


@pytest.mark.asyncio
async def test_update_stamps_last_modified(store, draft, clock) -> None:
    created = await store.create_event("cal-alice", draft)
    clock.advance(hours=1)

    updated = await store.update_event(
        created.external_id, draft.model_copy(update={"title": "Swim gala"}), span=Span.THIS_EVENT
    )

    assert updated.last_modified == clock.now
    assert updated.title == "Swim gala"


@pytest.mark.asyncio
async def test_removed_calendar_hides_its_events(store, draft) -> None:
    created = await store.create_event("cal-bob", draft)

    store.remove_calendar("cal-bob")

    assert await store.find_event(created.external_id) is None
    assert [c.id for c in await store.list_calendars()] == ["cal-alice", "cal-carol"]
    with pytest.raises(EventNotFoundError):
        await store.update_event(created.external_id, draft, span=Span.THIS_EVENT)


def test_find_matching_calendar_is_case_insensitive() -> None:
    candidates = [
        AvailableCalendar(id="1", title="Family"),
        AvailableCalendar(id="2", title="family"),
        AvailableCalendar(id="3", title="Work"),
    ]
    match = find_matching_calendar("  FAMILY ", candidates)
    assert match is not None and match.id == "1"
    assert find_matching_calendar("School", candidates) is None
    assert find_matching_calendar("", candidates) is None
