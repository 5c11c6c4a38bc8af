"""Calendar store adapter backed by a directory of ``.ics`` files.

Each calendar is one ``<calendar_id>.ics`` file. Recurring series are stored as
a master VEVENT with RRULE and EXDATE plus one VEVENT per detached occurrence
carrying RECURRENCE-ID. LAST-MODIFIED is written on every change so edits made
by other tools to the same files show up as external edits.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo

from icalendar import Alarm, Calendar, Event, vRecur

from famlisync.calendar.memory_store import InMemoryCalendarStore, StoredSeries
from famlisync.calendar.models import AvailableCalendar, CalendarEvent, RecurrenceRule
from famlisync.calendar.recurrence import RecurrenceEngine
from famlisync.core.json_store import atomic_write_text
from famlisync.core.timezone_utils import resolve_timezone
from famlisync.exceptions import (
    CalendarUnavailableError,
    CalendarWriteError,
    InvalidRecurrenceRuleError,
)

logger = logging.getLogger(__name__)

PRODID = "-//famlisync//famlisync//EN"

_CALENDAR_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class IcsCalendarStore(InMemoryCalendarStore):
    """Calendar store persisting one iCalendar file per calendar.

    Args:
        directory: Directory holding the ``.ics`` files (created if missing)
        timezone: Zone used for floating times and all-day dates
        clock: Source of LAST-MODIFIED stamps
        engine: Recurrence engine used for expansion
    """

    def __init__(
        self,
        directory: Path,
        *,
        timezone: str | ZoneInfo | None = None,
        clock: Optional[Callable[[], datetime]] = None,
        engine: Optional[RecurrenceEngine] = None,
    ):
        super().__init__(clock=clock, engine=engine)
        self.directory = Path(directory)
        self._tz = timezone if isinstance(timezone, ZoneInfo) else resolve_timezone(timezone)
        self._mtimes: dict[str, float] = {}
        self.reload()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Discard in-memory state and re-read every calendar file."""
        self._calendars.clear()
        self._series.clear()
        self._mtimes.clear()
        if not self.directory.exists():
            logger.debug("ICS directory %s does not exist yet", self.directory)
            return
        for path in sorted(self.directory.glob("*.ics")):
            self._load_file(path)
        logger.info(
            "Loaded %d calendars with %d events from %s",
            len(self._calendars),
            len(self._series),
            self.directory,
        )

    def poll_changes(self) -> bool:
        """Reload when any calendar file was added, removed, or rewritten.

        Returns:
            True if the store was reloaded
        """
        current = {p.stem: p.stat().st_mtime for p in self.directory.glob("*.ics")}
        if current == self._mtimes:
            return False
        logger.info("Calendar files changed on disk; reloading")
        self.reload()
        return True

    def _path_for(self, calendar_id: str) -> Path:
        return self.directory / f"{calendar_id}.ics"

    def _load_file(self, path: Path) -> None:
        calendar_id = path.stem
        try:
            cal = Calendar.from_ical(path.read_bytes())
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable calendar file %s: %s", path, exc)
            return

        self._calendars[calendar_id] = AvailableCalendar(
            id=calendar_id,
            title=str(cal.get("X-WR-CALNAME", calendar_id)),
            color=str(cal.get("X-APPLE-CALENDAR-COLOR", "#007AFF")),
            source_title=str(cal["X-FAMLISYNC-SOURCE"]) if "X-FAMLISYNC-SOURCE" in cal else None,
        )
        self._mtimes[calendar_id] = path.stat().st_mtime
        fallback_modified = datetime.fromtimestamp(path.stat().st_mtime, UTC)

        masters: dict[str, StoredSeries] = {}
        detached: list[tuple[str, datetime, CalendarEvent]] = []
        for component in cal.walk("VEVENT"):
            uid = str(component.get("UID", "")).strip()
            if not uid:
                logger.warning("Skipping VEVENT without UID in %s", path)
                continue
            try:
                event = self._event_from_component(component, uid, calendar_id, fallback_modified)
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed VEVENT %s in %s: %s", uid, path, exc)
                continue

            if "RECURRENCE-ID" in component:
                original = self._to_datetime(component.decoded("RECURRENCE-ID"))
                detached.append((uid, original, event))
                continue

            series = StoredSeries(master=event)
            for prop in _as_list(component.get("EXDATE")):
                for value in getattr(prop, "dts", []):
                    series.exdates.add(self._to_datetime(value.dt))
            masters[uid] = series

        for uid, original, event in detached:
            series = masters.get(uid)
            if series is None:
                logger.warning("Ignoring RECURRENCE-ID %s for unknown series %s", original, uid)
                continue
            series.overrides[original] = event.model_copy(
                update={"occurrence_start": original, "is_detached": True, "recurrence_rule": None}
            )

        self._series.update(masters)

    def _event_from_component(
        self, component: Any, uid: str, calendar_id: str, fallback_modified: datetime
    ) -> CalendarEvent:
        raw_start = component.decoded("DTSTART")
        is_all_day = isinstance(raw_start, date) and not isinstance(raw_start, datetime)
        start = self._to_datetime(raw_start)

        if "DTEND" in component:
            end = self._to_datetime(component.decoded("DTEND"))
        elif "DURATION" in component:
            end = start + component.decoded("DURATION")
        else:
            end = start + (timedelta(days=1) if is_all_day else timedelta(0))

        rule: Optional[RecurrenceRule] = None
        rrule_prop = _as_list(component.get("RRULE"))
        if rrule_prop:
            try:
                rule = RecurrenceRule.from_rrule(rrule_prop[0].to_ical().decode("utf-8"), strict=False)
            except InvalidRecurrenceRuleError as exc:
                logger.warning("Treating %s as a single event, unsupported RRULE: %s", uid, exc)

        if "LAST-MODIFIED" in component:
            last_modified = self._to_datetime(component.decoded("LAST-MODIFIED"))
        elif "DTSTAMP" in component:
            last_modified = self._to_datetime(component.decoded("DTSTAMP"))
        else:
            last_modified = fallback_modified

        alarms: list[int] = []
        for alarm in component.walk("VALARM"):
            trigger = alarm.decoded("TRIGGER") if "TRIGGER" in alarm else None
            if isinstance(trigger, timedelta):
                alarms.append(max(0, int(-trigger.total_seconds() // 60)))

        return CalendarEvent(
            external_id=uid,
            calendar_id=calendar_id,
            title=str(component.get("SUMMARY", "")),
            start=start,
            end=end,
            location=str(component["LOCATION"]) if "LOCATION" in component else None,
            notes=str(component["DESCRIPTION"]) if "DESCRIPTION" in component else None,
            is_all_day=is_all_day,
            recurrence_rule=rule,
            alarms=alarms,
            last_modified=last_modified,
        )

    def _to_datetime(self, value: date | datetime) -> datetime:
        if isinstance(value, datetime):
            return value if value.tzinfo is not None else value.replace(tzinfo=self._tz)
        return datetime.combine(value, time(), tzinfo=self._tz)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def add_calendar(self, calendar: AvailableCalendar) -> None:
        if not _CALENDAR_ID_RE.match(calendar.id):
            raise CalendarUnavailableError(
                f"Calendar id {calendar.id!r} is not usable as a file name", calendar_id=calendar.id
            )
        super().add_calendar(calendar)

    def remove_calendar(self, calendar_id: str) -> None:
        super().remove_calendar(calendar_id)
        self._mtimes.pop(calendar_id, None)
        try:
            self._path_for(calendar_id).unlink(missing_ok=True)
        except OSError as exc:
            raise CalendarWriteError(
                f"Failed to remove calendar file: {exc}", calendar_id=calendar_id
            ) from exc

    def _after_mutation(self, calendar_id: str) -> None:
        path = self._path_for(calendar_id)
        try:
            atomic_write_text(path, self._render_calendar(calendar_id).decode("utf-8"))
        except OSError as exc:
            logger.warning("Failed to write %s; reverting to file contents: %s", path, exc)
            self._revert_calendar(calendar_id)
            raise CalendarWriteError(f"Failed to write {path}: {exc}", calendar_id=calendar_id) from exc
        self._mtimes[calendar_id] = path.stat().st_mtime

    def _revert_calendar(self, calendar_id: str) -> None:
        for external_id in [k for k, s in self._series.items() if s.master.calendar_id == calendar_id]:
            del self._series[external_id]
        path = self._path_for(calendar_id)
        if path.exists():
            self._load_file(path)
        else:
            self._calendars.pop(calendar_id, None)

    def _render_calendar(self, calendar_id: str) -> bytes:
        info = self._calendars[calendar_id]
        cal = Calendar()
        cal.add("prodid", PRODID)
        cal.add("version", "2.0")
        cal.add("x-wr-calname", info.title)
        cal.add("x-apple-calendar-color", info.color)
        if info.source_title:
            cal.add("x-famlisync-source", info.source_title)

        for series in self._series.values():
            if series.master.calendar_id != calendar_id:
                continue
            all_day = series.master.is_all_day
            master = self._component_for(series.master)
            if series.exdates:
                master.add("exdate", [self._ical_value(d, all_day) for d in sorted(series.exdates)])
            cal.add_component(master)
            for original, override in sorted(series.overrides.items()):
                component = self._component_for(override)
                component.add("recurrence-id", self._ical_value(original, all_day))
                cal.add_component(component)
        return cal.to_ical()

    def _component_for(self, event: CalendarEvent) -> Event:
        component = Event()
        component.add("uid", event.external_id)
        component.add("summary", event.title)
        component.add("dtstart", self._ical_value(event.start, event.is_all_day))
        component.add("dtend", self._ical_value(event.end, event.is_all_day))
        stamp = (event.last_modified or self._clock()).astimezone(UTC)
        component.add("dtstamp", stamp)
        component.add("last-modified", stamp)
        if event.location:
            component.add("location", event.location)
        if event.notes:
            component.add("description", event.notes)
        if event.recurrence_rule is not None and not event.is_detached:
            component.add("rrule", vRecur.from_ical(event.recurrence_rule.to_rrule()))
        for minutes in event.alarms:
            alarm = Alarm()
            alarm.add("action", "DISPLAY")
            alarm.add("description", event.title)
            alarm.add("trigger", timedelta(minutes=-minutes))
            component.add_component(alarm)
        return component

    def _ical_value(self, value: datetime, all_day: bool) -> date | datetime:
        if all_day:
            return value.astimezone(self._tz).date()
        return value
