"""Data models for calendar store events and recurrence rules."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from famlisync.exceptions import InvalidRecurrenceRuleError

logger = logging.getLogger(__name__)


class RecurrenceFrequency(str, Enum):
    """Supported recurrence frequencies."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RepeatOption(str, Enum):
    """Quick repeat presets offered when creating an event."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AlertOption(str, Enum):
    """Alert presets mapped to alarm offsets."""

    NONE = "none"
    AT_TIME = "atTime"
    FIFTEEN_MINUTES_BEFORE = "fifteenMinutesBefore"
    ONE_HOUR_BEFORE = "oneHourBefore"
    ONE_DAY_BEFORE = "oneDayBefore"

    @property
    def offset_minutes(self) -> Optional[int]:
        """Minutes before the event start, or None when no alarm is wanted."""
        return _ALERT_OFFSETS[self]


_ALERT_OFFSETS: dict[AlertOption, Optional[int]] = {
    AlertOption.NONE: None,
    AlertOption.AT_TIME: 0,
    AlertOption.FIFTEEN_MINUTES_BEFORE: 15,
    AlertOption.ONE_HOUR_BEFORE: 60,
    AlertOption.ONE_DAY_BEFORE: 24 * 60,
}


class Span(str, Enum):
    """Temporal span of an edit or delete on a recurring series."""

    THIS_EVENT = "thisEvent"
    FUTURE_EVENTS = "futureEvents"


class CalendarScope(str, Enum):
    """Calendar breadth of an edit or delete on a link group."""

    SINGLE_CALENDAR = "singleCalendar"
    ALL_LINKED = "allLinked"


def _require_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return value


class RecurrenceRule(BaseModel):
    """FREQ/INTERVAL recurrence with an optional COUNT or UNTIL end.

    Validation of interval and end exclusivity is done by the recurrence engine
    so that malformed rules surface as InvalidRecurrenceRuleError.
    """

    model_config = ConfigDict(frozen=True)

    frequency: RecurrenceFrequency
    interval: int = Field(default=1, description="Step between occurrences in frequency units")
    count: Optional[int] = Field(default=None, description="Total occurrences including the first")
    until: Optional[datetime] = Field(default=None, description="Inclusive last occurrence bound")

    @field_validator("until")
    @classmethod
    def _aware_until(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _require_aware(value)

    def validate_rule(self) -> None:
        """Raise InvalidRecurrenceRuleError if the rule cannot be expanded."""
        if self.interval < 1:
            raise InvalidRecurrenceRuleError(f"interval must be >= 1, got {self.interval}")
        if self.count is not None and self.until is not None:
            raise InvalidRecurrenceRuleError("COUNT and UNTIL are mutually exclusive")
        if self.count is not None and self.count < 1:
            raise InvalidRecurrenceRuleError(f"count must be >= 1, got {self.count}")

    @classmethod
    def for_repeat_option(cls, option: RepeatOption) -> Optional[RecurrenceRule]:
        """Map a quick repeat preset to a rule (None for no repeat)."""
        if option == RepeatOption.NONE:
            return None
        return cls(frequency=RecurrenceFrequency(option.value))

    def to_rrule(self) -> str:
        """Render as an RFC 5545 RRULE value, e.g. ``FREQ=WEEKLY;INTERVAL=2;COUNT=3``."""
        self.validate_rule()
        parts = [f"FREQ={self.frequency.value.upper()}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append(f"UNTIL={self.until.astimezone(UTC):%Y%m%dT%H%M%SZ}")
        return ";".join(parts)

    @classmethod
    def from_rrule(cls, text: str, *, strict: bool = True) -> RecurrenceRule:
        """Parse an RRULE value (with or without the ``RRULE:`` prefix).

        Only FREQ, INTERVAL, COUNT and UNTIL are understood. Other parts raise
        in strict mode; in lenient mode they are dropped with a warning so that
        foreign calendar files still load as the closest supported rule.

        Raises:
            InvalidRecurrenceRuleError: on empty input, missing or unsupported
                FREQ, non-numeric values, or unsupported parts in strict mode
        """
        value = (text or "").strip()
        if value.upper().startswith("RRULE:"):
            value = value[len("RRULE:") :]
        if not value:
            raise InvalidRecurrenceRuleError("empty RRULE")

        fields: dict[str, str] = {}
        for part in value.split(";"):
            if not part:
                continue
            if "=" not in part:
                raise InvalidRecurrenceRuleError(f"malformed RRULE part {part!r}")
            key, raw = part.split("=", 1)
            fields[key.strip().upper()] = raw.strip()

        freq = fields.pop("FREQ", "").lower()
        if not freq:
            raise InvalidRecurrenceRuleError(f"RRULE has no FREQ: {text!r}")
        try:
            frequency = RecurrenceFrequency(freq)
        except ValueError as exc:
            raise InvalidRecurrenceRuleError(f"unsupported FREQ {freq.upper()!r}") from exc

        try:
            interval = int(fields.pop("INTERVAL", "1"))
            count = int(fields["COUNT"]) if "COUNT" in fields else None
        except ValueError as exc:
            raise InvalidRecurrenceRuleError(f"non-numeric value in RRULE {text!r}") from exc
        fields.pop("COUNT", None)

        until = _parse_rrule_until(fields.pop("UNTIL")) if "UNTIL" in fields else None

        # WKST does not change FREQ/INTERVAL expansion
        fields.pop("WKST", None)
        if fields:
            unsupported = ", ".join(sorted(fields))
            if strict:
                raise InvalidRecurrenceRuleError(f"unsupported RRULE parts: {unsupported}")
            logger.warning("Dropping unsupported RRULE parts %s from %r", unsupported, text)

        rule = cls(frequency=frequency, interval=interval, count=count, until=until)
        rule.validate_rule()
        return rule

    def summary(self, anchor: datetime) -> str:
        """Human readable description, e.g. ``"Every 2 weeks on Mon • Ends after 3 times"``."""
        unit = _FREQUENCY_UNITS[self.frequency]
        every = f"Every {unit}" if self.interval == 1 else f"Every {self.interval} {unit}s"

        if self.frequency == RecurrenceFrequency.WEEKLY:
            every += f" on {anchor:%a}"
        elif self.frequency == RecurrenceFrequency.MONTHLY:
            every += f" on day {anchor.day}"
        elif self.frequency == RecurrenceFrequency.YEARLY:
            every += f" on {anchor:%B} {anchor.day}"

        if self.count is not None:
            ends = "Ends after 1 time" if self.count == 1 else f"Ends after {self.count} times"
        elif self.until is not None:
            until = self.until.astimezone(anchor.tzinfo) if anchor.tzinfo else self.until
            ends = f"Ends {until:%b} {until.day}, {until.year}"
        else:
            ends = "Never ends"
        return f"{every} • {ends}"


_FREQUENCY_UNITS = {
    RecurrenceFrequency.DAILY: "day",
    RecurrenceFrequency.WEEKLY: "week",
    RecurrenceFrequency.MONTHLY: "month",
    RecurrenceFrequency.YEARLY: "year",
}


def _parse_rrule_until(raw: str) -> datetime:
    """Parse an UNTIL value; date-only values cover the whole day in UTC."""
    try:
        if len(raw) == 8:
            day = datetime.strptime(raw, "%Y%m%d")
            return day.replace(hour=23, minute=59, second=59, tzinfo=UTC)
        parsed = date_parser.isoparse(raw)
    except ValueError as exc:
        raise InvalidRecurrenceRuleError(f"invalid UNTIL {raw!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class AvailableCalendar(BaseModel):
    """A calendar exposed by the external store."""

    id: str = Field(..., description="Store calendar identifier")
    title: str = Field(..., description="Display name")
    color: str = Field(default="#007AFF", description="Hex color")
    source_title: Optional[str] = Field(default=None, description="Account name, e.g. iCloud")
    allows_modifications: bool = True


class EventDraft(BaseModel):
    """Field values to write when creating or updating an event.

    ``recurrence_rule`` is only applied by updates whose span covers the series;
    creation takes the rule as a separate argument.
    """

    title: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    notes: Optional[str] = None
    is_all_day: bool = False
    recurrence_rule: Optional[RecurrenceRule] = None
    alarms: list[int] = Field(default_factory=list, description="Alarm offsets in minutes before start")

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("start", "end")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _require_aware(value)  # type: ignore[return-value]

    @field_validator("location", "notes")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_window(self) -> EventDraft:
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @classmethod
    def from_event(cls, event: CalendarEvent) -> EventDraft:
        """Build a draft carrying an existing event's current values."""
        return cls(
            title=event.title,
            start=event.start,
            end=event.end,
            location=event.location,
            notes=event.notes,
            is_all_day=event.is_all_day,
            recurrence_rule=event.recurrence_rule,
            alarms=list(event.alarms),
        )


class CalendarEvent(BaseModel):
    """An event (or one occurrence of a series) as held by the external store.

    For occurrences of a recurring series ``external_id`` is the series id and
    ``occurrence_start`` is the original start of the occurrence, which stays
    stable even when the occurrence has been moved.
    """

    external_id: str = Field(..., description="Store event identifier")
    calendar_id: str = Field(..., description="Owning calendar")
    title: str
    start: datetime
    end: datetime
    location: Optional[str] = None
    notes: Optional[str] = None
    is_all_day: bool = False
    recurrence_rule: Optional[RecurrenceRule] = None
    alarms: list[int] = Field(default_factory=list)
    last_modified: Optional[datetime] = None

    occurrence_start: Optional[datetime] = Field(
        default=None, description="Original start when this is one occurrence of a series"
    )
    is_detached: bool = Field(default=False, description="Occurrence edited apart from its series")

    @field_validator("start", "end", "last_modified", "occurrence_start")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _require_aware(value)

    @property
    def has_recurrence(self) -> bool:
        return self.recurrence_rule is not None or self.is_detached

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @field_serializer("start", "end")
    def serialize_datetime(self, dt: datetime) -> str:
        return dt.isoformat()
