"""Bounded, deterministic expansion of FREQ/INTERVAL recurrence rules."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from famlisync.calendar.models import RecurrenceFrequency, RecurrenceRule
from famlisync.exceptions import InvalidRecurrenceRuleError

logger = logging.getLogger(__name__)

# Hard bound on how far past the anchor (or the query start) an expansion may reach
SAFETY_HORIZON_DAYS = 365

_NO_LIMIT = 10_000


def occurrence_offset(rule: RecurrenceRule, index: int) -> relativedelta:
    """Calendar-aware offset of occurrence ``index`` from the anchor.

    Offsets are always taken from the anchor rather than from the previous
    occurrence, so a series anchored on the 31st lands on the last day of
    shorter months without drifting to the 28th afterwards.
    """
    step = rule.interval * index
    if rule.frequency == RecurrenceFrequency.DAILY:
        return relativedelta(days=step)
    if rule.frequency == RecurrenceFrequency.WEEKLY:
        return relativedelta(weeks=step)
    if rule.frequency == RecurrenceFrequency.MONTHLY:
        return relativedelta(months=step)
    return relativedelta(years=step)


def truncate_rule(
    rule: RecurrenceRule, anchor_start: datetime, boundary: datetime
) -> Optional[RecurrenceRule]:
    """Return a copy of ``rule`` whose occurrences all start before ``boundary``.

    COUNT rules keep COUNT (reduced to the occurrences before the boundary);
    open-ended and UNTIL rules get UNTIL just before the boundary.

    Returns:
        The truncated rule, or None when no occurrence precedes the boundary
    """
    rule.validate_rule()
    if boundary <= anchor_start:
        return None
    if rule.count is not None:
        horizon = (boundary - anchor_start).days + 2
        engine = RecurrenceEngine(horizon_days=horizon)
        before = engine.expand(
            rule,
            anchor_start,
            anchor_start - timedelta(microseconds=1),
            limit=rule.count,
            stop_before=boundary,
        )
        return rule.model_copy(update={"count": len(before)}) if before else None

    until = boundary - timedelta(seconds=1)
    if rule.until is not None and rule.until < until:
        until = rule.until
    return rule.model_copy(update={"until": until})


class RecurrenceEngine:
    """Expands recurrence rules into ordered occurrence start times.

    Pure and deterministic: output depends only on the arguments, never on the
    wall clock. Every expansion is bounded by ``limit`` and by the safety
    horizon, so it terminates for open-ended rules.
    """

    def __init__(self, horizon_days: int = SAFETY_HORIZON_DAYS):
        if horizon_days < 1:
            raise ValueError("horizon_days must be >= 1")
        self.horizon_days = horizon_days

    def expand(
        self,
        rule: RecurrenceRule,
        anchor_start: datetime,
        from_exclusive: datetime,
        limit: int,
        stop_before: Optional[datetime] = None,
        *,
        duration: Optional[timedelta] = None,
    ) -> list[datetime]:
        """Expand ``rule`` anchored at ``anchor_start``.

        Occurrence 0 is the anchor itself. COUNT includes the anchor, UNTIL is
        inclusive.

        Args:
            rule: Rule to expand
            anchor_start: Start of the first occurrence of the series
            from_exclusive: Only occurrences strictly after this are returned
            limit: Maximum number of occurrences returned
            stop_before: Optional exclusive upper bound on occurrence starts
            duration: When given with ``stop_before``, occurrences whose end
                would pass ``stop_before`` are dropped as well

        Returns:
            Strictly increasing occurrence start times

        Raises:
            InvalidRecurrenceRuleError: if the rule or limit is malformed
        """
        rule.validate_rule()
        if limit < 0:
            raise InvalidRecurrenceRuleError(f"limit must be >= 0, got {limit}")
        if limit == 0:
            return []

        horizon_end = max(anchor_start, from_exclusive) + timedelta(days=self.horizon_days)
        bound = horizon_end if stop_before is None else min(stop_before, horizon_end)

        occurrences: list[datetime] = []
        index = self._first_candidate_index(rule, anchor_start, from_exclusive)
        while len(occurrences) < limit:
            if rule.count is not None and index >= rule.count:
                break
            occurrence = anchor_start + occurrence_offset(rule, index)
            if rule.until is not None and occurrence > rule.until:
                break
            if occurrence >= bound:
                break
            if (
                duration is not None
                and stop_before is not None
                and occurrence + duration > stop_before
            ):
                break
            if occurrence > from_exclusive:
                occurrences.append(occurrence)
            index += 1

        return occurrences

    def occurrences_between(
        self,
        rule: RecurrenceRule,
        anchor_start: datetime,
        duration: timedelta,
        window_start: datetime,
        window_end: datetime,
    ) -> list[datetime]:
        """Occurrence starts whose ``[start, start + duration)`` overlaps the window.

        Zero-length occurrences count as overlapping when they start inside it.
        The horizon is widened to cover the requested window.
        """
        if window_end <= window_start:
            return []
        # Occurrences that started before the window but are still running overlap it
        if duration > timedelta(0):
            from_exclusive = window_start - duration
        else:
            from_exclusive = window_start - timedelta(microseconds=1)
        reach = (window_end - min(anchor_start, from_exclusive)).days + 2
        engine = self if reach <= self.horizon_days else RecurrenceEngine(horizon_days=reach)
        return engine.expand(rule, anchor_start, from_exclusive, _NO_LIMIT, stop_before=window_end)

    def is_occurrence(self, rule: RecurrenceRule, anchor_start: datetime, candidate: datetime) -> bool:
        """Whether ``candidate`` is exactly one of the series' occurrence starts."""
        if candidate < anchor_start:
            return False
        reach = (candidate - anchor_start).days + 2
        engine = self if reach <= self.horizon_days else RecurrenceEngine(horizon_days=reach)
        found = engine.expand(rule, anchor_start, candidate - timedelta(microseconds=1), limit=1)
        return bool(found) and found[0] == candidate

    @staticmethod
    def _first_candidate_index(
        rule: RecurrenceRule, anchor_start: datetime, from_exclusive: datetime
    ) -> int:
        """Index to start scanning from, skipping whole periods before ``from_exclusive``.

        Always lands at or before the first wanted occurrence; the scan in
        ``expand`` filters the remainder.
        """
        if from_exclusive <= anchor_start:
            return 0
        if rule.frequency in (RecurrenceFrequency.DAILY, RecurrenceFrequency.WEEKLY):
            unit_days = 1 if rule.frequency == RecurrenceFrequency.DAILY else 7
            elapsed = (from_exclusive - anchor_start).days
            index = elapsed // (unit_days * rule.interval)
        else:
            months = (from_exclusive.year - anchor_start.year) * 12 + (
                from_exclusive.month - anchor_start.month
            )
            unit_months = 1 if rule.frequency == RecurrenceFrequency.MONTHLY else 12
            index = months // (unit_months * rule.interval)
        return max(0, index - 1)
