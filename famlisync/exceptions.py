"""Exception hierarchy for famlisync.

Recurrence and grouping code raise only on malformed input. Calendar store
adapters raise the ``CalendarStoreError`` family; the sync coordinator catches
those per target and folds them into a ``GroupOperationResult`` instead of
propagating, so that partial success is never thrown away.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from famlisync.domain.sync_coordinator import TargetOutcome


class FamliSyncError(Exception):
    """Base exception for all famlisync errors."""


class InvalidRecurrenceRuleError(FamliSyncError, ValueError):
    """Recurrence input is malformed.

    Raised when:
    - interval is lower than 1
    - both COUNT and UNTIL are given
    - an RRULE string is empty, has no FREQ, or uses unsupported parts

    Always raised before any calendar write is attempted.
    """


class CalendarStoreError(FamliSyncError):
    """Base exception for calendar store adapter failures."""

    retryable: bool = False

    def __init__(self, message: str, *, calendar_id: str | None = None) -> None:
        super().__init__(message)
        self.calendar_id = calendar_id


class CalendarUnavailableError(CalendarStoreError):
    """Target calendar id no longer resolves in the store. Not retryable."""


class CalendarWriteError(CalendarStoreError):
    """Transient store failure. The caller may retry the same operation."""

    retryable = True


class EventNotFoundError(CalendarStoreError):
    """The addressed event or occurrence does not exist in the store."""

    def __init__(
        self, external_id: str, *, calendar_id: str | None = None, message: str | None = None
    ) -> None:
        super().__init__(message or f"Event {external_id!r} not found", calendar_id=calendar_id)
        self.external_id = external_id


class RegistryError(FamliSyncError):
    """Link registry or family directory could not be read or persisted."""


class ScopeSelectionRequiredError(FamliSyncError):
    """A destructive operation needs an explicit span and/or calendar scope.

    Attributes:
        needs_span: a recurring event was addressed without a temporal span
        needs_scope: a linked group was addressed without a calendar scope
    """

    def __init__(self, *, needs_span: bool, needs_scope: bool) -> None:
        missing = [name for name, flag in (("span", needs_span), ("scope", needs_scope)) if flag]
        super().__init__(f"Explicit {' and '.join(missing)} selection required")
        self.needs_span = needs_span
        self.needs_scope = needs_scope


class GroupOperationError(FamliSyncError):
    """Base for aggregate errors over a link group. Always carries per-target outcomes."""

    def __init__(self, message: str, outcomes: list[TargetOutcome], **context: Any) -> None:
        super().__init__(message)
        self.outcomes = list(outcomes)
        self.context = context

    @property
    def failed_calendar_ids(self) -> list[str]:
        return [o.calendar_id for o in self.outcomes if o.was_attempted and not o.ok]

    @property
    def succeeded_calendar_ids(self) -> list[str]:
        return [o.calendar_id for o in self.outcomes if o.ok]


class PartialGroupFailureError(GroupOperationError):
    """Some calendar targets succeeded and some failed."""


class GroupOperationFailedError(GroupOperationError):
    """No calendar target succeeded."""
