"""Create, update and delete events across a link group of calendar copies.

Writes are made one calendar at a time in caller order. Each registry change is
made right after the calendar write it reflects, so cancelling between two
writes never leaves a written copy without its record (or the reverse).
Per-calendar failures are collected into a ``GroupOperationResult`` rather than
raised, and nothing already written is rolled back.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from famlisync.calendar.models import CalendarEvent, CalendarScope, EventDraft, Span
from famlisync.calendar.store_adapter import CalendarStoreAdapter
from famlisync.core.logging_setup import operation_scope
from famlisync.core.timezone_utils import now_utc
from famlisync.domain.driver_deriver import DriverEventDeriver, TravelOutcome, TravelStatus
from famlisync.domain.link_registry import DriverRef, LinkedEventRecord, LinkRegistry
from famlisync.domain.notifications import LoggingNotificationSink, NotificationSink, ReminderNotice
from famlisync.exceptions import (
    CalendarStoreError,
    EventNotFoundError,
    GroupOperationError,
    GroupOperationFailedError,
    PartialGroupFailureError,
    RegistryError,
    ScopeSelectionRequiredError,
)

logger = logging.getLogger(__name__)

DEFAULT_EDIT_SKEW = timedelta(seconds=2)

UNLINKED_NOTE = "event exists in calendar but is unlinked"
STALE_LINK_NOTE = "event removed from calendar but its link record remains"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    # delete target already gone, or create target already linked
    ALREADY_SATISFIED = "alreadySatisfied"
    FAILED = "failed"
    # calendar write succeeded, registry write did not
    REGISTRY_OUT_OF_SYNC = "registryOutOfSync"
    # not attempted, e.g. siblings of a this-calendar-only edit
    SKIPPED = "skipped"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class GroupState(str, Enum):
    UNLINKED = "unlinked"
    LINKED = "linked"
    LINKED_DIVERGENT = "linkedDivergent"
    PARTIALLY_DELETED = "partiallyDeleted"
    GONE = "gone"


@dataclass
class TargetOutcome:
    """Result of one calendar write within a group operation."""

    calendar_id: str
    status: OutcomeStatus
    external_id: Optional[str] = None
    error: Optional[Exception] = None
    note: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.ALREADY_SATISFIED)

    @property
    def was_attempted(self) -> bool:
        return self.status != OutcomeStatus.SKIPPED


@dataclass(frozen=True)
class ExternalEditAdvisory:
    """A sibling copy modified outside this engine since it was last synced.

    Not an error: it is reported alongside the operation for the caller to
    disclose.
    """

    calendar_id: str
    calendar_name: str
    external_id: str
    last_modified: datetime
    last_synced_at: datetime


@dataclass
class GroupOperationResult:
    """Per-calendar outcomes of a create, update or delete."""

    operation: str
    group_id: Optional[str]
    outcomes: list[TargetOutcome] = field(default_factory=list)
    advisories: list[ExternalEditAdvisory] = field(default_factory=list)
    span: Optional[Span] = None
    travel: Optional[TravelOutcome] = None

    @property
    def attempted(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.was_attempted]

    @property
    def succeeded(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[TargetOutcome]:
        return [o for o in self.attempted if not o.ok]

    @property
    def status(self) -> ResultStatus:
        attempted = self.attempted
        ok = [o for o in attempted if o.ok]
        out_of_sync = any(o.status == OutcomeStatus.REGISTRY_OUT_OF_SYNC for o in attempted)
        if attempted and len(ok) == len(attempted):
            return ResultStatus.SUCCESS
        if ok or out_of_sync:
            # an out-of-sync copy was still written, so this is never a total failure
            return ResultStatus.PARTIAL
        return ResultStatus.FAILED

    @property
    def externally_edited_calendars(self) -> list[str]:
        return [a.calendar_name for a in self.advisories]

    @property
    def error(self) -> Optional[GroupOperationError]:
        status = self.status
        if status == ResultStatus.SUCCESS:
            return None
        message = f"{self.operation} {self.summary()}"
        if status == ResultStatus.PARTIAL:
            return PartialGroupFailureError(message, self.outcomes, group_id=self.group_id)
        return GroupOperationFailedError(message, self.outcomes, group_id=self.group_id)

    def raise_for_status(self) -> GroupOperationResult:
        error = self.error
        if error is not None:
            raise error
        return self

    def summary(self) -> str:
        """E.g. ``"succeeded in 2 of 3 calendars"``."""
        return f"succeeded in {len(self.succeeded)} of {len(self.attempted)} calendars"


@dataclass(frozen=True)
class CreateTarget:
    """A calendar to place a copy of a new event in."""

    calendar_id: str
    attendee_ids: tuple[str, ...] = ()
    is_shared_calendar: bool = False


@dataclass(frozen=True)
class DriverAssignment:
    driver: DriverRef
    travel_minutes: Optional[int] = None


@dataclass(frozen=True)
class UpdatePreview:
    """What an update would touch, for the caller to confirm before writing."""

    group_id: Optional[str]
    linked_calendar_ids: list[str]
    advisories: list[ExternalEditAdvisory]
    span: Span

    @property
    def is_linked(self) -> bool:
        return len(self.linked_calendar_ids) > 1


@dataclass(frozen=True)
class DeleteOptions:
    """Which choices a delete needs before it may proceed."""

    needs_span: bool
    needs_scope: bool
    linked_calendar_ids: list[str]


@dataclass
class _Target:
    calendar_id: str
    external_id: str
    record: Optional[LinkedEventRecord] = None


WriteGuard = Callable[[], AbstractAsyncContextManager[object]]


@contextlib.asynccontextmanager
async def _no_guard() -> AsyncIterator[None]:
    yield


class SyncCoordinator:
    """Orchestrates group writes through the store adapter and the link registry.

    Args:
        store: Calendar store adapter
        registry: Link registry
        deriver: Travel event deriver; without one, driver assignments are
            recorded but no travel events are made
        notifier: Receives reminder schedule/cancel signals
        edit_skew: Tolerance before a newer ``last_modified`` counts as an
            external edit
        clock: Source of sync timestamps
        write_guard: Factory of an async context manager held around every
            group write (the refresh controller uses it to hold back reloads)
    """

    def __init__(
        self,
        store: CalendarStoreAdapter,
        registry: LinkRegistry,
        *,
        deriver: Optional[DriverEventDeriver] = None,
        notifier: Optional[NotificationSink] = None,
        edit_skew: timedelta = DEFAULT_EDIT_SKEW,
        clock: Optional[Callable[[], datetime]] = None,
        write_guard: Optional[WriteGuard] = None,
    ):
        self.store = store
        self.registry = registry
        self.deriver = deriver
        self.notifier: NotificationSink = notifier or LoggingNotificationSink()
        self.edit_skew = edit_skew
        self._clock = clock or now_utc
        self._write_guard = write_guard or _no_guard

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        draft: EventDraft,
        targets: Sequence[CreateTarget],
        *,
        driver: Optional[DriverAssignment] = None,
        group_id: Optional[str] = None,
    ) -> GroupOperationResult:
        """Create one copy of ``draft`` per target calendar under a shared group id.

        A recurrence rule on the draft is attached to each copy, so every
        calendar owns its own series. Failed targets do not stop the remaining
        ones and successful copies are not rolled back.

        Raises:
            InvalidRecurrenceRuleError: before any write, if the rule is malformed
        """
        rule = draft.recurrence_rule
        if rule is not None:
            rule.validate_rule()

        group_id = group_id or uuid.uuid4().hex
        result = GroupOperationResult("create", group_id)
        existing = {r.calendar_id for r in self.registry.get(group_id)}

        with operation_scope("create"):
            async with self._write_guard():
                seen: set[str] = set()
                for target in targets:
                    if target.calendar_id in seen or target.calendar_id in existing:
                        result.outcomes.append(
                            TargetOutcome(
                                target.calendar_id,
                                OutcomeStatus.ALREADY_SATISFIED,
                                note="calendar already has a copy in this group",
                            )
                        )
                        continue
                    seen.add(target.calendar_id)
                    result.outcomes.append(await self._create_copy(draft, target, group_id))

                primary = next((o for o in result.outcomes if o.status == OutcomeStatus.SUCCEEDED), None)
                if driver is not None and primary is not None:
                    result.travel = await self._apply_driver(group_id, primary, driver)

            self._log_result(result)
        return result

    async def _create_copy(
        self, draft: EventDraft, target: CreateTarget, group_id: str
    ) -> TargetOutcome:
        try:
            if draft.recurrence_rule is not None:
                created = await self.store.create_recurring_event(
                    target.calendar_id, draft, draft.recurrence_rule
                )
            else:
                created = await self.store.create_event(target.calendar_id, draft)
        except CalendarStoreError as exc:
            logger.warning("Create failed in calendar %s: %s", target.calendar_id, exc)
            return TargetOutcome(target.calendar_id, OutcomeStatus.FAILED, error=exc)

        logger.info("Created %s in calendar %s", created.external_id, target.calendar_id)
        record = LinkedEventRecord(
            group_id=group_id,
            calendar_id=target.calendar_id,
            external_event_id=created.external_id,
            last_synced_at=self._synced_at(created),
            is_shared_calendar_copy=target.is_shared_calendar,
            attendee_ids=list(target.attendee_ids),
        )
        try:
            self.registry.add_to_group(record)
        except RegistryError as exc:
            logger.warning(
                "Calendar %s has %s but linking failed: %s", target.calendar_id, created.external_id, exc
            )
            return TargetOutcome(
                target.calendar_id,
                OutcomeStatus.REGISTRY_OUT_OF_SYNC,
                created.external_id,
                error=exc,
                note=UNLINKED_NOTE,
            )

        self._notify_scheduled(created, target.attendee_ids)
        return TargetOutcome(target.calendar_id, OutcomeStatus.SUCCEEDED, created.external_id)

    async def _apply_driver(
        self, group_id: str, primary: TargetOutcome, driver: DriverAssignment
    ) -> Optional[TravelOutcome]:
        if self.deriver is None:
            try:
                self.registry.update_group(
                    group_id, driver_ref=driver.driver, driver_travel_minutes=driver.travel_minutes
                )
            except RegistryError as exc:
                logger.warning("Failed to record driver for group %s: %s", group_id, exc)
            return None
        assert primary.external_id is not None
        event = await self.store.find_event(primary.external_id)
        if event is None:
            return None
        return await self.deriver.assign_driver(group_id, event, driver.driver, driver.travel_minutes)

    # ------------------------------------------------------------------
    # External edits
    # ------------------------------------------------------------------

    async def detect_external_edits(
        self, group_id: str, *, exclude_record_id: Optional[str] = None
    ) -> list[ExternalEditAdvisory]:
        """Sibling copies whose ``last_modified`` is past their last sync plus the skew.

        Store errors while checking are logged and the copy is skipped; the
        check never blocks an operation.
        """
        names = await self._calendar_names()
        advisories: list[ExternalEditAdvisory] = []
        for record in self.registry.get(group_id):
            if record.id == exclude_record_id:
                continue
            try:
                modified = await self.store.last_modified(record.external_event_id)
            except CalendarStoreError as exc:
                logger.warning("Could not read last-modified for %s: %s", record.external_event_id, exc)
                continue
            if modified is not None and modified > record.last_synced_at + self.edit_skew:
                logger.info(
                    "Calendar %s copy %s was edited externally",
                    record.calendar_id,
                    record.external_event_id,
                )
                advisories.append(
                    ExternalEditAdvisory(
                        calendar_id=record.calendar_id,
                        calendar_name=names.get(record.calendar_id, record.calendar_id),
                        external_id=record.external_event_id,
                        last_modified=modified,
                        last_synced_at=record.last_synced_at,
                    )
                )
        return advisories

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def resolve_update_span(self, event: CalendarEvent, *, rule_changed: bool) -> Span:
        """``THIS_EVENT`` unless the rule changed or the store cannot edit one occurrence."""
        if rule_changed:
            return Span.FUTURE_EVENTS
        if event.has_recurrence and not self.store.supports_occurrence_overrides:
            return Span.FUTURE_EVENTS
        return Span.THIS_EVENT

    async def preview_update(
        self,
        external_id: str,
        calendar_id: str,
        draft: EventDraft,
        *,
        occurrence_start: Optional[datetime] = None,
    ) -> UpdatePreview:
        """Report the span and any externally edited siblings before an update."""
        current = await self.store.find_event(external_id, occurrence_start)
        if current is None:
            raise EventNotFoundError(external_id, calendar_id=calendar_id)
        span = self.resolve_update_span(
            current, rule_changed=self._rule_changed(current, draft)
        )
        record = self.registry.get_by_external_id(calendar_id, external_id)
        if record is None:
            return UpdatePreview(None, [calendar_id], [], span)
        records = self.registry.get(record.group_id)
        advisories = await self.detect_external_edits(record.group_id, exclude_record_id=record.id)
        return UpdatePreview(record.group_id, [r.calendar_id for r in records], advisories, span)

    async def update(
        self,
        external_id: str,
        calendar_id: str,
        draft: EventDraft,
        *,
        scope: CalendarScope = CalendarScope.ALL_LINKED,
        span: Optional[Span] = None,
        occurrence_start: Optional[datetime] = None,
    ) -> GroupOperationResult:
        """Write ``draft`` to the addressed copy and, for ``ALL_LINKED``, its siblings.

        Externally edited siblings are reported as advisories; they are still
        written when the scope includes them. ``last_synced_at`` moves only on
        copies actually written.

        Raises:
            InvalidRecurrenceRuleError: before any write, if the rule is malformed
        """
        if draft.recurrence_rule is not None:
            draft.recurrence_rule.validate_rule()

        with operation_scope("update"):
            current = await self.store.find_event(external_id, occurrence_start)
            record = self.registry.get_by_external_id(calendar_id, external_id)
            group_id = record.group_id if record else None
            result = GroupOperationResult("update", group_id)

            if current is None:
                logger.warning("Update target %s not found in %s", external_id, calendar_id)
                result.outcomes.append(
                    TargetOutcome(
                        calendar_id,
                        OutcomeStatus.FAILED,
                        external_id,
                        error=EventNotFoundError(external_id, calendar_id=calendar_id),
                    )
                )
                self._log_result(result)
                return result

            rule_changed = self._rule_changed(current, draft)
            resolved_span = span or self.resolve_update_span(current, rule_changed=rule_changed)
            result.span = resolved_span

            targets = [_Target(calendar_id, external_id, record)]
            skipped: list[TargetOutcome] = []
            if record is not None:
                siblings = [r for r in self.registry.get(record.group_id) if r.id != record.id]
                if siblings:
                    result.advisories = await self.detect_external_edits(
                        record.group_id, exclude_record_id=record.id
                    )
                for sibling in siblings:
                    if scope == CalendarScope.ALL_LINKED:
                        targets.append(_Target(sibling.calendar_id, sibling.external_event_id, sibling))
                    else:
                        skipped.append(
                            TargetOutcome(
                                sibling.calendar_id,
                                OutcomeStatus.SKIPPED,
                                sibling.external_event_id,
                                note="this calendar only",
                            )
                        )

            async with self._write_guard():
                written: list[CalendarEvent] = []
                for target in targets:
                    outcome, updated = await self._update_copy(
                        target, draft, resolved_span, occurrence_start
                    )
                    result.outcomes.append(outcome)
                    if updated is not None:
                        written.append(updated)
                result.outcomes.extend(skipped)

                if record is not None and written and self.deriver is not None:
                    if draft.start != current.start or current.title != draft.title:
                        result.travel = await self.deriver.sync_group(record.group_id, written[0])

            self._log_result(result)
        return result

    async def _update_copy(
        self,
        target: _Target,
        draft: EventDraft,
        span: Span,
        occurrence_start: Optional[datetime],
    ) -> tuple[TargetOutcome, Optional[CalendarEvent]]:
        try:
            updated = await self.store.update_event(
                target.external_id, draft, span=span, occurrence_start=occurrence_start
            )
        except CalendarStoreError as exc:
            logger.warning("Update failed in calendar %s: %s", target.calendar_id, exc)
            return TargetOutcome(target.calendar_id, OutcomeStatus.FAILED, target.external_id, error=exc), None

        logger.info("Updated %s in calendar %s", updated.external_id, target.calendar_id)
        if target.record is not None:
            try:
                self.registry.upsert(
                    target.record.model_copy(
                        update={
                            "external_event_id": updated.external_id,
                            "last_synced_at": self._synced_at(updated),
                        }
                    )
                )
            except RegistryError as exc:
                logger.warning("Calendar %s updated but link not refreshed: %s", target.calendar_id, exc)
                return (
                    TargetOutcome(
                        target.calendar_id,
                        OutcomeStatus.REGISTRY_OUT_OF_SYNC,
                        updated.external_id,
                        error=exc,
                        note=UNLINKED_NOTE,
                    ),
                    updated,
                )

        attendees = tuple(target.record.attendee_ids) if target.record else ()
        self._notify_scheduled(updated, attendees)
        return TargetOutcome(target.calendar_id, OutcomeStatus.SUCCEEDED, updated.external_id), updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_options(
        self, external_id: str, calendar_id: str
    ) -> DeleteOptions:
        """Which of span and scope the caller must choose before deleting."""
        event = await self.store.find_event(external_id)
        record = self.registry.get_by_external_id(calendar_id, external_id)
        linked = [r.calendar_id for r in self.registry.get(record.group_id)] if record else [calendar_id]
        return DeleteOptions(
            needs_span=event is not None and event.has_recurrence,
            needs_scope=len(linked) > 1,
            linked_calendar_ids=linked,
        )

    async def delete(
        self,
        external_id: str,
        calendar_id: str,
        *,
        span: Optional[Span] = None,
        scope: Optional[CalendarScope] = None,
        occurrence_start: Optional[datetime] = None,
    ) -> GroupOperationResult:
        """Delete the addressed copy, or every copy of its group.

        Copies that are already gone count as satisfied, so repeating a delete
        succeeds. The overall result fails only when no copy was removed or
        already gone.

        Raises:
            ScopeSelectionRequiredError: a recurring event without ``span`` or a
                linked event without ``scope``
            ValueError: a single-occurrence delete without ``occurrence_start``
        """
        options = await self.delete_options(external_id, calendar_id)
        needs_span = options.needs_span and span is None
        needs_scope = options.needs_scope and scope is None
        if needs_span or needs_scope:
            raise ScopeSelectionRequiredError(needs_span=needs_span, needs_scope=needs_scope)

        span = span or Span.THIS_EVENT
        if options.needs_span and occurrence_start is None and span == Span.THIS_EVENT:
            raise ValueError("occurrence_start is required to delete a single occurrence")

        record = self.registry.get_by_external_id(calendar_id, external_id)
        group_id = record.group_id if record else None
        result = GroupOperationResult("delete", group_id, span=span)

        targets = [_Target(calendar_id, external_id, record)]
        if record is not None and scope == CalendarScope.ALL_LINKED:
            targets += [
                _Target(r.calendar_id, r.external_event_id, r)
                for r in self.registry.get(record.group_id)
                if r.id != record.id
            ]

        with operation_scope("delete"):
            async with self._write_guard():
                for target in targets:
                    result.outcomes.append(await self._delete_copy(target, span, occurrence_start))

                if group_id is not None and self.deriver is not None and not self.registry.get(group_id):
                    travel_id = record.travel_event_external_id if record else None
                    if travel_id:
                        result.travel = await self._remove_orphan_travel(travel_id)

            self._log_result(result)
        return result

    async def _delete_copy(
        self, target: _Target, span: Span, occurrence_start: Optional[datetime]
    ) -> TargetOutcome:
        try:
            copy_gone = await self.store.delete_event(
                target.external_id, span=span, occurrence_start=occurrence_start
            )
            status = OutcomeStatus.SUCCEEDED
            logger.info("Deleted %s from calendar %s", target.external_id, target.calendar_id)
        except EventNotFoundError:
            status = OutcomeStatus.ALREADY_SATISFIED
            copy_gone = await self._is_gone(target.external_id)
            logger.info("%s already gone from calendar %s", target.external_id, target.calendar_id)
        except CalendarStoreError as exc:
            logger.warning("Delete failed in calendar %s: %s", target.calendar_id, exc)
            return TargetOutcome(target.calendar_id, OutcomeStatus.FAILED, target.external_id, error=exc)

        self._notify_cancelled(target.external_id, None if copy_gone else occurrence_start)

        if target.record is None:
            return TargetOutcome(target.calendar_id, status, target.external_id)

        try:
            if copy_gone:
                self.registry.delete(target.record)
            else:
                synced = await self.store.last_modified(target.external_id)
                self.registry.upsert(
                    target.record.model_copy(update={"last_synced_at": synced or self._clock()})
                )
        except (RegistryError, CalendarStoreError) as exc:
            logger.warning("Calendar %s copy removed but link not updated: %s", target.calendar_id, exc)
            if copy_gone:
                try:
                    self.registry.mark_orphaned(target.record)
                except RegistryError:
                    logger.exception("Could not mark link record %s orphaned", target.record.id)
            return TargetOutcome(
                target.calendar_id,
                OutcomeStatus.REGISTRY_OUT_OF_SYNC,
                target.external_id,
                error=exc,
                note=STALE_LINK_NOTE,
            )
        return TargetOutcome(target.calendar_id, status, target.external_id)

    async def _is_gone(self, external_id: str) -> bool:
        try:
            return await self.store.find_event(external_id) is None
        except CalendarStoreError:
            return False

    async def _remove_orphan_travel(self, travel_id: str) -> TravelOutcome:
        try:
            await self.store.delete_event(travel_id, span=Span.THIS_EVENT)
        except EventNotFoundError:
            pass
        except CalendarStoreError as exc:
            logger.warning("Travel event %s left behind: %s", travel_id, exc)
            return TravelOutcome(TravelStatus.FAILED, travel_id, error=exc)
        logger.info("Removed travel event %s with its group", travel_id)
        return TravelOutcome(TravelStatus.REMOVED, travel_id)

    # ------------------------------------------------------------------
    # Group state
    # ------------------------------------------------------------------

    async def group_state(self, group_id: str) -> GroupState:
        records = self.registry.get(group_id)
        if not records:
            return GroupState.GONE
        if len(records) < max(r.group_size for r in records):
            return GroupState.PARTIALLY_DELETED
        if len(records) == 1:
            return GroupState.UNLINKED
        if await self.detect_external_edits(group_id):
            return GroupState.LINKED_DIVERGENT
        return GroupState.LINKED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _synced_at(self, event: CalendarEvent) -> datetime:
        return event.last_modified or self._clock()

    @staticmethod
    def _rule_changed(current: CalendarEvent, draft: EventDraft) -> bool:
        if current.is_detached:
            return False
        return current.recurrence_rule != draft.recurrence_rule

    async def _calendar_names(self) -> dict[str, str]:
        try:
            calendars = await self.store.list_calendars()
        except CalendarStoreError as exc:
            logger.warning("Could not list calendars: %s", exc)
            return {}
        return {c.id: c.title for c in calendars}

    def _notify_scheduled(self, event: CalendarEvent, attendee_ids: Sequence[str]) -> None:
        notice = ReminderNotice(
            external_id=event.external_id,
            calendar_id=event.calendar_id,
            title=event.title,
            start=event.start,
            alert_offsets_minutes=tuple(event.alarms),
            occurrence_start=event.occurrence_start,
            attendee_ids=tuple(attendee_ids),
        )
        try:
            self.notifier.occurrence_scheduled(notice)
        except Exception:
            logger.exception("Notification sink failed for %s", event.external_id)

    def _notify_cancelled(self, external_id: str, occurrence_start: Optional[datetime]) -> None:
        try:
            self.notifier.occurrence_cancelled(external_id, occurrence_start)
        except Exception:
            logger.exception("Notification sink failed cancelling %s", external_id)

    @staticmethod
    def _log_result(result: GroupOperationResult) -> None:
        if result.status == ResultStatus.SUCCESS:
            logger.info("Group %s %s %s", result.group_id, result.operation, result.summary())
        else:
            logger.warning(
                "Group %s %s %s; failed: %s",
                result.group_id,
                result.operation,
                result.summary(),
                ", ".join(o.calendar_id for o in result.failed) or "none",
            )
