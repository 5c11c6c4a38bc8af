"""JSON-backed registry of linked event copies.

A link group is the set of calendar copies that represent the same logical
event. The registry records one ``LinkedEventRecord`` per copy and indexes them
by group id and by external event id.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from famlisync.core.json_store import atomic_write_json, read_json_object
from famlisync.core.timezone_utils import now_utc
from famlisync.exceptions import RegistryError

logger = logging.getLogger(__name__)

REGISTRY_FORMAT_VERSION = 1


class DriverKind(str, Enum):
    """Who drives: a standalone driver or a family member."""

    DRIVER = "driver"
    FAMILY_MEMBER = "familyMember"


class DriverRef(BaseModel):
    """Reference to a driver in the family directory."""

    model_config = ConfigDict(frozen=True)

    kind: DriverKind
    id: str


class LinkedEventRecord(BaseModel):
    """One calendar copy of a linked event."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Record identifier")
    group_id: str = Field(..., description="Shared by all copies of the same logical event")
    calendar_id: str
    external_event_id: str = Field(..., description="Event id in the calendar store")
    driver_ref: Optional[DriverRef] = None
    driver_travel_minutes: Optional[int] = Field(
        default=None, ge=0, description="Travel time when a family member drives"
    )
    travel_event_external_id: Optional[str] = None
    travel_calendar_id: Optional[str] = None
    last_synced_at: datetime = Field(..., description="Last time this engine wrote or confirmed the copy")
    is_shared_calendar_copy: bool = False
    attendee_ids: list[str] = Field(default_factory=list)
    group_size: int = Field(default=1, ge=1, description="Copies in the group when it was created")
    is_orphaned: bool = Field(default=False, description="External copy removed but record kept")
    created_at: datetime = Field(default_factory=now_utc)


class LinkRegistry:
    """Persistent store of ``LinkedEventRecord``s.

    Mutations are serialized with a lock and persisted immediately. A failed
    persist leaves the in-memory state as it was before the call.

    Args:
        path: JSON file to persist to, or None to keep the registry in memory
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._records: dict[str, LinkedEventRecord] = {}
        # group id -> record ids in insertion order
        self._groups: dict[str, list[str]] = {}
        # (calendar id, external id) -> record id
        self._by_copy: dict[tuple[str, str], str] = {}
        # external id -> group id
        self._by_external: dict[str, str] = {}
        self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load records from disk, replacing the in-memory state.

        Raises:
            RegistryError: if the file exists but cannot be read
        """
        with self._lock:
            if self._path is None:
                return
            data = read_json_object(self._path)
            records: list[LinkedEventRecord] = []
            for raw in data.get("records", []):
                try:
                    records.append(LinkedEventRecord.model_validate(raw))
                except ValidationError as exc:
                    logger.warning("Skipping malformed link record in %s: %s", self._path, exc)
            self._rebuild(records)
            logger.debug("Loaded link registry %s (%d records)", self._path, len(self._records))

    def _persist(self) -> None:
        if self._path is None:
            return
        payload: dict[str, Any] = {
            "version": REGISTRY_FORMAT_VERSION,
            "records": [r.model_dump(mode="json") for r in self._ordered_records()],
        }
        atomic_write_json(self._path, payload)

    def _ordered_records(self) -> list[LinkedEventRecord]:
        return [self._records[rid] for ids in self._groups.values() for rid in ids]

    def _rebuild(self, records: Iterable[LinkedEventRecord]) -> None:
        self._records = {}
        self._groups = {}
        self._by_copy = {}
        self._by_external = {}
        for record in records:
            self._index(record)

    def _index(self, record: LinkedEventRecord) -> None:
        self._records[record.id] = record
        members = self._groups.setdefault(record.group_id, [])
        if record.id not in members:
            members.append(record.id)
        self._by_copy[(record.calendar_id, record.external_event_id)] = record.id
        self._by_external[record.external_event_id] = record.group_id

    def _unindex(self, record: LinkedEventRecord) -> None:
        self._records.pop(record.id, None)
        members = self._groups.get(record.group_id, [])
        if record.id in members:
            members.remove(record.id)
        if not members:
            self._groups.pop(record.group_id, None)
        self._by_copy.pop((record.calendar_id, record.external_event_id), None)
        if self._by_external.get(record.external_event_id) == record.group_id:
            del self._by_external[record.external_event_id]

    def _commit(self, previous: list[LinkedEventRecord]) -> None:
        """Persist, restoring ``previous`` state if the write fails."""
        try:
            self._persist()
        except RegistryError:
            self._rebuild(previous)
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, group_id: str) -> list[LinkedEventRecord]:
        """Records of a group in the order they were added."""
        with self._lock:
            return [self._records[rid] for rid in self._groups.get(group_id, [])]

    def get_by_external_id(self, calendar_id: str, external_id: str) -> Optional[LinkedEventRecord]:
        with self._lock:
            record_id = self._by_copy.get((calendar_id, external_id))
            return self._records.get(record_id) if record_id else None

    def group_for(self, external_id: str) -> Optional[str]:
        with self._lock:
            return self._by_external.get(external_id)

    def find_by_travel_event(self, external_id: str) -> list[LinkedEventRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.travel_event_external_id == external_id]

    def group_ids(self) -> list[str]:
        with self._lock:
            return list(self._groups)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, record: LinkedEventRecord) -> LinkedEventRecord:
        """Insert or replace a record.

        Raises:
            RegistryError: if another record of the same group already links the
                same calendar, or the registry could not be persisted
        """
        with self._lock:
            for rid in self._groups.get(record.group_id, []):
                other = self._records[rid]
                if other.id != record.id and other.calendar_id == record.calendar_id:
                    raise RegistryError(
                        f"Group {record.group_id} already has a copy in calendar {record.calendar_id}"
                    )
            previous = self._ordered_records()
            existing = self._records.get(record.id)
            if existing is not None:
                self._by_copy.pop((existing.calendar_id, existing.external_event_id), None)
                if self._by_external.get(existing.external_event_id) == existing.group_id:
                    del self._by_external[existing.external_event_id]
                if existing.group_id != record.group_id:
                    self._unindex(existing)
            self._index(record)
            self._commit(previous)
            return record

    def add_to_group(self, record: LinkedEventRecord) -> LinkedEventRecord:
        """Insert a new copy and set ``group_size`` on every record of its group."""
        with self._lock:
            members = [self._records[rid] for rid in self._groups.get(record.group_id, [])]
            if any(m.calendar_id == record.calendar_id for m in members):
                raise RegistryError(
                    f"Group {record.group_id} already has a copy in calendar {record.calendar_id}"
                )
            previous = self._ordered_records()
            size = len(members) + 1
            for member in members:
                self._records[member.id] = member.model_copy(update={"group_size": size})
            self._index(record.model_copy(update={"group_size": size}))
            self._commit(previous)
            return self._records[record.id]

    def update_group(self, group_id: str, **changes: Any) -> list[LinkedEventRecord]:
        """Apply the same field changes to every record of a group."""
        with self._lock:
            previous = self._ordered_records()
            updated = []
            for rid in self._groups.get(group_id, []):
                record = self._records[rid].model_copy(update=changes)
                self._records[rid] = record
                updated.append(record)
            if updated:
                self._commit(previous)
            return updated

    def delete(self, record: LinkedEventRecord) -> bool:
        """Remove a record.

        Returns:
            True if the record existed
        """
        with self._lock:
            existing = self._records.get(record.id)
            if existing is None:
                return False
            previous = self._ordered_records()
            self._unindex(existing)
            self._commit(previous)
            logger.debug("Removed link record %s from group %s", record.id, record.group_id)
            return True

    def mark_orphaned(self, record: LinkedEventRecord) -> None:
        """Flag a record whose external copy is gone but which could not be removed."""
        with self._lock:
            existing = self._records.get(record.id)
            if existing is None:
                return
            previous = self._ordered_records()
            self._records[record.id] = existing.model_copy(update={"is_orphaned": True})
            self._commit(previous)
