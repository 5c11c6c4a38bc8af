"""Family members, drivers and shared calendars, persisted as JSON."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from famlisync.core.json_store import atomic_write_json, read_json_object
from famlisync.domain.link_registry import DriverKind, DriverRef
from famlisync.exceptions import RegistryError

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"^#?([0-9A-Fa-f]{6})$")


def normalize_hex_color(value: str) -> str:
    """Return ``#RRGGBB`` in upper case.

    Raises:
        ValueError: if ``value`` is not a six digit hex color
    """
    match = _HEX_COLOR_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid hex color {value!r}")
    return "#" + match.group(1).upper()


def _new_id() -> str:
    return uuid.uuid4().hex


class FamilyMember(BaseModel):
    """A person whose calendars are aggregated."""

    id: str = Field(default_factory=_new_id)
    name: str
    color_hex: str = "#007AFF"
    calendar_ids: list[str] = Field(default_factory=list, description="Linked calendars")
    home_calendar_id: Optional[str] = Field(
        default=None, description="Calendar auto-linked for this person; travel events go here"
    )
    shared_calendar_ids: list[str] = Field(default_factory=list)

    @field_validator("color_hex")
    @classmethod
    def _color(cls, value: str) -> str:
        return normalize_hex_color(value)

    def visible_calendar_ids(self) -> list[str]:
        """Linked, home and shared calendars without duplicates, in that order."""
        ordered: list[str] = []
        candidates = [*self.calendar_ids, self.home_calendar_id, *self.shared_calendar_ids]
        for calendar_id in candidates:
            if calendar_id and calendar_id not in ordered:
                ordered.append(calendar_id)
        return ordered


class Driver(BaseModel):
    """A standalone driver who is not a family member."""

    id: str = Field(default_factory=_new_id)
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class SharedCalendar(BaseModel):
    """A calendar the whole family writes to."""

    id: str = Field(default_factory=_new_id)
    name: str
    calendar_id: str
    color_hex: str = "#34C759"

    @field_validator("color_hex")
    @classmethod
    def _color(cls, value: str) -> str:
        return normalize_hex_color(value)


class FamilyDirectory:
    """Persistent directory of members, drivers and shared calendars.

    Args:
        path: JSON file to persist to, or None to keep the directory in memory
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._members: dict[str, FamilyMember] = {}
        self._drivers: dict[str, Driver] = {}
        self._shared: dict[str, SharedCalendar] = {}
        self.load()

    def load(self) -> None:
        with self._lock:
            if self._path is None:
                return
            data = read_json_object(self._path)
            self._members = self._parse(data.get("members", []), FamilyMember)
            self._drivers = self._parse(data.get("drivers", []), Driver)
            self._shared = self._parse(data.get("shared_calendars", []), SharedCalendar)

    def _parse(self, items: list[Any], model: type[Any]) -> dict[str, Any]:
        parsed: dict[str, Any] = {}
        for raw in items:
            try:
                item = model.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Skipping malformed %s entry in %s: %s", model.__name__, self._path, exc)
                continue
            parsed[item.id] = item
        return parsed

    def _persist(self) -> None:
        if self._path is None:
            return
        atomic_write_json(
            self._path,
            {
                "members": [m.model_dump(mode="json") for m in self._members.values()],
                "drivers": [d.model_dump(mode="json") for d in self._drivers.values()],
                "shared_calendars": [s.model_dump(mode="json") for s in self._shared.values()],
            },
        )

    def _save(self, table: dict[str, Any], item: Any) -> Any:
        previous = table.get(item.id)
        table[item.id] = item
        try:
            self._persist()
        except RegistryError:
            if previous is None:
                del table[item.id]
            else:
                table[item.id] = previous
            raise
        return item

    def _remove(self, table: dict[str, Any], item_id: str) -> bool:
        previous = table.pop(item_id, None)
        if previous is None:
            return False
        try:
            self._persist()
        except RegistryError:
            table[item_id] = previous
            raise
        return True

    # Members

    def save_member(self, member: FamilyMember) -> FamilyMember:
        with self._lock:
            return self._save(self._members, member)

    def remove_member(self, member_id: str) -> bool:
        with self._lock:
            return self._remove(self._members, member_id)

    def get_member(self, member_id: str) -> Optional[FamilyMember]:
        with self._lock:
            return self._members.get(member_id)

    def members(self) -> list[FamilyMember]:
        with self._lock:
            return list(self._members.values())

    # Drivers

    def save_driver(self, driver: Driver) -> Driver:
        with self._lock:
            return self._save(self._drivers, driver)

    def remove_driver(self, driver_id: str) -> bool:
        with self._lock:
            return self._remove(self._drivers, driver_id)

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._lock:
            return self._drivers.get(driver_id)

    def drivers(self) -> list[Driver]:
        with self._lock:
            return list(self._drivers.values())

    # Shared calendars

    def save_shared_calendar(self, shared: SharedCalendar) -> SharedCalendar:
        with self._lock:
            return self._save(self._shared, shared)

    def shared_calendars(self) -> list[SharedCalendar]:
        with self._lock:
            return list(self._shared.values())

    # Driver resolution

    def driver_name(self, ref: Optional[DriverRef]) -> Optional[str]:
        """Display name of a driver reference, or None if it no longer resolves."""
        if ref is None:
            return None
        if ref.kind == DriverKind.FAMILY_MEMBER:
            member = self.get_member(ref.id)
            return member.name if member else None
        driver = self.get_driver(ref.id)
        return driver.name if driver else None

    def home_calendar_for(self, ref: Optional[DriverRef]) -> Optional[str]:
        """Home calendar of a family-member driver; standalone drivers have none."""
        if ref is None or ref.kind != DriverKind.FAMILY_MEMBER:
            return None
        member = self.get_member(ref.id)
        return member.home_calendar_id if member else None
