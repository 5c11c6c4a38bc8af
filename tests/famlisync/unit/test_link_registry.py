"""
Tests for famlisync link registry.

Run with:
    pytest tests/famlisync/unit/test_link_registry.py -q
"""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from famlisync.domain import link_registry
from famlisync.domain.link_registry import DriverKind, DriverRef, LinkedEventRecord, LinkRegistry
from famlisync.exceptions import RegistryError

pytestmark = pytest.mark.unit

SYNCED = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def _record(group_id: str, calendar_id: str, external_id: str) -> LinkedEventRecord:
    return LinkedEventRecord(
        group_id=group_id,
        calendar_id=calendar_id,
        external_event_id=external_id,
        last_synced_at=SYNCED,
    )


def test_add_to_group_sets_group_size_on_every_copy(registry: LinkRegistry) -> None:
    registry.add_to_group(_record("g1", "cal-alice", "A1"))
    registry.add_to_group(_record("g1", "cal-bob", "B1"))
    registry.add_to_group(_record("g1", "cal-carol", "C1"))

    records = registry.get("g1")
    assert [r.calendar_id for r in records] == ["cal-alice", "cal-bob", "cal-carol"]
    assert {r.group_size for r in records} == {3}
    assert len(registry) == 3


def test_group_cannot_hold_two_copies_in_one_calendar(registry: LinkRegistry) -> None:
    registry.add_to_group(_record("g1", "cal-alice", "A1"))

    with pytest.raises(RegistryError):
        registry.add_to_group(_record("g1", "cal-alice", "A2"))
    with pytest.raises(RegistryError):
        registry.upsert(_record("g1", "cal-alice", "A3"))
    assert len(registry) == 1


def test_lookups_by_external_id(registry: LinkRegistry) -> None:
    record = registry.add_to_group(_record("g1", "cal-alice", "A1"))

    assert registry.get_by_external_id("cal-alice", "A1") == record
    assert registry.get_by_external_id("cal-bob", "A1") is None
    assert registry.group_for("A1") == "g1"
    assert registry.group_for("missing") is None


def test_upsert_reindexes_changed_external_id(registry: LinkRegistry) -> None:
    record = registry.add_to_group(_record("g1", "cal-alice", "A1"))

    registry.upsert(record.model_copy(update={"external_event_id": "A2"}))

    assert registry.get_by_external_id("cal-alice", "A1") is None
    assert registry.get_by_external_id("cal-alice", "A2") is not None
    assert registry.group_for("A2") == "g1"
    assert len(registry.get("g1")) == 1


def test_records_survive_reload_in_order(registry: LinkRegistry, tmp_path: Path) -> None:
    registry.add_to_group(_record("g1", "cal-alice", "A1"))
    registry.add_to_group(_record("g1", "cal-bob", "B1"))
    registry.add_to_group(_record("g2", "cal-carol", "C1"))
    registry.update_group(
        "g1",
        driver_ref=DriverRef(kind=DriverKind.FAMILY_MEMBER, id="alice"),
        driver_travel_minutes=20,
    )

    reloaded = LinkRegistry(tmp_path / "links.json")

    assert reloaded.group_ids() == ["g1", "g2"]
    assert reloaded.get("g1") == registry.get("g1")
    assert reloaded.get("g1")[1].driver_ref == DriverRef(kind=DriverKind.FAMILY_MEMBER, id="alice")
    on_disk = json.loads((tmp_path / "links.json").read_text(encoding="utf-8"))
    assert on_disk["version"] == 1
    assert len(on_disk["records"]) == 3


def test_delete_and_mark_orphaned(registry: LinkRegistry) -> None:
    first = registry.add_to_group(_record("g1", "cal-alice", "A1"))
    second = registry.add_to_group(_record("g1", "cal-bob", "B1"))

    assert registry.delete(first) is True
    assert registry.delete(first) is False
    registry.mark_orphaned(second)

    remaining = registry.get("g1")
    assert [r.is_orphaned for r in remaining] == [True]
    registry.delete(second)
    assert registry.get("g1") == []
    assert registry.group_ids() == []


def test_failed_persist_leaves_state_unchanged(
    registry: LinkRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    registry.add_to_group(_record("g1", "cal-alice", "A1"))

    def broken_write(path, data):
        raise RegistryError("disk full")

    monkeypatch.setattr(link_registry, "atomic_write_json", broken_write)

    with pytest.raises(RegistryError):
        registry.add_to_group(_record("g1", "cal-bob", "B1"))
    assert [r.calendar_id for r in registry.get("g1")] == ["cal-alice"]
    assert registry.get("g1")[0].group_size == 1
    assert registry.get_by_external_id("cal-bob", "B1") is None


def test_corrupt_file_raises_instead_of_starting_empty(tmp_path: Path) -> None:
    path = tmp_path / "links.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(RegistryError):
        LinkRegistry(path)


def test_malformed_records_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "links.json"
    good = _record("g1", "cal-alice", "A1").model_dump(mode="json")
    path.write_text(json.dumps({"version": 1, "records": [good, {"group_id": "g2"}]}), encoding="utf-8")

    registry = LinkRegistry(path)

    assert len(registry) == 1
    assert registry.get("g1")[0].external_event_id == "A1"


def test_travel_event_lookup(registry: LinkRegistry) -> None:
    registry.add_to_group(_record("g1", "cal-alice", "A1"))
    registry.add_to_group(_record("g1", "cal-bob", "B1"))
    registry.update_group("g1", travel_event_external_id="T1", travel_calendar_id="cal-alice")

    assert {r.calendar_id for r in registry.find_by_travel_event("T1")} == {"cal-alice", "cal-bob"}


def test_in_memory_registry_needs_no_file() -> None:
    registry = LinkRegistry()
    registry.add_to_group(_record("g1", "cal-alice", "A1"))
    assert len(registry) == 1
