"""
test_memory_stores.py — Tests for the in-process disaster and alert-config
stores.

Covers:
    • CRUD, newest-first ordering, list filters and limits
    • Non-updatable fields rejected
    • Radius search
    • Reading append (readings only grow)
    • Guarded / unguarded transition commands (compare-and-set)
    • find_matching (type or ALL, threshold, active)

Run with:
    pytest tests/test_memory_stores.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import NotFoundError
from backend.app.domain.models import (
    AlertConfig,
    AlertTargetType,
    DisasterEvent,
    DisasterStatus,
    DisasterType,
    GeoPoint,
    SensorReading,
)
from backend.app.domain.transitions import MarkAlertsSent, SetLastTriggered
from backend.app.spatial.radius_utils import DistanceUnit
from backend.app.storage.base import AlertConfigQuery, DisasterQuery
from backend.app.storage.memory import InMemoryAlertConfigStore, InMemoryDisasterStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
TOKYO = GeoPoint(longitude=139.6503, latitude=35.6762)
YOKOHAMA = GeoPoint(longitude=139.6380, latitude=35.4437)   # ~26 km from Tokyo
OSAKA = GeoPoint(longitude=135.5023, latitude=34.6937)      # ~392 km from Tokyo


def _run(coro):
    return asyncio.run(coro)


def _make_disaster(
    did: str,
    dtype: DisasterType = DisasterType.FLOOD,
    severity: int = 6,
    location: GeoPoint = TOKYO,
    created_at: datetime = NOW,
    **overrides,
) -> DisasterEvent:
    return DisasterEvent(
        id=did,
        type=dtype,
        location=location,
        severity=severity,
        description=f"{dtype.value} {did}",
        start_time=created_at,
        created_at=created_at,
        updated_at=created_at,
        **overrides,
    )


def _make_config(
    cid: str,
    target: AlertTargetType = AlertTargetType.FLOOD,
    threshold: int = 5,
    created_at: datetime = NOW,
    **overrides,
) -> AlertConfig:
    return AlertConfig(
        id=cid,
        name=f"config {cid}",
        disaster_type=target,
        severity_threshold=threshold,
        created_at=created_at,
        updated_at=created_at,
        **overrides,
    )


async def _seeded_disasters(*events: DisasterEvent) -> InMemoryDisasterStore:
    store = InMemoryDisasterStore()
    for event in events:
        await store.create(event)
    return store


async def _seeded_configs(*configs: AlertConfig) -> InMemoryAlertConfigStore:
    store = InMemoryAlertConfigStore()
    for config in configs:
        await store.create(config)
    return store


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Disaster Store
# ═══════════════════════════════════════════════════════════════════════════

class TestDisasterCrud:

    def test_create_and_get(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            return await store.get("d-1"), await store.get("missing")

        found, missing = _run(scenario())
        assert found.id == "d-1"
        assert missing is None

    def test_duplicate_id_rejected(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            await store.create(_make_disaster("d-1"))

        with pytest.raises(ValueError):
            _run(scenario())

    def test_list_newest_first_with_limit(self):
        async def scenario():
            store = await _seeded_disasters(
                _make_disaster("old", created_at=NOW - timedelta(hours=2)),
                _make_disaster("new", created_at=NOW),
                _make_disaster("mid", created_at=NOW - timedelta(hours=1)),
            )
            return (
                await store.list(DisasterQuery(limit=None)),
                await store.list(DisasterQuery(limit=2)),
            )

        everything, limited = _run(scenario())
        assert [e.id for e in everything] == ["new", "mid", "old"]
        assert [e.id for e in limited] == ["new", "mid"]

    def test_list_filters(self):
        async def scenario():
            store = await _seeded_disasters(
                _make_disaster("flood-low", severity=3),
                _make_disaster("flood-high", severity=8),
                _make_disaster("fire", dtype=DisasterType.FIRE, severity=9),
            )
            return (
                await store.list(DisasterQuery(type=DisasterType.FLOOD)),
                await store.list(DisasterQuery(min_severity=8)),
                await store.list(DisasterQuery(status=DisasterStatus.RESOLVED)),
            )

        floods, severe, resolved = _run(scenario())
        assert {e.id for e in floods} == {"flood-low", "flood-high"}
        assert {e.id for e in severe} == {"flood-high", "fire"}
        assert resolved == []

    def test_date_range_filter(self):
        async def scenario():
            store = await _seeded_disasters(
                _make_disaster("jan", created_at=datetime(2024, 1, 15, tzinfo=timezone.utc)),
                _make_disaster("feb", created_at=datetime(2024, 2, 15, tzinfo=timezone.utc)),
            )
            return await store.list(DisasterQuery(
                start_date=datetime(2024, 2, 1, tzinfo=timezone.utc),
                end_date=datetime(2024, 2, 28, tzinfo=timezone.utc),
            ))

        assert [e.id for e in _run(scenario())] == ["feb"]

    def test_update_allowed_fields(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            return await store.update("d-1", {"status": DisasterStatus.RESPONDING, "severity": 7})

        updated = _run(scenario())
        assert updated.status == DisasterStatus.RESPONDING
        assert updated.severity == 7
        assert updated.updated_at > NOW

    def test_update_immutable_field_rejected(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            await store.update("d-1", {"location": OSAKA})

        with pytest.raises(ValueError, match="location"):
            _run(scenario())

    def test_update_alerts_sent_rejected(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            await store.update("d-1", {"alerts_sent": True})

        with pytest.raises(ValueError):
            _run(scenario())

    def test_update_missing(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryDisasterStore().update("missing", {"severity": 2}))

    def test_delete(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            deleted = await store.delete("d-1")
            return deleted, len(store)

        deleted, remaining = _run(scenario())
        assert deleted.id == "d-1"
        assert remaining == 0

    def test_delete_missing(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryDisasterStore().delete("missing"))


class TestDisasterNearby:

    def test_radius_search(self):
        async def scenario():
            store = await _seeded_disasters(
                _make_disaster("tokyo", location=TOKYO),
                _make_disaster("yokohama", location=YOKOHAMA),
                _make_disaster("osaka", location=OSAKA),
            )
            return (
                await store.nearby(TOKYO, 50),
                await store.nearby(TOKYO, 10),
                await store.nearby(TOKYO, 300, DistanceUnit.MI),
            )

        within_50km, within_10km, within_300mi = _run(scenario())
        assert {e.id for e in within_50km} == {"tokyo", "yokohama"}
        assert [e.id for e in within_10km] == ["tokyo"]
        assert {e.id for e in within_300mi} == {"tokyo", "yokohama", "osaka"}


class TestReadings:

    def test_append_grows_readings(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            await store.append_reading("d-1", SensorReading(sensor_id="S-1", value=3.1))
            return await store.append_reading("d-1", SensorReading(sensor_id="S-1", value=3.4))

        updated = _run(scenario())
        assert [r.value for r in updated.readings] == [3.1, 3.4]

    def test_append_to_missing(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryDisasterStore().append_reading("x", SensorReading(sensor_id="S", value=1.0)))


class TestMarkAlertsSentCommand:

    def test_guarded_claim_lands_once(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1"))
            first = await store.apply(MarkAlertsSent("d-1", guarded=True))
            second = await store.apply(MarkAlertsSent("d-1", guarded=True))
            return first, second, await store.get("d-1")

        first, second, event = _run(scenario())
        assert first is True
        assert second is False
        assert event.alerts_sent is True

    def test_unguarded_is_idempotent(self):
        async def scenario():
            store = await _seeded_disasters(_make_disaster("d-1", alerts_sent=True))
            return await store.apply(MarkAlertsSent("d-1", guarded=False))

        assert _run(scenario()) is True

    def test_missing_disaster(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryDisasterStore().apply(MarkAlertsSent("missing")))


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Alert Config Store
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertConfigCrud:

    def test_list_filters_newest_first(self):
        async def scenario():
            store = await _seeded_configs(
                _make_config("a", created_at=NOW - timedelta(minutes=2)),
                _make_config("b", target=AlertTargetType.FIRE, created_at=NOW - timedelta(minutes=1)),
                _make_config("c", is_active=False, created_at=NOW),
            )
            return (
                await store.list(AlertConfigQuery()),
                await store.list(AlertConfigQuery(disaster_type=AlertTargetType.FLOOD)),
                await store.list(AlertConfigQuery(is_active=True)),
            )

        everything, floods, active = _run(scenario())
        assert [c.id for c in everything] == ["c", "b", "a"]
        assert [c.id for c in floods] == ["c", "a"]
        assert [c.id for c in active] == ["b", "a"]

    def test_last_triggered_not_updatable(self):
        async def scenario():
            store = await _seeded_configs(_make_config("a"))
            await store.update("a", {"last_triggered": NOW})

        with pytest.raises(ValueError, match="last_triggered"):
            _run(scenario())

    def test_update(self):
        async def scenario():
            store = await _seeded_configs(_make_config("a"))
            return await store.update("a", {"severity_threshold": 8, "is_active": False})

        updated = _run(scenario())
        assert updated.severity_threshold == 8
        assert updated.is_active is False

    def test_delete_missing(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryAlertConfigStore().delete("missing"))


class TestFindMatching:

    def test_type_all_threshold_and_active(self):
        async def scenario():
            store = await _seeded_configs(
                _make_config("flood-5", threshold=5),
                _make_config("flood-7", threshold=7),
                _make_config("all-3", target=AlertTargetType.ALL, threshold=3),
                _make_config("fire-1", target=AlertTargetType.FIRE, threshold=1),
                _make_config("inactive", threshold=1, is_active=False),
            )
            return await store.find_matching(_make_disaster("d-1", severity=6))

        assert {c.id for c in _run(scenario())} == {"flood-5", "all-3"}

    def test_threshold_equal_to_severity_matches(self):
        async def scenario():
            store = await _seeded_configs(_make_config("eq", threshold=6))
            return await store.find_matching(_make_disaster("d-1", severity=6))

        assert [c.id for c in _run(scenario())] == ["eq"]


class TestSetLastTriggeredCommand:

    def test_guarded_compare_and_set(self):
        async def scenario():
            store = await _seeded_configs(_make_config("a"))
            first = await store.apply(SetLastTriggered("a", NOW, expected_previous=None))
            stale = await store.apply(
                SetLastTriggered("a", NOW + timedelta(minutes=1), expected_previous=None),
            )
            return first, stale, await store.get("a")

        first, stale, config = _run(scenario())
        assert first is True
        assert stale is False
        assert config.last_triggered == NOW

    def test_unguarded_never_moves_backwards(self):
        later = NOW + timedelta(hours=1)

        async def scenario():
            store = await _seeded_configs(_make_config("a", last_triggered=later))
            landed = await store.apply(
                SetLastTriggered("a", NOW, expected_previous=None, guarded=False),
            )
            return landed, await store.get("a")

        landed, config = _run(scenario())
        assert landed is True
        assert config.last_triggered == later

    def test_missing_config(self):
        with pytest.raises(NotFoundError):
            _run(InMemoryAlertConfigStore().apply(SetLastTriggered("x", NOW, None)))
