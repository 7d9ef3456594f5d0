"""
test_domain.py — Tests for domain entities and state transitions.

Covers:
    • GeoPoint / Region / ChannelSettings wire format
    • DisasterEvent and AlertConfig validation
    • DisasterCreate.build (fresh id, alertsSent false)
    • mark_alerts_sent / record_trigger commands
    • Cooldown window arithmetic

Run with:
    pytest tests/test_domain.py -v
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.domain.models import (
    AlertConfig,
    AlertTargetType,
    ChannelSettings,
    ChannelToggle,
    DisasterCreate,
    DisasterEvent,
    DisasterType,
    GeoPoint,
    Region,
    RegionKind,
    SensorReading,
)
from backend.app.domain.transitions import (
    MarkAlertsSent,
    SetLastTriggered,
    cooldown_remaining,
    in_cooldown,
    mark_alerts_sent,
    record_trigger,
)


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_disaster(**overrides) -> DisasterEvent:
    fields = dict(
        id="d-1",
        type=DisasterType.FLOOD,
        location=GeoPoint(longitude=139.65, latitude=35.68),
        severity=6,
        description="Flood with water level 3m detected at Tokyo",
    )
    fields.update(overrides)
    return DisasterEvent(**fields)


def _make_config(**overrides) -> AlertConfig:
    fields = dict(id="c-1", name="Tokyo floods", disaster_type=AlertTargetType.FLOOD)
    fields.update(overrides)
    return AlertConfig(**fields)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Value Objects
# ═══════════════════════════════════════════════════════════════════════════

class TestGeoPoint:

    def test_geojson_order(self):
        point = GeoPoint(longitude=139.65, latitude=35.68)
        assert point.to_dict() == {"type": "Point", "coordinates": [139.65, 35.68]}

    def test_from_dict(self):
        point = GeoPoint.from_dict({"type": "Point", "coordinates": [10, -20]})
        assert point.longitude == 10.0
        assert point.latitude == -20.0

    def test_latitude_out_of_range(self):
        with pytest.raises(ValueError):
            GeoPoint(longitude=0.0, latitude=91.0)

    def test_longitude_out_of_range(self):
        with pytest.raises(ValueError):
            GeoPoint(longitude=-181.0, latitude=0.0)


class TestRegion:

    def test_polygon_round_trip(self):
        raw = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]}
        region = Region.from_dict(raw)
        assert region.kind == RegionKind.POLYGON
        assert region.to_dict() == {
            "type": "Polygon",
            "coordinates": [[[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 0.0]]],
        }

    def test_point_with_radius(self):
        region = Region.from_dict({"type": "Point", "coordinates": [139.7, 35.7], "radiusKm": 25})
        assert region.kind == RegionKind.POINT
        assert region.coordinates == (139.7, 35.7)
        assert region.to_dict()["radiusKm"] == 25.0

    def test_default_region_is_empty_polygon(self):
        assert Region().to_dict() == {"type": "Polygon", "coordinates": []}


class TestChannelSettings:

    def test_push_enabled_by_default(self):
        assert ChannelSettings().enabled_channels() == ["push"]

    def test_enabled_channel_order(self):
        channels = ChannelSettings(
            sms=ChannelToggle(enabled=True, recipients=("+8190",)),
            push=ChannelToggle(enabled=False),
            emergency_services=ChannelToggle(enabled=True, recipients=("fire-dept",)),
        )
        assert channels.enabled_channels() == ["sms", "emergencyServices"]

    def test_from_dict_defaults(self):
        channels = ChannelSettings.from_dict({"email": {"enabled": True, "recipients": ["ops@example.org"]}})
        assert channels.email.enabled is True
        assert channels.email.recipients == ("ops@example.org",)
        assert channels.push.enabled is True
        assert channels.sms.enabled is False

    def test_wire_format(self):
        d = ChannelSettings(
            emergency_services=ChannelToggle(enabled=True, recipients=("ems-1",)),
        ).to_dict()
        assert d["emergencyServices"] == {"enabled": True, "serviceIds": ["ems-1"]}
        assert d["push"] == {"enabled": True}


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Entities
# ═══════════════════════════════════════════════════════════════════════════

class TestDisasterEvent:

    def test_severity_bounds(self):
        with pytest.raises(ValueError):
            _make_disaster(severity=0)
        with pytest.raises(ValueError):
            _make_disaster(severity=11)

    def test_description_required(self):
        with pytest.raises(ValueError):
            _make_disaster(description="")

    def test_frozen(self):
        event = _make_disaster()
        with pytest.raises(FrozenInstanceError):
            event.alerts_sent = True

    def test_to_dict_camel_case(self):
        reading = SensorReading(sensor_id="S-1", value=3.2, timestamp=NOW)
        d = _make_disaster(readings=(reading,), start_time=NOW).to_dict()
        assert d["alertsSent"] is False
        assert d["startTime"] == NOW.isoformat()
        assert d["endTime"] is None
        assert d["readings"] == [{"sensorId": "S-1", "value": 3.2, "timestamp": NOW.isoformat()}]


class TestAlertConfig:

    def test_defaults(self):
        config = _make_config()
        assert config.severity_threshold == 5
        assert config.cooldown_period == 30
        assert config.last_triggered is None
        assert config.is_active is True

    def test_threshold_bounds(self):
        with pytest.raises(ValueError):
            _make_config(severity_threshold=0)

    def test_negative_cooldown_rejected(self):
        with pytest.raises(ValueError):
            _make_config(cooldown_period=-1)

    def test_targets(self):
        assert _make_config().targets(DisasterType.FLOOD)
        assert not _make_config().targets(DisasterType.FIRE)
        assert _make_config(disaster_type=AlertTargetType.ALL).targets(DisasterType.FIRE)


class TestDisasterCreate:

    def test_build_assigns_fresh_ids(self):
        request = DisasterCreate(
            type=DisasterType.FIRE,
            location=GeoPoint(longitude=0.0, latitude=0.0),
            severity=3,
            description="Fire with temperature 65°C detected at Unknown location",
        )
        first = request.build(now=NOW)
        second = request.build(now=NOW)
        assert first.id != second.id
        assert first.alerts_sent is False
        assert first.start_time == NOW
        assert first.created_at == NOW


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestMarkAlertsSent:

    def test_returns_new_snapshot_and_command(self):
        event = _make_disaster()
        updated, command = mark_alerts_sent(event)
        assert updated.alerts_sent is True
        assert event.alerts_sent is False
        assert command == MarkAlertsSent(disaster_id="d-1", guarded=True)

    def test_unguarded(self):
        _, command = mark_alerts_sent(_make_disaster(), guarded=False)
        assert command.guarded is False


class TestRecordTrigger:

    def test_first_trigger(self):
        updated, command = record_trigger(_make_config(), NOW)
        assert updated.last_triggered == NOW
        assert command == SetLastTriggered(
            config_id="c-1", triggered_at=NOW, expected_previous=None, guarded=True,
        )

    def test_never_moves_backwards(self):
        later = NOW + timedelta(minutes=5)
        updated, command = record_trigger(_make_config(last_triggered=later), NOW)
        assert updated.last_triggered == later
        assert command.expected_previous == later


class TestCooldown:

    def test_never_triggered_is_free(self):
        assert cooldown_remaining(_make_config(), NOW) == timedelta(0)
        assert not in_cooldown(_make_config(), NOW)

    def test_inside_window(self):
        config = _make_config(last_triggered=NOW - timedelta(minutes=10))
        assert cooldown_remaining(config, NOW) == timedelta(minutes=20)
        assert in_cooldown(config, NOW)

    def test_window_boundary_is_free(self):
        config = _make_config(last_triggered=NOW - timedelta(minutes=30))
        assert not in_cooldown(config, NOW)

    def test_zero_cooldown(self):
        config = _make_config(cooldown_period=0, last_triggered=NOW)
        assert not in_cooldown(config, NOW)
