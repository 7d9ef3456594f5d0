"""
test_simulation_feed.py — Tests for the synthetic sensor feed.

Covers:
    • Reading shape per disaster type
    • Seeded runs are reproducible
    • Run summary (disasters vs below-threshold vs rejected)
    • Pacing between readings

Run with:
    pytest tests/test_simulation_feed.py -v
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from backend.app.core.errors import InvalidInputError
from backend.app.domain.models import DisasterType
from backend.app.simulation.feed import SimulationFeed


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class _FakeIngestion:
    """Records readings; every third reading is a disaster, every fifth is rejected."""

    def __init__(self):
        self.calls = []

    async def simulate_sensor_data(self, disaster_type, reading):
        self.calls.append((disaster_type, reading))
        n = len(self.calls)
        if n % 5 == 0:
            raise InvalidInputError("bad reading", field="latitude")
        if n % 3 == 0:
            return SimpleNamespace(id=f"d-{n}")
        return None


def _make_feed(ingestion=None, **kwargs) -> SimulationFeed:
    kwargs.setdefault("seed", 7)
    kwargs.setdefault("center", (35.0, 139.0))
    kwargs.setdefault("spread_deg", 1.0)
    return SimulationFeed(ingestion or _FakeIngestion(), **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Readings
# ═══════════════════════════════════════════════════════════════════════════

class TestReadings:

    @pytest.mark.parametrize("dtype,fields", [
        (DisasterType.EARTHQUAKE, ("magnitude", "depth")),
        (DisasterType.FLOOD, ("waterLevel", "flowRate")),
        (DisasterType.FIRE, ("temperature", "smokeLevel")),
    ])
    def test_reading_shape(self, dtype, fields):
        reading = _make_feed().next_reading(dtype)
        for name in fields:
            assert isinstance(reading[name], float)
        assert 34.0 <= reading["latitude"] <= 36.0
        assert 138.0 <= reading["longitude"] <= 140.0
        assert reading["sensorId"].startswith(f"SIM-{dtype.value}-")
        assert reading["location"] == "Simulated zone 1"

    def test_seed_is_reproducible(self):
        feed_a, feed_b = _make_feed(seed=11), _make_feed(seed=11)
        assert [feed_a.next() for _ in range(5)] == [feed_b.next() for _ in range(5)]

    def test_different_seeds_differ(self):
        feed_a, feed_b = _make_feed(seed=1), _make_feed(seed=2)
        assert [feed_a.next() for _ in range(5)] != [feed_b.next() for _ in range(5)]

    def test_restricted_types(self):
        feed = _make_feed(types=(DisasterType.FIRE,))
        assert {feed.next()[0] for _ in range(10)} == {DisasterType.FIRE}

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValueError):
            _make_feed(types=(DisasterType.STORM,))


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Runs
# ═══════════════════════════════════════════════════════════════════════════

class TestRun:

    def test_summary_counts(self):
        ingestion = _FakeIngestion()
        summary = asyncio.run(_make_feed(ingestion).run(10))
        # calls 3, 6, 9 → disasters; 5, 10 → rejected
        assert summary.readings == 10
        assert summary.disasters == ["d-3", "d-6", "d-9"]
        assert summary.rejected == 2
        assert len(ingestion.calls) == 10
        assert summary.to_dict()["disasters"] == 3

    def test_interval_sleeps_between_readings(self):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        asyncio.run(_make_feed(sleep=fake_sleep).run(4, interval=0.5))
        assert pauses == [0.5, 0.5, 0.5]

    def test_zero_interval_never_sleeps(self):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        asyncio.run(_make_feed(sleep=fake_sleep).run(3))
        assert pauses == []
