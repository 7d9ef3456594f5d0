"""
feed.py — Synthetic sensor feed for demos and load checks.

Generates raw readings around a configurable centre and pushes them
through ``IngestionService.simulate_sensor_data``. Readings use the same
dict shape an external sensor posts to ``/api/simulate/{type}``.

    Type         Primary value                 Secondary
    ──────────   ───────────────────────────   ─────────────────────────
    EARTHQUAKE   magnitude    2.5 – 7.5        depth       5 – 70 km
    FLOOD        waterLevel   0.5 – 5.0 m      flowRate    50 – 900 m³/s
    FIRE         temperature  30 – 110 °C      smokeLevel  20 – 300 AQI

Ranges straddle each threshold, so a run produces a mix of disasters and
below-threshold readings. Seeding the generator makes a run reproducible.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from backend.app.core.config import settings
from backend.app.core.errors import InvalidInputError
from backend.app.domain.models import DisasterType
from backend.app.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

SIMULATED_TYPES: Tuple[DisasterType, ...] = (
    DisasterType.EARTHQUAKE,
    DisasterType.FLOOD,
    DisasterType.FIRE,
)

_RANGES: Dict[DisasterType, Dict[str, Tuple[float, float]]] = {
    DisasterType.EARTHQUAKE: {"magnitude": (2.5, 7.5), "depth": (5.0, 70.0)},
    DisasterType.FLOOD: {"waterLevel": (0.5, 5.0), "flowRate": (50.0, 900.0)},
    DisasterType.FIRE: {"temperature": (30.0, 110.0), "smokeLevel": (20.0, 300.0)},
}


@dataclass
class FeedSummary:
    readings: int = 0
    disasters: List[str] = field(default_factory=list)
    rejected: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "readings": self.readings,
            "disasters": len(self.disasters),
            "disasterIds": list(self.disasters),
            "rejected": self.rejected,
        }


class SimulationFeed:
    """
    Usage:
        feed = SimulationFeed(container.ingestion, seed=7)
        summary = await feed.run(iterations=50, interval=0.2)
    """

    def __init__(
        self,
        ingestion: IngestionService,
        *,
        seed: Optional[int] = None,
        center: Optional[Tuple[float, float]] = None,
        spread_deg: Optional[float] = None,
        types: Sequence[DisasterType] = SIMULATED_TYPES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ingestion = ingestion
        self._rng = random.Random(settings.SIMULATION_SEED if seed is None else seed)
        self._lat, self._lon = center or (
            settings.SIMULATION_CENTER_LAT, settings.SIMULATION_CENTER_LON,
        )
        self._spread = settings.SIMULATION_SPREAD_DEG if spread_deg is None else spread_deg
        unknown = [t for t in types if t not in _RANGES]
        if unknown:
            raise ValueError(f"No simulation ranges for: {', '.join(t.value for t in unknown)}")
        self._types = tuple(types)
        self._sleep = sleep
        self._counter = 0

    def next_reading(self, disaster_type: DisasterType) -> Dict[str, Any]:
        """One raw reading of ``disaster_type``."""
        self._counter += 1
        rng = self._rng
        lat = max(-90.0, min(90.0, self._lat + rng.uniform(-self._spread, self._spread)))
        lon = max(-180.0, min(180.0, self._lon + rng.uniform(-self._spread, self._spread)))

        reading: Dict[str, Any] = {
            "latitude": round(lat, 5),
            "longitude": round(lon, 5),
            "location": f"Simulated zone {self._counter}",
            "sensorId": f"SIM-{disaster_type.value}-{rng.randint(1, 9)}",
        }
        for name, (low, high) in _RANGES[disaster_type].items():
            reading[name] = round(rng.uniform(low, high), 1)
        return reading

    def next(self) -> Tuple[DisasterType, Dict[str, Any]]:
        disaster_type = self._rng.choice(self._types)
        return disaster_type, self.next_reading(disaster_type)

    async def run(self, iterations: int, interval: float = 0.0) -> FeedSummary:
        """Push ``iterations`` readings, pausing ``interval`` seconds between them."""
        summary = FeedSummary()
        for i in range(iterations):
            disaster_type, reading = self.next()
            summary.readings += 1
            try:
                event = await self._ingestion.simulate_sensor_data(disaster_type, reading)
            except InvalidInputError as exc:
                summary.rejected += 1
                logger.warning("Simulated reading rejected: %s", exc.message)
            else:
                if event is not None:
                    summary.disasters.append(event.id)
            if interval > 0 and i < iterations - 1:
                await self._sleep(interval)

        logger.info(
            "Simulation run complete: %d readings, %d disasters",
            summary.readings, len(summary.disasters),
        )
        return summary
