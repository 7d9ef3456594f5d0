"""
memory.py — Process-local stores (development default, test backend).

Snapshots are frozen, so handing them out needs no copying. Each store
serialises writes behind an ``asyncio.Lock`` which makes the guarded
transition commands true compare-and-set operations within one process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional

from backend.app.core.errors import NotFoundError
from backend.app.domain.models import (
    AlertConfig,
    DisasterEvent,
    GeoPoint,
    SensorReading,
    utc_now,
)
from backend.app.domain.transitions import MarkAlertsSent, SetLastTriggered
from backend.app.spatial.radius_utils import DistanceUnit, filter_within_radius
from backend.app.storage.base import (
    ALERT_CONFIG_UPDATABLE,
    DISASTER_UPDATABLE,
    AlertConfigQuery,
    DisasterQuery,
    check_updatable,
)

logger = logging.getLogger(__name__)


def _newest_first(items: List[Any]) -> List[Any]:
    # Insertion order breaks created_at ties: later insert = newer
    indexed = list(enumerate(items))
    indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [item for _, item in indexed]


class InMemoryDisasterStore:
    """Dict-backed DisasterStore."""

    def __init__(self) -> None:
        self._items: Dict[str, DisasterEvent] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    async def create(self, event: DisasterEvent) -> DisasterEvent:
        async with self._lock:
            if event.id in self._items:
                raise ValueError(f"Disaster {event.id} already exists")
            self._items[event.id] = event
        return event

    async def get(self, disaster_id: str) -> Optional[DisasterEvent]:
        return self._items.get(disaster_id)

    async def list(self, query: DisasterQuery) -> List[DisasterEvent]:
        matched = _newest_first([e for e in self._items.values() if query.matches(e)])
        if query.limit is not None:
            matched = matched[: query.limit]
        return matched

    async def update(self, disaster_id: str, changes: Mapping[str, Any]) -> DisasterEvent:
        check_updatable(changes, DISASTER_UPDATABLE)
        async with self._lock:
            current = self._require(disaster_id)
            updated = replace(current, **changes, updated_at=utc_now())
            self._items[disaster_id] = updated
        return updated

    async def delete(self, disaster_id: str) -> DisasterEvent:
        async with self._lock:
            current = self._require(disaster_id)
            del self._items[disaster_id]
        return current

    async def nearby(
        self, center: GeoPoint, radius: float, unit: DistanceUnit = DistanceUnit.KM,
    ) -> List[DisasterEvent]:
        ordered = _newest_first(list(self._items.values()))
        return filter_within_radius(center, ordered, radius, unit=unit)

    async def append_reading(self, disaster_id: str, reading: SensorReading) -> DisasterEvent:
        async with self._lock:
            current = self._require(disaster_id)
            updated = replace(
                current,
                readings=current.readings + (reading,),
                updated_at=utc_now(),
            )
            self._items[disaster_id] = updated
        return updated

    async def apply(self, command: MarkAlertsSent) -> bool:
        async with self._lock:
            current = self._require(command.disaster_id)
            if command.guarded and current.alerts_sent:
                return False
            self._items[command.disaster_id] = replace(
                current, alerts_sent=True, updated_at=utc_now(),
            )
        return True

    def _require(self, disaster_id: str) -> DisasterEvent:
        current = self._items.get(disaster_id)
        if current is None:
            raise NotFoundError("DisasterEvent", id=disaster_id)
        return current


class InMemoryAlertConfigStore:
    """Dict-backed AlertConfigStore."""

    def __init__(self) -> None:
        self._items: Dict[str, AlertConfig] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._items)

    async def create(self, config: AlertConfig) -> AlertConfig:
        async with self._lock:
            if config.id in self._items:
                raise ValueError(f"AlertConfig {config.id} already exists")
            self._items[config.id] = config
        return config

    async def get(self, config_id: str) -> Optional[AlertConfig]:
        return self._items.get(config_id)

    async def list(self, query: AlertConfigQuery) -> List[AlertConfig]:
        return _newest_first([c for c in self._items.values() if query.matches(c)])

    async def update(self, config_id: str, changes: Mapping[str, Any]) -> AlertConfig:
        check_updatable(changes, ALERT_CONFIG_UPDATABLE)
        async with self._lock:
            current = self._require(config_id)
            updated = replace(current, **changes, updated_at=utc_now())
            self._items[config_id] = updated
        return updated

    async def delete(self, config_id: str) -> AlertConfig:
        async with self._lock:
            current = self._require(config_id)
            del self._items[config_id]
        return current

    async def find_matching(self, disaster: DisasterEvent) -> List[AlertConfig]:
        return [
            c for c in self._items.values()
            if c.is_active
            and c.targets(disaster.type)
            and c.severity_threshold <= disaster.severity
        ]

    async def apply(self, command: SetLastTriggered) -> bool:
        async with self._lock:
            current = self._require(command.config_id)
            if command.guarded and current.last_triggered != command.expected_previous:
                logger.info(
                    "Config %s was triggered concurrently — skipping",
                    command.config_id,
                )
                return False
            triggered_at = command.triggered_at
            if current.last_triggered and current.last_triggered > triggered_at:
                triggered_at = current.last_triggered
            self._items[command.config_id] = replace(
                current, last_triggered=triggered_at,
            )
        return True

    def _require(self, config_id: str) -> AlertConfig:
        current = self._items.get(config_id)
        if current is None:
            raise NotFoundError("AlertConfig", id=config_id)
        return current

