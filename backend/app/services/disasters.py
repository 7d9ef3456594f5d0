"""
disasters.py — Disaster CRUD, radius search and reading append.

Every mutation publishes its fan-out event on the disaster's type topic
and on ``ALL``. A failed publish is logged; the mutation stands.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from backend.app.core.errors import NotFoundError, TransportError
from backend.app.domain.models import DisasterCreate, DisasterEvent, GeoPoint, SensorReading
from backend.app.realtime.fanout import (
    EVENT_DELETE_DISASTER,
    EVENT_NEW_DISASTER,
    EVENT_NEW_READING,
    EVENT_UPDATE_DISASTER,
    FanoutChannel,
    topics_for,
)
from backend.app.spatial.radius_utils import DistanceUnit
from backend.app.storage.base import DisasterQuery, DisasterStore

logger = logging.getLogger(__name__)


async def publish_quietly(
    fanout: FanoutChannel, event: str, data: Dict[str, Any], disaster: DisasterEvent,
) -> None:
    """Publish a disaster event; transport failures are logged, not raised."""
    try:
        await fanout.publish(event, data, topics_for(disaster.type))
    except TransportError as exc:
        logger.error(
            "Could not publish %s for %s: %s", event, disaster.id, exc.message,
            extra={"disaster_id": disaster.id, "event": event},
        )


class DisasterService:

    def __init__(self, store: DisasterStore, fanout: FanoutChannel) -> None:
        self._store = store
        self._fanout = fanout

    async def list(self, query: DisasterQuery) -> List[DisasterEvent]:
        return await self._store.list(query)

    async def get(self, disaster_id: str) -> DisasterEvent:
        event = await self._store.get(disaster_id)
        if event is None:
            raise NotFoundError("DisasterEvent", id=disaster_id)
        return event

    async def create(self, request: DisasterCreate) -> DisasterEvent:
        event = await self._store.create(request.build())
        logger.info(
            "Disaster created: %s %s severity=%d", event.id, event.type.value, event.severity,
            extra={"disaster_id": event.id, "disaster_type": event.type.value, "severity": event.severity},
        )
        await publish_quietly(self._fanout, EVENT_NEW_DISASTER, event.to_dict(), event)
        return event

    async def update(self, disaster_id: str, changes: Mapping[str, Any]) -> DisasterEvent:
        event = await self._store.update(disaster_id, changes)
        logger.info("Disaster updated: %s (%s)", disaster_id, ", ".join(sorted(changes)) or "no fields")
        await publish_quietly(self._fanout, EVENT_UPDATE_DISASTER, event.to_dict(), event)
        return event

    async def delete(self, disaster_id: str) -> DisasterEvent:
        event = await self._store.delete(disaster_id)
        logger.info("Disaster deleted: %s", disaster_id)
        await publish_quietly(self._fanout, EVENT_DELETE_DISASTER, {"id": disaster_id}, event)
        return event

    async def nearby(
        self, center: GeoPoint, radius: float, unit: DistanceUnit = DistanceUnit.KM,
    ) -> List[DisasterEvent]:
        if radius <= 0:
            raise ValueError(f"Radius must be positive, got {radius}")
        return await self._store.nearby(center, radius, unit)

    async def add_reading(self, disaster_id: str, reading: SensorReading) -> DisasterEvent:
        event = await self._store.append_reading(disaster_id, reading)
        await publish_quietly(
            self._fanout,
            EVENT_NEW_READING,
            {"disasterId": event.id, "reading": reading.to_dict()},
            event,
        )
        return event
