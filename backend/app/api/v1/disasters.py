"""
FastAPI route: Disaster events — CRUD, radius search, sensor readings.

    GET    /api/disasters                 list (type, severity, status, dates, limit)
    POST   /api/disasters                 create       → new-disaster
    GET    /api/disasters/nearby          radius search (longitude, latitude, radius, unit)
    GET    /api/disasters/{id}            fetch one
    PUT    /api/disasters/{id}            update       → update-disaster
    DELETE /api/disasters/{id}            delete       → delete-disaster
    POST   /api/disasters/{id}/readings   add reading  → new-reading
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_services
from backend.app.api.schemas import (
    DisasterCreateIn,
    DisasterUpdateIn,
    ReadingIn,
    envelope,
)
from backend.app.classifier.thresholds import parse_disaster_type
from backend.app.core.config import settings
from backend.app.core.errors import InvalidInputError
from backend.app.domain.models import DisasterStatus, GeoPoint
from backend.app.services.container import ServiceContainer
from backend.app.spatial.radius_utils import DistanceUnit
from backend.app.storage.base import DisasterQuery

router = APIRouter(prefix="/api/disasters", tags=["disasters"])


def _parse_status(raw: Optional[str]) -> Optional[DisasterStatus]:
    if raw is None:
        return None
    try:
        return DisasterStatus(raw.strip().upper())
    except ValueError:
        valid = [s.value for s in DisasterStatus]
        raise InvalidInputError(
            f"Invalid status '{raw}'. Must be one of: {valid}", field="status",
        ) from None


@router.get(
    "",
    summary="List disaster events",
    description="Newest first. `severity` is a minimum; dates filter on startTime.",
)
async def list_disasters(
    type: Optional[str] = Query(None, examples=["FLOOD"]),
    severity: Optional[int] = Query(None, ge=1, le=10, description="Minimum severity"),
    status: Optional[str] = Query(None, examples=["DETECTED"]),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(settings.DEFAULT_LIST_LIMIT, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
):
    query = DisasterQuery(
        type=parse_disaster_type(type) if type else None,
        min_severity=severity,
        status=_parse_status(status),
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    events = await services.disasters.list(query)
    return envelope([e.to_dict() for e in events], count=len(events))


@router.post("", status_code=201, summary="Create a disaster event")
async def create_disaster(
    body: DisasterCreateIn,
    services: ServiceContainer = Depends(get_services),
):
    event = await services.disasters.create(body.to_domain())
    return envelope(event.to_dict())


@router.get(
    "/nearby",
    summary="Disasters within a radius",
    description="Great-circle search around (longitude, latitude); Earth radius 6371 km / 3959 mi.",
)
async def nearby_disasters(
    longitude: float = Query(..., ge=-180, le=180, examples=[139.6503]),
    latitude: float = Query(..., ge=-90, le=90, examples=[35.6762]),
    radius: float = Query(settings.DEFAULT_NEARBY_RADIUS, gt=0),
    unit: DistanceUnit = Query(DistanceUnit.KM),
    services: ServiceContainer = Depends(get_services),
):
    center = GeoPoint(longitude=longitude, latitude=latitude)
    events = await services.disasters.nearby(center, radius, unit)
    return envelope([e.to_dict() for e in events], count=len(events))


@router.get("/{disaster_id}", summary="Get a disaster event")
async def get_disaster(
    disaster_id: str,
    services: ServiceContainer = Depends(get_services),
):
    event = await services.disasters.get(disaster_id)
    return envelope(event.to_dict())


@router.put("/{disaster_id}", summary="Update a disaster event")
async def update_disaster(
    disaster_id: str,
    body: DisasterUpdateIn,
    services: ServiceContainer = Depends(get_services),
):
    event = await services.disasters.update(disaster_id, body.to_changes())
    return envelope(event.to_dict())


@router.delete("/{disaster_id}", summary="Delete a disaster event")
async def delete_disaster(
    disaster_id: str,
    services: ServiceContainer = Depends(get_services),
):
    await services.disasters.delete(disaster_id)
    return envelope({})


@router.post("/{disaster_id}/readings", summary="Append a sensor reading")
async def add_reading(
    disaster_id: str,
    body: ReadingIn,
    services: ServiceContainer = Depends(get_services),
):
    event = await services.disasters.add_reading(disaster_id, body.to_domain())
    return envelope(event.to_dict())
