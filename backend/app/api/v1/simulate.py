"""
FastAPI route: Sensor simulation — feeds raw readings to the classifier.

    POST /api/simulate/earthquake   {magnitude, latitude, longitude, depth?, location?, sensorId?}
    POST /api/simulate/flood        {waterLevel, latitude, longitude, flowRate?, ...}
    POST /api/simulate/fire         {temperature, latitude, longitude, smokeLevel?, ...}
    POST /api/simulate/run          {iterations, seed?}  synthetic feed

A reading over threshold returns 201 with the created disaster; below
threshold returns 200 with no data.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from backend.app.api.deps import get_services
from backend.app.api.schemas import SimulationRunIn, envelope
from backend.app.domain.models import DisasterType
from backend.app.services.container import ServiceContainer
from backend.app.simulation.feed import SimulationFeed

router = APIRouter(prefix="/api/simulate", tags=["simulation"])


async def _simulate(
    disaster_type: DisasterType,
    reading: Dict[str, Any],
    services: ServiceContainer,
):
    label = disaster_type.value.capitalize()
    event = await services.ingestion.simulate_sensor_data(disaster_type, reading)
    if event is None:
        return {
            "success": True,
            "message": "Simulation processed but no disaster was created (below threshold)",
        }
    body = envelope(event.to_dict())
    body["message"] = f"{label} simulation processed successfully"
    return JSONResponse(status_code=201, content=body)


@router.post("/earthquake", summary="Simulate an earthquake sensor reading")
async def simulate_earthquake(
    reading: Dict[str, Any] = Body(..., examples=[{"magnitude": 5.2, "latitude": 35.68, "longitude": 139.65, "location": "Tokyo"}]),
    services: ServiceContainer = Depends(get_services),
):
    return await _simulate(DisasterType.EARTHQUAKE, reading, services)


@router.post("/flood", summary="Simulate a flood sensor reading")
async def simulate_flood(
    reading: Dict[str, Any] = Body(..., examples=[{"waterLevel": 3.4, "latitude": 35.68, "longitude": 139.65}]),
    services: ServiceContainer = Depends(get_services),
):
    return await _simulate(DisasterType.FLOOD, reading, services)


@router.post("/fire", summary="Simulate a fire sensor reading")
async def simulate_fire(
    reading: Dict[str, Any] = Body(..., examples=[{"temperature": 85, "latitude": 35.68, "longitude": 139.65}]),
    services: ServiceContainer = Depends(get_services),
):
    return await _simulate(DisasterType.FIRE, reading, services)


@router.post("/run", summary="Run the synthetic sensor feed")
async def run_feed(
    body: Optional[SimulationRunIn] = None,
    services: ServiceContainer = Depends(get_services),
):
    body = body or SimulationRunIn()
    feed = SimulationFeed(services.ingestion, seed=body.seed)
    summary = await feed.run(body.iterations)
    return envelope(summary.to_dict())
