"""
FastAPI route: Alert configurations + manual alert processing.

    GET    /api/alerts                       list (disasterType, isActive)
    POST   /api/alerts                       create
    GET    /api/alerts/{id}                  fetch one
    PUT    /api/alerts/{id}                  update
    DELETE /api/alerts/{id}                  delete
    POST   /api/alerts/trigger/{disasterId}  run a matching pass
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.api.deps import get_services
from backend.app.api.schemas import AlertConfigCreateIn, AlertConfigUpdateIn, envelope
from backend.app.alerts.matching_engine import MatchOutcome
from backend.app.core.errors import InvalidInputError, NotFoundError
from backend.app.domain.models import AlertTargetType
from backend.app.services.container import ServiceContainer
from backend.app.storage.base import AlertConfigQuery

router = APIRouter(prefix="/api/alerts", tags=["alert-configs"])

_TRIGGER_MESSAGES = {
    MatchOutcome.PROCESSED: "Alert processing triggered successfully",
    MatchOutcome.NO_MATCH: "No alert configuration matched this disaster",
    MatchOutcome.ALREADY_PROCESSED: "Alerts were already sent for this disaster",
}


def _parse_target(raw: Optional[str]) -> Optional[AlertTargetType]:
    if raw is None:
        return None
    try:
        return AlertTargetType(raw.strip().upper())
    except ValueError:
        valid = [t.value for t in AlertTargetType]
        raise InvalidInputError(
            f"Invalid disasterType '{raw}'. Must be one of: {valid}", field="disasterType",
        ) from None


@router.get("", summary="List alert configurations")
async def list_alert_configs(
    disaster_type: Optional[str] = Query(None, alias="disasterType", examples=["ALL"]),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    services: ServiceContainer = Depends(get_services),
):
    query = AlertConfigQuery(disaster_type=_parse_target(disaster_type), is_active=is_active)
    configs = await services.alert_configs.list(query)
    return envelope([c.to_dict() for c in configs], count=len(configs))


@router.post("", status_code=201, summary="Create an alert configuration")
async def create_alert_config(
    body: AlertConfigCreateIn,
    services: ServiceContainer = Depends(get_services),
):
    config = await services.alert_configs.create(body.to_domain())
    return envelope(config.to_dict())


@router.get("/{config_id}", summary="Get an alert configuration")
async def get_alert_config(
    config_id: str,
    services: ServiceContainer = Depends(get_services),
):
    config = await services.alert_configs.get(config_id)
    return envelope(config.to_dict())


@router.put("/{config_id}", summary="Update an alert configuration")
async def update_alert_config(
    config_id: str,
    body: AlertConfigUpdateIn,
    services: ServiceContainer = Depends(get_services),
):
    config = await services.alert_configs.update(config_id, body.to_changes())
    return envelope(config.to_dict())


@router.delete("/{config_id}", summary="Delete an alert configuration")
async def delete_alert_config(
    config_id: str,
    services: ServiceContainer = Depends(get_services),
):
    await services.alert_configs.delete(config_id)
    return envelope({})


@router.post(
    "/trigger/{disaster_id}",
    summary="Run alert matching for a disaster",
    description=(
        "Manual entry into the matching engine, bypassing classification. "
        "A disaster whose alerts were already sent is left untouched."
    ),
)
async def trigger_alert_process(
    disaster_id: str,
    services: ServiceContainer = Depends(get_services),
):
    report = await services.ingestion.process_alerts(disaster_id)
    if report.outcome == MatchOutcome.NOT_FOUND:
        raise NotFoundError("DisasterEvent", id=disaster_id)

    body = envelope(report.to_dict())
    body["processed"] = report.processed
    body["message"] = _TRIGGER_MESSAGES[report.outcome]
    return body
