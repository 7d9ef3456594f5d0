"""
Pydantic schemas for the disaster and alert-configuration API.

Separated from the route handlers so they are reusable across the
codebase (WebSocket handlers, simulation tooling, tests).

Request bodies accept camelCase (``severityThreshold``) as sent by the
dashboard, and snake_case for scripted clients. Update schemas forbid
unknown fields, which keeps immutable fields (``type``, ``location``,
``lastTriggered``) out of CRUD updates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.app.core.config import settings
from backend.app.domain.models import (
    AlertConfig,
    AlertTargetType,
    ChannelSettings,
    DisasterCreate,
    DisasterStatus,
    DisasterType,
    GeoPoint,
    Region,
    RegionKind,
    SensorReading,
    generate_id,
    utc_now,
)


def envelope(data: Any, *, count: Optional[int] = None) -> Dict[str, Any]:
    """Success envelope: ``{"success": true, "data": ..., "count"?: n}``."""
    body: Dict[str, Any] = {"success": True}
    if count is not None:
        body["count"] = count
    body["data"] = data
    return body


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Base models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelPatch(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid",
    )

    def to_changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent, snake_case keyed."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

class PointIn(CamelModel):
    """GeoJSON point: ``{"type": "Point", "coordinates": [lon, lat]}``."""
    type: str = Field(default="Point", pattern="^Point$")
    coordinates: List[float] = Field(
        ..., min_length=2, max_length=2, examples=[[139.6503, 35.6762]],
    )

    def to_domain(self) -> GeoPoint:
        lon, lat = self.coordinates
        return GeoPoint(longitude=lon, latitude=lat)


class ReadingIn(CamelModel):
    sensor_id: str = Field(..., min_length=1, examples=["SENSOR-7"])
    value: float = Field(..., examples=[4.2])
    timestamp: Optional[datetime] = None

    def to_domain(self) -> SensorReading:
        return SensorReading(
            sensor_id=self.sensor_id,
            value=self.value,
            timestamp=self.timestamp or utc_now(),
        )


# ---------------------------------------------------------------------------
# Disasters
# ---------------------------------------------------------------------------

class DisasterCreateIn(CamelModel):
    """Request body for POST /api/disasters."""
    type: DisasterType
    location: PointIn
    severity: int = Field(..., ge=1, le=10)
    description: str = Field(..., min_length=1)
    status: DisasterStatus = DisasterStatus.DETECTED
    readings: List[ReadingIn] = Field(default_factory=list)
    affected_area: float = Field(0.0, ge=0)
    start_time: Optional[datetime] = None

    @field_validator("type", "status", mode="before")
    @classmethod
    def _normalize_enums(cls, value: Any) -> Any:
        return _upper(value)

    def to_domain(self) -> DisasterCreate:
        return DisasterCreate(
            type=self.type,
            location=self.location.to_domain(),
            severity=self.severity,
            description=self.description,
            readings=tuple(r.to_domain() for r in self.readings),
            status=self.status,
            affected_area=self.affected_area,
            start_time=self.start_time,
        )


class DisasterUpdateIn(CamelPatch):
    """Request body for PUT /api/disasters/{id}; type and location are immutable."""
    severity: Optional[int] = Field(None, ge=1, le=10)
    description: Optional[str] = Field(None, min_length=1)
    status: Optional[DisasterStatus] = None
    affected_area: Optional[float] = Field(None, ge=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        return _upper(value)

    @field_validator("severity", "description", "status", "affected_area", "start_time")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        return value


# ---------------------------------------------------------------------------
# Alert configurations
# ---------------------------------------------------------------------------

class RegionIn(CamelModel):
    """``Point`` (coordinates [lon, lat] + radiusKm) or ``Polygon`` (rings)."""
    type: RegionKind = RegionKind.POLYGON
    coordinates: List[Any] = Field(default_factory=list)
    radius_km: Optional[float] = Field(None, gt=0)

    def to_domain(self) -> Region:
        try:
            region = Region.from_dict(self.model_dump(by_alias=True, exclude_none=True))
        except (TypeError, IndexError, ValueError) as exc:
            raise ValueError(f"Malformed region coordinates: {exc}") from None
        if region.kind == RegionKind.POINT and region.coordinates:
            if len(region.coordinates) != 2:
                raise ValueError("Point region needs [longitude, latitude]")
            GeoPoint(longitude=region.coordinates[0], latitude=region.coordinates[1])
        return region


class ChannelToggleIn(CamelModel):
    enabled: bool = False
    recipients: List[str] = Field(default_factory=list)


class PushChannelIn(CamelModel):
    enabled: bool = True


class EmergencyServicesIn(CamelModel):
    enabled: bool = False
    service_ids: List[str] = Field(default_factory=list)


class ChannelsIn(CamelModel):
    sms: ChannelToggleIn = Field(default_factory=ChannelToggleIn)
    email: ChannelToggleIn = Field(default_factory=ChannelToggleIn)
    push: PushChannelIn = Field(default_factory=PushChannelIn)
    emergency_services: EmergencyServicesIn = Field(default_factory=EmergencyServicesIn)

    def to_domain(self) -> ChannelSettings:
        return ChannelSettings.from_dict(self.model_dump(by_alias=True))


class AlertConfigCreateIn(CamelModel):
    """Request body for POST /api/alerts."""
    name: str = Field(..., min_length=1, examples=["Tokyo earthquakes"])
    description: str = ""
    disaster_type: AlertTargetType
    region: RegionIn = Field(default_factory=RegionIn)
    severity_threshold: int = Field(
        default_factory=lambda: settings.DEFAULT_SEVERITY_THRESHOLD, ge=1, le=10,
    )
    channels: ChannelsIn = Field(default_factory=ChannelsIn)
    cooldown_period: int = Field(
        default_factory=lambda: settings.DEFAULT_COOLDOWN_MINUTES, ge=0,
        description="Minutes between two triggers of this config",
    )
    is_active: bool = True

    @field_validator("disaster_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _upper(value)

    def to_domain(self) -> AlertConfig:
        now = utc_now()
        return AlertConfig(
            id=generate_id(),
            name=self.name,
            description=self.description,
            disaster_type=self.disaster_type,
            region=self.region.to_domain(),
            severity_threshold=self.severity_threshold,
            channels=self.channels.to_domain(),
            cooldown_period=self.cooldown_period,
            is_active=self.is_active,
            created_at=now,
            updated_at=now,
        )


class AlertConfigUpdateIn(CamelPatch):
    """Request body for PUT /api/alerts/{id}; lastTriggered is not writable."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    disaster_type: Optional[AlertTargetType] = None
    region: Optional[RegionIn] = None
    severity_threshold: Optional[int] = Field(None, ge=1, le=10)
    channels: Optional[ChannelsIn] = None
    cooldown_period: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("disaster_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _upper(value)

    @field_validator(
        "name", "description", "disaster_type", "region", "severity_threshold",
        "channels", "cooldown_period", "is_active",
    )
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may not be null")
        return value

    def to_changes(self) -> Dict[str, Any]:
        changes = super().to_changes()
        if "region" in changes:
            changes["region"] = self.region.to_domain()
        if "channels" in changes:
            changes["channels"] = self.channels.to_domain()
        return changes


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

class SimulationRunIn(CamelModel):
    """Request body for POST /api/simulate/run."""
    iterations: int = Field(10, ge=1, le=500)
    seed: Optional[int] = None
