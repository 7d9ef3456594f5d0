"""
models.py — Domain entities for disaster events and alert configurations.

Defines:
    • DisasterType / AlertTargetType / DisasterStatus — enums
    • GeoPoint        — (longitude, latitude) point, GeoJSON order
    • SensorReading   — one reading appended to a disaster
    • Region          — alert-config geometry (point + radius, or polygon)
    • ChannelSettings — per-config notification channel toggles
    • DisasterEvent   — persisted disaster snapshot
    • AlertConfig     — persisted alert rule snapshot
    • DisasterCreate  — creation request produced by the classifier
    • AlertPayload    — normalized real-time alert message

All entities are frozen snapshots. State changes go through
``dataclasses.replace`` (see transitions.py) and are written back by a
store, so a snapshot held by one task never changes under it.

Wire format is camelCase to match what dashboard clients consume:

    {"id": "...", "type": "FLOOD", "location": {"type": "Point",
     "coordinates": [lon, lat]}, "severity": 6, "alertsSent": false, ...}
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DisasterType(str, Enum):
    """Hazard type of a disaster event."""
    EARTHQUAKE = "EARTHQUAKE"
    FLOOD      = "FLOOD"
    FIRE       = "FIRE"
    STORM      = "STORM"
    OTHER      = "OTHER"


class AlertTargetType(str, Enum):
    """Which disaster types an alert configuration listens to."""
    EARTHQUAKE = "EARTHQUAKE"
    FLOOD      = "FLOOD"
    FIRE       = "FIRE"
    STORM      = "STORM"
    ALL        = "ALL"


class DisasterStatus(str, Enum):
    """Response lifecycle — any transition allowed, by external action only."""
    DETECTED   = "DETECTED"
    MONITORING = "MONITORING"
    RESPONDING = "RESPONDING"
    CONTAINED  = "CONTAINED"
    RESOLVED   = "RESOLVED"


class RegionKind(str, Enum):
    POINT   = "Point"
    POLYGON = "Polygon"


SEVERITY_MIN = 1
SEVERITY_MAX = 10


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _check_severity(value: int, name: str = "severity") -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if not (SEVERITY_MIN <= value <= SEVERITY_MAX):
        raise ValueError(
            f"{name} must be in [{SEVERITY_MIN}, {SEVERITY_MAX}], got {value}"
        )


# ═══════════════════════════════════════════════════════════════════════════
# Value Objects
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GeoPoint:
    """A geographic point in decimal degrees (GeoJSON order: lon, lat)."""
    longitude: float
    latitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoPoint":
        lon, lat = data["coordinates"][:2]
        return cls(longitude=float(lon), latitude=float(lat))


@dataclass(frozen=True)
class SensorReading:
    """A single sensor value attached to a disaster."""
    sensor_id: str
    value: float
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sensorId": self.sensor_id,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SensorReading":
        ts = data.get("timestamp")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return cls(
            sensor_id=data["sensorId"],
            value=float(data["value"]),
            timestamp=ts or utc_now(),
        )


@dataclass(frozen=True)
class Region:
    """
    Alert-config geometry.

    ``Point``   — coordinates = (lon, lat); ``radius_km`` bounds the zone.
    ``Polygon`` — coordinates = rings of (lon, lat); the first ring is the
                  outer boundary, later rings are holes.
    """
    kind: RegionKind = RegionKind.POLYGON
    coordinates: Tuple[Any, ...] = ()
    radius_km: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == RegionKind.POINT:
            coords: Any = list(self.coordinates)
        else:
            coords = [[list(p) for p in ring] for ring in self.coordinates]
        d: Dict[str, Any] = {"type": self.kind.value, "coordinates": coords}
        if self.radius_km is not None:
            d["radiusKm"] = self.radius_km
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Region":
        kind = RegionKind(data.get("type", RegionKind.POLYGON.value))
        raw = data.get("coordinates") or []
        if kind == RegionKind.POINT:
            coords: Tuple[Any, ...] = tuple(float(c) for c in raw[:2])
        else:
            coords = tuple(
                tuple((float(p[0]), float(p[1])) for p in ring) for ring in raw
            )
        radius = data.get("radiusKm")
        return cls(
            kind=kind,
            coordinates=coords,
            radius_km=float(radius) if radius is not None else None,
        )


@dataclass(frozen=True)
class ChannelToggle:
    """One notification channel: on/off plus its recipient list."""
    enabled: bool = False
    recipients: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChannelSettings:
    """Per-config channel toggles. Push is on unless switched off."""
    sms: ChannelToggle = ChannelToggle()
    email: ChannelToggle = ChannelToggle()
    push: ChannelToggle = ChannelToggle(enabled=True)
    emergency_services: ChannelToggle = ChannelToggle()

    def enabled_channels(self) -> List[str]:
        """Channels this config would fire on."""
        names = []
        if self.sms.enabled:
            names.append("sms")
        if self.email.enabled:
            names.append("email")
        if self.push.enabled:
            names.append("push")
        if self.emergency_services.enabled:
            names.append("emergencyServices")
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sms": {"enabled": self.sms.enabled, "recipients": list(self.sms.recipients)},
            "email": {"enabled": self.email.enabled, "recipients": list(self.email.recipients)},
            "push": {"enabled": self.push.enabled},
            "emergencyServices": {
                "enabled": self.emergency_services.enabled,
                "serviceIds": list(self.emergency_services.recipients),
            },
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChannelSettings":
        data = data or {}

        def _toggle(key: str, list_key: str, default: bool) -> ChannelToggle:
            raw = data.get(key) or {}
            return ChannelToggle(
                enabled=bool(raw.get("enabled", default)),
                recipients=tuple(raw.get(list_key) or ()),
            )

        return cls(
            sms=_toggle("sms", "recipients", False),
            email=_toggle("email", "recipients", False),
            push=_toggle("push", "recipients", True),
            emergency_services=_toggle("emergencyServices", "serviceIds", False),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Entities
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DisasterEvent:
    """
    A detected hazard occurrence.

    ``type`` and ``location`` never change after creation. ``readings`` only
    grows. ``alerts_sent`` flips false → true once, by the matching engine.
    """
    id: str
    type: DisasterType
    location: GeoPoint
    severity: int
    description: str
    status: DisasterStatus = DisasterStatus.DETECTED
    readings: Tuple[SensorReading, ...] = ()
    alerts_sent: bool = False
    affected_area: float = 0.0
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _check_severity(self.severity)
        if not self.description:
            raise ValueError("description is required")
        for name in ("start_time", "end_time"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "location": self.location.to_dict(),
            "severity": self.severity,
            "description": self.description,
            "status": self.status.value,
            "readings": [r.to_dict() for r in self.readings],
            "alertsSent": self.alerts_sent,
            "affectedArea": self.affected_area,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class AlertConfig:
    """A standing rule: which disasters notify, through what, how often."""
    id: str
    name: str
    disaster_type: AlertTargetType
    region: Region = Region()
    severity_threshold: int = 5
    channels: ChannelSettings = ChannelSettings()
    cooldown_period: int = 30  # minutes
    last_triggered: Optional[datetime] = None
    is_active: bool = True
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _check_severity(self.severity_threshold, "severityThreshold")
        object.__setattr__(self, "last_triggered", as_utc(self.last_triggered))
        if self.cooldown_period < 0:
            raise ValueError(
                f"cooldownPeriod must be >= 0, got {self.cooldown_period}"
            )

    def targets(self, disaster_type: DisasterType) -> bool:
        """True if this config listens to ``disaster_type``."""
        return (
            self.disaster_type == AlertTargetType.ALL
            or self.disaster_type.value == disaster_type.value
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "disasterType": self.disaster_type.value,
            "region": self.region.to_dict(),
            "severityThreshold": self.severity_threshold,
            "channels": self.channels.to_dict(),
            "cooldownPeriod": self.cooldown_period,
            "lastTriggered": _iso(self.last_triggered),
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class DisasterCreate:
    """Everything needed to persist a new DisasterEvent."""
    type: DisasterType
    location: GeoPoint
    severity: int
    description: str
    readings: Tuple[SensorReading, ...] = ()
    status: DisasterStatus = DisasterStatus.DETECTED
    affected_area: float = 0.0
    start_time: Optional[datetime] = None

    def __post_init__(self) -> None:
        _check_severity(self.severity)
        if not self.description:
            raise ValueError("description is required")
        object.__setattr__(self, "start_time", as_utc(self.start_time))

    def build(self, *, now: Optional[datetime] = None) -> DisasterEvent:
        """Materialise a fresh DisasterEvent with a new id."""
        now = now or utc_now()
        return DisasterEvent(
            id=generate_id(),
            type=self.type,
            location=self.location,
            severity=self.severity,
            description=self.description,
            status=self.status,
            readings=tuple(self.readings),
            alerts_sent=False,
            affected_area=self.affected_area,
            start_time=self.start_time or now,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class AlertPayload:
    """The message fanned out on the ``disaster-alert`` event."""
    disaster_id: str
    alert_config_id: str
    disaster_type: DisasterType
    severity: int
    location: GeoPoint
    description: str
    timestamp: datetime = field(default_factory=utc_now)  # dispatch time
    channels: Sequence[str] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "disasterId": self.disaster_id,
            "alertConfigId": self.alert_config_id,
            "disasterType": self.disaster_type.value,
            "severity": self.severity,
            "location": self.location.to_dict(),
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "channels": list(self.channels),
        }
