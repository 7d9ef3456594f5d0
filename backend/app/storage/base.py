"""
base.py — Store contracts for disaster events and alert configurations.

Both stores are treated as opaque document stores: the rest of the system
talks to them through query filters, a geo-radius lookup, and the two
transition commands from ``domain.transitions``.

Implementations:
    memory.py — process-local dicts (development, tests)
    sql.py    — async SQLAlchemy over PostgreSQL

Failures of the backing store surface as ``PersistenceError``; unknown ids
on single-entity operations surface as ``NotFoundError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol

from backend.app.domain.models import (
    AlertConfig,
    AlertTargetType,
    DisasterEvent,
    DisasterStatus,
    DisasterType,
    GeoPoint,
    SensorReading,
    as_utc,
)
from backend.app.domain.transitions import MarkAlertsSent, SetLastTriggered
from backend.app.spatial.radius_utils import DistanceUnit

# Fields CRUD updates may touch. type/location/readings/alerts_sent and
# last_triggered are deliberately absent.
DISASTER_UPDATABLE = frozenset(
    {"severity", "description", "status", "affected_area", "start_time", "end_time"}
)
ALERT_CONFIG_UPDATABLE = frozenset(
    {
        "name", "description", "disaster_type", "region", "severity_threshold",
        "channels", "cooldown_period", "is_active",
    }
)


@dataclass(frozen=True)
class DisasterQuery:
    """Filter for listing disasters (newest first)."""
    type: Optional[DisasterType] = None
    min_severity: Optional[int] = None
    status: Optional[DisasterStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = 20

    def __post_init__(self) -> None:
        for name in ("start_date", "end_date"):
            object.__setattr__(self, name, as_utc(getattr(self, name)))

    def matches(self, event: DisasterEvent) -> bool:
        if self.type is not None and event.type != self.type:
            return False
        if self.min_severity is not None and event.severity < self.min_severity:
            return False
        if self.status is not None and event.status != self.status:
            return False
        if self.start_date is not None and event.start_time < self.start_date:
            return False
        if self.end_date is not None and event.start_time > self.end_date:
            return False
        return True


@dataclass(frozen=True)
class AlertConfigQuery:
    """Filter for listing alert configurations (newest first)."""
    disaster_type: Optional[AlertTargetType] = None
    is_active: Optional[bool] = None

    def matches(self, config: AlertConfig) -> bool:
        if self.disaster_type is not None and config.disaster_type != self.disaster_type:
            return False
        if self.is_active is not None and config.is_active != self.is_active:
            return False
        return True


def check_updatable(changes: Mapping[str, Any], allowed: frozenset) -> None:
    illegal = sorted(set(changes) - allowed)
    if illegal:
        raise ValueError(f"Fields cannot be updated: {', '.join(illegal)}")


class DisasterStore(Protocol):
    async def create(self, event: DisasterEvent) -> DisasterEvent: ...

    async def get(self, disaster_id: str) -> Optional[DisasterEvent]: ...

    async def list(self, query: DisasterQuery) -> List[DisasterEvent]: ...

    async def update(self, disaster_id: str, changes: Mapping[str, Any]) -> DisasterEvent: ...

    async def delete(self, disaster_id: str) -> DisasterEvent: ...

    async def nearby(
        self, center: GeoPoint, radius: float, unit: DistanceUnit = DistanceUnit.KM,
    ) -> List[DisasterEvent]: ...

    async def append_reading(self, disaster_id: str, reading: SensorReading) -> DisasterEvent: ...

    async def apply(self, command: MarkAlertsSent) -> bool:
        """Apply the transition; False when a guarded command lost the race."""
        ...


class AlertConfigStore(Protocol):
    async def create(self, config: AlertConfig) -> AlertConfig: ...

    async def get(self, config_id: str) -> Optional[AlertConfig]: ...

    async def list(self, query: AlertConfigQuery) -> List[AlertConfig]: ...

    async def update(self, config_id: str, changes: Mapping[str, Any]) -> AlertConfig: ...

    async def delete(self, config_id: str) -> AlertConfig: ...

    async def find_matching(self, disaster: DisasterEvent) -> List[AlertConfig]:
        """Active configs targeting the disaster's type (or ALL) at or below its severity."""
        ...

    async def apply(self, command: SetLastTriggered) -> bool:
        """Apply the transition; False when a guarded command lost the race."""
        ...
