"""
sql.py — PostgreSQL-backed stores (async SQLAlchemy 2.0).

Two tables mirror the two document collections:

    disaster_events   location as (longitude, latitude) floats with a
                      composite index; readings as a JSON array
    alert_configs     region and channels as JSON documents

Guarded transitions are conditional UPDATEs; the affected row count tells
whether this caller won the compare-and-set:

    UPDATE disaster_events SET alerts_sent = true
     WHERE id = :id AND alerts_sent = false

Radius search narrows candidates with a bounding box in SQL, then applies
the exact spherical check in Python.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    delete,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.core.errors import NotFoundError, PersistenceError
from backend.app.domain.models import (
    AlertConfig,
    AlertTargetType,
    ChannelSettings,
    DisasterEvent,
    DisasterStatus,
    DisasterType,
    GeoPoint,
    Region,
    SensorReading,
    utc_now,
)
from backend.app.domain.transitions import MarkAlertsSent, SetLastTriggered
from backend.app.spatial.radius_utils import (
    DistanceUnit,
    bounding_box,
    filter_within_radius,
)
from backend.app.storage.base import (
    ALERT_CONFIG_UPDATABLE,
    DISASTER_UPDATABLE,
    AlertConfigQuery,
    DisasterQuery,
    check_updatable,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ORM Tables
# ═══════════════════════════════════════════════════════════════════════════

class DisasterRow(Base):
    __tablename__ = "disaster_events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), index=True)
    longitude: Mapped[float] = mapped_column(Float)
    latitude: Mapped[float] = mapped_column(Float)
    severity: Mapped[int] = mapped_column(Integer, index=True)
    description: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16), default=DisasterStatus.DETECTED.value)
    readings: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    alerts_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    affected_area: Mapped[float] = mapped_column(Float, default=0.0)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_disaster_events_location", "latitude", "longitude"),)


class AlertConfigRow(Base):
    __tablename__ = "alert_configs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    disaster_type: Mapped[str] = mapped_column(String(16), index=True)
    region: Mapped[Dict[str, Any]] = mapped_column(JSON)
    severity_threshold: Mapped[int] = mapped_column(Integer, default=5)
    channels: Mapped[Dict[str, Any]] = mapped_column(JSON)
    cooldown_period: Mapped[int] = mapped_column(Integer, default=30)
    last_triggered: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ Domain
# ═══════════════════════════════════════════════════════════════════════════

def _disaster_from_row(row: DisasterRow) -> DisasterEvent:
    return DisasterEvent(
        id=row.id,
        type=DisasterType(row.type),
        location=GeoPoint(longitude=row.longitude, latitude=row.latitude),
        severity=row.severity,
        description=row.description,
        status=DisasterStatus(row.status),
        readings=tuple(SensorReading.from_dict(r) for r in row.readings or ()),
        alerts_sent=row.alerts_sent,
        affected_area=row.affected_area,
        start_time=row.start_time,
        end_time=row.end_time,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _disaster_values(event: DisasterEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "type": event.type.value,
        "longitude": event.location.longitude,
        "latitude": event.location.latitude,
        "severity": event.severity,
        "description": event.description,
        "status": event.status.value,
        "readings": [r.to_dict() for r in event.readings],
        "alerts_sent": event.alerts_sent,
        "affected_area": event.affected_area,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "created_at": event.created_at,
        "updated_at": event.updated_at,
    }


def _config_from_row(row: AlertConfigRow) -> AlertConfig:
    return AlertConfig(
        id=row.id,
        name=row.name,
        description=row.description or "",
        disaster_type=AlertTargetType(row.disaster_type),
        region=Region.from_dict(row.region or {}),
        severity_threshold=row.severity_threshold,
        channels=ChannelSettings.from_dict(row.channels),
        cooldown_period=row.cooldown_period,
        last_triggered=row.last_triggered,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _config_values(config: AlertConfig) -> Dict[str, Any]:
    return {
        "id": config.id,
        "name": config.name,
        "description": config.description,
        "disaster_type": config.disaster_type.value,
        "region": config.region.to_dict(),
        "severity_threshold": config.severity_threshold,
        "channels": config.channels.to_dict(),
        "cooldown_period": config.cooldown_period,
        "last_triggered": config.last_triggered,
        "is_active": config.is_active,
        "created_at": config.created_at,
        "updated_at": config.updated_at,
    }


class _SqlStore:
    """Session handling shared by both stores."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", operation, exc)
            raise PersistenceError(operation, str(exc)) from exc


# ═══════════════════════════════════════════════════════════════════════════
# Disaster Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlDisasterStore(_SqlStore):

    async def create(self, event: DisasterEvent) -> DisasterEvent:
        async with self._transaction("disaster.create") as session:
            session.add(DisasterRow(**_disaster_values(event)))
        return event

    async def get(self, disaster_id: str) -> Optional[DisasterEvent]:
        async with self._transaction("disaster.get") as session:
            row = await session.get(DisasterRow, disaster_id)
            return _disaster_from_row(row) if row else None

    async def list(self, query: DisasterQuery) -> List[DisasterEvent]:
        stmt = select(DisasterRow)
        if query.type is not None:
            stmt = stmt.where(DisasterRow.type == query.type.value)
        if query.min_severity is not None:
            stmt = stmt.where(DisasterRow.severity >= query.min_severity)
        if query.status is not None:
            stmt = stmt.where(DisasterRow.status == query.status.value)
        if query.start_date is not None:
            stmt = stmt.where(DisasterRow.start_time >= query.start_date)
        if query.end_date is not None:
            stmt = stmt.where(DisasterRow.start_time <= query.end_date)
        stmt = stmt.order_by(DisasterRow.created_at.desc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._transaction("disaster.list") as session:
            rows = (await session.scalars(stmt)).all()
            return [_disaster_from_row(r) for r in rows]

    async def update(self, disaster_id: str, changes: Mapping[str, Any]) -> DisasterEvent:
        check_updatable(changes, DISASTER_UPDATABLE)
        async with self._transaction("disaster.update") as session:
            row = await self._require(session, disaster_id, lock=True)
            updated = replace(_disaster_from_row(row), **changes, updated_at=utc_now())
            for key, value in _disaster_values(updated).items():
                setattr(row, key, value)
        return updated

    async def delete(self, disaster_id: str) -> DisasterEvent:
        async with self._transaction("disaster.delete") as session:
            row = await self._require(session, disaster_id)
            event = _disaster_from_row(row)
            await session.execute(delete(DisasterRow).where(DisasterRow.id == disaster_id))
        return event

    async def nearby(
        self, center: GeoPoint, radius: float, unit: DistanceUnit = DistanceUnit.KM,
    ) -> List[DisasterEvent]:
        min_lat, max_lat, min_lon, max_lon = bounding_box(center, radius, unit)
        stmt = (
            select(DisasterRow)
            .where(DisasterRow.latitude.between(min_lat, max_lat))
            .where(DisasterRow.longitude.between(min_lon, max_lon))
            .order_by(DisasterRow.created_at.desc())
        )
        async with self._transaction("disaster.nearby") as session:
            rows = (await session.scalars(stmt)).all()
            candidates = [_disaster_from_row(r) for r in rows]
        return filter_within_radius(center, candidates, radius, unit=unit)

    async def append_reading(self, disaster_id: str, reading: SensorReading) -> DisasterEvent:
        async with self._transaction("disaster.append_reading") as session:
            row = await self._require(session, disaster_id, lock=True)
            # Reassign so the JSON column is flagged dirty
            row.readings = [*(row.readings or []), reading.to_dict()]
            row.updated_at = utc_now()
            return _disaster_from_row(row)

    async def apply(self, command: MarkAlertsSent) -> bool:
        stmt = (
            update(DisasterRow)
            .where(DisasterRow.id == command.disaster_id)
            .values(alerts_sent=True, updated_at=utc_now())
        )
        if command.guarded:
            stmt = stmt.where(DisasterRow.alerts_sent.is_(False))

        async with self._transaction("disaster.mark_alerts_sent") as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return True
            await self._require(session, command.disaster_id)
            return False

    @staticmethod
    async def _require(session: AsyncSession, disaster_id: str, *, lock: bool = False) -> DisasterRow:
        row = await session.get(DisasterRow, disaster_id, with_for_update=lock)
        if row is None:
            raise NotFoundError("DisasterEvent", id=disaster_id)
        return row


# ═══════════════════════════════════════════════════════════════════════════
# Alert Config Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlAlertConfigStore(_SqlStore):

    async def create(self, config: AlertConfig) -> AlertConfig:
        async with self._transaction("alert_config.create") as session:
            session.add(AlertConfigRow(**_config_values(config)))
        return config

    async def get(self, config_id: str) -> Optional[AlertConfig]:
        async with self._transaction("alert_config.get") as session:
            row = await session.get(AlertConfigRow, config_id)
            return _config_from_row(row) if row else None

    async def list(self, query: AlertConfigQuery) -> List[AlertConfig]:
        stmt = select(AlertConfigRow)
        if query.disaster_type is not None:
            stmt = stmt.where(AlertConfigRow.disaster_type == query.disaster_type.value)
        if query.is_active is not None:
            stmt = stmt.where(AlertConfigRow.is_active.is_(query.is_active))
        stmt = stmt.order_by(AlertConfigRow.created_at.desc())

        async with self._transaction("alert_config.list") as session:
            rows = (await session.scalars(stmt)).all()
            return [_config_from_row(r) for r in rows]

    async def update(self, config_id: str, changes: Mapping[str, Any]) -> AlertConfig:
        check_updatable(changes, ALERT_CONFIG_UPDATABLE)
        async with self._transaction("alert_config.update") as session:
            row = await self._require(session, config_id, lock=True)
            updated = replace(_config_from_row(row), **changes, updated_at=utc_now())
            for key, value in _config_values(updated).items():
                # last_triggered belongs to the matching engine
                if key != "last_triggered":
                    setattr(row, key, value)
        return updated

    async def delete(self, config_id: str) -> AlertConfig:
        async with self._transaction("alert_config.delete") as session:
            row = await self._require(session, config_id)
            config = _config_from_row(row)
            await session.execute(delete(AlertConfigRow).where(AlertConfigRow.id == config_id))
        return config

    async def find_matching(self, disaster: DisasterEvent) -> List[AlertConfig]:
        stmt = (
            select(AlertConfigRow)
            .where(AlertConfigRow.is_active.is_(True))
            .where(
                AlertConfigRow.disaster_type.in_(
                    [disaster.type.value, AlertTargetType.ALL.value]
                )
            )
            .where(AlertConfigRow.severity_threshold <= disaster.severity)
        )
        async with self._transaction("alert_config.find_matching") as session:
            rows = (await session.scalars(stmt)).all()
            return [_config_from_row(r) for r in rows]

    async def apply(self, command: SetLastTriggered) -> bool:
        stmt = (
            update(AlertConfigRow)
            .where(AlertConfigRow.id == command.config_id)
            .values(last_triggered=command.triggered_at)
        )
        if command.guarded:
            if command.expected_previous is None:
                stmt = stmt.where(AlertConfigRow.last_triggered.is_(None))
            else:
                stmt = stmt.where(AlertConfigRow.last_triggered == command.expected_previous)
        else:
            # Never move the timestamp backwards
            stmt = stmt.where(
                or_(
                    AlertConfigRow.last_triggered.is_(None),
                    AlertConfigRow.last_triggered <= command.triggered_at,
                )
            )

        async with self._transaction("alert_config.set_last_triggered") as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return True
            await self._require(session, command.config_id)
            if command.guarded:
                logger.info(
                    "Config %s was triggered concurrently — skipping",
                    command.config_id,
                )
            return not command.guarded

    @staticmethod
    async def _require(session: AsyncSession, config_id: str, *, lock: bool = False) -> AlertConfigRow:
        row = await session.get(AlertConfigRow, config_id, with_for_update=lock)
        if row is None:
            raise NotFoundError("AlertConfig", id=config_id)
        return row
