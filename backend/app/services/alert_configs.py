"""
alert_configs.py — Alert-configuration CRUD.

``lastTriggered`` is owned by the matching engine and cannot be written
here; the store rejects it as a non-updatable field.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping

from backend.app.core.errors import NotFoundError
from backend.app.domain.models import AlertConfig
from backend.app.storage.base import AlertConfigQuery, AlertConfigStore

logger = logging.getLogger(__name__)


class AlertConfigService:

    def __init__(self, store: AlertConfigStore) -> None:
        self._store = store

    async def list(self, query: AlertConfigQuery) -> List[AlertConfig]:
        return await self._store.list(query)

    async def get(self, config_id: str) -> AlertConfig:
        config = await self._store.get(config_id)
        if config is None:
            raise NotFoundError("AlertConfig", id=config_id)
        return config

    async def create(self, config: AlertConfig) -> AlertConfig:
        created = await self._store.create(config)
        logger.info(
            "Alert config created: %s '%s' (%s, threshold=%d)",
            created.id, created.name, created.disaster_type.value, created.severity_threshold,
            extra={"alert_config_id": created.id},
        )
        return created

    async def update(self, config_id: str, changes: Mapping[str, Any]) -> AlertConfig:
        updated = await self._store.update(config_id, changes)
        logger.info("Alert config updated: %s", config_id, extra={"alert_config_id": config_id})
        return updated

    async def delete(self, config_id: str) -> AlertConfig:
        deleted = await self._store.delete(config_id)
        logger.info("Alert config deleted: %s", config_id, extra={"alert_config_id": config_id})
        return deleted
