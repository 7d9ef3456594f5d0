"""
container.py — Wires stores, fan-out, dispatcher, engine and services.

One container per application, built in the FastAPI lifespan and stored
on ``app.state.services``. Tests build their own with in-memory stores and
an injected clock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from backend.app.alerts.dispatcher import NotificationDispatcher, RealtimeDispatcher
from backend.app.alerts.matching_engine import AlertMatchingEngine
from backend.app.core.config import Settings, settings as default_settings
from backend.app.domain.models import utc_now
from backend.app.realtime.fanout import FanoutChannel
from backend.app.services.alert_configs import AlertConfigService
from backend.app.services.disasters import DisasterService
from backend.app.services.ingestion import IngestionService
from backend.app.storage import build_stores
from backend.app.storage.base import AlertConfigStore, DisasterStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: Settings
    disaster_store: DisasterStore
    config_store: AlertConfigStore
    fanout: FanoutChannel
    dispatcher: NotificationDispatcher
    engine: AlertMatchingEngine
    disasters: DisasterService
    alert_configs: AlertConfigService
    ingestion: IngestionService
    bridge: Optional[object] = None

    @classmethod
    def build(
        cls,
        config: Optional[Settings] = None,
        *,
        disaster_store: Optional[DisasterStore] = None,
        config_store: Optional[AlertConfigStore] = None,
        fanout: Optional[FanoutChannel] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ServiceContainer":
        config = config or default_settings
        if disaster_store is None or config_store is None:
            built_disasters, built_configs = build_stores(config)
            disaster_store = disaster_store or built_disasters
            config_store = config_store or built_configs

        fanout = fanout or FanoutChannel(queue_size=config.FANOUT_QUEUE_SIZE)
        dispatcher = dispatcher or RealtimeDispatcher(fanout, clock=clock)
        engine = AlertMatchingEngine(
            disaster_store,
            config_store,
            dispatcher,
            atomic=config.atomic_alerts,
            region_filter=config.ALERT_REGION_FILTER,
            clock=clock,
        )
        disasters = DisasterService(disaster_store, fanout)
        return cls(
            config=config,
            disaster_store=disaster_store,
            config_store=config_store,
            fanout=fanout,
            dispatcher=dispatcher,
            engine=engine,
            disasters=disasters,
            alert_configs=AlertConfigService(config_store),
            ingestion=IngestionService(disasters, engine),
        )

    async def start(self) -> None:
        """Open external connections for the configured backends."""
        if self.config.STORAGE_BACKEND == "database":
            from backend.app.core.database import init_db
            await init_db()

        if self.config.FANOUT_BACKEND == "redis":
            from backend.app.realtime.redis_bridge import RedisFanoutBridge
            bridge = RedisFanoutBridge(
                self.fanout,
                url=self.config.REDIS_URL,
                prefix=self.config.FANOUT_CHANNEL_PREFIX,
            )
            await bridge.start()
            self.fanout.attach_relay(bridge)
            self.bridge = bridge

        logger.info(
            "Services started (storage=%s, fanout=%s, alerts=%s, region_filter=%s)",
            self.config.STORAGE_BACKEND, self.config.FANOUT_BACKEND,
            "atomic" if self.engine.atomic else "best_effort", self.engine.region_filter,
        )

    async def stop(self) -> None:
        if self.bridge is not None:
            self.fanout.attach_relay(None)
            await self.bridge.stop()
            self.bridge = None

        if self.config.STORAGE_BACKEND == "database":
            from backend.app.core.database import close_db
            await close_db()
