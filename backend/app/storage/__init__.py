"""
storage — Disaster and alert-configuration stores.

Modules:
    base    — store protocols, query filters, updatable-field sets
    memory  — process-local implementation (default)
    sql     — async SQLAlchemy implementation (STORAGE_BACKEND=database)
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from backend.app.core.config import Settings, settings as default_settings
from backend.app.storage.base import AlertConfigStore, DisasterStore
from backend.app.storage.memory import InMemoryAlertConfigStore, InMemoryDisasterStore

logger = logging.getLogger(__name__)


def build_stores(config: Optional[Settings] = None) -> Tuple[DisasterStore, AlertConfigStore]:
    """Create the (disaster, alert-config) store pair for the configured backend."""
    config = config or default_settings
    backend = config.STORAGE_BACKEND.lower()

    if backend == "memory":
        logger.info("Using in-memory stores")
        return InMemoryDisasterStore(), InMemoryAlertConfigStore()

    if backend == "database":
        from backend.app.core.database import get_session_factory
        from backend.app.storage.sql import SqlAlertConfigStore, SqlDisasterStore

        factory = get_session_factory()
        logger.info("Using PostgreSQL stores")
        return SqlDisasterStore(factory), SqlAlertConfigStore(factory)

    raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND!r}")
