"""
ingestion.py — Sensor reading → disaster → alerts.

    simulate_sensor_data(type, reading)
        1. classify               (InvalidInputError propagates)
        2. below threshold        → None
        3. create disaster        → publish new-disaster
        4. run a matching pass    (failures logged, never raised)

    trigger_alert_process(disaster_id)
        Manual matching pass; True when the pass closed the disaster.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from backend.app.alerts.matching_engine import AlertMatchingEngine, MatchReport
from backend.app.classifier.thresholds import DEFAULT_RULES, classify
from backend.app.core.errors import DisasterAPIError
from backend.app.domain.models import DisasterEvent
from backend.app.services.disasters import DisasterService

logger = logging.getLogger(__name__)


class IngestionService:

    def __init__(
        self,
        disasters: DisasterService,
        engine: AlertMatchingEngine,
        *,
        rules=DEFAULT_RULES,
    ) -> None:
        self._disasters = disasters
        self._engine = engine
        self._rules = rules

    async def simulate_sensor_data(
        self, disaster_type: Any, reading: Mapping[str, Any],
    ) -> Optional[DisasterEvent]:
        """Feed one raw reading through the pipeline; the disaster, or None."""
        request = classify(disaster_type, reading, rules=self._rules)
        if request is None:
            return None

        event = await self._disasters.create(request)
        try:
            await self._engine.process(event.id)
        except DisasterAPIError as exc:
            logger.error(
                "Alert matching failed for new disaster %s: %s", event.id, exc.message,
                extra={"disaster_id": event.id},
            )
        return event

    async def process_alerts(self, disaster_id: str) -> MatchReport:
        """Matching pass with its full report; store failures propagate."""
        return await self._engine.process(disaster_id)

    async def trigger_alert_process(self, disaster_id: str) -> bool:
        try:
            report = await self.process_alerts(disaster_id)
        except DisasterAPIError as exc:
            logger.error(
                "Manual alert processing failed for %s: %s", disaster_id, exc.message,
                extra={"disaster_id": disaster_id},
            )
            return False
        return report.processed
