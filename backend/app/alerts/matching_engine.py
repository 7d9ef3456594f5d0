"""
matching_engine.py — Decides which alert configurations fire for a disaster.

═══════════════════════════════════════════════════════════════════════════
MATCHING PASS
═══════════════════════════════════════════════════════════════════════════

    process(disaster_id)
      │
      ├─ disaster missing ───────────────────────────▶ NOT_FOUND
      ├─ alertsSent already true ────────────────────▶ ALREADY_PROCESSED
      │
      ├─ candidates = active configs where
      │     disasterType ∈ {disaster.type, ALL}
      │     severityThreshold ≤ disaster.severity
      │     (region contains disaster, if ALERT_REGION_FILTER)
      │
      ├─ no candidates ─── alertsSent := true ───────▶ NO_MATCH
      │
      ├─ per config, independently:
      │     now − lastTriggered < cooldownPeriod  → suppressed
      │     otherwise                             → dispatch,
      │                                             lastTriggered := now
      │
      └─ alertsSent := true ─────────────────────────▶ PROCESSED

A store failure on one config is logged and recorded in the report; the
remaining configs and the final alertsSent write still run.

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY MODES
═══════════════════════════════════════════════════════════════════════════

    atomic (default)
        alertsSent is claimed with a compare-and-set before any dispatch;
        a pass that loses the claim stops as ALREADY_PROCESSED.
        lastTriggered is claimed with a compare-and-set on the value read
        before dispatching; a pass that loses it treats the config as
        suppressed. Two concurrent passes never double-dispatch.

    best_effort
        dispatch first, then plain writes of lastTriggered and alertsSent.
        Two passes racing on the same disaster or config may both dispatch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.region import region_contains
from backend.app.core.config import settings
from backend.app.core.errors import DisasterAPIError, PersistenceError
from backend.app.core.logging_config import log_context
from backend.app.domain.models import AlertConfig, AlertPayload, DisasterEvent, utc_now
from backend.app.domain.transitions import (
    cooldown_remaining,
    mark_alerts_sent,
    record_trigger,
)
from backend.app.storage.base import AlertConfigStore, DisasterStore

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

class MatchOutcome(str, Enum):
    NOT_FOUND         = "NOT_FOUND"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NO_MATCH          = "NO_MATCH"
    PROCESSED         = "PROCESSED"


@dataclass
class MatchReport:
    """What one matching pass did."""
    disaster_id: str
    outcome: MatchOutcome = MatchOutcome.PROCESSED
    matched: List[str] = field(default_factory=list)
    dispatched: List[str] = field(default_factory=list)
    suppressed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    payloads: List[AlertPayload] = field(default_factory=list)
    alerts_marked: bool = False

    @property
    def processed(self) -> bool:
        """True when this pass closed the disaster for alerting."""
        return (
            self.outcome in (MatchOutcome.PROCESSED, MatchOutcome.NO_MATCH)
            and self.alerts_marked
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "disasterId": self.disaster_id,
            "outcome": self.outcome.value,
            "matched": list(self.matched),
            "dispatched": list(self.dispatched),
            "suppressed": list(self.suppressed),
            "failed": list(self.failed),
            "alertsMarked": self.alerts_marked,
            "payloads": [p.to_dict() for p in self.payloads],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class AlertMatchingEngine:
    """
    Runs matching passes against the two stores.

    Parameters
    ----------
    disasters, configs : stores
        Disaster and alert-config stores.
    dispatcher : NotificationDispatcher
        Receives one ``dispatch`` call per config that fires.
    atomic : bool, optional
        Compare-and-set claims (default from ``ALERT_CONCURRENCY_MODE``).
    region_filter : bool, optional
        Also require the config region to contain the disaster
        (default from ``ALERT_REGION_FILTER``).
    clock : callable
        Returns "now" for cooldown checks and lastTriggered stamps.
    """

    def __init__(
        self,
        disasters: DisasterStore,
        configs: AlertConfigStore,
        dispatcher: NotificationDispatcher,
        *,
        atomic: Optional[bool] = None,
        region_filter: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._disasters = disasters
        self._configs = configs
        self._dispatcher = dispatcher
        self.atomic = settings.atomic_alerts if atomic is None else atomic
        self.region_filter = (
            settings.ALERT_REGION_FILTER if region_filter is None else region_filter
        )
        self._clock = clock

    async def process(self, disaster_id: str) -> MatchReport:
        """Run one matching pass for ``disaster_id``."""
        start = time.monotonic()
        with log_context(disaster_id=disaster_id):
            report = await self._run(disaster_id)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Matching pass %s: matched=%d dispatched=%d suppressed=%d failed=%d (%.1fms)",
                report.outcome.value, len(report.matched), len(report.dispatched),
                len(report.suppressed), len(report.failed), elapsed_ms,
                extra={
                    "disaster_id": disaster_id,
                    "outcome": report.outcome.value,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
        return report

    async def _run(self, disaster_id: str) -> MatchReport:
        report = MatchReport(disaster_id=disaster_id)

        disaster = await self._disasters.get(disaster_id)
        if disaster is None:
            logger.warning("Disaster %s not found — nothing to match", disaster_id)
            report.outcome = MatchOutcome.NOT_FOUND
            return report

        if disaster.alerts_sent:
            report.outcome = MatchOutcome.ALREADY_PROCESSED
            report.alerts_marked = True
            return report

        candidates = await self._candidates(disaster)
        report.matched = [c.id for c in candidates]

        if self.atomic:
            _, claim = mark_alerts_sent(disaster, guarded=True)
            if not await self._disasters.apply(claim):
                logger.info("Disaster %s claimed by a concurrent pass", disaster_id)
                report.outcome = MatchOutcome.ALREADY_PROCESSED
                report.alerts_marked = True
                return report
            report.alerts_marked = True

        if not candidates:
            report.outcome = MatchOutcome.NO_MATCH
        else:
            now = self._clock()
            for config in candidates:
                with log_context(alert_config_id=config.id):
                    await self._fire(disaster, config, now, report)
            report.outcome = MatchOutcome.PROCESSED

        if not self.atomic:
            await self._close(disaster, report)
        return report

    async def _candidates(self, disaster: DisasterEvent) -> List[AlertConfig]:
        configs = await self._configs.find_matching(disaster)
        if not self.region_filter:
            return configs
        inside = [c for c in configs if region_contains(c.region, disaster.location)]
        if len(inside) < len(configs):
            logger.debug(
                "Region filter dropped %d of %d config(s)",
                len(configs) - len(inside), len(configs),
            )
        return inside

    async def _fire(
        self,
        disaster: DisasterEvent,
        config: AlertConfig,
        now: datetime,
        report: MatchReport,
    ) -> None:
        remaining = cooldown_remaining(config, now)
        if remaining.total_seconds() > 0:
            logger.info(
                "Config %s in cooldown for another %ds — suppressed",
                config.id, int(remaining.total_seconds()),
            )
            report.suppressed.append(config.id)
            return

        try:
            if self.atomic:
                _, claim = record_trigger(config, now, guarded=True)
                if not await self._configs.apply(claim):
                    report.suppressed.append(config.id)
                    return
                payload = await self._dispatcher.dispatch(disaster, config)
                report.dispatched.append(config.id)
                report.payloads.append(payload)
            else:
                payload = await self._dispatcher.dispatch(disaster, config)
                report.dispatched.append(config.id)
                report.payloads.append(payload)
                _, write = record_trigger(config, now, guarded=False)
                await self._configs.apply(write)
        except DisasterAPIError as exc:
            logger.error(
                "Config %s failed during matching: %s", config.id, exc.message,
                extra={"alert_config_id": config.id},
            )
            report.failed.append(config.id)

    async def _close(self, disaster: DisasterEvent, report: MatchReport) -> None:
        _, write = mark_alerts_sent(disaster, guarded=False)
        try:
            await self._disasters.apply(write)
        except PersistenceError as exc:
            logger.error("Could not mark alerts sent for %s: %s", disaster.id, exc.message)
            return
        report.alerts_marked = True
