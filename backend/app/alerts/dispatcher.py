"""
dispatcher.py — Turns a (disaster, config) match into a real-time alert.

The payload carries the config's enabled channel names: which channels
this alert would fire on. Actual SMS/e-mail/push delivery is downstream
of the ``disaster-alert`` event and not this module's concern.

Publishing is fire-and-forget: a ``TransportError`` from the fan-out is
logged and swallowed, and the payload is returned either way.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from backend.app.core.errors import TransportError
from backend.app.domain.models import AlertConfig, AlertPayload, DisasterEvent, utc_now
from backend.app.realtime.fanout import EVENT_DISASTER_ALERT, FanoutChannel, topics_for

logger = logging.getLogger(__name__)


def build_payload(
    disaster: DisasterEvent, config: AlertConfig, *, now: Optional[datetime] = None,
) -> AlertPayload:
    return AlertPayload(
        disaster_id=disaster.id,
        alert_config_id=config.id,
        disaster_type=disaster.type,
        severity=disaster.severity,
        location=disaster.location,
        description=disaster.description,
        timestamp=now or utc_now(),
        channels=tuple(config.channels.enabled_channels()),
    )


class NotificationDispatcher(Protocol):
    async def dispatch(self, disaster: DisasterEvent, config: AlertConfig) -> AlertPayload: ...


class RealtimeDispatcher:
    """Publishes ``disaster-alert`` on the disaster's type topic and ``ALL``."""

    def __init__(
        self,
        fanout: FanoutChannel,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._fanout = fanout
        self._clock = clock

    async def dispatch(self, disaster: DisasterEvent, config: AlertConfig) -> AlertPayload:
        payload = build_payload(disaster, config, now=self._clock())
        topics = topics_for(disaster.type)
        try:
            await self._fanout.publish(EVENT_DISASTER_ALERT, payload.to_dict(), topics)
        except TransportError as exc:
            logger.error(
                "Alert for disaster %s / config %s not published: %s",
                disaster.id, config.id, exc.message,
                extra={"disaster_id": disaster.id, "alert_config_id": config.id},
            )
        else:
            logger.info(
                "Alert dispatched: disaster=%s config=%s severity=%d channels=%s",
                disaster.id, config.id, disaster.severity,
                ",".join(payload.channels) or "-",
                extra={
                    "disaster_id": disaster.id,
                    "alert_config_id": config.id,
                    "event": EVENT_DISASTER_ALERT,
                },
            )
        return payload


class RecordingDispatcher:
    """Keeps every payload in memory instead of publishing (tests, dry runs)."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self.sent: List[AlertPayload] = []

    async def dispatch(self, disaster: DisasterEvent, config: AlertConfig) -> AlertPayload:
        payload = build_payload(disaster, config, now=self._clock())
        self.sent.append(payload)
        return payload
