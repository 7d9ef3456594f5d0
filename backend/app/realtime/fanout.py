"""
fanout.py — In-process publish/subscribe broker for live dashboard feeds.

═══════════════════════════════════════════════════════════════════════════
TOPICS & EVENTS
═══════════════════════════════════════════════════════════════════════════

Subscribers join topics:

    ALL          every disaster message
    EARTHQUAKE   FLOOD   FIRE   STORM   OTHER   one hazard type

Every disaster message is published on two topics at once, the disaster's
type and ``ALL``. A subscriber joined to both still receives one copy.

    Event             Body
    ───────────────   ─────────────────────────────────────────
    new-disaster      DisasterEvent
    update-disaster   DisasterEvent
    delete-disaster   {"id": ...}
    new-reading       {"disasterId": ..., "reading": SensorReading}
    disaster-alert    AlertPayload

Each subscriber owns a bounded ``asyncio.Queue``. A full queue drops the
message for that subscriber only (slow consumers never block publishers).

With ``FANOUT_BACKEND=redis`` a ``RedisFanoutBridge`` is attached as relay
and carries messages to the other service processes.
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from backend.app.core.config import settings
from backend.app.core.errors import TransportError
from backend.app.domain.models import AlertTargetType, DisasterType

logger = logging.getLogger(__name__)

GLOBAL_TOPIC = AlertTargetType.ALL.value

EVENT_NEW_DISASTER = "new-disaster"
EVENT_UPDATE_DISASTER = "update-disaster"
EVENT_DELETE_DISASTER = "delete-disaster"
EVENT_NEW_READING = "new-reading"
EVENT_DISASTER_ALERT = "disaster-alert"

VALID_TOPICS = frozenset({GLOBAL_TOPIC, *(t.value for t in DisasterType)})


def topics_for(disaster_type: DisasterType) -> Tuple[str, str]:
    """Topics a message about ``disaster_type`` is published on."""
    return (disaster_type.value, GLOBAL_TOPIC)


def normalize_topic(topic: str) -> str:
    name = str(topic).strip().upper()
    if name not in VALID_TOPICS:
        raise ValueError(
            f"Unknown feed '{topic}'. Must be one of: {sorted(VALID_TOPICS)}"
        )
    return name


class FanoutRelay(Protocol):
    """Cross-process transport attached to a FanoutChannel."""

    async def publish(self, event: str, data: Dict[str, Any], topics: Tuple[str, ...]) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════
# Subscriber
# ═══════════════════════════════════════════════════════════════════════════

class Subscriber:
    """One connected client: its joined topics and its message buffer."""

    def __init__(self, subscriber_id: int, queue_size: int) -> None:
        self.id = subscriber_id
        self.topics: Set[str] = set()
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def join(self, topic: str) -> str:
        name = normalize_topic(topic)
        self.topics.add(name)
        return name

    def leave(self, topic: str) -> str:
        name = normalize_topic(topic)
        self.topics.discard(name)
        return name

    def wants(self, topics: Iterable[str]) -> bool:
        return any(t in self.topics for t in topics)

    def offer(self, message: Dict[str, Any]) -> bool:
        """Enqueue without blocking; False if the buffer is full."""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Subscriber %d buffer full — dropped %s (total dropped: %d)",
                self.id, message.get("event"), self.dropped,
            )
            return False
        return True

    async def receive(self) -> Dict[str, Any]:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


# ═══════════════════════════════════════════════════════════════════════════
# Channel
# ═══════════════════════════════════════════════════════════════════════════

class FanoutChannel:
    """
    Topic broker shared by the services, the dispatcher and the WebSocket
    endpoint. Created once per application and injected where needed.

    Usage:
        fanout = FanoutChannel()
        sub = fanout.subscribe(["FLOOD"])
        await fanout.publish("new-disaster", event.to_dict(), topics_for(event.type))
        message = await sub.receive()   # {"event": ..., "data": ...}
    """

    def __init__(self, queue_size: Optional[int] = None) -> None:
        self._queue_size = queue_size or settings.FANOUT_QUEUE_SIZE
        self._subscribers: Dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._relay: Optional[FanoutRelay] = None
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def attach_relay(self, relay: Optional[FanoutRelay]) -> None:
        self._relay = relay

    def subscribe(self, topics: Iterable[str] = ()) -> Subscriber:
        subscriber = Subscriber(next(self._ids), self._queue_size)
        for topic in topics:
            subscriber.join(topic)
        self._subscribers[subscriber.id] = subscriber
        logger.debug("Subscriber %d connected (%d total)", subscriber.id, len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.pop(subscriber.id, None)
        logger.debug("Subscriber %d disconnected", subscriber.id)

    def deliver_local(self, event: str, data: Dict[str, Any], topics: Iterable[str]) -> int:
        """Deliver to this process's subscribers; returns copies enqueued."""
        topics = tuple(topics)
        message = {"event": event, "data": data}
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber.wants(topics) and subscriber.offer(message):
                delivered += 1
        return delivered

    async def publish(self, event: str, data: Dict[str, Any], topics: Iterable[str]) -> int:
        """
        Publish ``event`` on ``topics``.

        Returns the number of local subscribers reached. Raises
        ``TransportError`` if the cross-process relay rejects the message;
        local delivery has already happened by then.
        """
        topics = tuple(dict.fromkeys(topics))
        delivered = self.deliver_local(event, data, topics)
        self.published += 1
        logger.debug(
            "Published %s on %s → %d subscriber(s)", event, ",".join(topics), delivered,
            extra={"event": event, "topic": ",".join(topics)},
        )

        if self._relay is not None:
            try:
                await self._relay.publish(event, data, topics)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(",".join(topics), str(exc), event=event) from exc
        return delivered

    def stats(self) -> Dict[str, Any]:
        subscribers: List[Subscriber] = list(self._subscribers.values())
        return {
            "subscribers": len(subscribers),
            "published": self.published,
            "dropped": sum(s.dropped for s in subscribers),
            "relay": type(self._relay).__name__ if self._relay else None,
        }
