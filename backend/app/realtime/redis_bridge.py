"""
Redis pub/sub bridge — relays fan-out messages between service processes.

Every process publishes its messages to ``<prefix>:<event>`` and listens on
``<prefix>:*``. Messages carry the publishing process's origin id so a
process never re-delivers its own messages (those were already delivered
locally by ``FanoutChannel.publish``).

Usage:
    bridge = RedisFanoutBridge(fanout)
    await bridge.start()
    fanout.attach_relay(bridge)
    ...
    await bridge.stop()
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from backend.app.core.config import settings
from backend.app.core.errors import TransportError
from backend.app.realtime.fanout import FanoutChannel

logger = logging.getLogger(__name__)


class RedisFanoutBridge:

    def __init__(
        self,
        fanout: FanoutChannel,
        *,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
    ) -> None:
        self._fanout = fanout
        self._url = url or settings.REDIS_URL
        self._prefix = prefix or settings.FANOUT_CHANNEL_PREFIX
        self.origin = uuid.uuid4().hex
        self._client = None
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    async def _get_redis(self):
        """Get or create the async Redis client."""
        if self._client is None:
            self._client = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connected: %s", self._url.split("@")[-1])
        return self._client

    async def start(self) -> None:
        client = await self._get_redis()
        self._pubsub = client.pubsub()
        await self._pubsub.psubscribe(f"{self._prefix}:*")
        self._listener = asyncio.create_task(self._listen())
        logger.info("Fan-out bridge listening on %s:*", self._prefix)

    async def publish(self, event: str, data: Dict[str, Any], topics: Tuple[str, ...]) -> None:
        body = json.dumps(
            {"origin": self.origin, "event": event, "data": data, "topics": list(topics)},
            default=str,
        )
        client = await self._get_redis()
        try:
            await client.publish(f"{self._prefix}:{event}", body)
        except RedisError as exc:
            raise TransportError(",".join(topics), str(exc), event=event) from exc

    async def _listen(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                body = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("Discarding malformed bridge message on %s", message.get("channel"))
                continue
            if body.get("origin") == self.origin:
                continue
            self._fanout.deliver_local(body["event"], body["data"], body.get("topics", ()))

    async def ping(self) -> bool:
        client = await self._get_redis()
        return bool(await client.ping())

    async def stop(self) -> None:
        """Stop listening and close the Redis connection."""
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
