"""
WebSocket route: live disaster feed for dashboard clients.

    WS /ws/disasters

Client → server frames:
    {"action": "join-disaster-feed",  "feed": "FLOOD"}   (or "ALL")
    {"action": "leave-disaster-feed", "feed": "FLOOD"}

Server → client frames:
    {"event": "joined" | "left", "data": {"feed": "FLOOD"}}
    {"event": "error", "data": {"message": "..."}}
    {"event": "<fan-out event>", "data": {...}}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.app.realtime.fanout import FanoutChannel, Subscriber

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

JOIN_ACTION = "join-disaster-feed"
LEAVE_ACTION = "leave-disaster-feed"


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward queued fan-out messages to the socket."""
    while True:
        message = await subscriber.receive()
        await websocket.send_json(message)


def _handle_frame(subscriber: Subscriber, frame: Any) -> Dict[str, Any]:
    if not isinstance(frame, dict):
        return {"event": "error", "data": {"message": "Frame must be a JSON object"}}

    action = frame.get("action")
    feed = frame.get("feed", "ALL")
    try:
        if action == JOIN_ACTION:
            return {"event": "joined", "data": {"feed": subscriber.join(feed)}}
        if action == LEAVE_ACTION:
            return {"event": "left", "data": {"feed": subscriber.leave(feed)}}
    except ValueError as exc:
        return {"event": "error", "data": {"message": str(exc)}}
    return {"event": "error", "data": {"message": f"Unknown action: {action!r}"}}


async def _receive(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Read control frames until the client goes away."""
    while True:
        try:
            frame = await websocket.receive_json()
        except ValueError:
            subscriber.offer({"event": "error", "data": {"message": "Invalid JSON"}})
            continue
        # Replies go through the queue so only the pump writes to the socket
        subscriber.offer(_handle_frame(subscriber, frame))


@router.websocket("/ws/disasters")
async def disaster_feed(websocket: WebSocket):
    fanout: FanoutChannel = websocket.app.state.services.fanout
    await websocket.accept()
    subscriber = fanout.subscribe()
    logger.info("Dashboard client %d connected", subscriber.id)

    # Whichever side stops first (disconnect or failed send) ends the session
    tasks = {
        asyncio.create_task(_pump(websocket, subscriber)),
        asyncio.create_task(_receive(websocket, subscriber)),
    }
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Dashboard client %d feed failed: %s", subscriber.id, exc)
        logger.info("Dashboard client %d disconnected", subscriber.id)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        fanout.unsubscribe(subscriber)
