"""
realtime — Live disaster feeds.

Modules:
    fanout        — in-process topic broker (subscribers, bounded queues)
    redis_bridge  — Redis pub/sub relay between service processes
    websocket     — /ws/disasters endpoint (join-disaster-feed)
"""
