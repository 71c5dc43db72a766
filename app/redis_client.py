import json

import redis.asyncio as aioredis
from app.config import get_settings

settings = get_settings()

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Real-time rooms
# ---------------------------------------------------------------------------

def room_channel(room: str) -> str:
    return f"room:{room}"


async def publish_room_event(redis: aioredis.Redis, room: str, event: str, payload: dict) -> int:
    """Publish to a room; socket gateways subscribed to the channel fan it out."""
    message = json.dumps({"event": event, "payload": payload}, default=str)
    return await redis.publish(room_channel(room), message)
