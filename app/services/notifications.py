"""
Best-effort delivery of ride events to riders and drivers.

Two channels:
  - push: POST to the configured push gateway (skipped when unset)
  - real-time rooms: Redis PUBLISH on room:{name}, picked up by socket gateways

Services never call the notifier inside a transaction. After commit they hand
a coroutine to `fire_and_forget`, which runs it as a background task and logs
any failure; a broken notifier can never fail or roll back a state change.
"""
import asyncio
import logging
from functools import lru_cache
from typing import Any, Awaitable, Optional

import httpx
import redis.asyncio as aioredis

from app.config import get_settings
from app.redis_client import get_redis, publish_room_event

logger = logging.getLogger(__name__)
settings = get_settings()

# Strong references so pending deliveries are not garbage-collected mid-flight
_pending: set[asyncio.Task] = set()


class Notifier:
    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        push_gateway_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._redis = redis
        self.push_gateway_url = (
            settings.push_gateway_url if push_gateway_url is None else push_gateway_url
        )
        self.timeout_seconds = timeout_seconds or settings.push_timeout_seconds

    async def notify(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> None:
        if not self.push_gateway_url:
            logger.debug("Push disabled; dropping '%s' for user=%s", title, user_id)
            return
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                self.push_gateway_url,
                json={"user_id": user_id, "title": title, "body": body, "data": data},
            )
            resp.raise_for_status()

    async def emit(self, room: str, event: str, payload: dict[str, Any]) -> None:
        redis = self._redis or await get_redis()
        await publish_room_event(redis, room, event, payload)


async def _guarded(coro: Awaitable, label: str) -> None:
    try:
        await coro
    except Exception as exc:
        logger.error("Notification '%s' failed: %s", label, exc)


def fire_and_forget(coro: Awaitable, label: str) -> asyncio.Task:
    """Run `coro` in the background; failures are logged, never raised."""
    task = asyncio.create_task(_guarded(coro, label))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain_pending() -> None:
    """Wait for outstanding deliveries (shutdown, tests)."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


@lru_cache
def get_notifier() -> Notifier:
    """FastAPI dependency / process-wide notifier."""
    return Notifier()
