"""
Idempotency-Key handling for booking requests.

A key moves through two states in Redis, scoped to the caller:
  in_flight  claimed with SET NX while the first request is being processed
  done       the stored response, replayed for 24h to any retry

A retry that arrives while the first attempt is still in flight gets 409
instead of booking (and charging) a second ride.
"""
import json
from typing import Optional

from fastapi import HTTPException, Response, status
from fastapi.responses import JSONResponse

from app.redis_client import get_redis

IDEMPOTENCY_TTL = 86400  # 24 hours
IN_FLIGHT_TTL = 60
_IN_FLIGHT = "in_flight"


def _cache_key(scope: str, key: str) -> str:
    return f"idempotency:{scope}:{key}"


async def claim_idempotency_key(scope: str, key: Optional[str]) -> Optional[Response]:
    """
    Returns the stored response when `key` already completed for this caller.
    Otherwise claims it and returns None; the caller must then either
    `store_idempotency_result` or `release_idempotency_key`.
    """
    if not key:
        return None

    redis = await get_redis()
    cache_key = _cache_key(scope, key)
    if await redis.set(cache_key, _IN_FLIGHT, ex=IN_FLIGHT_TTL, nx=True):
        return None

    cached = await redis.get(cache_key)
    if cached is None or cached == _IN_FLIGHT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A request with this Idempotency-Key is already in progress",
        )

    data = json.loads(cached)
    return JSONResponse(
        content=data["body"],
        status_code=data["status_code"],
        headers={"X-Idempotency-Replay": "true"},
    )


async def store_idempotency_result(scope: str, key: str, status_code: int, body: dict) -> None:
    redis = await get_redis()
    await redis.set(
        _cache_key(scope, key),
        json.dumps({"status_code": status_code, "body": body}, default=str),
        ex=IDEMPOTENCY_TTL,
    )


async def release_idempotency_key(scope: str, key: str) -> None:
    """Drop an in-flight claim after a failed attempt so the client may retry."""
    redis = await get_redis()
    await redis.delete(_cache_key(scope, key))
