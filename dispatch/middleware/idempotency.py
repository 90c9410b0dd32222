import json
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from dispatch.redis_client import get_redis


IDEMPOTENCY_TTL = 86400  # 24 hours


def _cache_key(request: Request, key: str, caller_id: str) -> str:
    return f"idempotency:{caller_id}:{request.url.path}:{key}"


async def check_idempotency(request: Request, caller_id: str) -> Optional[Response]:
    """
    Returns the cached Response if the Idempotency-Key was already used by
    this caller on this path, otherwise None (proceed normally).
    """
    key = request.headers.get("Idempotency-Key")
    if not key:
        return None

    redis = await get_redis()
    cached = await redis.get(_cache_key(request, key, caller_id))

    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(request: Request, caller_id: str, status_code: int, body: dict) -> None:
    """Persist the response for the request's idempotency key (24h TTL)."""
    key = request.headers.get("Idempotency-Key")
    if not key:
        return
    redis = await get_redis()
    await redis.setex(
        _cache_key(request, key, caller_id),
        IDEMPOTENCY_TTL,
        json.dumps({"status_code": status_code, "body": body}),
    )
