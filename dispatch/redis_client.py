import redis.asyncio as aioredis
from dispatch.config import get_settings

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
# GEO helpers
# ---------------------------------------------------------------------------

async def geo_add_provider(redis: aioredis.Redis, category: str, provider_id: str, lat: float, lng: float) -> None:
    """Add / update provider position in the per-category geospatial index."""
    key = f"providers:geo:{category}"
    await redis.geoadd(key, [lng, lat, provider_id])
    await redis.setex(f"provider:{provider_id}:loc", 30, f"{lat},{lng}")


async def geo_nearby_providers(
    redis: aioredis.Redis,
    category: str,
    lat: float,
    lng: float,
    radius_m: float,
    count: int = 50,
) -> list[str]:
    """Return up to `count` provider IDs nearest to the given coordinates."""
    key = f"providers:geo:{category}"
    return await redis.geosearch(
        key,
        longitude=lng,
        latitude=lat,
        radius=radius_m,
        unit="m",
        sort="ASC",
        count=count,
    )


async def geo_remove_provider(redis: aioredis.Redis, category: str, provider_id: str) -> None:
    await redis.zrem(f"providers:geo:{category}", provider_id)
    await redis.delete(f"provider:{provider_id}:loc")


async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int) -> None:
    await redis.setex(key, ttl, value)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    return await redis.get(key)


async def cache_delete(redis: aioredis.Redis, *keys: str) -> None:
    if keys:
        await redis.delete(*keys)
