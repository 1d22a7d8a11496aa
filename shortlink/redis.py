"""Redis client management and link caching for the shortlink service.

Flow Diagram — Cache-aside Lookup
=================================
::
    ┌─────────────┐
    │ LinkCache   │
    │ .get(code)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ GET          │
    │ link:{code}  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Return  │  │ Decode  │
│ None    │  │ payload │
└─────────┘  └─────────┘

Key Behaviours
===============
- Redis client is created lazily on first access and reused.
- Cache errors never fail a request: they are logged and treated as a miss.
- Entries expire with the link (or after the default TTL).

Functions:
    get_redis():  FastAPI dependency for the Redis client.
    close_redis():  Cleanup function for shutdown.
"""

import json
import logging

import redis.asyncio as redis

from shortlink.config import get_settings
from shortlink.schemas import CachedLinkPayload

__all__ = ["LinkCache", "close_redis", "get_redis"]

settings = get_settings()
logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


class LinkCache:
    """JSON link payloads stored under ``link:{short_code}``."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @staticmethod
    def key(short_code: str) -> str:
        return f"link:{short_code}"

    async def get(self, short_code: str) -> CachedLinkPayload | None:
        try:
            raw = await self._client.get(self.key(short_code))
        except Exception as exc:
            logger.warning(f"Cache read failed for {short_code}: {exc}")
            return None
        if raw is None:
            return None
        try:
            return CachedLinkPayload.model_validate(json.loads(raw))
        except ValueError:
            logger.warning(f"Invalid cached payload for {short_code}", exc_info=True)
            return None

    async def set(self, payload: CachedLinkPayload, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._client.set(
                self.key(payload.short_code),
                json.dumps(payload.model_dump(mode="json")),
                ex=ttl_seconds,
            )
        except Exception as exc:
            logger.warning(f"Cache write failed for {payload.short_code}: {exc}")

    async def delete(self, short_code: str) -> None:
        try:
            await self._client.delete(self.key(short_code))
        except Exception as exc:
            logger.warning(f"Cache delete failed for {short_code}: {exc}")
