"""
config/redis_client.py
Async Redis client for schedule locking, JWT deny-list and rate limiting.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_fixed

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


class LockNotAcquired(Exception):
    """Raised when a schedule lock stays held past the wait budget."""

    def __init__(self, key: str):
        super().__init__(f"Lock {key} is held by another writer")
        self.key = key


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Schedule Locking ─────────────────────────────────────
    @staticmethod
    def booking_lock_key(companion_id, booking_date) -> str:
        return f"booking_lock:{companion_id}:{booking_date.isoformat()}"

    @staticmethod
    def slot_lock_key(companion_id, day_of_week: str) -> str:
        return f"slot_lock:{companion_id}:{day_of_week}"

    async def try_lock(self, key: str, token: str, ttl: int) -> bool:
        """
        Atomic lock using SET NX (set if not exists).
        Returns True if lock acquired, False if already held.
        """
        result = await self.client.set(key, token, ex=ttl, nx=True)
        return bool(result)

    async def release_lock(self, key: str, token: str) -> None:
        """Release only if we still own it (the TTL may have handed it to someone else)."""
        if await self.client.get(key) == token:
            await self.client.delete(key)

    @asynccontextmanager
    async def hold_lock(self, key: str, ttl: int, wait_seconds: float) -> AsyncIterator[str]:
        """
        Poll for the lock for up to `wait_seconds`, then hold it for the block.
        Raises LockNotAcquired when the wait budget runs out.
        """
        token = uuid.uuid4().hex
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_delay(wait_seconds),
                wait=wait_fixed(0.05),
                retry=retry_if_result(lambda acquired: not acquired),
            ):
                with attempt:
                    acquired = await self.try_lock(key, token, ttl)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(acquired)
        except RetryError:
            raise LockNotAcquired(key)

        try:
            yield token
        finally:
            await self.release_lock(key, token)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Sliding window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        current_count = results[0]
        return current_count <= limit
