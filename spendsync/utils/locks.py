"""Single-flight locking keyed by (user, platform).

Two layers:
  * an in-process ``asyncio.Lock`` per key, so coroutines in one worker queue
    up behind a single holder;
  * an optional Redis lease (``SET NX PX`` + owner-checked delete) so that
    several worker processes converge on one holder as well.

When Redis is configured but unreachable the in-process layer still applies
and a warning is logged, mirroring the queue fallback behaviour.
"""
from __future__ import annotations

import asyncio
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis
import redis.asyncio as aioredis

from spendsync.config import LOCK_SETTINGS
from spendsync.utils.logger import get_logger

logger = get_logger(__name__)

# Only the owner may delete the lease.
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


class RedisLease:
    def __init__(self, client: aioredis.Redis, key: str, ttl_ms: int):
        self.client = client
        self.key = key
        self.ttl_ms = ttl_ms
        self.owner = secrets.token_hex(8)

    async def acquire(self, wait_timeout: float, poll_interval: float) -> bool:
        deadline = time.monotonic() + wait_timeout
        while True:
            if await self.client.set(self.key, self.owner, nx=True, px=self.ttl_ms):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    async def release(self) -> None:
        await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.owner)


class SingleFlight:
    """Mutual exclusion per string key for coroutines (and processes, with Redis)."""

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._redis = redis_client
        self._prefix = str(LOCK_SETTINGS.get("key_prefix", "spendsync:lock"))

    def _local(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``; raises TimeoutError if the Redis lease is busy too long."""
        async with self._local(key):
            if self._redis is None:
                yield
                return

            lease = RedisLease(self._redis, f"{self._prefix}:{key}", int(LOCK_SETTINGS["ttl_ms"]))
            try:
                acquired = await lease.acquire(
                    wait_timeout=float(LOCK_SETTINGS["wait_timeout_seconds"]),
                    poll_interval=int(LOCK_SETTINGS["poll_interval_ms"]) / 1000.0,
                )
            except redis.RedisError as e:
                logger.warning("Redis lease unavailable, using in-process lock only", key=key, error=str(e))
                yield
                return

            if not acquired:
                raise TimeoutError(f"lease for {key} held elsewhere")
            try:
                yield
            finally:
                try:
                    await lease.release()
                except redis.RedisError as e:
                    # The lease expires on its own after ttl_ms.
                    logger.warning("Redis lease release failed", key=key, error=str(e))


def create_single_flight() -> SingleFlight:
    """Build a SingleFlight from LOCK_SETTINGS (Redis-backed when enabled)."""
    if not LOCK_SETTINGS.get("use_redis"):
        return SingleFlight()
    url = str(LOCK_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
    logger.info("Using Redis leases for single-flight locks", url=url)
    return SingleFlight(aioredis.from_url(url))


__all__ = ["SingleFlight", "RedisLease", "create_single_flight"]
