# engagement/services/redis_client.py
"""
Pooled async Redis client.

Holds the suggestion work queue (a list plus an in-flight list for
at-least-once delivery), per-user queue markers, and the rate limiter's
last-contact timestamps and reservations.

Every command reports a failure through its return value instead of
raising; each method documents what it returns when Redis is down.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from engagement.config import settings
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete a key only while it still holds the caller's token
COMPARE_AND_DELETE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# Only ever move a stored integer forward
SET_IF_GREATER_LUA = """
local current = redis.call('GET', KEYS[1])
if current == false or tonumber(current) < tonumber(ARGV[1]) then
    redis.call('SET', KEYS[1], ARGV[1])
    return 1
end
return 0
"""


class FastRedisClient:
    def __init__(self):
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None
        self._compare_and_delete = None
        self._set_if_greater = None
        self._init_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self.client is not None

    async def initialize(self) -> None:
        """Open the pool and verify it with a PING. Concurrent callers share one pool."""
        if self.is_ready:
            return

        async with self._init_lock:
            if not self.is_ready:
                await self._connect()

    async def _connect(self) -> None:
        url = settings.redis_url()
        logger.info("Connecting to Redis", url_preview=url[:12] + "...")

        pool = ConnectionPool.from_url(
            url,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
            socket_connect_timeout=10,
            # Must outlast the blocking pop timeout
            socket_timeout=settings.SUGGESTION_POP_TIMEOUT_SECONDS + 10,
            health_check_interval=30,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=pool)

        try:
            await client.ping()
        except Exception as e:
            logger.error("Redis connection failed", error=str(e))
            await pool.disconnect()
            raise RuntimeError("Redis initialization failed") from e

        self.pool = pool
        self.client = client
        self._compare_and_delete = client.register_script(COMPARE_AND_DELETE_LUA)
        self._set_if_greater = client.register_script(SET_IF_GREATER_LUA)
        logger.info("Redis client ready", max_connections=settings.REDIS_MAX_CONNECTIONS)

    async def close(self) -> None:
        if not self.is_ready:
            return
        try:
            await self.client.aclose()
            await self.pool.disconnect()
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))
        finally:
            self.client = None
            self.pool = None

    async def _call(
        self,
        command: str,
        action: Callable[[], Awaitable[Any]],
        on_error: Any,
        **log_fields,
    ) -> Any:
        """Run one command, lazily connecting, and map any failure to on_error."""
        try:
            if not self.is_ready:
                logger.warning("Redis not initialized, connecting lazily")
                await self.initialize()
            return await action()
        except Exception as e:
            logger.error("Redis command failed", command=command, error=str(e), **log_fields)
            return on_error

    async def ping(self) -> bool:
        """False when unreachable."""
        return bool(await self._call("PING", lambda: self.client.ping(), False))

    async def mget(self, keys: list[str]) -> list[str | None] | None:
        """
        Values for many keys in one round trip.

        None (not a list of Nones) when unreachable, so callers can tell
        "no value" apart from "unknown".
        """
        if not keys:
            return []

        async def action():
            return list(await self.client.mget(keys))

        return await self._call("MGET", action, None, key_count=len(keys))

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool | None:
        """SET NX EX. True if written, False if the key exists, None when unreachable."""

        async def action():
            return bool(await self.client.set(key, value, nx=True, ex=ttl_s))

        return await self._call("SET NX", action, None, key=key[:40])

    async def set_if_greater(self, key: str, value: int) -> bool | None:
        """Store value only if larger than the current one. None when unreachable."""

        async def action():
            return bool(await self._set_if_greater(keys=[key], args=[value]))

        return await self._call("SET_IF_GREATER", action, None, key=key[:40])

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete key only while it holds expected. False when unreachable."""

        async def action():
            return bool(await self._compare_and_delete(keys=[key], args=[expected]))

        return await self._call("COMPARE_AND_DELETE", action, False, key=key[:40])

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        """Enqueue a payload. False when unreachable."""

        async def action():
            push = self.client.lpush if left else self.client.rpush
            return await push(key, value) > 0

        return await self._call("LPUSH" if left else "RPUSH", action, False, key=key[:40])

    async def pop_to_inflight(
        self, source_key: str, inflight_key: str, timeout: int = 0
    ) -> str | None:
        """
        Move the oldest payload to the in-flight list and return it.

        Blocks up to timeout seconds when timeout > 0. None on an empty
        queue and when unreachable.
        """

        async def action():
            if timeout > 0:
                return await self.client.brpoplpush(source_key, inflight_key, timeout=timeout)
            return await self.client.rpoplpush(source_key, inflight_key)

        return await self._call("BRPOPLPUSH", action, None, source_key=source_key[:40])

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        """Remove a finished payload from the in-flight list."""

        async def action():
            return await self.client.lrem(inflight_key, 0, value) > 0

        return await self._call("LREM", action, False, key=inflight_key[:40])

    async def requeue_from_inflight(
        self, inflight_key: str, destination_key: str, value: str
    ) -> bool:
        """Atomically move a payload from the in-flight list back to the queue."""

        async def action():
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.lrem(inflight_key, 0, value)
                pipe.lpush(destination_key, value)
                removed, _ = await pipe.execute()
            return removed > 0

        return await self._call("REQUEUE", action, False, key=inflight_key[:40])

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        """Slice of a list, empty when unreachable."""

        async def action():
            return [str(item) for item in await self.client.lrange(key, start, end)]

        return await self._call("LRANGE", action, [], key=key[:40])


fast_redis = FastRedisClient()
