import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

import config

logger = logging.getLogger(__name__)

# Delete KEYS[1] only while it still holds ARGV[1]. Returns 1 if deleted.
DELETE_IF_EQUALS_SCRIPT = (
    "if redis.call('GET', KEYS[1]) == ARGV[1] then"
    " return redis.call('DEL', KEYS[1])"
    " else return 0 end"
)


class LockNotAcquired(RuntimeError):
    """Raised when a lock key is already held by someone else."""


def build_connection_pool(
    url: str,
    *,
    max_connections: int = config.REDIS_MAX_CONNECTIONS,
    timeout: float = config.REDIS_POOL_TIMEOUT_SECONDS,
    **kwargs,
) -> redis.BlockingConnectionPool:
    """Bounded pool; a caller that finds it exhausted waits up to `timeout` seconds."""
    return redis.BlockingConnectionPool.from_url(url, max_connections=max_connections, timeout=timeout, **kwargs)


class RedisClient:
    """Owns one `redis.asyncio` connection for a runtime.

    Usage:
        client = RedisClient.from_url(config.REDIS_URL)
        await client.init()
        await client.get().set("foo", "bar")
        await client.close()

    A connection built elsewhere (a test fake, or one shared with Celery) is
    adopted with `RedisClient.wrap(r)`; `close()` then leaves it open.
    """

    def __init__(self, url: str, *, decode_responses: bool = True):
        self.url = url
        self.decode_responses = decode_responses
        self._client: Optional[redis.Redis] = None
        self._owned = True

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisClient":
        return cls(url, **kwargs)

    @classmethod
    def wrap(cls, client: redis.Redis) -> "RedisClient":
        wrapper = cls("<wrapped>")
        wrapper._client = client
        wrapper._owned = False
        return wrapper

    async def init(self) -> None:
        """Connect (unless wrapping) and ping. Must be awaited before use."""
        if self._client is None:
            pool = build_connection_pool(self.url, decode_responses=self.decode_responses)
            self._client = redis.Redis.from_pool(pool)
        await self._client.ping()
        logger.info(f"[REDIS] Connected to {self.url}")

    async def close(self) -> None:
        if self._client is None:
            return
        if self._owned:
            await self._client.aclose()
        self._client = None

    def get(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not initialized; call init() first")
        return self._client

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete `key` if it still holds `value`."""
        res = await self.get().eval(DELETE_IF_EQUALS_SCRIPT, 1, key, value)
        return res == 1

    # ------ sweep lock ------

    async def acquire_lock(self, key: str, timeout_ms: int = 10_000) -> str:
        """SET NX PX a fresh token on `key`. Raises LockNotAcquired if held."""
        token = str(uuid.uuid4())
        if await self.get().set(key, token, nx=True, px=timeout_ms):
            return token
        raise LockNotAcquired(f"Lock not acquired: {key}")

    async def release_lock(self, key: str, token: str) -> bool:
        return await self.delete_if_equals(key, token)

    @asynccontextmanager
    async def lock(self, key: str, timeout_ms: int = 10_000):
        """Hold `key` for the duration of the block.

        Release failures are logged only; the lock expires after `timeout_ms`.
        """
        token = await self.acquire_lock(key, timeout_ms)
        try:
            yield token
        finally:
            try:
                await self.release_lock(key, token)
            except RedisError as exc:
                logger.warning(f"[REDIS] Could not release {key}: {exc}")


def create_redis_client(url: str, *, decode_responses: bool = True) -> RedisClient:
    """Create (but do not init) a RedisClient."""
    return RedisClient(url, decode_responses=decode_responses)
