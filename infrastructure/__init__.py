"""Infrastructure helpers (Redis, etc.)

Expose a small public surface for Redis helpers used by the stores, the
sweeper and app startup.
"""
from .redis import (
    RedisClient,
    LockNotAcquired,
    build_connection_pool,
    create_redis_client,
)

__all__ = [
    "RedisClient",
    "LockNotAcquired",
    "build_connection_pool",
    "create_redis_client",
]
