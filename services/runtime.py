"""Explicit construction of the service graph.

Nothing in this project keeps services in module globals. A process opens a
runtime once (FastAPI lifespan) or per unit of work (Celery task) and hands
the manager to whoever needs it.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import config
from db import connect, ensure_db, migrate_ai_matches
from infrastructure import RedisClient
from stores import RedisMatchCache, SqliteMatchStore

from .match_manager import MatchManager
from .metrics import MetricsRecorder

logger = logging.getLogger(__name__)


@dataclass
class MatchRuntime:
    redis: RedisClient
    cache: RedisMatchCache
    store: SqliteMatchStore
    metrics: MetricsRecorder
    manager: MatchManager

    @property
    def sweeper(self):
        return self.manager.sweeper


async def prepare_database(db_path: str) -> None:
    """Create the base schema and apply the match migration."""
    await ensure_db(db_path)
    conn = await connect(db_path)
    try:
        await migrate_ai_matches(conn)
    finally:
        await conn.close()


@asynccontextmanager
async def open_runtime(
    db_path: str = config.DB_PATH,
    redis_url: str = config.REDIS_URL,
    *,
    redis: Optional[RedisClient] = None,
    **manager_options,
) -> AsyncIterator[MatchRuntime]:
    """Connect Redis and SQLite, wire every service, and close both on exit.

    Pass an already-initialised `redis` (e.g. `RedisClient.wrap(fake)`) to
    skip connecting to `redis_url`. Extra keyword arguments go to
    `MatchManager` (`timeout_minutes`, `clock`, `rng`).
    """
    await prepare_database(db_path)

    redis_client = redis or RedisClient.from_url(redis_url)
    await redis_client.init()

    store = SqliteMatchStore(db_path)
    try:
        await store.init()
        cache = RedisMatchCache(redis_client)
        metrics = MetricsRecorder(redis_client)
        manager = MatchManager(cache, store, metrics, redis=redis_client, **manager_options)
        logger.info(f"[RUNTIME] Match runtime ready (db={db_path})")
        yield MatchRuntime(
            redis=redis_client,
            cache=cache,
            store=store,
            metrics=metrics,
            manager=manager,
        )
    finally:
        await store.close()
        await redis_client.close()
