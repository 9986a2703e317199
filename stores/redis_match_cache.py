import json
import logging
from contextlib import contextmanager
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

import config
from infrastructure import RedisClient
from models import Match

from .active_match_cache import ActiveMatchCache
from .exceptions import ConcurrentMatchUpdate, StorageUnavailable, UnexpectedResult

logger = logging.getLogger(__name__)

MATCH_PREFIX = "match:"
PLAYER_PREFIX = "player:"


def match_key(match_id: str) -> str:
    return f"{MATCH_PREFIX}{match_id}"


def player_key(player_id: str) -> str:
    return f"{PLAYER_PREFIX}{player_id}"


@contextmanager
def _storage_errors(op: str):
    try:
        yield
    except WatchError:
        raise
    except RedisError as exc:
        logger.error(f"[CACHE] {op} failed: {exc}")
        raise StorageUnavailable(f"Active match cache unavailable during {op}") from exc


class RedisMatchCache(ActiveMatchCache):

    def __init__(self, redis: RedisClient, *, ttl_seconds: int = config.MATCH_CACHE_TTL_SECONDS):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        logger.info(f"[CACHE] RedisMatchCache initialized with ttl={ttl_seconds}s")

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------

    async def save(self, match: Match) -> None:
        # Raises: ConcurrentMatchUpdate, StorageUnavailable
        key = match_key(match.id)
        payload = match.model_dump_json()
        r = self.redis.get()

        with _storage_errors("save"):
            async with r.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if current is None:
                        if match.version > 0:
                            raise ConcurrentMatchUpdate(
                                match.id, "snapshot expired or was removed"
                            )
                    else:
                        stored_version = self._stored_version(match.id, current)
                        if stored_version >= match.version:
                            raise ConcurrentMatchUpdate(
                                match.id,
                                f"stored version {stored_version} >= {match.version}",
                            )
                    pipe.multi()
                    pipe.set(key, payload, ex=self.ttl_seconds)
                    pipe.set(player_key(match.player_id), match.id, ex=self.ttl_seconds)
                    await pipe.execute()
                except WatchError as exc:
                    raise ConcurrentMatchUpdate(match.id, "snapshot changed during save") from exc

        logger.debug(f"[CACHE] Saved {match.id} v{match.version} ({match.status.value})")

    async def delete(self, match_id: str) -> None:
        key = match_key(match_id)
        r = self.redis.get()
        with _storage_errors("delete"):
            raw = await r.get(key)
            await r.delete(key)
            if raw is None:
                return
            try:
                player_id = json.loads(raw).get("player_id")
            except (ValueError, AttributeError):
                logger.warning(f"[CACHE] Deleted unreadable snapshot for {match_id}")
                return
            if player_id:
                await self.redis.delete_if_equals(player_key(player_id), match_id)

    async def delete_player_pointer(self, player_id: str, match_id: str) -> bool:
        # only while it still refers to this match
        with _storage_errors("delete_player_pointer"):
            return await self.redis.delete_if_equals(player_key(player_id), match_id)

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    async def get(self, match_id: str) -> Optional[Match]:
        r = self.redis.get()
        with _storage_errors("get"):
            raw = await r.get(match_key(match_id))
        if raw is None:
            return None
        return self._revive(match_id, raw)

    async def get_by_player(self, player_id: str) -> Optional[Match]:
        r = self.redis.get()
        with _storage_errors("get_by_player"):
            match_id = await r.get(player_key(player_id))
        if match_id is None:
            return None
        return await self.get(match_id)

    async def list_all(self) -> list[Match]:
        r = self.redis.get()
        matches = []
        with _storage_errors("list_all"):
            async for key in r.scan_iter(match=f"{MATCH_PREFIX}*", count=200):
                match_id = key[len(MATCH_PREFIX):]
                if not match_id or ":" in match_id:
                    continue
                raw = await r.get(key)
                if raw is None:
                    # expired between scan and get
                    continue
                try:
                    matches.append(self._revive(match_id, raw))
                except UnexpectedResult as exc:
                    logger.warning(f"[CACHE] Skipping {key}: {exc}")
        return matches

    async def list_player_pointers(self) -> dict[str, str]:
        r = self.redis.get()
        pointers = {}
        with _storage_errors("list_player_pointers"):
            async for key in r.scan_iter(match=f"{PLAYER_PREFIX}*", count=200):
                match_id = await r.get(key)
                if match_id is not None:
                    pointers[key[len(PLAYER_PREFIX):]] = match_id
        return pointers

    async def count_active(self) -> int:
        r = self.redis.get()
        count = 0
        with _storage_errors("count_active"):
            async for key in r.scan_iter(match=f"{MATCH_PREFIX}*", count=200):
                if ":" not in key[len(MATCH_PREFIX):]:
                    count += 1
        return count

    # -------------------------------------------------
    # Helpers
    # -------------------------------------------------

    def _revive(self, match_id: str, raw: str) -> Match:
        try:
            return Match.model_validate_json(raw)
        except ValidationError as exc:
            raise UnexpectedResult(f"Corrupt snapshot for match {match_id}") from exc

    def _stored_version(self, match_id: str, raw: str) -> int:
        try:
            return int(json.loads(raw).get("version", 0))
        except (ValueError, TypeError, AttributeError) as exc:
            raise UnexpectedResult(f"Corrupt snapshot for match {match_id}") from exc
