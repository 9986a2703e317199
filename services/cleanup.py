import logging
from typing import TYPE_CHECKING, Optional

from redis.exceptions import RedisError

import config
from infrastructure import LockNotAcquired, RedisClient
from models import (
    AbandonmentMetrics,
    CleanupRecommendation,
    CleanupReport,
    CleanupResults,
    CleanupStats,
    Match,
    MatchStatus,
)
from stores.exceptions import StoreError
from utils.time import days_ago, minutes_between

from .match_engine import abandon_match, is_timed_out

if TYPE_CHECKING:
    from .match_manager import MatchManager

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "lock:match_sweep"
SWEEP_LOCK_TIMEOUT_MS = 60_000

HIGH_ACTIVE_MATCHES = 100
HIGH_EXPIRED_MATCHES = 20
HIGH_NEAR_TIMEOUT_MATCHES = 10


class MatchSweeper:
    """Reconciles stale cache entries into the durable store.

    Runs on demand; scheduling belongs to whoever calls it. Works through the
    manager's cache and store so that a swept match is finalized exactly like
    one abandoned by its player.
    """

    def __init__(
        self,
        manager: "MatchManager",
        redis: Optional[RedisClient] = None,
        *,
        retention_days: int = config.ABANDONED_RETENTION_DAYS,
        emergency_retention_days: int = config.EMERGENCY_RETENTION_DAYS,
        near_timeout_minutes: float = config.NEAR_TIMEOUT_WARNING_MINUTES,
    ):
        self.manager = manager
        self.redis = redis
        self.retention_days = retention_days
        self.emergency_retention_days = emergency_retention_days
        self.near_timeout_minutes = near_timeout_minutes

    # -------------------------------------------------
    # Sweeping
    # -------------------------------------------------

    async def sweep(
        self,
        abandoned_retention_days: Optional[int] = None,
        sweep_active: bool = True,
    ) -> CleanupReport:
        if abandoned_retention_days is None:
            abandoned_retention_days = self.retention_days

        if self.redis is None:
            return await self._sweep(abandoned_retention_days, sweep_active)
        try:
            async with self.redis.lock(SWEEP_LOCK_KEY, SWEEP_LOCK_TIMEOUT_MS):
                return await self._sweep(abandoned_retention_days, sweep_active)
        except LockNotAcquired:
            logger.info("[SWEEP] Another sweep is in progress, skipping")
            return CleanupReport(success=True, skipped=True)
        except RedisError as exc:
            logger.error(f"[SWEEP] Could not take sweep lock: {exc}")
            return CleanupReport(success=False, error=f"Sweep lock unavailable: {exc}")

    async def _sweep(self, retention_days: int, sweep_active: bool) -> CleanupReport:
        manager = self.manager
        now = manager.clock()
        results = CleanupResults()
        errors = []
        orphans = 0

        if sweep_active:
            try:
                matches = await manager.cache.list_all()
            except StoreError as exc:
                logger.error(f"[SWEEP] Could not enumerate active matches: {exc}")
                return CleanupReport(success=False, error=str(exc))

            for match in matches:
                try:
                    if match.is_terminal:
                        # left behind by a finalize that failed after claiming
                        await manager.finalize(match, claim=False)
                    elif is_timed_out(match, manager.timeout_minutes, now=now):
                        if await manager.finalize(abandon_match(match, now=now)):
                            results.expired_active_matches += 1
                except StoreError as exc:
                    logger.warning(f"[SWEEP] Failed to expire {match.id}: {exc}")
                    errors.append(f"{match.id}: {exc}")

            orphans = await self._remove_orphaned_pointers(errors)
            await self._update_gauge()

        try:
            results.deleted_abandoned_matches = await manager.store.delete_old_abandoned_matches(
                days_ago(retention_days, now=now)
            )
        except StoreError as exc:
            logger.error(f"[SWEEP] Failed to delete old abandoned matches: {exc}")
            errors.append(f"delete_old_abandoned_matches: {exc}")

        logger.info(
            f"[SWEEP] Expired {results.expired_active_matches} active matches, "
            f"deleted {results.deleted_abandoned_matches} abandoned matches, "
            f"removed {orphans} orphaned pointers"
        )
        return CleanupReport(
            success=True,
            results=results,
            orphaned_pointers_removed=orphans,
            errors=errors,
        )

    async def _remove_orphaned_pointers(self, errors: list[str]) -> int:
        cache = self.manager.cache
        removed = 0
        try:
            pointers = await cache.list_player_pointers()
        except StoreError as exc:
            logger.warning(f"[SWEEP] Could not list player pointers: {exc}")
            errors.append(f"list_player_pointers: {exc}")
            return 0

        for player_id, match_id in pointers.items():
            try:
                if await cache.get(match_id) is None and await cache.delete_player_pointer(player_id, match_id):
                    removed += 1
                    logger.info(f"[SWEEP] Removed orphaned pointer for {player_id} -> {match_id}")
            except StoreError as exc:
                logger.warning(f"[SWEEP] Could not check pointer for {player_id}: {exc}")
                errors.append(f"player:{player_id}: {exc}")
        return removed

    async def _update_gauge(self) -> None:
        try:
            count = await self.manager.cache.count_active()
        except StoreError as exc:
            logger.warning(f"[SWEEP] Could not count active matches: {exc}")
            return
        await self.manager.metrics.update_active_match_count(count)

    async def emergency_cleanup(self) -> CleanupReport:
        logger.warning(
            f"[SWEEP] Emergency cleanup with {self.emergency_retention_days} day retention"
        )
        return await self.sweep(
            abandoned_retention_days=self.emergency_retention_days,
            sweep_active=True,
        )

    # -------------------------------------------------
    # Reporting
    # -------------------------------------------------

    async def _active_matches(self) -> list[Match]:
        matches = await self.manager.cache.list_all()
        return [m for m in matches if m.status is MatchStatus.ACTIVE]

    def _near_timeout(self, matches: list[Match]) -> int:
        now = self.manager.clock()
        return sum(
            1 for m in matches
            if minutes_between(m.last_activity_at, now) > self.near_timeout_minutes
        )

    async def get_abandonment_metrics(self) -> AbandonmentMetrics:
        try:
            active = await self._active_matches()
        except StoreError as exc:
            logger.warning(f"[SWEEP] Could not compute abandonment metrics: {exc}")
            return AbandonmentMetrics()
        near = self._near_timeout(active)
        return AbandonmentMetrics(
            total_active_matches=len(active),
            recent_abandonments=near,
            cleanup_recommended=near > HIGH_NEAR_TIMEOUT_MATCHES,
        )

    async def get_cleanup_stats(self) -> CleanupStats:
        """Counts of cached matches, those already past the timeout, and those
        within one minute of it."""
        manager = self.manager
        active = await self._active_matches()
        now = manager.clock()
        expired = 0
        near = 0
        for match in active:
            if is_timed_out(match, manager.timeout_minutes, now=now):
                expired += 1
            elif minutes_between(match.last_activity_at, now) > manager.timeout_minutes - 1:
                near += 1
        return CleanupStats(
            total_active_matches=len(active),
            expired_matches=expired,
            near_timeout_matches=near,
        )

    async def recommend_cleanup(self) -> CleanupRecommendation:
        try:
            stats = await self.get_cleanup_stats()
        except StoreError as exc:
            logger.warning(f"[SWEEP] Could not build cleanup recommendation: {exc}")
            return CleanupRecommendation(recommended=False)
        abandonment = await self.get_abandonment_metrics()

        reason = None
        if stats.total_active_matches > HIGH_ACTIVE_MATCHES:
            reason = f"High number of active matches ({stats.total_active_matches})"
        elif stats.expired_matches > HIGH_EXPIRED_MATCHES:
            reason = f"Many expired matches detected ({stats.expired_matches})"
        elif abandonment.recent_abandonments > HIGH_NEAR_TIMEOUT_MATCHES:
            reason = f"High recent abandonment rate ({abandonment.recent_abandonments})"

        recommended = reason is not None
        return CleanupRecommendation(
            recommended=recommended,
            reason=reason,
            metrics=AbandonmentMetrics(
                total_active_matches=stats.total_active_matches,
                recent_abandonments=abandonment.recent_abandonments,
                cleanup_recommended=recommended,
            ),
        )
