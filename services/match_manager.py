"""Match manager: the entry point every outer layer (HTTP, workers) goes through.

The manager owns no state of its own. It composes the state machine with the
active-match cache, the durable store and the metrics recorder, and enforces
the cross-match rules: one active match per player, and throttling of players
who abandon too often.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

import config
from infrastructure import RedisClient
from models import (
    CleanupRecommendation,
    CleanupReport,
    AbandonmentMetrics,
    LeaderboardPage,
    Match,
    MatchStatus,
    PlayerStatistics,
    ResumeMatchData,
    RoundResult,
)
from stores import ActiveMatchCache, MatchStore
from stores.exceptions import (
    ConcurrentMatchUpdate,
    InvalidInput,
    InvalidMatchState,
    MatchAbandoned,
    MatchCompleted,
    MatchNotFound,
    NotActive,
    AlreadyActive,
    RoundLimitExceeded,
    StoreError,
    Throttled,
)
from utils.time import now_utc
from utils.validation import is_valid_address, is_valid_match_id, normalize_address

from .cleanup import MatchSweeper
from .match_engine import (
    abandon_match,
    apply_round,
    create_match,
    is_timed_out,
    time_remaining_minutes,
)
from .metrics import MetricsRecorder
from .statistics import (
    calculate_mixed_statistics,
    calculate_weighted_win_rate,
    get_statistics_display_mode,
)

logger = logging.getLogger(__name__)

THROTTLE_MIN_ATTEMPTS = 5
THROTTLE_MIN_ABANDONED = 3
THROTTLE_ABANDON_RATIO = 0.5

MAX_HISTORY_LIMIT = 100


def _not_active_error(match: Match) -> NotActive:
    if match.status is MatchStatus.COMPLETED:
        return MatchCompleted(match.id)
    return MatchAbandoned(match.id)


class MatchManager:

    def __init__(
        self,
        cache: ActiveMatchCache,
        store: MatchStore,
        metrics: MetricsRecorder,
        *,
        redis: Optional[RedisClient] = None,
        timeout_minutes: float = config.MATCH_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = now_utc,
        rng=None,
    ):
        self.cache = cache
        self.store = store
        self.metrics = metrics
        self.timeout_minutes = timeout_minutes
        self.clock = clock
        self.rng = rng
        self.sweeper = MatchSweeper(self, redis)

    # -------------------------------------------------
    # Helpers
    # -------------------------------------------------

    @staticmethod
    def _player(player_id: str) -> str:
        if not is_valid_address(player_id):
            raise InvalidInput(f"Invalid player address: {player_id!r}")
        return normalize_address(player_id)

    @staticmethod
    def _match_id(match_id: str) -> str:
        if not is_valid_match_id(match_id):
            raise InvalidInput(f"Invalid match id: {match_id!r}")
        return match_id

    async def _timed(self, operation: str, backend: str, coro):
        async with self.metrics.track_backend(operation, backend):
            return await coro

    async def finalize(self, match: Match, *, claim: bool = True) -> bool:
        """Move a terminal match from the cache into the durable store.

        With `claim`, the terminal snapshot is first written to the cache with
        the usual version check, so of two racing transitions only one reaches
        the store. Returns True if this call committed the match.
        """
        if claim:
            await self._timed("save", "redis", self.cache.save(match))
        committed = await self._timed("commit", "sqlite", self.store.commit(match))
        await self._timed("delete", "redis", self.cache.delete(match.id))
        if committed:
            await self.metrics.record_match_outcome(match.status)
            await self.metrics.adjust_active_match_count(-1)
        logger.info(f"[MANAGER] Finalized {match.id} as {match.status.value} (winner={match.winner.value})")
        return committed

    async def _expire(self, match: Match) -> Match:
        abandoned = abandon_match(match, now=self.clock())
        logger.info(f"[MANAGER] Match {match.id} timed out after {self.timeout_minutes} minutes")
        await self.finalize(abandoned)
        return abandoned

    # -------------------------------------------------
    # Match lifecycle
    # -------------------------------------------------

    async def start_match(self, player_id: str) -> Match:
        # Raises: InvalidInput, AlreadyActive, Throttled, StorageUnavailable
        player_id = self._player(player_id)

        existing = await self._timed("get_by_player", "redis", self.cache.get_by_player(player_id))
        if existing is not None:
            if existing.is_terminal:
                await self.finalize(existing, claim=False)
            elif is_timed_out(existing, self.timeout_minutes, now=self.clock()):
                await self._expire(existing)
            else:
                raise AlreadyActive(player_id, existing.id)

        if await self.has_excessive_abandonment_pattern(player_id):
            raise Throttled(player_id)

        match = create_match(player_id, now=self.clock())
        await self._timed("save", "redis", self.cache.save(match))
        await self.metrics.adjust_active_match_count(1)
        logger.info(f"[MANAGER] Started {match.id} for {player_id}")
        return match

    async def play_round(self, match_id: str, player_move) -> tuple[Match, RoundResult]:
        # Raises: InvalidInput, MatchNotFound, MatchCompleted, MatchAbandoned,
        #         InvalidMatchState, ConcurrentMatchUpdate, StorageUnavailable
        match_id = self._match_id(match_id)
        match = await self.get_match_status(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        if match.is_terminal:
            raise _not_active_error(match)

        try:
            updated, result = apply_round(match, player_move, rng=self.rng, now=self.clock())
        except NotActive:
            raise _not_active_error(match) from None
        except RoundLimitExceeded as exc:
            raise InvalidMatchState(str(exc)) from exc

        if updated.is_terminal:
            await self.finalize(updated)
        else:
            await self._timed("save", "redis", self.cache.save(updated))
        return updated, result

    async def get_match_status(self, match_id: str) -> Optional[Match]:
        """Current cached state, abandoning it first if it has timed out.

        Matches already moved to the durable store are not looked up here.
        """
        match_id = self._match_id(match_id)
        match = await self._timed("get", "redis", self.cache.get(match_id))
        if match is None or not is_timed_out(match, self.timeout_minutes, now=self.clock()):
            return match
        try:
            return await self._expire(match)
        except ConcurrentMatchUpdate:
            # someone else finalized it first
            committed = await self._timed("get", "sqlite", self.store.get(match_id))
            if committed is None:
                raise
            return committed

    async def get_active_match_for_player(self, player_id: str) -> Optional[Match]:
        player_id = self._player(player_id)
        return await self._timed("get_by_player", "redis", self.cache.get_by_player(player_id))

    async def abandon_match_by_id(self, match_id: str) -> Match:
        # Raises: InvalidInput, MatchNotFound, InvalidMatchState, StorageUnavailable
        match_id = self._match_id(match_id)
        match = await self._timed("get", "redis", self.cache.get(match_id))
        if match is None:
            raise MatchNotFound(match_id)
        if match.status is not MatchStatus.ACTIVE:
            raise InvalidMatchState(f"Match is not active: {match_id} ({match.status.value})")

        abandoned = abandon_match(match, now=self.clock())
        await self.finalize(abandoned)
        logger.info(f"[MANAGER] Player {match.player_id} abandoned {match_id}")
        return abandoned

    async def resume_match(self, player_id: str) -> ResumeMatchData:
        player_id = self._player(player_id)
        match = await self._timed("get_by_player", "redis", self.cache.get_by_player(player_id))
        if match is None or match.is_terminal:
            return ResumeMatchData()

        if is_timed_out(match, self.timeout_minutes, now=self.clock()):
            return ResumeMatchData(match=await self._expire(match), can_resume=False)

        return ResumeMatchData(
            match=match,
            can_resume=True,
            time_remaining_minutes=time_remaining_minutes(match, self.timeout_minutes, now=self.clock()),
        )

    async def get_match(self, match_id: str) -> Optional[Match]:
        """Look a match up in the cache, then in the durable store."""
        match_id = self._match_id(match_id)
        match = await self._timed("get", "redis", self.cache.get(match_id))
        if match is not None:
            return match
        return await self._timed("get", "sqlite", self.store.get(match_id))

    # -------------------------------------------------
    # History and statistics
    # -------------------------------------------------

    async def get_player_history(self, player_id: str, limit: int = 50, offset: int = 0) -> list[Match]:
        player_id = self._player(player_id)
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise InvalidInput(f"Limit must be between 1 and {MAX_HISTORY_LIMIT}")
        if offset < 0:
            raise InvalidInput("Offset must be non-negative")
        return await self._timed("get_history", "sqlite", self.store.get_history(player_id, limit, offset))

    async def get_player_statistics(self, player_id: str) -> PlayerStatistics:
        player_id = self._player(player_id)
        legacy = await self._timed("get_legacy_stats", "sqlite", self.store.get_legacy_stats(player_id))
        match_stats = await self._timed("get_stats", "sqlite", self.store.get_stats(player_id))
        combined = calculate_mixed_statistics(legacy, match_stats)
        return PlayerStatistics(
            address=player_id,
            combined=combined,
            display=get_statistics_display_mode(combined),
            weighted=calculate_weighted_win_rate(combined),
            match_stats=match_stats,
        )

    async def get_leaderboard(self, limit: int = 50, offset: int = 0, min_matches: int = 0) -> LeaderboardPage:
        return await self._timed(
            "get_match_leaderboard",
            "sqlite",
            self.store.get_match_leaderboard(limit, offset, min_matches),
        )

    async def has_excessive_abandonment_pattern(self, player_id: str) -> bool:
        """True when the player abandons at least half of 5+ attempts (3+ abandoned).

        Fails open: if the counters cannot be read the player is not throttled.
        """
        try:
            stats = await self._timed("get_stats", "sqlite", self.store.get_stats(player_id))
        except StoreError as exc:
            logger.warning(f"[MANAGER] Could not read stats for {player_id}, not throttling: {exc}")
            return False

        total = stats.total_attempts
        if total < THROTTLE_MIN_ATTEMPTS or stats.ai_matches_abandoned < THROTTLE_MIN_ABANDONED:
            return False
        return stats.ai_matches_abandoned / total >= THROTTLE_ABANDON_RATIO

    # -------------------------------------------------
    # Operations
    # -------------------------------------------------

    async def perform_match_cleanup(
        self,
        abandoned_retention_days: Optional[int] = None,
        sweep_active: bool = True,
    ) -> CleanupReport:
        return await self.sweeper.sweep(abandoned_retention_days, sweep_active)

    async def emergency_cleanup(self) -> CleanupReport:
        return await self.sweeper.emergency_cleanup()

    async def recommend_cleanup(self) -> CleanupRecommendation:
        return await self.sweeper.recommend_cleanup()

    async def get_abandonment_metrics(self) -> AbandonmentMetrics:
        return await self.sweeper.get_abandonment_metrics()
