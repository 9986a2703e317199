from typing import Optional
from datetime import datetime
from abc import ABC, abstractmethod

from models import (
    Match,
    MatchStatus,
    RoundOutcome,
    PlayerMatchStats,
    LegacyStats,
    LeaderboardPage,
)


# =========================
# MatchStore Interface
# =========================

class MatchStore(ABC):
    """
    The MatchStore is the durable home of finished matches.

    Invariants:
    - Only terminal (completed / abandoned) matches are written
    - A match id is written at most once; a repeated commit is a no-op
    - Player counters move exactly once per committed match, additively
    - Counter updates never block or undo the match row itself
    - Legacy per-round statistics are never modified
    """

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------

    @abstractmethod
    async def commit(self, match: Match) -> bool:
        """Persist a terminal match and update the owner's counters.

        Returns True if the row was written, False if the id was already
        committed (counters are then left alone).

        Raises:
            InvalidInput: If the match is still active.
            StorageUnavailable: If the row could not be written.
        """

    @abstractmethod
    async def update_match_statistics(
        self,
        player_id: str,
        status: MatchStatus,
        winner: Optional[RoundOutcome],
    ) -> None:
        """Increment the counters for one terminal match outcome."""

    @abstractmethod
    async def delete_old_abandoned_matches(self, older_than: datetime) -> int:
        """Delete abandoned rows whose last activity precedes `older_than`.

        Returns the number of rows removed.
        """

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    @abstractmethod
    async def get(self, match_id: str) -> Optional[Match]:
        """Rebuild a committed match, or None if the id is unknown."""

    @abstractmethod
    async def get_history(self, player_id: str, limit: int = 50, offset: int = 0) -> list[Match]:
        """Player's matches, most recently completed first."""

    @abstractmethod
    async def get_match_count(self, player_id: str) -> int:
        """Number of committed matches owned by the player."""

    @abstractmethod
    async def get_recent_matches(self, limit: int = 10) -> list[Match]:
        """Most recently completed matches across all players."""

    @abstractmethod
    async def get_stats(self, player_id: str) -> PlayerMatchStats:
        """Match counters for the player; zeroed when there is no row."""

    @abstractmethod
    async def get_legacy_stats(self, player_id: str) -> LegacyStats:
        """Per-round statistics for the player; zeroed when there is no row."""

    @abstractmethod
    async def get_match_leaderboard(
        self,
        limit: int = 50,
        offset: int = 0,
        min_matches: int = 0,
    ) -> LeaderboardPage:
        """Players ranked by match wins.

        Raises:
            InvalidInput: If limit is outside 1..100 or offset/min_matches is negative.
        """
