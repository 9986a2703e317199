import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import aiosqlite
from pydantic import ValidationError

from models import (
    Match,
    MatchStatus,
    Round,
    RoundOutcome,
    PlayerMatchStats,
    LegacyStats,
    LeaderboardEntry,
    LeaderboardPage,
)
from utils.time import parse_iso, to_iso, now_utc

from .exceptions import (
    StoreError,
    InvalidInput,
    StorageUnavailable,
    UnexpectedResult,
)
from .match_store import MatchStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_MATCH_COLUMNS = (
    "id, player_id, status, player_score, ai_score, current_round, rounds_data, "
    "started_at, last_activity_at, completed_at, winner, is_abandoned, created_at"
)

_HISTORY_ORDER = "ORDER BY completed_at DESC, created_at DESC, id DESC"


@contextmanager
def _read_errors(op: str):
    try:
        yield
    except sqlite3.Error as exc:
        logger.error(f"[STORE] {op} failed: {exc}")
        raise StorageUnavailable(f"Match database unavailable during {op}") from exc


def _row_to_match(row) -> Match:
    try:
        rounds = tuple(Round.model_validate(r) for r in json.loads(row["rounds_data"] or "[]"))
        status = MatchStatus(row["status"])
        return Match(
            id=row["id"],
            player_id=row["player_id"],
            status=status,
            rounds=rounds,
            player_score=row["player_score"],
            ai_score=row["ai_score"],
            current_round=row["current_round"],
            started_at=parse_iso(row["started_at"]),
            last_activity_at=parse_iso(row["last_activity_at"]),
            completed_at=parse_iso(row["completed_at"]) if row["completed_at"] else None,
            winner=RoundOutcome(row["winner"]) if row["winner"] else None,
            is_abandoned=bool(row["is_abandoned"]),
            # one transition per round, plus one for abandonment
            version=len(rounds) + (1 if status is MatchStatus.ABANDONED else 0),
        )
    except (ValidationError, ValueError, TypeError) as exc:
        raise UnexpectedResult(f"Corrupt match row: {row['id']}") from exc


def _stat_deltas(status: MatchStatus, winner: Optional[RoundOutcome]) -> tuple[int, int, int, int, int]:
    """(played, won, lost, tied, abandoned) increments for one finished match."""
    if status is MatchStatus.ABANDONED:
        return 0, 0, 0, 0, 1
    if status is not MatchStatus.COMPLETED or winner is None:
        raise InvalidInput(f"No statistics for a match in state {status.value}")
    return (
        1,
        int(winner is RoundOutcome.PLAYER),
        int(winner is RoundOutcome.AI),
        int(winner is RoundOutcome.TIE),
        0,
    )


def _validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise InvalidInput("Offset must be non-negative")


class SqliteMatchStore(MatchStore):

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.db: aiosqlite.Connection = None
        # one connection is shared by every coroutine; transactions must not interleave
        self._write_lock = asyncio.Lock()
        logger.info(f"[STORE] SqliteMatchStore initialized with db_path: {db_path}")

    async def init(self):
        """Initialize database connection. Call this after construction."""
        self.db = await aiosqlite.connect(
            self.db_path,
            timeout=30.0,
            isolation_level=None  # Disable implicit transactions, manage explicitly
        )
        await self.db.execute("PRAGMA journal_mode=DELETE")
        self.db.row_factory = aiosqlite.Row
        logger.info(f"[STORE] Database connection established to {self.db_path}")

        async with self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name IN ('ai_matches', 'stats')"
        ) as cursor:
            tables = {row[0] for row in await cursor.fetchall()}
        if tables != {"ai_matches", "stats"}:
            logger.error(f"[STORE] Missing tables, found only {sorted(tables)}")
            raise RuntimeError(f"Database at {self.db_path} is not migrated; run migrate_ai_matches first")

    async def close(self):
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None

    async def _rollback(self):
        try:
            await self.db.rollback()
        except sqlite3.Error as exc:
            logger.warning(f"[STORE] Rollback failed: {exc}")

    # -------------------------------------------------
    # Writes
    # -------------------------------------------------

    async def commit(self, match: Match) -> bool:
        # Raises: InvalidInput, StorageUnavailable, UnexpectedResult
        if not match.is_terminal:
            raise InvalidInput(f"Only completed or abandoned matches can be committed: {match.id}")

        rounds_data = json.dumps([r.model_dump(mode="json") for r in match.rounds])
        async with self._write_lock:
            try:
                await self.db.execute("BEGIN IMMEDIATE")
                # Check if match already exists while holding the lock
                cur_check = await self.db.execute(
                    "SELECT 1 FROM ai_matches WHERE id = ?",
                    (match.id,),
                )
                if await cur_check.fetchone():
                    await self.db.rollback()
                    logger.warning(f"[STORE] Match {match.id} already committed; counters left unchanged")
                    return False

                await self.db.execute(
                    f"""
                    INSERT INTO ai_matches ({_MATCH_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        match.id,
                        match.player_id,
                        match.status.value,
                        match.player_score,
                        match.ai_score,
                        match.current_round,
                        rounds_data,
                        to_iso(match.started_at),
                        to_iso(match.last_activity_at),
                        to_iso(match.completed_at),
                        match.winner.value,
                        int(match.is_abandoned),
                        to_iso(match.started_at),
                    ),
                )
                await self.db.commit()
            except sqlite3.IntegrityError as exc:
                await self._rollback()
                raise UnexpectedResult(f"Integrity error while committing match {match.id}") from exc
            except sqlite3.Error as exc:
                await self._rollback()
                logger.error(f"[STORE] Commit of {match.id} failed: {exc}")
                raise StorageUnavailable(f"Match database unavailable while committing {match.id}") from exc

        logger.info(f"[STORE] Committed {match.id} ({match.status.value}, winner={match.winner.value})")
        try:
            await self.update_match_statistics(match.player_id, match.status, match.winner)
        except StoreError as exc:
            # the match row is already durable; counters are best-effort
            logger.error(f"[STORE] Statistics update for {match.id} failed: {exc}")
        return True

    async def update_match_statistics(
        self,
        player_id: str,
        status: MatchStatus,
        winner: Optional[RoundOutcome],
    ) -> None:
        played, won, lost, tied, abandoned = _stat_deltas(status, winner)
        async with self._write_lock:
            try:
                await self.db.execute("BEGIN IMMEDIATE")
                await self.db.execute(
                    """
                    INSERT INTO stats (
                        address, ai_matches_played, ai_matches_won, ai_matches_lost,
                        ai_matches_tied, ai_matches_abandoned, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(address) DO UPDATE SET
                        ai_matches_played = COALESCE(stats.ai_matches_played, 0) + excluded.ai_matches_played,
                        ai_matches_won = COALESCE(stats.ai_matches_won, 0) + excluded.ai_matches_won,
                        ai_matches_lost = COALESCE(stats.ai_matches_lost, 0) + excluded.ai_matches_lost,
                        ai_matches_tied = COALESCE(stats.ai_matches_tied, 0) + excluded.ai_matches_tied,
                        ai_matches_abandoned = COALESCE(stats.ai_matches_abandoned, 0) + excluded.ai_matches_abandoned,
                        updated_at = excluded.updated_at
                    """,
                    (player_id, played, won, lost, tied, abandoned, to_iso(now_utc())),
                )
                await self.db.commit()
            except sqlite3.Error as exc:
                await self._rollback()
                raise StorageUnavailable(f"Could not update statistics for {player_id}") from exc

    async def delete_old_abandoned_matches(self, older_than: datetime) -> int:
        async with self._write_lock:
            try:
                await self.db.execute("BEGIN IMMEDIATE")
                cur = await self.db.execute(
                    "DELETE FROM ai_matches WHERE status = 'abandoned' AND last_activity_at < ?",
                    (to_iso(older_than),),
                )
                deleted = cur.rowcount
                await self.db.commit()
            except sqlite3.Error as exc:
                await self._rollback()
                raise StorageUnavailable("Match database unavailable while deleting abandoned matches") from exc

        if deleted:
            logger.info(f"[STORE] Deleted {deleted} abandoned matches older than {to_iso(older_than)}")
        return deleted

    # -------------------------------------------------
    # Reads
    # -------------------------------------------------

    async def get(self, match_id: str) -> Optional[Match]:
        with _read_errors("get"):
            async with self.db.execute(
                f"SELECT {_MATCH_COLUMNS} FROM ai_matches WHERE id = ?",
                (match_id,),
            ) as cur:
                row = await cur.fetchone()
        return _row_to_match(row) if row else None

    async def get_history(self, player_id: str, limit: int = 50, offset: int = 0) -> list[Match]:
        _validate_page(limit, offset)
        with _read_errors("get_history"):
            async with self.db.execute(
                f"""
                SELECT {_MATCH_COLUMNS} FROM ai_matches
                WHERE player_id = ?
                {_HISTORY_ORDER}
                LIMIT ? OFFSET ?
                """,
                (player_id, limit, offset),
            ) as cur:
                rows = await cur.fetchall()
        return [_row_to_match(row) for row in rows]

    async def get_match_count(self, player_id: str) -> int:
        with _read_errors("get_match_count"):
            async with self.db.execute(
                "SELECT COUNT(*) FROM ai_matches WHERE player_id = ?",
                (player_id,),
            ) as cur:
                row = await cur.fetchone()
        return row[0]

    async def get_recent_matches(self, limit: int = 10) -> list[Match]:
        _validate_page(limit, 0)
        with _read_errors("get_recent_matches"):
            async with self.db.execute(
                f"SELECT {_MATCH_COLUMNS} FROM ai_matches {_HISTORY_ORDER} LIMIT ?",
                (limit,),
            ) as cur:
                rows = await cur.fetchall()
        return [_row_to_match(row) for row in rows]

    async def get_stats(self, player_id: str) -> PlayerMatchStats:
        with _read_errors("get_stats"):
            async with self.db.execute(
                """
                SELECT
                    COALESCE(ai_matches_played, 0),
                    COALESCE(ai_matches_won, 0),
                    COALESCE(ai_matches_lost, 0),
                    COALESCE(ai_matches_tied, 0),
                    COALESCE(ai_matches_abandoned, 0)
                FROM stats WHERE address = ?
                """,
                (player_id,),
            ) as cur:
                row = await cur.fetchone()
        if row is None:
            return PlayerMatchStats(address=player_id)
        return PlayerMatchStats(
            address=player_id,
            ai_matches_played=row[0],
            ai_matches_won=row[1],
            ai_matches_lost=row[2],
            ai_matches_tied=row[3],
            ai_matches_abandoned=row[4],
        )

    async def get_legacy_stats(self, player_id: str) -> LegacyStats:
        fields = [name for name in LegacyStats.model_fields if name != "address"]
        columns = ", ".join(f"COALESCE({name}, 0)" for name in fields)
        with _read_errors("get_legacy_stats"):
            async with self.db.execute(
                f"SELECT {columns} FROM stats WHERE address = ?",
                (player_id,),
            ) as cur:
                row = await cur.fetchone()
        if row is None:
            return LegacyStats(address=player_id)
        return LegacyStats(address=player_id, **dict(zip(fields, row)))

    async def get_match_leaderboard(
        self,
        limit: int = 50,
        offset: int = 0,
        min_matches: int = 0,
    ) -> LeaderboardPage:
        _validate_page(limit, offset)
        if min_matches < 0:
            raise InvalidInput("Minimum matches must be non-negative")

        with _read_errors("get_match_leaderboard"):
            async with self.db.execute(
                "SELECT COUNT(*) FROM stats WHERE COALESCE(ai_matches_played, 0) >= ?",
                (min_matches,),
            ) as cur:
                total = (await cur.fetchone())[0]

            async with self.db.execute(
                """
                SELECT
                    address,
                    COALESCE(ai_matches_won, 0) AS match_wins,
                    COALESCE(ai_matches_played, 0) AS matches_played,
                    CASE
                        WHEN COALESCE(ai_matches_played, 0) > 0
                        THEN ROUND((COALESCE(ai_matches_won, 0) * 100.0) / ai_matches_played, 2)
                        ELSE 0.0
                    END AS match_win_rate,
                    updated_at
                FROM stats
                WHERE COALESCE(ai_matches_played, 0) >= ?
                ORDER BY match_wins DESC, match_win_rate DESC, matches_played DESC, address ASC
                LIMIT ? OFFSET ?
                """,
                (min_matches, limit, offset),
            ) as cur:
                rows = await cur.fetchall()

        entries = [
            LeaderboardEntry(
                address=row["address"],
                match_wins=row["match_wins"],
                matches_played=row["matches_played"],
                match_win_rate=row["match_win_rate"],
                position=offset + i + 1,
                updated_at=row["updated_at"],
            )
            for i, row in enumerate(rows)
        ]
        return LeaderboardPage(
            entries=entries,
            total=total,
            has_more=offset + len(entries) < total,
            limit=limit,
            offset=offset,
        )
