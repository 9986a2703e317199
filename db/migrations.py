"""Additive schema changes for best-of-three matches.

The base schema (`db/schema.sql`) only knows about single-round games. This
module adds the `ai_matches` table and extends `stats` with match-level
counters. Every step checks the live schema first, so running the whole
migration any number of times leaves already-migrated data untouched.
"""
import logging
import sqlite3
from typing import Any

import aiosqlite

from utils.time import now_utc, to_iso

logger = logging.getLogger(__name__)

MIGRATION_VERSION = "001_ai_matches"

AI_MATCHES_COLUMNS = (
    "id",
    "player_id",
    "status",
    "player_score",
    "ai_score",
    "current_round",
    "rounds_data",
    "started_at",
    "last_activity_at",
    "completed_at",
    "winner",
    "is_abandoned",
    "created_at",
)

AI_MATCHES_INDEXES = {
    "idx_ai_matches_player_id": "player_id",
    "idx_ai_matches_status": "status",
    "idx_ai_matches_completed_at": "completed_at",
    "idx_ai_matches_created_at": "created_at",
    "idx_ai_matches_last_activity": "last_activity_at",
}

STATS_MATCH_COLUMNS = (
    "ai_matches_played",
    "ai_matches_won",
    "ai_matches_lost",
    "ai_matches_tied",
    "ai_matches_abandoned",
)

LEGACY_STATS_COLUMNS = (
    "address",
    "total_games",
    "wins",
    "losses",
    "ties",
    "ai_games",
    "ai_wins",
    "ai_ties",
    "multiplayer_games",
    "multiplayer_wins",
    "multiplayer_ties",
    "updated_at",
)


class MigrationError(RuntimeError):
    """Raised when the schema is still incomplete after migrating."""

    def __init__(self, errors: list[str]):
        super().__init__("Schema verification failed: " + "; ".join(errors))
        self.errors = errors


async def _table_columns(conn: aiosqlite.Connection, table: str) -> list[str]:
    async with conn.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return [row[1] for row in rows]


async def _index_names(conn: aiosqlite.Connection, table: str) -> set[str]:
    async with conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = ?",
        (table,),
    ) as cur:
        rows = await cur.fetchall()
    return {row[0] for row in rows}


async def create_ai_matches_table(conn: aiosqlite.Connection) -> None:
    """Create the append-only table of finished matches and its indexes."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ai_matches (
            id TEXT PRIMARY KEY,
            player_id TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('active', 'completed', 'abandoned')),
            player_score INTEGER NOT NULL DEFAULT 0 CHECK (player_score BETWEEN 0 AND 2),
            ai_score INTEGER NOT NULL DEFAULT 0 CHECK (ai_score BETWEEN 0 AND 2),
            current_round INTEGER NOT NULL DEFAULT 1 CHECK (current_round BETWEEN 1 AND 4),
            rounds_data TEXT NOT NULL DEFAULT '[]',
            started_at TEXT NOT NULL,
            last_activity_at TEXT NOT NULL,
            completed_at TEXT,
            winner TEXT CHECK (winner IN ('player', 'ai', 'tie')),
            is_abandoned INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )
    for name, column in AI_MATCHES_INDEXES.items():
        await conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON ai_matches({column})")
    await conn.commit()
    logger.info("[MIGRATE] ai_matches table ready")


async def extend_stats_table(conn: aiosqlite.Connection) -> list[str]:
    """Add match-level counters to `stats`. Returns the columns actually added.

    Existing columns are never touched. New columns default to 0 and any
    NULLs left behind by an older partial run are backfilled to 0.
    """
    existing = set(await _table_columns(conn, "stats"))
    if not existing:
        raise MigrationError(["stats table does not exist"])

    added = []
    for column in STATS_MATCH_COLUMNS:
        if column in existing:
            continue
        await conn.execute(f"ALTER TABLE stats ADD COLUMN {column} INTEGER DEFAULT 0")
        added.append(column)

    assignments = ", ".join(f"{c} = COALESCE({c}, 0)" for c in STATS_MATCH_COLUMNS)
    nulls = " OR ".join(f"{c} IS NULL" for c in STATS_MATCH_COLUMNS)
    await conn.execute(f"UPDATE stats SET {assignments} WHERE {nulls}")
    await conn.commit()

    if added:
        logger.info(f"[MIGRATE] Added stats columns: {added}")
    return added


async def verify_schema(conn: aiosqlite.Connection) -> tuple[bool, list[str]]:
    """Report missing tables, columns and indexes. Returns (is_valid, errors)."""
    errors = []

    match_columns = set(await _table_columns(conn, "ai_matches"))
    if not match_columns:
        errors.append("ai_matches table is missing")
    else:
        for column in AI_MATCHES_COLUMNS:
            if column not in match_columns:
                errors.append(f"ai_matches.{column} is missing")
        indexes = await _index_names(conn, "ai_matches")
        for name in AI_MATCHES_INDEXES:
            if name not in indexes:
                errors.append(f"index {name} is missing")

    stats_columns = set(await _table_columns(conn, "stats"))
    if not stats_columns:
        errors.append("stats table is missing")
    else:
        for column in LEGACY_STATS_COLUMNS + STATS_MATCH_COLUMNS:
            if column not in stats_columns:
                errors.append(f"stats.{column} is missing")

    return not errors, errors


async def migrate_ai_matches(conn: aiosqlite.Connection) -> dict[str, Any]:
    """Run every match migration step and verify the result.

    Raises MigrationError if the schema is incomplete afterwards.
    """
    logger.info("[MIGRATE] Running match schema migration")
    await create_ai_matches_table(conn)
    added = await extend_stats_table(conn)

    ok, errors = await verify_schema(conn)
    if not ok:
        logger.error(f"[MIGRATE] Verification failed: {errors}")
        raise MigrationError(errors)

    try:
        await conn.execute(
            "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
            (MIGRATION_VERSION, to_iso(now_utc())),
        )
        await conn.commit()
    except sqlite3.OperationalError as exc:
        # databases created before schema_migrations existed
        logger.warning(f"[MIGRATE] Could not record migration version: {exc}")

    return {"version": MIGRATION_VERSION, "added_columns": added}


async def get_database_stats(conn: aiosqlite.Connection) -> dict[str, int]:
    """Row counts for operational dashboards."""
    async with conn.execute(
        """
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed,
            COALESCE(SUM(CASE WHEN status = 'abandoned' THEN 1 ELSE 0 END), 0) AS abandoned,
            COUNT(DISTINCT player_id) AS players
        FROM ai_matches
        """
    ) as cur:
        row = await cur.fetchone()
    async with conn.execute("SELECT COUNT(*) FROM stats") as cur:
        stats_row = await cur.fetchone()

    return {
        "total_matches": row[0],
        "completed_matches": row[1],
        "abandoned_matches": row[2],
        "unique_players": row[3],
        "stats_rows": stats_row[0],
    }
