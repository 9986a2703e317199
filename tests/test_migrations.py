import sqlite3

import aiosqlite
import pytest

from db import (
    MigrationError,
    connect,
    ensure_db,
    extend_stats_table,
    get_database_stats,
    migrate_ai_matches,
    verify_schema,
)
from db.migrations import STATS_MATCH_COLUMNS

from tests.conftest import PLAYER


@pytest.fixture
async def legacy_db(tmp_path):
    """A database that only has the single-round schema, with one player's stats."""
    path = str(tmp_path / "legacy.sqlite3")
    await ensure_db(path)
    conn = await connect(path)
    await conn.execute(
        """
        INSERT INTO stats (address, total_games, wins, losses, ties, ai_games, ai_wins, ai_ties,
                           multiplayer_games, multiplayer_wins, multiplayer_ties, updated_at)
        VALUES (?, 20, 9, 6, 5, 12, 5, 3, 8, 4, 2, '2024-06-01T00:00:00.000000+00:00')
        """,
        (PLAYER,),
    )
    await conn.commit()
    yield conn
    await conn.close()


async def columns(conn, table):
    async with conn.execute(f"PRAGMA table_info({table})") as cur:
        return [row[1] for row in await cur.fetchall()]


class TestMigrations:

    async def test_fresh_base_schema_fails_verification(self, legacy_db):
        ok, errors = await verify_schema(legacy_db)
        assert not ok
        assert "ai_matches table is missing" in errors
        assert "stats.ai_matches_played is missing" in errors

    async def test_migration_preserves_legacy_stats(self, legacy_db):
        result = await migrate_ai_matches(legacy_db)
        assert result["added_columns"] == list(STATS_MATCH_COLUMNS)

        async with legacy_db.execute("SELECT * FROM stats WHERE address = ?", (PLAYER,)) as cur:
            row = await cur.fetchone()
        assert (row["total_games"], row["wins"], row["losses"], row["ties"]) == (20, 9, 6, 5)
        assert (row["ai_games"], row["ai_wins"], row["ai_ties"]) == (12, 5, 3)
        assert (row["multiplayer_games"], row["multiplayer_wins"], row["multiplayer_ties"]) == (8, 4, 2)
        assert row["updated_at"] == "2024-06-01T00:00:00.000000+00:00"
        for column in STATS_MATCH_COLUMNS:
            assert row[column] == 0

        ok, errors = await verify_schema(legacy_db)
        assert ok, errors

    async def test_migration_is_idempotent(self, legacy_db):
        await migrate_ai_matches(legacy_db)
        before = await columns(legacy_db, "stats")
        second = await migrate_ai_matches(legacy_db)
        assert second["added_columns"] == []
        assert await columns(legacy_db, "stats") == before

        async with legacy_db.execute("SELECT version FROM schema_migrations") as cur:
            versions = [row[0] for row in await cur.fetchall()]
        assert versions == [second["version"]]

    async def test_null_counters_are_backfilled(self, legacy_db):
        await migrate_ai_matches(legacy_db)
        await legacy_db.execute("UPDATE stats SET ai_matches_won = NULL WHERE address = ?", (PLAYER,))
        await legacy_db.commit()

        assert await extend_stats_table(legacy_db) == []
        async with legacy_db.execute("SELECT ai_matches_won FROM stats WHERE address = ?", (PLAYER,)) as cur:
            assert (await cur.fetchone())[0] == 0

    async def test_missing_stats_table(self, tmp_path):
        conn = await aiosqlite.connect(str(tmp_path / "empty.sqlite3"))
        try:
            with pytest.raises(MigrationError):
                await extend_stats_table(conn)
        finally:
            await conn.close()

    async def test_database_stats(self, legacy_db):
        await migrate_ai_matches(legacy_db)
        stats = await get_database_stats(legacy_db)
        assert stats == {
            "total_matches": 0,
            "completed_matches": 0,
            "abandoned_matches": 0,
            "unique_players": 0,
            "stats_rows": 1,
        }

    async def test_check_constraints(self, legacy_db):
        await migrate_ai_matches(legacy_db)
        with pytest.raises(sqlite3.IntegrityError):
            await legacy_db.execute(
                """
                INSERT INTO ai_matches (id, player_id, status, player_score, started_at,
                                        last_activity_at, created_at)
                VALUES ('m', ?, 'active', 3, 'x', 'x', 'x')
                """,
                (PLAYER,),
            )
