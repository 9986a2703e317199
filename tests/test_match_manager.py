import asyncio

import fakeredis
import pytest
from fakeredis.aioredis import FakeConnection
from redis.asyncio import BlockingConnectionPool

import config
from db import connect
from infrastructure import RedisClient, build_connection_pool
from models import MatchStatus, Move, RoundOutcome
from services import MatchManager, MetricsRecorder
from stores import (
    AlreadyActive,
    ConcurrentMatchUpdate,
    InvalidInput,
    InvalidMatchState,
    MatchAbandoned,
    MatchNotFound,
    RedisMatchCache,
    StorageUnavailable,
    Throttled,
)

from tests.conftest import OTHER_PLAYER, PLAYER, ScriptedRng, player_address


async def seed_stats(store, player_id, *, played=0, abandoned=0):
    for _ in range(played):
        await store.update_match_statistics(player_id, MatchStatus.COMPLETED, RoundOutcome.PLAYER)
    for _ in range(abandoned):
        await store.update_match_statistics(player_id, MatchStatus.ABANDONED, RoundOutcome.AI)


class TestStartMatch:

    async def test_start_caches_a_fresh_match(self, manager, cache, clock):
        match = await manager.start_match(PLAYER)
        assert match.status is MatchStatus.ACTIVE
        assert match.started_at == clock.now
        assert await cache.get_by_player(PLAYER) == match

    async def test_gauge_follows_starts_and_finishes(self, manager, metrics):
        first = await manager.start_match(PLAYER)
        await manager.start_match(OTHER_PLAYER)
        assert (await metrics.get_metrics()).active_match_count == 2

        await manager.abandon_match_by_id(first.id)
        assert (await metrics.get_metrics()).active_match_count == 1

    async def test_address_is_normalized(self, manager):
        match = await manager.start_match("0x" + "AB" * 20)
        assert match.player_id == PLAYER

    async def test_invalid_address(self, manager):
        with pytest.raises(InvalidInput):
            await manager.start_match("not-an-address")

    async def test_one_active_match_per_player(self, manager):
        first = await manager.start_match(PLAYER)
        with pytest.raises(AlreadyActive) as exc_info:
            await manager.start_match(PLAYER)
        assert exc_info.value.match_id == first.id
        await manager.start_match(OTHER_PLAYER)

    async def test_timed_out_match_is_replaced(self, manager, store, clock):
        old = await manager.start_match(PLAYER)
        clock.advance(minutes=11)
        new = await manager.start_match(PLAYER)
        assert new.id != old.id
        assert (await store.get(old.id)).status is MatchStatus.ABANDONED

    async def test_throttled_player(self, manager, store):
        # 3 abandoned out of 5 attempts
        await seed_stats(store, PLAYER, played=2, abandoned=3)
        with pytest.raises(Throttled):
            await manager.start_match(PLAYER)

    @pytest.mark.parametrize(
        "played, abandoned, throttled",
        [
            (1, 5, True),
            (2, 3, True),
            (3, 3, True),
            (0, 5, True),
            (1, 3, False),
            (4, 3, False),
            (3, 2, False),
            (0, 0, False),
        ],
    )
    async def test_throttle_thresholds(self, manager, store, played, abandoned, throttled):
        await seed_stats(store, PLAYER, played=played, abandoned=abandoned)
        assert await manager.has_excessive_abandonment_pattern(PLAYER) is throttled

    async def test_throttle_fails_open(self, manager, store, monkeypatch):
        async def broken(player_id):
            raise StorageUnavailable("locked")

        monkeypatch.setattr(store, "get_stats", broken)
        assert await manager.has_excessive_abandonment_pattern(PLAYER) is False
        await manager.start_match(PLAYER)

    async def test_cache_outage_propagates(self, store, metrics, broken_redis):
        manager = MatchManager(RedisMatchCache(broken_redis), store, metrics)
        with pytest.raises(StorageUnavailable):
            await manager.start_match(PLAYER)


class TestPlayRound:

    async def test_player_wins_two_straight(self, manager, cache, store, metrics):
        match = await manager.start_match(PLAYER)
        match, result = await manager.play_round(match.id, "rock")
        assert result.winner is RoundOutcome.PLAYER
        assert match.status is MatchStatus.ACTIVE
        assert (await cache.get(match.id)).version == 1

        match, _ = await manager.play_round(match.id, Move.ROCK)
        assert match.status is MatchStatus.COMPLETED
        assert match.winner is RoundOutcome.PLAYER

        assert await cache.get(match.id) is None
        assert await cache.get_by_player(PLAYER) is None
        assert await store.get(match.id) == match
        stats = await store.get_stats(PLAYER)
        assert (stats.ai_matches_played, stats.ai_matches_won) == (1, 1)
        assert (await metrics.get_metrics()).total_matches_completed == 1

    async def test_three_ties(self, cache, store, metrics, clock):
        manager = MatchManager(cache, store, metrics, clock=clock, rng=ScriptedRng(Move.ROCK))
        match = await manager.start_match(PLAYER)
        for _ in range(3):
            match, result = await manager.play_round(match.id, Move.ROCK)
            assert result.winner is RoundOutcome.TIE
        assert match.winner is RoundOutcome.TIE
        assert (await store.get_stats(PLAYER)).ai_matches_tied == 1

    async def test_finished_match_is_gone_from_the_cache(self, manager):
        match = await manager.start_match(PLAYER)
        await manager.play_round(match.id, Move.ROCK)
        await manager.play_round(match.id, Move.ROCK)
        with pytest.raises(MatchNotFound):
            await manager.play_round(match.id, Move.ROCK)

    async def test_timed_out_match_cannot_be_played(self, manager, store, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=11)
        with pytest.raises(MatchAbandoned):
            await manager.play_round(match.id, Move.ROCK)
        assert (await store.get(match.id)).status is MatchStatus.ABANDONED

    async def test_unknown_match(self, manager):
        with pytest.raises(MatchNotFound):
            await manager.play_round("match_abcdef_0123456789", Move.ROCK)

    @pytest.mark.parametrize("match_id", ["", "abc", "match_ABCDEF_0123456789", None])
    async def test_malformed_match_id(self, manager, match_id):
        with pytest.raises(InvalidInput):
            await manager.play_round(match_id, Move.ROCK)

    async def test_invalid_move_leaves_match_unchanged(self, manager, cache):
        match = await manager.start_match(PLAYER)
        with pytest.raises(InvalidInput):
            await manager.play_round(match.id, "lizard")
        assert await cache.get(match.id) == match

    async def test_failed_commit_is_recovered_on_next_start(self, manager, cache, store, monkeypatch):
        match = await manager.start_match(PLAYER)
        await manager.play_round(match.id, Move.ROCK)
        real_commit = store.commit

        async def broken(m):
            raise StorageUnavailable("disk full")

        monkeypatch.setattr(store, "commit", broken)
        with pytest.raises(StorageUnavailable):
            await manager.play_round(match.id, Move.ROCK)
        assert (await cache.get(match.id)).status is MatchStatus.COMPLETED

        monkeypatch.setattr(store, "commit", real_commit)
        new = await manager.start_match(PLAYER)
        assert new.id != match.id
        assert (await store.get(match.id)).winner is RoundOutcome.PLAYER
        assert (await store.get_stats(PLAYER)).ai_matches_won == 1

    async def test_concurrent_rounds_never_lose_an_update(self, manager, cache):
        match = await manager.start_match(PLAYER)
        results = await asyncio.gather(
            manager.play_round(match.id, Move.ROCK),
            manager.play_round(match.id, Move.ROCK),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(e, ConcurrentMatchUpdate) for e in errors)
        played = len(results) - len(errors)
        assert played >= 1
        current = await cache.get(match.id)
        if played == 1:
            assert len(current.rounds) == 1
        else:
            # both went through one after the other and decided the match
            assert current is None


class TestStatusAndAbandon:

    async def test_status_of_live_match(self, manager, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=9)
        assert await manager.get_match_status(match.id) == match

    async def test_status_expires_idle_match(self, manager, cache, store, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=11)
        status = await manager.get_match_status(match.id)
        assert status.status is MatchStatus.ABANDONED
        assert status.winner is RoundOutcome.AI
        assert await cache.get(match.id) is None
        assert (await store.get_stats(PLAYER)).ai_matches_abandoned == 1

    async def test_status_of_unknown_match(self, manager):
        assert await manager.get_match_status("match_abcdef_0123456789") is None

    async def test_abandon(self, manager, cache, store, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=2)
        abandoned = await manager.abandon_match_by_id(match.id)
        assert abandoned.status is MatchStatus.ABANDONED
        assert abandoned.completed_at == clock.now
        assert await cache.get(match.id) is None
        assert await store.get(match.id) == abandoned

        with pytest.raises(MatchNotFound):
            await manager.abandon_match_by_id(match.id)

    async def test_racing_abandons_count_once(self, manager, store):
        match = await manager.start_match(PLAYER)
        results = await asyncio.gather(
            manager.abandon_match_by_id(match.id),
            manager.abandon_match_by_id(match.id),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], (ConcurrentMatchUpdate, MatchNotFound))
        assert (await store.get_stats(PLAYER)).ai_matches_abandoned == 1

    async def test_abandoning_a_terminal_snapshot(self, manager, cache, store, monkeypatch):
        match = await manager.start_match(PLAYER)

        async def broken(m):
            raise StorageUnavailable("disk full")

        monkeypatch.setattr(store, "commit", broken)
        with pytest.raises(StorageUnavailable):
            await manager.abandon_match_by_id(match.id)
        with pytest.raises(InvalidMatchState):
            await manager.abandon_match_by_id(match.id)


class TestResume:

    async def test_resume_live_match(self, manager, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=4)
        data = await manager.resume_match(PLAYER)
        assert data.can_resume
        assert data.match == match
        assert data.time_remaining_minutes == pytest.approx(6)

    async def test_nothing_to_resume(self, manager):
        data = await manager.resume_match(PLAYER)
        assert data.match is None
        assert not data.can_resume

    async def test_resume_after_timeout(self, manager, store, clock):
        match = await manager.start_match(PLAYER)
        clock.advance(minutes=11)
        data = await manager.resume_match(PLAYER)
        assert not data.can_resume
        assert data.match.status is MatchStatus.ABANDONED
        assert await store.get(match.id) is not None

    async def test_active_match_lookup(self, manager):
        assert await manager.get_active_match_for_player(PLAYER) is None
        match = await manager.start_match(PLAYER)
        assert await manager.get_active_match_for_player(PLAYER) == match


class TestHistoryAndStatistics:

    async def play_to_win(self, manager):
        match = await manager.start_match(PLAYER)
        await manager.play_round(match.id, Move.ROCK)
        match, _ = await manager.play_round(match.id, Move.ROCK)
        return match

    async def test_get_match_falls_back_to_store(self, manager):
        match = await self.play_to_win(manager)
        assert await manager.get_match(match.id) == match

    async def test_history(self, manager, clock):
        first = await self.play_to_win(manager)
        clock.advance(minutes=1)
        second = await self.play_to_win(manager)
        history = await manager.get_player_history(PLAYER)
        assert [m.id for m in history] == [second.id, first.id]

    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (5, -1)])
    async def test_history_bounds(self, manager, limit, offset):
        with pytest.raises(InvalidInput):
            await manager.get_player_history(PLAYER, limit, offset)

    async def test_player_statistics_combine_legacy_and_matches(self, manager, db_path):
        conn = await connect(db_path)
        await conn.execute(
            "INSERT INTO stats (address, total_games, wins, ai_games, ai_wins, ai_ties) VALUES (?, 4, 2, 4, 2, 1)",
            (PLAYER,),
        )
        await conn.commit()
        await conn.close()

        await self.play_to_win(manager)
        stats = await manager.get_player_statistics(PLAYER)
        assert stats.display.mode == "mixed"
        assert stats.combined.ai.total_games == 5
        assert stats.combined.ai.wins == 3
        assert stats.combined.ai.matches.win_rate == 100
        assert stats.weighted.weighted_win_rate == 60
        assert stats.match_stats.ai_matches_won == 1

    async def test_leaderboard(self, manager):
        await self.play_to_win(manager)
        page = await manager.get_leaderboard()
        assert [e.address for e in page.entries] == [PLAYER]
        assert page.entries[0].match_win_rate == 100


class TestMatchIdUniqueness:

    async def test_concurrent_starts_across_managers(self, cache, store, metrics, clock):
        managers = [MatchManager(cache, store, metrics, clock=clock) for _ in range(3)]
        matches = await asyncio.gather(*(
            managers[i % 3].start_match(player_address(i)) for i in range(300)
        ))
        assert len({m.id for m in matches}) == 300
        assert await cache.count_active() == 300


class TestConnectionPool:

    def test_pool_is_bounded_and_blocking(self):
        pool = build_connection_pool("redis://localhost:6379/0")
        assert isinstance(pool, BlockingConnectionPool)
        assert pool.max_connections == config.REDIS_MAX_CONNECTIONS

    async def test_starts_beyond_pool_size_wait_for_a_connection(self, redis_server, store, clock):
        pool = build_connection_pool(
            "redis://localhost:6379/0",
            max_connections=5,
            connection_class=FakeConnection,
            server=redis_server,
            decode_responses=True,
        )
        client = RedisClient.wrap(fakeredis.FakeAsyncRedis.from_pool(pool))
        cache = RedisMatchCache(client)
        manager = MatchManager(cache, store, MetricsRecorder(client), clock=clock)
        try:
            matches = await asyncio.gather(*(
                manager.start_match(player_address(i)) for i in range(150)
            ))
            assert len({m.id for m in matches}) == 150
            assert await cache.count_active() == 150
        finally:
            await client.get().aclose()
