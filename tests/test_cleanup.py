from datetime import timedelta

from models import MatchStatus, RoundOutcome
from services.cleanup import SWEEP_LOCK_KEY
from services.match_engine import abandon_match
from stores import StorageUnavailable
from stores.redis_match_cache import player_key

from tests.conftest import PLAYER, build_match, player_address


async def seed(cache, clock, idle_minutes, count=1, offset=0):
    """Cache `count` fresh active matches that have been idle for `idle_minutes`."""
    matches = []
    for i in range(count):
        match = build_match(
            player_id=player_address(offset + i),
            started_at=clock.now - timedelta(minutes=idle_minutes),
        )
        await cache.save(match)
        matches.append(match)
    return matches


class TestSweep:

    async def test_only_idle_matches_expire(self, manager, cache, store, clock):
        [stale] = await seed(cache, clock, 11)
        [fresh] = await seed(cache, clock, 9, offset=1)

        report = await manager.perform_match_cleanup()
        assert report.success
        assert not report.skipped
        assert report.results.expired_active_matches == 1
        assert report.errors == []

        assert await cache.get(stale.id) is None
        assert await cache.get(fresh.id) == fresh
        durable = await store.get(stale.id)
        assert durable.status is MatchStatus.ABANDONED
        assert durable.winner is RoundOutcome.AI
        assert (await store.get_stats(stale.player_id)).ai_matches_abandoned == 1

    async def test_gauge_is_updated(self, manager, cache, clock, metrics):
        await seed(cache, clock, 1, count=3)
        await manager.perform_match_cleanup()
        assert (await metrics.get_metrics()).active_match_count == 3

    async def test_sweep_active_false_leaves_cache_alone(self, manager, cache, clock):
        [stale] = await seed(cache, clock, 30)
        report = await manager.perform_match_cleanup(sweep_active=False)
        assert report.results.expired_active_matches == 0
        assert await cache.get(stale.id) == stale

    async def test_old_abandoned_matches_are_purged(self, manager, store, clock):
        old = build_match(started_at=clock.now - timedelta(days=8))
        await store.commit(abandon_match(old, now=old.started_at))
        report = await manager.perform_match_cleanup(abandoned_retention_days=7)
        assert report.results.deleted_abandoned_matches == 1
        assert await store.get(old.id) is None

    async def test_one_failure_does_not_stop_the_sweep(self, manager, cache, store, clock, monkeypatch):
        first, second = await seed(cache, clock, 15, count=2)
        real_commit = store.commit

        async def flaky_commit(match):
            if match.id == first.id:
                raise StorageUnavailable("disk full")
            return await real_commit(match)

        monkeypatch.setattr(store, "commit", flaky_commit)
        report = await manager.perform_match_cleanup()
        assert report.success
        assert report.results.expired_active_matches == 1
        assert len(report.errors) == 1
        assert first.id in report.errors[0]
        assert await store.get(second.id) is not None

        # the claimed terminal snapshot is picked up by the next sweep
        leftover = await cache.get(first.id)
        assert leftover.status is MatchStatus.ABANDONED
        monkeypatch.setattr(store, "commit", real_commit)
        report = await manager.perform_match_cleanup()
        assert report.errors == []
        assert await cache.get(first.id) is None
        assert (await store.get(first.id)).status is MatchStatus.ABANDONED
        assert (await store.get_stats(first.player_id)).ai_matches_abandoned == 1

    async def test_match_committed_elsewhere_is_not_counted(self, manager, cache, store, clock):
        [stale] = await seed(cache, clock, 12)
        assert await store.commit(abandon_match(stale, now=clock.now))

        report = await manager.perform_match_cleanup()
        assert report.success
        assert report.results.expired_active_matches == 0
        assert report.errors == []
        assert await cache.get(stale.id) is None
        assert (await store.get_stats(stale.player_id)).ai_matches_abandoned == 1

    async def test_enumeration_failure(self, manager, cache, monkeypatch):
        async def broken():
            raise StorageUnavailable("redis down")

        monkeypatch.setattr(cache, "list_all", broken)
        report = await manager.perform_match_cleanup()
        assert report.success is False
        assert "redis down" in report.error

    async def test_concurrent_sweep_is_skipped(self, manager, redis_client, cache, clock):
        [stale] = await seed(cache, clock, 20)
        token = await redis_client.acquire_lock(SWEEP_LOCK_KEY, 60_000)

        report = await manager.perform_match_cleanup()
        assert report.skipped
        assert await cache.get(stale.id) == stale

        await redis_client.release_lock(SWEEP_LOCK_KEY, token)
        report = await manager.perform_match_cleanup()
        assert report.results.expired_active_matches == 1

    async def test_orphaned_pointers_are_removed(self, manager, cache, fake_redis, clock):
        [live] = await seed(cache, clock, 1)
        await fake_redis.set(player_key(PLAYER), "match_abcdef_0123456789", ex=600)

        report = await manager.perform_match_cleanup()
        assert report.orphaned_pointers_removed == 1
        assert await cache.list_player_pointers() == {live.player_id: live.id}

    async def test_emergency_cleanup_uses_short_retention(self, manager, store, clock):
        two_days = build_match(started_at=clock.now - timedelta(days=2))
        await store.commit(abandon_match(two_days, now=two_days.started_at))

        assert (await manager.perform_match_cleanup()).results.deleted_abandoned_matches == 0
        report = await manager.emergency_cleanup()
        assert report.results.deleted_abandoned_matches == 1


class TestRecommendations:

    async def test_nothing_to_do(self, manager, cache, clock):
        await seed(cache, clock, 1, count=3)
        rec = await manager.recommend_cleanup()
        assert rec.recommended is False
        assert rec.reason is None
        assert rec.metrics.total_active_matches == 3

    async def test_many_active_matches(self, manager, cache, clock):
        await seed(cache, clock, 1, count=101)
        rec = await manager.recommend_cleanup()
        assert rec.recommended
        assert rec.reason == "High number of active matches (101)"

    async def test_many_expired_matches(self, manager, cache, clock):
        await seed(cache, clock, 12, count=21)
        rec = await manager.recommend_cleanup()
        assert rec.reason == "Many expired matches detected (21)"

    async def test_many_matches_near_timeout(self, manager, cache, clock):
        await seed(cache, clock, 8.5, count=11)
        rec = await manager.recommend_cleanup()
        assert rec.reason == "High recent abandonment rate (11)"
        assert rec.metrics.recent_abandonments == 11

    async def test_cleanup_stats(self, manager, cache, clock):
        await seed(cache, clock, 11, count=2)
        await seed(cache, clock, 9.5, count=3, offset=2)
        await seed(cache, clock, 2, count=4, offset=5)
        stats = await manager.sweeper.get_cleanup_stats()
        assert stats.total_active_matches == 9
        assert stats.expired_matches == 2
        assert stats.near_timeout_matches == 3

    async def test_abandonment_metrics(self, manager, cache, clock):
        await seed(cache, clock, 8.5, count=11)
        metrics = await manager.get_abandonment_metrics()
        assert metrics.total_active_matches == 11
        assert metrics.recent_abandonments == 11
        assert metrics.cleanup_recommended is True
