import itertools
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fakeredis.aioredis import FakeConnection

from infrastructure import RedisClient, build_connection_pool
from models import Match, MatchStatus, Move, Round, RoundOutcome
from services import MatchManager, MetricsRecorder
from services.match_engine import generate_match_id
from services.runtime import prepare_database
from stores import RedisMatchCache, SqliteMatchStore

PLAYER = "0x" + "ab" * 20
OTHER_PLAYER = "0x" + "cd" * 20
T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def player_address(i: int) -> str:
    return f"0x{i:040x}"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedRng:
    """`choice()` returns the given moves in order, cycling."""

    def __init__(self, *moves: Move):
        self._moves = itertools.cycle(moves or (Move.SCISSORS,))

    def choice(self, seq):
        return next(self._moves)


# player move / ai move pairs that produce each outcome
MOVES_FOR = {
    RoundOutcome.PLAYER: (Move.ROCK, Move.SCISSORS),
    RoundOutcome.AI: (Move.ROCK, Move.PAPER),
    RoundOutcome.TIE: (Move.ROCK, Move.ROCK),
}


def build_match(
    outcomes=(),
    *,
    player_id: str = PLAYER,
    status: MatchStatus = MatchStatus.ACTIVE,
    started_at: datetime = T0,
    last_activity_at: datetime | None = None,
    match_id: str | None = None,
) -> Match:
    """A valid match with the given round outcomes, one minute per round."""
    rounds = []
    for i, outcome in enumerate(outcomes):
        player_move, ai_move = MOVES_FOR[outcome]
        rounds.append(Round(
            round_number=i + 1,
            player_move=player_move,
            ai_move=ai_move,
            outcome=outcome,
            timestamp=started_at + timedelta(minutes=i + 1),
        ))
    player_score = sum(1 for o in outcomes if o is RoundOutcome.PLAYER)
    ai_score = sum(1 for o in outcomes if o is RoundOutcome.AI)
    last = last_activity_at or (rounds[-1].timestamp if rounds else started_at)

    fields = dict(
        id=match_id or generate_match_id(int(started_at.timestamp() * 1000)),
        player_id=player_id,
        status=status,
        rounds=tuple(rounds),
        player_score=player_score,
        ai_score=ai_score,
        current_round=len(rounds) + 1,
        started_at=started_at,
        last_activity_at=last,
        version=len(rounds),
    )
    if status is MatchStatus.COMPLETED:
        if player_score > ai_score:
            winner = RoundOutcome.PLAYER
        elif ai_score > player_score:
            winner = RoundOutcome.AI
        else:
            winner = RoundOutcome.TIE
        fields.update(winner=winner, completed_at=last)
    elif status is MatchStatus.ABANDONED:
        fields.update(winner=RoundOutcome.AI, completed_at=last, is_abandoned=True, version=len(rounds) + 1)
    return Match(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
async def fake_redis(redis_server):
    """Fake client on the same bounded, blocking pool production uses."""
    pool = build_connection_pool(
        "redis://localhost:6379/0",
        connection_class=FakeConnection,
        server=redis_server,
        decode_responses=True,
    )
    r = fakeredis.FakeAsyncRedis.from_pool(pool)
    yield r
    await r.flushall()
    await r.aclose()


@pytest.fixture
def redis_client(fake_redis):
    return RedisClient.wrap(fake_redis)


@pytest.fixture
def broken_redis():
    """A RedisClient whose server refuses every command."""
    server = fakeredis.FakeServer()
    server.connected = False
    return RedisClient.wrap(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))


@pytest.fixture
async def db_path(tmp_path):
    path = str(tmp_path / "matches.sqlite3")
    await prepare_database(path)
    return path


@pytest.fixture
async def store(db_path):
    s = SqliteMatchStore(db_path)
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def cache(redis_client):
    return RedisMatchCache(redis_client)


@pytest.fixture
def metrics(redis_client):
    return MetricsRecorder(redis_client)


@pytest.fixture
def rng():
    return ScriptedRng(Move.SCISSORS)


@pytest.fixture
def manager(cache, store, metrics, redis_client, clock, rng):
    return MatchManager(cache, store, metrics, redis=redis_client, clock=clock, rng=rng)
