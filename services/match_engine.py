"""Best-of-three state machine.

All functions are pure apart from reading the clock and drawing the AI's
move. Each transition returns a new `Match` with `version` bumped by one;
the input value is never modified.

    active --apply_round (undecided)--> active
    active --apply_round (decided)----> completed
    active --abandon_match------------> abandoned
"""
import logging
import random
import secrets
import string
import time
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

import config
from models import (
    MAX_ROUNDS,
    ROUNDS_TO_WIN,
    Match,
    MatchStatus,
    Move,
    Round,
    RoundOutcome,
    RoundResult,
)
from stores.exceptions import (
    InvalidInput,
    NotActive,
    RoundLimitExceeded,
    UnexpectedResult,
)
from utils.time import minutes_between, now_utc
from utils.validation import is_valid_address, normalize_address

from .resolver import resolve

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_RANDOM_ID_LENGTH = 10
_MOVES = tuple(Move)
_system_rng = random.SystemRandom()


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_match_id(now_ms: Optional[int] = None) -> str:
    """`match_<base36 epoch millis>_<10 random base36 chars>`.

    The random part comes from `secrets`, so ids from independent processes
    do not collide in practice even within the same millisecond.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_RANDOM_ID_LENGTH))
    return f"match_{_to_base36(now_ms)}_{suffix}"


def parse_move(value: Any) -> Move:
    if isinstance(value, Move):
        return value
    try:
        return Move(value)
    except ValueError:
        raise InvalidInput(f"Invalid move: {value!r}. Must be rock, paper, or scissors") from None


def evaluate_completion(player_score: int, ai_score: int, rounds_played: int) -> Optional[RoundOutcome]:
    """Winner of the match if it is decided, else None."""
    if player_score >= ROUNDS_TO_WIN:
        return RoundOutcome.PLAYER
    if ai_score >= ROUNDS_TO_WIN:
        return RoundOutcome.AI
    if rounds_played >= MAX_ROUNDS:
        if player_score > ai_score:
            return RoundOutcome.PLAYER
        if ai_score > player_score:
            return RoundOutcome.AI
        return RoundOutcome.TIE
    return None


def _transition(match: Match, **updates) -> Match:
    try:
        return Match.model_validate({**dict(match), **updates, "version": match.version + 1})
    except ValidationError as exc:
        raise UnexpectedResult(f"Transition produced an invalid match {match.id}: {exc}") from exc


def create_match(
    player_id: str,
    *,
    match_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Match:
    # Raises: InvalidInput
    if not is_valid_address(player_id):
        raise InvalidInput(f"Invalid player address: {player_id!r}")
    now = now or now_utc()
    return Match(
        id=match_id or generate_match_id(int(now.timestamp() * 1000)),
        player_id=normalize_address(player_id),
        started_at=now,
        last_activity_at=now,
    )


def apply_round(
    match: Match,
    player_move: Any,
    *,
    rng=None,
    now: Optional[datetime] = None,
) -> tuple[Match, RoundResult]:
    """Play one round against a uniformly random AI move.

    `rng` only needs a `choice(seq)` method; it defaults to the system RNG.

    Raises:
        NotActive: If the match is already completed or abandoned.
        InvalidInput: If `player_move` is not rock, paper or scissors.
        RoundLimitExceeded: If the match is out of rounds or already decided.
    """
    if match.status is not MatchStatus.ACTIVE:
        raise NotActive(match.id, match.status.value)
    move = parse_move(player_move)
    if (
        len(match.rounds) >= MAX_ROUNDS
        or match.player_score >= ROUNDS_TO_WIN
        or match.ai_score >= ROUNDS_TO_WIN
    ):
        raise RoundLimitExceeded(f"No rounds left to play in match {match.id}")

    now = now or now_utc()
    ai_move = (rng or _system_rng).choice(_MOVES)
    outcome = resolve(move, ai_move)

    new_round = Round(
        round_number=len(match.rounds) + 1,
        player_move=move,
        ai_move=ai_move,
        outcome=outcome,
        timestamp=now,
    )
    rounds = match.rounds + (new_round,)
    player_score = match.player_score + (outcome is RoundOutcome.PLAYER)
    ai_score = match.ai_score + (outcome is RoundOutcome.AI)

    updates = dict(
        rounds=rounds,
        player_score=player_score,
        ai_score=ai_score,
        current_round=len(rounds) + 1,
        last_activity_at=now,
    )
    winner = evaluate_completion(player_score, ai_score, len(rounds))
    if winner is not None:
        updates.update(status=MatchStatus.COMPLETED, winner=winner, completed_at=now)
        logger.info(f"[ENGINE] Match {match.id} completed {player_score}-{ai_score}, winner={winner.value}")

    return _transition(match, **updates), new_round.to_result()


def abandon_match(match: Match, *, now: Optional[datetime] = None) -> Match:
    """Abandon an active match. The AI is awarded the win."""
    # Raises: NotActive
    if match.status is not MatchStatus.ACTIVE:
        raise NotActive(match.id, match.status.value)
    now = now or now_utc()
    return _transition(
        match,
        status=MatchStatus.ABANDONED,
        is_abandoned=True,
        winner=RoundOutcome.AI,
        completed_at=now,
        last_activity_at=now,
    )


def is_timed_out(
    match: Match,
    timeout_minutes: float = config.MATCH_TIMEOUT_MINUTES,
    *,
    now: Optional[datetime] = None,
) -> bool:
    if match.status is not MatchStatus.ACTIVE:
        return False
    return minutes_between(match.last_activity_at, now or now_utc()) > timeout_minutes


def time_remaining_minutes(
    match: Match,
    timeout_minutes: float = config.MATCH_TIMEOUT_MINUTES,
    *,
    now: Optional[datetime] = None,
) -> float:
    idle = minutes_between(match.last_activity_at, now or now_utc())
    return max(0.0, timeout_minutes - idle)
