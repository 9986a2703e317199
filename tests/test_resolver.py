import itertools

import pytest

from models import Move, RoundOutcome
from services.resolver import BEATS, mirror, resolve


class TestResolve:

    @pytest.mark.parametrize(
        "a, b, expected",
        [
            (Move.ROCK, Move.SCISSORS, RoundOutcome.PLAYER),
            (Move.SCISSORS, Move.PAPER, RoundOutcome.PLAYER),
            (Move.PAPER, Move.ROCK, RoundOutcome.PLAYER),
            (Move.SCISSORS, Move.ROCK, RoundOutcome.AI),
            (Move.PAPER, Move.SCISSORS, RoundOutcome.AI),
            (Move.ROCK, Move.PAPER, RoundOutcome.AI),
            (Move.ROCK, Move.ROCK, RoundOutcome.TIE),
            (Move.PAPER, Move.PAPER, RoundOutcome.TIE),
            (Move.SCISSORS, Move.SCISSORS, RoundOutcome.TIE),
        ],
    )
    def test_outcome_table(self, a, b, expected):
        assert resolve(a, b) is expected

    @pytest.mark.parametrize("a, b", list(itertools.product(Move, repeat=2)))
    def test_swapping_sides_mirrors_the_outcome(self, a, b):
        assert resolve(b, a) is mirror(resolve(a, b))

    def test_every_move_beats_exactly_one_other(self):
        for move in Move:
            wins = [other for other in Move if resolve(move, other) is RoundOutcome.PLAYER]
            assert wins == [BEATS[move]]

    def test_mirror_is_an_involution(self):
        for outcome in RoundOutcome:
            assert mirror(mirror(outcome)) is outcome
