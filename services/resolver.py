from models import Move, RoundOutcome

# rock > scissors > paper > rock
BEATS = {
    Move.ROCK: Move.SCISSORS,
    Move.SCISSORS: Move.PAPER,
    Move.PAPER: Move.ROCK,
}

_MIRROR = {
    RoundOutcome.PLAYER: RoundOutcome.AI,
    RoundOutcome.AI: RoundOutcome.PLAYER,
    RoundOutcome.TIE: RoundOutcome.TIE,
}


def resolve(a: Move, b: Move) -> RoundOutcome:
    """Outcome of `a` against `b` from `a`'s side.

    PLAYER means `a` wins, AI means `b` wins.
    """
    if a is b:
        return RoundOutcome.TIE
    return RoundOutcome.PLAYER if BEATS[a] is b else RoundOutcome.AI


def mirror(outcome: RoundOutcome) -> RoundOutcome:
    return _MIRROR[outcome]
