"""Combine legacy single-round statistics with best-of-three match statistics.

Each match counts as one game in the combined totals. Abandoned matches are
a separate bucket: they never count as games, only against the completion
rate. All rates are whole percentages rounded half up.
"""
import math

from models import (
    AiBreakdown,
    CombinedStats,
    DisplayMode,
    GameBreakdown,
    LegacyStats,
    MatchBreakdown,
    PlayerMatchStats,
    StatisticsValidation,
    WeightedWinRate,
)


def round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


def _rate(part: int, whole: int, empty: int = 0) -> int:
    return round_half_up(part / whole * 100) if whole > 0 else empty


def calculate_mixed_statistics(legacy: LegacyStats, matches: PlayerMatchStats) -> CombinedStats:
    legacy_games = legacy.ai_games
    legacy_wins = legacy.ai_wins
    legacy_ties = legacy.ai_ties
    legacy_losses = legacy_games - legacy_wins - legacy_ties

    played = matches.ai_matches_played
    won = matches.ai_matches_won
    lost = matches.ai_matches_lost
    tied = matches.ai_matches_tied
    abandoned = matches.ai_matches_abandoned

    mp_games = legacy.multiplayer_games
    mp_wins = legacy.multiplayer_wins
    mp_ties = legacy.multiplayer_ties
    mp_losses = mp_games - mp_wins - mp_ties

    ai_games = legacy_games + played
    ai_wins = legacy_wins + won
    ai_losses = legacy_losses + lost
    ai_ties = legacy_ties + tied

    total_games = ai_games + mp_games
    total_wins = ai_wins + mp_wins

    return CombinedStats(
        total_games=total_games,
        wins=total_wins,
        losses=ai_losses + mp_losses,
        ties=ai_ties + mp_ties,
        win_rate=_rate(total_wins, total_games),
        ai=AiBreakdown(
            total_games=ai_games,
            wins=ai_wins,
            losses=ai_losses,
            ties=ai_ties,
            win_rate=_rate(ai_wins, ai_games),
            legacy=GameBreakdown(
                total_games=legacy_games,
                wins=legacy_wins,
                losses=legacy_losses,
                ties=legacy_ties,
                win_rate=_rate(legacy_wins, legacy_games),
            ),
            matches=MatchBreakdown(
                total_matches=played,
                wins=won,
                losses=lost,
                ties=tied,
                abandoned=abandoned,
                win_rate=_rate(won, played),
                completion_rate=_rate(played, played + abandoned, empty=100),
            ),
        ),
        multiplayer=GameBreakdown(
            total_games=mp_games,
            wins=mp_wins,
            losses=mp_losses,
            ties=mp_ties,
            win_rate=_rate(mp_wins, mp_games),
        ),
    )


def get_statistics_display_mode(stats: CombinedStats) -> DisplayMode:
    has_legacy = stats.ai.legacy.total_games > 0
    has_matches = stats.ai.matches.total_matches > 0

    if has_legacy and has_matches:
        return DisplayMode(
            mode="mixed",
            show_legacy_breakdown=True,
            show_match_breakdown=True,
            primary_statistic="combined",
        )
    if has_matches:
        return DisplayMode(
            mode="matches-only",
            show_legacy_breakdown=False,
            show_match_breakdown=True,
            primary_statistic="matches",
        )
    return DisplayMode(
        mode="legacy-only",
        show_legacy_breakdown=True,
        show_match_breakdown=False,
        primary_statistic="legacy",
    )


def calculate_weighted_win_rate(stats: CombinedStats) -> WeightedWinRate:
    """Blend legacy and match win rates, each weighted by its game count."""
    legacy_weight = stats.ai.legacy.total_games
    match_weight = stats.ai.matches.total_matches
    total_weight = legacy_weight + match_weight
    if total_weight == 0:
        return WeightedWinRate()

    legacy_contribution = legacy_weight / total_weight * stats.ai.legacy.win_rate
    match_contribution = match_weight / total_weight * stats.ai.matches.win_rate
    return WeightedWinRate(
        weighted_win_rate=round_half_up(legacy_contribution + match_contribution),
        total_weight=total_weight,
        legacy_weight=legacy_weight,
        match_weight=match_weight,
        legacy_contribution=round_half_up(legacy_contribution),
        match_contribution=round_half_up(match_contribution),
    )


def validate_mixed_statistics(stats: CombinedStats) -> StatisticsValidation:
    errors = []
    warnings = []

    expected_total = stats.ai.total_games + stats.multiplayer.total_games
    if stats.total_games != expected_total:
        errors.append(f"Total games mismatch: {stats.total_games} != {expected_total}")
    expected_wins = stats.ai.wins + stats.multiplayer.wins
    if stats.wins != expected_wins:
        errors.append(f"Total wins mismatch: {stats.wins} != {expected_wins}")

    expected_ai_games = stats.ai.legacy.total_games + stats.ai.matches.total_matches
    if stats.ai.total_games != expected_ai_games:
        errors.append(f"AI games mismatch: {stats.ai.total_games} != {expected_ai_games}")
    expected_ai_wins = stats.ai.legacy.wins + stats.ai.matches.wins
    if stats.ai.wins != expected_ai_wins:
        errors.append(f"AI wins mismatch: {stats.ai.wins} != {expected_ai_wins}")

    for rate in (
        stats.win_rate,
        stats.ai.win_rate,
        stats.ai.legacy.win_rate,
        stats.ai.matches.win_rate,
        stats.multiplayer.win_rate,
    ):
        if not 0 <= rate <= 100:
            errors.append(f"Invalid win rate: {rate} (must be 0-100)")

    completion = stats.ai.matches.completion_rate
    if not 0 <= completion <= 100:
        errors.append(f"Invalid completion rate: {completion} (must be 0-100)")

    if stats.ai.matches.abandoned > stats.ai.matches.total_matches:
        warnings.append("More abandoned matches than completed matches")
    if stats.ai.matches.total_matches > 0 and completion < 50:
        warnings.append("Low completion rate; player abandons matches frequently")

    return StatisticsValidation(is_valid=not errors, errors=errors, warnings=warnings)
