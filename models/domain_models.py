"""Domain-level typed models used by services and stores.

`Match` and `Round` are frozen pydantic models: every state transition
produces a new value, and the JSON form of a `Match` is exactly the
snapshot kept in the active-match cache. Reviving a snapshot with
`Match.model_validate_json` turns every timestamp back into an aware
`datetime` and re-checks the match invariants.
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal
from enum import Enum

from pydantic import BaseModel, Field, model_validator


MAX_ROUNDS = 3
ROUNDS_TO_WIN = 2


class Move(str, Enum):
	ROCK = "rock"
	PAPER = "paper"
	SCISSORS = "scissors"


class RoundOutcome(str, Enum):
	"""Who took a round (or the whole match)."""
	PLAYER = "player"
	AI = "ai"
	TIE = "tie"


class MatchStatus(str, Enum):
	ACTIVE = "active"
	COMPLETED = "completed"
	ABANDONED = "abandoned"

	@property
	def is_terminal(self) -> bool:
		return self is not MatchStatus.ACTIVE


class RoundResult(BaseModel, frozen=True):
	winner: RoundOutcome
	player_move: Move
	ai_move: Move


class Round(BaseModel, frozen=True):
	round_number: int = Field(ge=1, le=MAX_ROUNDS)
	player_move: Move
	ai_move: Move
	outcome: RoundOutcome
	timestamp: datetime

	def to_result(self) -> RoundResult:
		return RoundResult(winner=self.outcome, player_move=self.player_move, ai_move=self.ai_move)


class Match(BaseModel, frozen=True):
	"""A best-of-three match between one player and the AI."""

	id: str
	player_id: str
	status: MatchStatus = MatchStatus.ACTIVE
	rounds: tuple[Round, ...] = ()
	player_score: int = Field(default=0, ge=0, le=ROUNDS_TO_WIN)
	ai_score: int = Field(default=0, ge=0, le=ROUNDS_TO_WIN)
	current_round: int = Field(default=1, ge=1, le=MAX_ROUNDS + 1)
	started_at: datetime
	last_activity_at: datetime
	completed_at: datetime | None = None
	winner: RoundOutcome | None = None
	is_abandoned: bool = False
	# bumped on every transition; used by the cache for lost-update detection
	version: int = Field(default=0, ge=0)

	@model_validator(mode="after")
	def _check_invariants(self) -> "Match":
		problems = self.invariant_violations()
		if problems:
			raise ValueError("; ".join(problems))
		return self

	def invariant_violations(self) -> list[str]:
		problems = []
		n = len(self.rounds)
		for i, rnd in enumerate(self.rounds):
			if rnd.round_number != i + 1:
				problems.append(f"round {i} has sequence {rnd.round_number}")
		if self.player_score != sum(1 for r in self.rounds if r.outcome is RoundOutcome.PLAYER):
			problems.append("player_score does not match rounds")
		if self.ai_score != sum(1 for r in self.rounds if r.outcome is RoundOutcome.AI):
			problems.append("ai_score does not match rounds")
		if self.current_round != n + 1:
			problems.append(f"current_round {self.current_round} != {n + 1}")

		decided = self.player_score >= ROUNDS_TO_WIN or self.ai_score >= ROUNDS_TO_WIN or n == MAX_ROUNDS
		if self.status is MatchStatus.COMPLETED and not decided:
			problems.append("completed match is not decided")
		if self.status is MatchStatus.ACTIVE and decided:
			problems.append("decided match is still active")
		if self.is_abandoned != (self.status is MatchStatus.ABANDONED):
			problems.append("is_abandoned disagrees with status")
		if self.status is MatchStatus.ABANDONED and self.winner is not RoundOutcome.AI:
			problems.append("abandoned match must be won by the ai")
		if self.status.is_terminal != (self.completed_at is not None):
			problems.append("completed_at must be set exactly for terminal matches")
		if self.status.is_terminal != (self.winner is not None):
			problems.append("winner must be set exactly for terminal matches")
		if self.last_activity_at < self.started_at:
			problems.append("last_activity_at precedes started_at")
		if self.completed_at is not None and self.completed_at < self.last_activity_at:
			problems.append("completed_at precedes last_activity_at")
		return problems

	@property
	def is_terminal(self) -> bool:
		return self.status.is_terminal


class PlayerMatchStats(BaseModel):
	"""Match-level counters kept per player in the `stats` table."""
	address: str
	ai_matches_played: int = 0
	ai_matches_won: int = 0
	ai_matches_lost: int = 0
	ai_matches_tied: int = 0
	ai_matches_abandoned: int = 0

	@property
	def total_attempts(self) -> int:
		return self.ai_matches_played + self.ai_matches_abandoned


class LegacyStats(BaseModel):
	"""Per-round statistics from single-round games, stored alongside match stats."""
	address: str
	total_games: int = 0
	wins: int = 0
	losses: int = 0
	ties: int = 0
	ai_games: int = 0
	ai_wins: int = 0
	ai_ties: int = 0
	multiplayer_games: int = 0
	multiplayer_wins: int = 0
	multiplayer_ties: int = 0


class ResumeMatchData(BaseModel):
	match: Match | None = None
	can_resume: bool = False
	time_remaining_minutes: float | None = None


class LeaderboardEntry(BaseModel):
	address: str
	match_wins: int
	matches_played: int
	match_win_rate: float
	position: int
	updated_at: str | None = None


class LeaderboardPage(BaseModel):
	entries: list[LeaderboardEntry]
	total: int
	has_more: bool
	limit: int
	offset: int


class CleanupResults(BaseModel):
	expired_active_matches: int = 0
	deleted_abandoned_matches: int = 0


class CleanupReport(BaseModel):
	"""Outcome of one sweep. `success` is False only when enumeration failed."""
	success: bool
	skipped: bool = False
	results: CleanupResults = Field(default_factory=CleanupResults)
	orphaned_pointers_removed: int = 0
	errors: list[str] = Field(default_factory=list)
	error: str | None = None


class AbandonmentMetrics(BaseModel):
	total_active_matches: int = 0
	recent_abandonments: int = 0
	cleanup_recommended: bool = False


class CleanupRecommendation(BaseModel):
	recommended: bool
	reason: str | None = None
	metrics: AbandonmentMetrics = Field(default_factory=AbandonmentMetrics)


class CleanupStats(BaseModel):
	total_active_matches: int = 0
	expired_matches: int = 0
	near_timeout_matches: int = 0


# --- metrics ---

class ErrorRates(BaseModel):
	api_errors: int = 0
	database_errors: int = 0
	total_requests: int = 0


class MatchMetrics(BaseModel):
	active_match_count: int = 0
	completion_rate: float = 100.0
	abandonment_rate: float = 0.0
	average_match_duration: float = 0.0
	total_matches_completed: int = 0
	total_matches_abandoned: int = 0
	recent_api_response_times: dict[str, list[float]] = Field(default_factory=dict)
	database_operation_times: dict[str, list[float]] = Field(default_factory=dict)
	error_rates: ErrorRates = Field(default_factory=ErrorRates)
	timestamp: datetime


class MonitoringMetrics(BaseModel):
	active_matches: int = 0
	completion_rate: float = 100.0
	error_rate: float = 0.0
	average_api_response_time: float = 0.0
	average_db_response_time: float = 0.0
	alerts_triggered: list[str] = Field(default_factory=list)


# --- combined legacy + match statistics ---

class GameBreakdown(BaseModel):
	total_games: int = 0
	wins: int = 0
	losses: int = 0
	ties: int = 0
	win_rate: int = 0


class MatchBreakdown(BaseModel):
	total_matches: int = 0
	wins: int = 0
	losses: int = 0
	ties: int = 0
	abandoned: int = 0
	win_rate: int = 0
	completion_rate: int = 100


class AiBreakdown(GameBreakdown):
	legacy: GameBreakdown = Field(default_factory=GameBreakdown)
	matches: MatchBreakdown = Field(default_factory=MatchBreakdown)


class CombinedStats(GameBreakdown):
	ai: AiBreakdown = Field(default_factory=AiBreakdown)
	multiplayer: GameBreakdown = Field(default_factory=GameBreakdown)


class DisplayMode(BaseModel):
	mode: Literal["legacy-only", "matches-only", "mixed"]
	show_legacy_breakdown: bool
	show_match_breakdown: bool
	primary_statistic: Literal["legacy", "matches", "combined"]


class WeightedWinRate(BaseModel):
	weighted_win_rate: int = 0
	total_weight: int = 0
	legacy_weight: int = 0
	match_weight: int = 0
	legacy_contribution: int = 0
	match_contribution: int = 0


class StatisticsValidation(BaseModel):
	is_valid: bool
	errors: list[str] = Field(default_factory=list)
	warnings: list[str] = Field(default_factory=list)


class PlayerStatistics(BaseModel):
	address: str
	combined: CombinedStats
	display: DisplayMode
	weighted: WeightedWinRate
	match_stats: PlayerMatchStats


__all__ = [
	"MAX_ROUNDS",
	"ROUNDS_TO_WIN",
	"Move",
	"RoundOutcome",
	"MatchStatus",
	"RoundResult",
	"Round",
	"Match",
	"PlayerMatchStats",
	"LegacyStats",
	"ResumeMatchData",
	"LeaderboardEntry",
	"LeaderboardPage",
	"CleanupResults",
	"CleanupReport",
	"AbandonmentMetrics",
	"CleanupRecommendation",
	"CleanupStats",
	"ErrorRates",
	"MatchMetrics",
	"MonitoringMetrics",
	"GameBreakdown",
	"MatchBreakdown",
	"AiBreakdown",
	"CombinedStats",
	"DisplayMode",
	"WeightedWinRate",
	"StatisticsValidation",
	"PlayerStatistics",
]
