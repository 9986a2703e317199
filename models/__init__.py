"""Data models used by the application.

Split into:
- `api_models`: Pydantic models used for request/response validation
- `domain_models`: match state, statistics and report types used in business logic

Import submodules to make them available as `models.api_models`.
"""

from . import api_models, domain_models

# Re-export selected API models (Pydantic models used for request/response)
from .api_models import (
	StartMatchRequest,
	PlayRoundRequest,
	AbandonMatchRequest,
	CleanupRequest,
	MatchResponse,
	PlayRoundResponse,
	AbandonMatchResponse,
	HistoryResponse,
	ErrorResponse,
)

# Re-export domain models
from .domain_models import (
	MAX_ROUNDS,
	ROUNDS_TO_WIN,
	Move,
	RoundOutcome,
	MatchStatus,
	RoundResult,
	Round,
	Match,
	PlayerMatchStats,
	LegacyStats,
	ResumeMatchData,
	LeaderboardEntry,
	LeaderboardPage,
	CleanupResults,
	CleanupReport,
	AbandonmentMetrics,
	CleanupRecommendation,
	CleanupStats,
	ErrorRates,
	MatchMetrics,
	MonitoringMetrics,
	GameBreakdown,
	MatchBreakdown,
	AiBreakdown,
	CombinedStats,
	DisplayMode,
	WeightedWinRate,
	StatisticsValidation,
	PlayerStatistics,
)

__all__ = [
	# submodules
	"api_models",
	"domain_models",
	# api models
	"StartMatchRequest",
	"PlayRoundRequest",
	"AbandonMatchRequest",
	"CleanupRequest",
	"MatchResponse",
	"PlayRoundResponse",
	"AbandonMatchResponse",
	"HistoryResponse",
	"ErrorResponse",
	# domain models
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
