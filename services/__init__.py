"""Services package: the match engine and everything that drives it.

Import submodules to make them available as `services.match_engine`,
`services.match_manager`, etc.
"""

from .resolver import resolve, mirror
from .match_engine import (
	generate_match_id,
	create_match,
	apply_round,
	evaluate_completion,
	abandon_match,
	is_timed_out,
	time_remaining_minutes,
)
from .metrics import MetricsRecorder
from .cleanup import MatchSweeper
from .match_manager import MatchManager
from .statistics import (
	calculate_mixed_statistics,
	get_statistics_display_mode,
	calculate_weighted_win_rate,
	validate_mixed_statistics,
)
from .runtime import MatchRuntime, open_runtime, prepare_database

__all__ = [
	"resolve",
	"mirror",
	"generate_match_id",
	"create_match",
	"apply_round",
	"evaluate_completion",
	"abandon_match",
	"is_timed_out",
	"time_remaining_minutes",
	"MetricsRecorder",
	"MatchSweeper",
	"MatchManager",
	"calculate_mixed_statistics",
	"get_statistics_display_mode",
	"calculate_weighted_win_rate",
	"validate_mixed_statistics",
	"MatchRuntime",
	"open_runtime",
	"prepare_database",
]
