"""Utility helpers used across the project.

Make commonly used helpers available at the package level for convenience.

Exports:
- time helpers: `now_utc`, `ensure_utc`, `to_iso`, `parse_iso`, `minutes_between`, `days_ago`
- validation helpers: `is_valid_address`, `normalize_address`, `is_valid_match_id`, `is_valid_move`
"""

from .time import now_utc, ensure_utc, to_iso, parse_iso, minutes_between, days_ago
from .validation import (
	is_valid_address,
	normalize_address,
	is_valid_match_id,
	is_valid_move,
	VALID_ADDRESS_RE,
	VALID_MATCH_ID_RE,
	VALID_MOVES,
)

__all__ = [
	"now_utc",
	"ensure_utc",
	"to_iso",
	"parse_iso",
	"minutes_between",
	"days_ago",
	"is_valid_address",
	"normalize_address",
	"is_valid_match_id",
	"is_valid_move",
	"VALID_ADDRESS_RE",
	"VALID_MATCH_ID_RE",
	"VALID_MOVES",
]
