"""Time utilities: timezone-aware helpers and ISO formatting/parsing.

These helpers keep code that deals with timestamps consistent across modules.
Everything stored by the match stores is UTC.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def now_utc() -> datetime:
	"""Return current UTC datetime with tzinfo set."""
	return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
	"""Return `dt` as an aware UTC datetime (naive values are assumed UTC)."""
	if dt.tzinfo is None:
		return dt.replace(tzinfo=timezone.utc)
	return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
	"""Serialize a datetime to a fixed-width UTC ISO8601 string.

	Fixed width (always with microseconds) keeps lexicographic order equal to
	chronological order, which the SQLite queries rely on.
	"""
	return ensure_utc(dt).isoformat(timespec="microseconds")


def parse_iso(s: str) -> Optional[datetime]:
	"""Parse an ISO8601 string into a timezone-aware UTC datetime.

	Returns None on obvious parse failures.
	"""
	if not s:
		return None
	try:
		# Python's fromisoformat handles most variants; tolerate trailing Z.
		if s.endswith("Z"):
			s = s[:-1] + "+00:00"
		return ensure_utc(datetime.fromisoformat(s))
	except ValueError:
		return None


def minutes_between(earlier: datetime, later: datetime) -> float:
	return (ensure_utc(later) - ensure_utc(earlier)) / timedelta(minutes=1)


def days_ago(days: float, *, now: Optional[datetime] = None) -> datetime:
	"""Return the instant `days` days before `now` (defaults to current UTC time)."""
	return (now or now_utc()) - timedelta(days=days)
