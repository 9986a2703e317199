"""Pydantic request/response models for the FastAPI endpoints.

Keep transport concerns (validation, docs) here and keep business/domain
types in `models.domain_models`. Identifier format checks are left to the
match manager so that every caller (HTTP, workers, tests) gets the same
`InvalidInput` error.
"""
from __future__ import annotations

from pydantic import BaseModel

from .domain_models import Match, RoundResult


class StartMatchRequest(BaseModel):
	player_id: str


class PlayRoundRequest(BaseModel):
	match_id: str
	player_move: str


class AbandonMatchRequest(BaseModel):
	match_id: str


class CleanupRequest(BaseModel):
	abandoned_retention_days: int | None = None
	sweep_active: bool = True
	emergency: bool = False


class MatchResponse(BaseModel):
	match: Match | None = None
	success: bool = True


class PlayRoundResponse(BaseModel):
	match: Match
	round_result: RoundResult
	match_completed: bool
	success: bool = True


class AbandonMatchResponse(BaseModel):
	success: bool = True
	message: str
	match: Match


class HistoryResponse(BaseModel):
	matches: list[Match]
	limit: int
	offset: int
	success: bool = True


class ErrorResponse(BaseModel):
	error: str
	code: str


__all__ = [
	"StartMatchRequest",
	"PlayRoundRequest",
	"AbandonMatchRequest",
	"CleanupRequest",
	"MatchResponse",
	"PlayRoundResponse",
	"AbandonMatchResponse",
	"HistoryResponse",
	"ErrorResponse",
]
