from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
import logging

from models import (
	StartMatchRequest,
	PlayRoundRequest,
	AbandonMatchRequest,
	CleanupRequest,
	MatchResponse,
	PlayRoundResponse,
	AbandonMatchResponse,
	HistoryResponse,
	ErrorResponse,
	ResumeMatchData,
	PlayerStatistics,
	LeaderboardPage,
	CleanupReport,
)
from services import MatchManager
from stores import StoreError, MatchNotFound
from utils.validation import normalize_address

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai-match")


def get_manager(request: Request) -> MatchManager:
	return request.app.state.runtime.manager


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
	"""Turn any match-core error into `{"error", "code"}` with its status code."""
	if exc.status_code >= 500:
		logger.error(f"[API] {request.url.path} failed: {exc.__class__.__name__}: {exc}")
	return JSONResponse(
		status_code=exc.status_code,
		content=ErrorResponse(error=str(exc), code=exc.code).model_dump(),
	)


# --- Match lifecycle ---

@router.post("/start", response_model=MatchResponse)
async def start_match(req: StartMatchRequest, manager: MatchManager = Depends(get_manager)):
	async with manager.metrics.track_api("start"):
		match = await manager.start_match(normalize_address(req.player_id))
	return MatchResponse(match=match)


@router.post("/play-round", response_model=PlayRoundResponse)
async def play_round(req: PlayRoundRequest, manager: MatchManager = Depends(get_manager)):
	async with manager.metrics.track_api("play_round"):
		match, result = await manager.play_round(req.match_id, req.player_move)
	return PlayRoundResponse(match=match, round_result=result, match_completed=match.is_terminal)


@router.get("/status", response_model=MatchResponse)
async def match_status(match_id: str, manager: MatchManager = Depends(get_manager)):
	async with manager.metrics.track_api("status"):
		match = await manager.get_match_status(match_id)
		if match is None:
			raise MatchNotFound(match_id)
	return MatchResponse(match=match)


@router.get("/resume", response_model=ResumeMatchData)
async def resume_match(player_id: str, manager: MatchManager = Depends(get_manager)):
	return await manager.resume_match(normalize_address(player_id))


@router.post("/abandon", response_model=AbandonMatchResponse)
async def abandon_match(req: AbandonMatchRequest, manager: MatchManager = Depends(get_manager)):
	async with manager.metrics.track_api("abandon"):
		match = await manager.abandon_match_by_id(req.match_id)
	return AbandonMatchResponse(message="Match abandoned successfully", match=match)


# --- History and statistics ---

@router.get("/history", response_model=HistoryResponse)
async def match_history(
	player_id: str,
	limit: int = Query(50),
	offset: int = Query(0),
	manager: MatchManager = Depends(get_manager),
):
	matches = await manager.get_player_history(normalize_address(player_id), limit, offset)
	return HistoryResponse(matches=matches, limit=limit, offset=offset)


@router.get("/stats", response_model=PlayerStatistics)
async def player_stats(player_id: str, manager: MatchManager = Depends(get_manager)):
	return await manager.get_player_statistics(normalize_address(player_id))


@router.get("/leaderboard", response_model=LeaderboardPage)
async def leaderboard(
	limit: int = Query(50),
	offset: int = Query(0),
	min_matches: int = Query(0),
	manager: MatchManager = Depends(get_manager),
):
	return await manager.get_leaderboard(limit, offset, min_matches)


# --- Operations ---

@router.get("/metrics")
async def metrics(manager: MatchManager = Depends(get_manager)):
	snapshot = await manager.metrics.get_metrics()
	monitoring = await manager.metrics.get_monitoring_metrics()
	abandonment = await manager.get_abandonment_metrics()
	return {
		"metrics": snapshot.model_dump(mode="json"),
		"monitoring": monitoring.model_dump(mode="json"),
		"abandonment": abandonment.model_dump(mode="json"),
	}


@router.post("/cleanup", response_model=CleanupReport)
async def cleanup(req: CleanupRequest, manager: MatchManager = Depends(get_manager)):
	if req.emergency:
		return await manager.emergency_cleanup()
	return await manager.perform_match_cleanup(req.abandoned_retention_days, req.sweep_active)
