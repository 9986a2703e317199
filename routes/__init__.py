"""HTTP route modules (FastAPI routers) for the application.

This file explicitly exports the router objects provided by each
submodule so callers can do:

	from routes import matches_router
	app.include_router(matches_router)

Submodules should expose an `APIRouter` named `router`.
"""

from .matches import router as matches_router, store_error_handler, get_manager

__all__ = [
	"matches_router",
	"store_error_handler",
	"get_manager",
]
