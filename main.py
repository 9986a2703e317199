from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from infrastructure import RedisClient
from routes import matches_router, store_error_handler
from services import open_runtime
from stores import StoreError


def create_app(
    db_path: Optional[str] = None,
    redis_url: Optional[str] = None,
    *,
    redis: Optional[RedisClient] = None,
    **manager_options,
) -> FastAPI:
    """Build the FastAPI app. The match runtime lives on `app.state.runtime`."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with open_runtime(
            db_path or config.DB_PATH,
            redis_url or config.REDIS_URL,
            redis=redis,
            **manager_options,
        ) as runtime:
            app.state.runtime = runtime
            yield

    # --- FastAPI setup ---
    app = FastAPI(lifespan=lifespan)

    # --- Middleware ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["POST", "GET"],
        allow_headers=["*"],
    )

    # --- Register routes ---
    app.add_exception_handler(StoreError, store_error_handler)
    app.include_router(matches_router)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
