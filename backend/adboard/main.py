"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings, get_weekly_sync_scheduler
from .routers import ad_performance as ad_performance_router
from .telemetry import init_observability

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ad Board API",
        description="""
        Weekly Meta ad performance joined with CRM lead funnels.

        - Report rows grouped by campaign, ad set or ad
        - Weekly snapshot sync from the Meta Graph API
        - Creative cache with a 7-day TTL
        """,
        version="1.0.0",
    )

    settings = get_settings()

    observability = init_observability()
    logger.info("[STARTUP] Observability: %s", observability)

    # BACKEND_CORS_ORIGINS is a comma-separated list
    allowed_origins = settings.cors_origins
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ad_performance_router.router)

    @app.get("/health", tags=["Health"], summary="Health check")
    def health():
        return {"status": "ok"}

    @app.on_event("shutdown")
    async def shutdown_event():
        """Let in-flight background syncs finish before the loop closes."""
        await get_weekly_sync_scheduler().wait_for_background_syncs()

    return app


app = create_app()
