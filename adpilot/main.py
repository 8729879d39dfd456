"""ADPILOT - FastAPI Application Entry Point.

Authenticated, rate-limited gateway that launches lead-generation campaigns
on Meta.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from adpilot.config import settings
from adpilot.database import describe_database, engine, init_db, test_connection
from adpilot.scheduler.jobs import start_scheduler, stop_scheduler
from adpilot.api.campaign_routes import router as campaign_router
from adpilot.api.key_routes import router as key_router
from adpilot.core.errors import register_error_handlers
from adpilot.core.logging import get_logger
from adpilot.gateway.auth import AuthGateway
from adpilot.gateway.identity import IdentityClient
from adpilot.gateway.usage import UsageMiddleware, UsageRecorder

logger = get_logger("main")

VERSION = "1.0.0"

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("ADPILOT starting up...")
    logger.info(f"Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"Table creation failed: {e}")
    else:
        logger.error("Database NOT connected, endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    await app.state.identity_client.close()
    logger.info("ADPILOT shut down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="ADPILOT",
        description="Campaign launch gateway: API-key auth, per-tier rate limits and a rollback-safe Meta launch saga.",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.auth_gateway = AuthGateway(
        settings.tier_limits, window_seconds=settings.rate_limit_window_seconds
    )
    app.state.usage_recorder = UsageRecorder(lambda: Session(engine))
    app.state.identity_client = IdentityClient()
    app.state.meta_transport = None

    register_error_handlers(app)

    # Middleware (last added runs first)
    app.add_middleware(UsageMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(campaign_router)
    app.include_router(key_router)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "adpilot",
            "version": VERSION,
        }

    @app.get("/debug/db", tags=["System"])
    async def debug_db():
        """Debug endpoint - check database connectivity."""
        connected = test_connection()
        return {
            "connected": connected,
            **describe_database(),
            "environment": "serverless" if IS_SERVERLESS else "local",
            "error": None if connected else "connection test failed",
        }

    return app


app = create_app()
