"""Main FastAPI application for the nedapay API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from nedapay.api.rate_limit import limiter
from nedapay.api.v1.referral import router as referral_router
from nedapay.api.v1.webhooks import router as webhooks_router
from nedapay.exceptions import (
    CollisionRejected,
    CounterExhausted,
    InvalidReferralCode,
    InvalidSignature,
    MissingSecret,
    StorageUnavailable,
)
from nedapay.logging_config import get_logger
from nedapay.referral.counters import seed_counters
from nedapay.referral.service import ReferralService
from nedapay.settings import settings
from nedapay.storage.db import Database, db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("app_starting", env=settings.env)

    # Refuse to serve webhooks we cannot verify
    if settings.env == "production":
        settings.require_webhook_secrets()

    database: Database = app.state.database
    database.create_tables()
    seed_counters(database)

    yield

    # Shutdown
    logger.info("app_shutting_down")


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    @app.exception_handler(InvalidSignature)
    async def invalid_signature_handler(request: Request, exc: InvalidSignature):
        return JSONResponse(status_code=401, content={"detail": "Invalid signature"})

    @app.exception_handler(MissingSecret)
    async def missing_secret_handler(request: Request, exc: MissingSecret):
        logger.error("webhook_secret_missing", secret=exc.name, path=request.url.path)
        return JSONResponse(status_code=503, content={"detail": "Webhooks not configured"})

    @app.exception_handler(InvalidReferralCode)
    async def invalid_code_handler(request: Request, exc: InvalidReferralCode):
        return JSONResponse(status_code=400, content={"detail": "Invalid code"})

    @app.exception_handler(CollisionRejected)
    async def collision_handler(request: Request, exc: CollisionRejected):
        logger.error("referral_code_retries_exhausted", code=exc.code)
        return JSONResponse(
            status_code=409,
            content={"detail": "Could not allocate a referral code, please retry"},
        )

    @app.exception_handler(StorageUnavailable)
    async def storage_handler(request: Request, exc: StorageUnavailable):
        logger.error("counter_store_unavailable", shard=exc.shard, reason=exc.reason)
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(CounterExhausted)
    async def exhausted_handler(request: Request, exc: CounterExhausted):
        logger.critical("referral_counter_exhausted", shard=exc.shard, value=exc.value)
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
        )


def create_app(database: Database | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        database: Database to serve from (defaults to the global db)

    Returns:
        Configured FastAPI app
    """
    # Hide API docs in production
    is_production = settings.env == "production"

    app = FastAPI(
        title="nedapay API",
        description="Referral codes and provider webhooks",
        version="1.0.0",
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.database = database or db
    app.state.referral_service = ReferralService(app.state.database)

    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]

    # Block wildcard in production
    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-User-Id"],
        max_age=3600,
    )

    # Rate limiting (shared instance from rate_limit module)
    app.state.limiter = limiter

    _register_error_handlers(app)

    app.include_router(referral_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": "1.0.0",
            "env": settings.env,
        }

    return app


# Create app instance
app = create_app()
