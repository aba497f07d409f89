"""
Armonyco billing API.

Run locally with:
    uvicorn app.main:app --app-dir backend --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import checkout, credits, email, organization, webhooks
from app.services.response_cache import get_response_cache
from app.utils.errors import register_exception_handlers

logger = logging.getLogger(__name__)


health_router = APIRouter()


@health_router.get("/health")
async def health_check():
    return {"status": "ok"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the cache sweeper on startup and stop it on shutdown."""
    settings = get_settings()
    cache = get_response_cache()
    sweeper = asyncio.create_task(cache.run_sweeper(settings.cache_sweep_interval_seconds))
    logger.info(f"Armonyco billing API started (environment: {settings.environment})")

    yield

    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    logger.info("Armonyco billing API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Armonyco Billing API",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(checkout.router, prefix="/api")  # /api/stripe/create-checkout, verify-payment
    app.include_router(webhooks.router, prefix="/api")  # /api/stripe/webhook
    app.include_router(credits.router, prefix="/api")  # /api/credits/*
    app.include_router(email.router, prefix="/api")  # /api/email/*
    app.include_router(organization.router, prefix="/api")  # /api/organization/*
    app.include_router(health_router)

    return app


app = create_app()
