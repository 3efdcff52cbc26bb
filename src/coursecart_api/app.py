from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from coursecart_api.core.settings import settings
from coursecart_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Fulfillment pacing configured",
        identity_pacing_seconds=settings.lms_identity_pacing_seconds,
        enrollment_pacing_seconds=settings.lms_enrollment_pacing_seconds,
        max_retries=settings.lms_enrollment_max_retries,
        retry_delay_seconds=settings.lms_enrollment_retry_delay_seconds,
    )
    if not settings.stripe_webhook_secret:
        logger.warning("Stripe webhook secret not configured; every delivery will be rejected")
    try:
        yield
    finally:
        await engine.dispose()


def create_app() -> FastAPI:
    """Application factory for the CourseCart FastAPI service."""
    configure_logging(
        service_name="coursecart-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="CourseCart API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="coursecart-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
