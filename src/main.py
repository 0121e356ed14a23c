import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from scalar_fastapi import get_scalar_api_reference

from src.config.settings import settings
from src.core.observability import init_observability
from src.domains.progression.router import router as progression_router

logger = structlog.get_logger(__name__)


async def seed_exercises_if_empty():
    """Seed the exercise catalog if it is empty."""
    from sqlalchemy import func, select

    from src.config.database import session_scope
    from src.domains.progression.models import CatalogExercise

    try:
        async with session_scope() as session:
            result = await session.execute(select(func.count(CatalogExercise.id)))
            count = result.scalar()

            if count == 0:
                logger.info("seeding_exercises", reason="no exercises found in database")
                from src.scripts.seed_exercises import seed_exercises
                seeded_count = await seed_exercises(session, clear_existing=False)
                logger.info("exercises_seeded", count=seeded_count)
            else:
                logger.info("exercises_seed_skipped", existing_count=count)
    except Exception as e:
        logger.warning("exercise_seed_error", error=str(e), type=type(e).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    logger.info(
        "app_starting",
        app_name=settings.APP_NAME,
        environment=settings.APP_ENV,
        sync_transport=settings.SYNC_TRANSPORT,
    )

    # Initialize database tables
    try:
        from src.config.database import init_db
        await init_db()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_init_failed", error=str(e), type=type(e).__name__)
        # Re-raise in production to prevent unhealthy startup
        if settings.is_production:
            raise

    await seed_exercises_if_empty()

    yield
    # Shutdown
    logger.info("app_shutting_down", app_name=settings.APP_NAME)
    from src.domains.progression.sync import close_sync_channel
    await close_sync_channel()
    logger.info("sync_channel_closed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Initialize observability (GlitchTip/Sentry)
    init_observability()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Coachboard workout progression and volume sync API",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-Id"],
    )

    # Include routers
    app.include_router(
        progression_router,
        prefix=f"{settings.API_V1_PREFIX}/progression",
        tags=["Progression"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.APP_ENV,
            "sync_transport": settings.SYNC_TRANSPORT,
        }

    # Scalar API Reference - Modern API documentation
    @app.get("/reference", include_in_schema=False)
    async def scalar_html():
        return get_scalar_api_reference(
            openapi_url=app.openapi_url,
            title=f"{settings.APP_NAME} - API Reference",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
