"""
Main FastAPI application for NewsLens.
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from newslens.api.routes import router
from newslens.config import Settings, get_settings
from newslens.core.errors import NotFoundError
from newslens.core.logging_config import configure_logging
from newslens.models.database import Database
from newslens.services.container import Services, build_services

logger = structlog.get_logger()


async def run_enrichment_cycle(services: Services):
    """Scheduled job: heuristic evaluation, then one enrichment pass."""
    try:
        stats = await services.run_enrichment_cycle()
        logger.info("scheduler.enrichment.completed", **stats)
    except Exception as e:
        logger.error("scheduler.enrichment.failed", error=str(e))


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    When `services` is given the caller owns the database; otherwise the
    lifespan creates it from `settings.database_url` and disposes of it on
    shutdown.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - handles startup and shutdown."""
        configure_logging(settings.log_level, settings.log_format)

        owned_database: Optional[Database] = None
        app_services = services
        if app_services is None:
            logger.info("Initializing database", url=settings.database_url)
            owned_database = Database(settings.database_url)
            await owned_database.create_tables()
            app_services = build_services(owned_database, settings)
        app.state.services = app_services

        if settings.seed_vocabulary_on_startup:
            added = await app_services.canonicalizer.seed_vocabulary()
            logger.info("vocabulary.seeded", canonicals=added)

        scheduler: Optional[AsyncIOScheduler] = None
        if settings.scheduler_enabled:
            scheduler = AsyncIOScheduler()
            scheduler.add_job(
                run_enrichment_cycle,
                IntervalTrigger(minutes=settings.enrichment.interval_minutes),
                args=[app_services],
                id="enrichment",
                name="Item evaluation and enrichment",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            logger.info("Scheduler started", interval_minutes=settings.enrichment.interval_minutes)

        yield

        logger.info("Shutting down")
        if scheduler:
            scheduler.shutdown()
        if owned_database:
            await owned_database.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Topic canonicalization and diversified personal ranking for news items.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "newslens",
            "version": settings.app_version,
        }

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": f"{settings.app_name} API",
            "version": settings.app_version,
            "docs": "/docs",
            "endpoints": {
                "feed": "/api/v1/users/{user_id}/feed",
                "digest": "/api/v1/users/{user_id}/digest",
                "profile": "/api/v1/users/{user_id}/profile",
                "feedback": "/api/v1/users/{user_id}/feedback/{item_id}",
                "resolve": "/api/v1/topics/resolve",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "newslens.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
