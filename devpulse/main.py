from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from devpulse.config.logging import get_logger, setup_logging
from devpulse.config.settings import settings
from devpulse.infra.database import close_database
from devpulse.v1.core.exceptions import (
    DevPulseException,
    RequestContextMiddleware,
    devpulse_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from devpulse.v1.core.registries import job_registry
from devpulse.v1.healthz import router as health_router
from devpulse.v1.jobs.registry_init import register_job_handlers
from devpulse.v1.jobs.routes import router as jobs_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Verify handler wiring on startup and release pooled connections on shutdown."""
    register_job_handlers(job_registry, settings)
    if settings.environment != "development":
        job_registry.freeze()

    logger.info(
        "DevPulse Jobs API started",
        environment=settings.environment,
        job_types=job_registry.list(),
    )
    yield

    await close_database()
    logger.info("DevPulse Jobs API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Background job queue: enqueue, trigger processing, inspect and maintain",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    app.add_middleware(RequestContextMiddleware)
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(DevPulseException, devpulse_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "devpulse.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
