from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ezjobs.config.logging import setup_logging
from ezjobs.config.settings import Settings, settings as default_settings
from ezjobs.context import AppContext, build_context
from ezjobs.v1.cleanup.routes import router as cleanup_router
from ezjobs.v1.core.exceptions import (
    EzJobsException,
    RequestContextMiddleware,
    ezjobs_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from ezjobs.v1.healthz import router as health_router
from ezjobs.v1.infra.dlq.routes import router as dlq_router
from ezjobs.v1.infra.jobs.routes import router as jobs_router
from ezjobs.v1.scheduling.routes import router as scheduling_router
from ezjobs.v1.webhooks.routes import router as webhooks_router


def create_app(
    settings: Settings | None = None, context: AppContext | None = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt context (tests) is used as is; otherwise one is built from
    settings at startup and closed at shutdown.
    """
    settings = settings or (context.settings if context else default_settings)

    # Initialize structured logging
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or build_context(settings)
        app.state.context = ctx
        if settings.run_workers:
            await ctx.start_workers()
        try:
            yield
        finally:
            await ctx.close("application shutdown")

    # Create FastAPI app with API versioning from day 1
    app = FastAPI(
        title=settings.app_name,
        description="Job processing, webhook delivery and scheduling for EzSign",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )
    if context is not None:
        app.state.context = context

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(EzJobsException, ezjobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(dlq_router, prefix="/v1")
    app.include_router(webhooks_router, prefix="/v1")
    app.include_router(scheduling_router, prefix="/v1")
    app.include_router(cleanup_router, prefix="/v1")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ezjobs.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
