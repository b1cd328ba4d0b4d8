"""
WeCarry API Server

Entry point for the FastAPI application.
"""

from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from wecarry import __version__
from wecarry.api.v1 import router as api_v1_router
from wecarry.core.config import get_settings
from wecarry.core.database import async_session_factory, engine
from wecarry.core.errors import Unauthorized, WeCarryError
from wecarry.core.events import get_event_bus
from wecarry.core.jobs import get_job_queue
from wecarry.core.logging import RequestContextMiddleware, configure_logging
from wecarry.notifications.delivery import get_email_service
from wecarry.tasks import register_jobs, register_listeners

settings = get_settings()
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)

    bus = get_event_bus()
    queue = get_job_queue()
    queue.ctx.update(
        session_factory=async_session_factory,
        settings=settings,
        email_service=get_email_service(settings),
        queue=queue,
    )
    register_jobs(queue)
    register_listeners(bus, queue, settings)
    log.info("wecarry.starting", version=__version__, email_service=settings.email_service)

    yield

    log.info("wecarry.shutting_down", pending_jobs=queue.pending)
    bus.close()
    await queue.shutdown()
    await engine.dispose()


def error_response(exc: WeCarryError) -> JSONResponse:
    # role and ownership details stay in the logs
    details = {} if isinstance(exc, Unauthorized) else exc.details
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.public_message(),
                "details": details,
                "operation": exc.operation,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="WeCarry",
        description="Request lifecycle engine: requests, offers, threads and notifications.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.exception_handler(WeCarryError)
    async def wecarry_error_handler(request: Request, exc: WeCarryError) -> JSONResponse:
        if isinstance(exc, Unauthorized):
            log.warning("request.unauthorized", operation=exc.operation, message=exc.message, **exc.details)
        return error_response(exc)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint: the database answers."""
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ready"}

    return app


app = create_app()


def run() -> None:
    """Run the API server with uvicorn."""
    uvicorn.run("wecarry.main:app", host=settings.host, port=settings.port, reload=settings.debug)
