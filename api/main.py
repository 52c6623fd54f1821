"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, connect to Redis, wire the queue,
   start the scheduler unless a separate worker process owns it, in which
   case submissions are forwarded to the worker through Redis)
3. Registers all routers (queue, health)
4. Installs the opportunistic trigger: after every response, if jobs are
   pending and the cooldown has passed, a background batch is scheduled
5. Runs shutdown logic (stop the scheduler, close connections)

The `lifespan` context manager is FastAPI's way of handling startup/shutdown.
It replaces the older @app.on_event("startup") pattern.

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from redis import Redis

from config.settings import settings
from models.base import Base, SessionLocal, engine
from models.errors import JobNotFoundError
from services.ingest_queue import build_queue_service
from api.routers import health, queue

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup (before yield) and shutdown (after yield).

    Startup:
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Connects to Redis
    - Builds the queue service and, if RUN_SCHEDULER_IN_API, starts its scheduler

    Shutdown:
    - Stops the scheduler
    - Closes Redis connection
    - Disposes the DB engine (closes connection pool)
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    await run_in_threadpool(Base.metadata.create_all, engine)

    app.state.redis = Redis.from_url(settings.redis_url)
    app.state.session_factory = SessionLocal
    app.state.queue_service = build_queue_service(
        SessionLocal,
        app.state.redis,
        owns_scheduler=settings.RUN_SCHEDULER_IN_API,
    )
    app.state.queue_service.start()
    logger.info(f"API ready, scheduler in process: {settings.RUN_SCHEDULER_IN_API}")

    yield  # app is running and serving requests between startup and shutdown

    # ── Shutdown ────────────────────────────────────────────────
    app.state.queue_service.stop()
    app.state.redis.close()
    engine.dispose()
    logger.info("API shut down")


async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(admin_token: Optional[str] = settings.ADMIN_TOKEN) -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Ingest Queue",
        description="Background file ingestion queue with load shedding and bounded retries",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.admin_token = admin_token

    app.add_exception_handler(JobNotFoundError, job_not_found_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def opportunistic_trigger(request: Request, call_next):
        response = await call_next(request)
        service = getattr(request.app.state, "queue_service", None)
        if service is not None:
            try:
                await run_in_threadpool(service.maybe_schedule_background_processing)
            except Exception:
                # never fail a response because of the trigger
                logger.exception("Opportunistic trigger failed")
        return response

    # Register routers; each one adds its endpoints to the app
    app.include_router(health.router)
    app.include_router(queue.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
