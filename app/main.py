# app/main.py
"""
Application entry point: lifespan management for the Redis claim store,
the background worker pool and the Monday client.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health, internal, jobs, warehouse
from app.services.completion.background_worker import background_worker
from app.services.completion.dispatcher import background_dispatcher
from app.services.hirehop_client import hirehop_client
from app.services.infrastructure.redis_client import fast_redis
from app.services.monday.client import monday_client

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    # Startup sequence
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        # Redis is optional; claims fall back to the in-memory store
        if fast_redis.configured:
            logger.info("Initializing Redis connection")
            try:
                await fast_redis.initialize()
                startup_tasks.append("redis")
            except Exception as e:
                logger.warning("Redis unavailable, using in-memory claims", error=str(e))

        logger.info("Starting background workers")
        background_dispatcher.start(background_worker.process)
        startup_tasks.append("background_workers")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "background_workers" in startup_tasks:
            try:
                await background_dispatcher.stop()
            except Exception as cleanup_error:
                logger.error("Error stopping background workers", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        logger.info("Stopping background workers")
        await background_dispatcher.stop()
    except Exception as e:
        logger.error("Error stopping background workers", error=str(e))
        shutdown_errors.append(f"Background workers: {e}")

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    try:
        await monday_client.close()
        await hirehop_client.close()
    except Exception as e:
        logger.error("Error closing HTTP clients", error=str(e))
        shutdown_errors.append(f"HTTP clients: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Ooosh Operations",
    description="Delivery/collection completion and overdue-job escalation",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(jobs.router)
app.include_router(warehouse.router)
app.include_router(internal.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
