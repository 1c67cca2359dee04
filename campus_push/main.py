"""
FastAPI application: database pool and push engine lifecycle, health and
admin notification routes.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from campus_push.config import settings
from campus_push.db.pool import db_pool
from campus_push.features.push_notifications.services.engine import PushEngine
from campus_push.infrastructure.observability.logging import get_logger, log_request, setup_logging
from campus_push.routes import health, notifications

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []
    engine = None

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Building push engine")
        engine = PushEngine.from_settings(settings)
        app.state.engine = engine
        startup_tasks.append("push_engine")

        if settings.SCHEDULER_ENABLED:
            engine.scheduler.start()
            startup_tasks.append("scheduler")
        else:
            logger.info("Notification scheduler disabled")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if engine is not None:
            try:
                await engine.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up push engine", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    # Stop scheduling before the pool goes away
    try:
        logger.info("Stopping push engine")
        await engine.close()
    except Exception as e:
        logger.error("Error stopping push engine", error=str(e))
        shutdown_errors.append(f"Push engine: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Campus Push",
    description="Scheduled, timezone-aware push notification engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(notifications.router)


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
