# engagement/main.py
"""
FastAPI entry point for the engagement engine.

The lifespan refuses to start when an enabled messaging channel has no
credentials, then opens the database pool and Redis. Shutdown closes
them in reverse order together with the provider HTTP clients.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from engagement.config import settings
from engagement.db.pool import db_pool
from engagement.features.retention.api.router import router as engagement_router
from engagement.features.retention.services.messaging import messaging_dispatcher
from engagement.infrastructure.observability.logging import get_logger, setup_logging
from engagement.routes import health
from engagement.services.redis_client import fast_redis

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)

# (name, open, close) in startup order
RESOURCES = [
    ("database_pool", db_pool.initialize, db_pool.close),
    ("redis", fast_redis.initialize, fast_redis.close),
    ("messaging", None, messaging_dispatcher.close),
]


async def _close_all(opened: list[tuple]) -> list[str]:
    errors = []
    for name, _, close in reversed(opened):
        try:
            await close()
        except Exception as e:
            logger.error("Error closing service", service=name, error=str(e))
            errors.append(f"{name}: {e}")
    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    messaging_dispatcher.validate_configuration()

    opened = []
    try:
        for resource in RESOURCES:
            name, open_, _ = resource
            if open_ is not None:
                await open_()
            opened.append(resource)
    except Exception as e:
        logger.error(
            "Failed to initialize services",
            error=str(e),
            completed=[name for name, _, _ in opened],
        )
        await _close_all(opened)
        raise

    logger.info("All services initialized", services=[name for name, _, _ in opened])

    yield

    logger.info("Application shutting down")
    errors = await _close_all(opened)
    if errors:
        logger.warning("Some services had shutdown errors", errors=errors)
    else:
        logger.info("All services closed")


app = FastAPI(
    title="Salon Engagement Engine",
    description="Proactive customer engagement over WhatsApp and Telegram",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(engagement_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
