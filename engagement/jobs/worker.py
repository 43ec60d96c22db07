"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, brings up the shared connections the job needs, and delegates
to the matching scheduler.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from engagement.config import settings
from engagement.db.pool import db_pool
from engagement.features.retention.jobs.proactive_agent import start_proactive_agent_scheduler
from engagement.features.retention.jobs.suggestion_worker import start_suggestion_worker
from engagement.features.retention.services.messaging import messaging_dispatcher
from engagement.infrastructure.observability.logging import get_logger, setup_logging
from engagement.services.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "proactive_agent": start_proactive_agent_scheduler,
    "suggestion_worker": start_suggestion_worker,
}

# Jobs that send messages and must refuse to start without provider credentials
SENDING_JOBS = {"suggestion_worker"}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "proactive_agent").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    if name in SENDING_JOBS:
        messaging_dispatcher.validate_configuration()

    await db_pool.initialize()
    await fast_redis.initialize()

    logger.info("Starting background worker", job=name, environment=settings.environment)
    try:
        await JOB_REGISTRY[name]()
    finally:
        await messaging_dispatcher.close()
        await fast_redis.close()
        await db_pool.close()
        logger.info("Background worker stopped", job=name)


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
