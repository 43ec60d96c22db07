"""
Engagement task enqueue helpers.

The proactive agent hands each eligible user to the suggestion worker
through a Redis list. A short-lived per-user marker keeps overlapping
ticks from queueing the same user twice; the send itself is still
guarded by the contact rate limiter.
"""

from engagement.config import settings
from engagement.features.retention.domain import CampaignType, EngagementTask
from engagement.infrastructure.observability.logging import get_logger
from engagement.services.redis_client import fast_redis

logger = get_logger(__name__)

QUEUED_MARKER_KEY = "engagement:queued:{user_id}"
QUEUED_MARKER_TTL_SECONDS = 3600


class EngagementSchedulerError(Exception):
    """Raised when a task cannot be handed to the work queue."""

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.user_id = user_id


def _marker_key(user_id: str) -> str:
    return QUEUED_MARKER_KEY.format(user_id=user_id)


async def enqueue_engagement_task(
    user_id: str, campaign_type: CampaignType, redis_client=None
) -> EngagementTask | None:
    """
    Push a "send suggestion" task for one user.

    Returns:
        The queued task, or None if a task for this user is already pending.

    Raises:
        EngagementSchedulerError: If Redis refused the marker or the push.
    """
    redis = redis_client or fast_redis
    task = EngagementTask(user_id=user_id, campaign_type=campaign_type)

    claimed = await redis.set_if_absent(
        _marker_key(user_id), task.task_id, QUEUED_MARKER_TTL_SECONDS
    )
    if claimed is None:
        raise EngagementSchedulerError("Could not claim queue marker", user_id=user_id)
    if not claimed:
        logger.debug("Engagement task already pending", user_id=user_id)
        return None

    pushed = await redis.push_to_list(settings.SUGGESTION_QUEUE_KEY, task.to_payload())
    if not pushed:
        await redis.compare_and_delete(_marker_key(user_id), task.task_id)
        raise EngagementSchedulerError("Could not push engagement task", user_id=user_id)

    logger.info(
        "Engagement task enqueued",
        user_id=user_id,
        campaign_type=campaign_type.value,
        task_id=task.task_id,
    )
    return task


async def clear_pending_marker(task: EngagementTask, redis_client=None) -> None:
    """Allow the user to be queued again once their task is finished."""
    redis = redis_client or fast_redis
    await redis.compare_and_delete(_marker_key(task.user_id), task.task_id)
