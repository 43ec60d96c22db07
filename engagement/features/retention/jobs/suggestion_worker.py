"""
Suggestion worker - consumes engagement tasks queued by the proactive agent.

Per task:
    reserve contact -> load history -> visit pattern -> render message
    -> dispatch -> record contact (success) / release (failure)

Tasks for different users run concurrently up to
SUGGESTION_WORKER_CONCURRENCY. Tasks for the same user are serialized by
the rate limiter reservation, so an at-least-once redelivery can never
produce a second message inside the rate-limit window.
"""

import asyncio
import time
from datetime import UTC, datetime

from engagement.config import settings
from engagement.features.retention.domain import (
    AppointmentStatus,
    CampaignType,
    Channel,
    DataUnavailable,
    DispatchResult,
    EngagementTask,
    RateLimiterUnavailable,
)
from engagement.features.retention.pipeline import HISTORY_WINDOW, calculate_visit_pattern
from engagement.features.retention.repository import (
    STATUS_FAILED,
    STATUS_SENT,
    AppointmentRepository,
    RetentionLogRepository,
)
from engagement.features.retention.services.messaging import messaging_dispatcher
from engagement.features.retention.services.rate_limiter import contact_rate_limiter
from engagement.features.retention.services.scheduler import clear_pending_marker
from engagement.features.retention.services.templates import feedback_keyboard, render_message
from engagement.infrastructure.observability.logging import get_logger
from engagement.services.redis_client import fast_redis

logger = get_logger(__name__)


class SuggestionWorker:
    def __init__(
        self,
        reader=None,
        rate_limiter=None,
        dispatcher=None,
        retention_log=None,
        redis_client=None,
        concurrency: int | None = None,
    ):
        self.reader = reader or AppointmentRepository
        self.rate_limiter = rate_limiter or contact_rate_limiter
        self.dispatcher = dispatcher or messaging_dispatcher
        self.retention_log = retention_log or RetentionLogRepository
        self.redis = redis_client or fast_redis
        self.concurrency = concurrency or settings.SUGGESTION_WORKER_CONCURRENCY
        self._in_progress: set[asyncio.Task] = set()

    async def process_task(
        self, task: EngagementTask, now: datetime | None = None
    ) -> DispatchResult | None:
        """
        Handle one engagement task.

        Returns:
            The DispatchResult when a send was attempted, otherwise None.
        """
        now = now or datetime.now(UTC)
        log = logger.bind(user_id=task.user_id, campaign_type=task.campaign_type.value)

        try:
            token = await self.rate_limiter.reserve(task.user_id, now)
        except RateLimiterUnavailable as e:
            log.warning("Rate limiter unavailable, dropping task", error=str(e))
            return None

        if token is None:
            log.info("User inside rate-limit window or already in flight, skipping")
            return None

        try:
            outcome = await self._dispatch(task, now)
        except DataUnavailable as e:
            log.warning("Appointment store unavailable, dropping task", error=str(e))
            await self.rate_limiter.release(task.user_id, token)
            return None
        except BaseException:
            await self.rate_limiter.release(task.user_id, token)
            raise

        if outcome is None:
            await self.rate_limiter.release(task.user_id, token)
            return None

        result, days_since_visit = outcome

        if result.success:
            try:
                await self.rate_limiter.record_contact(task.user_id, now, token)
            except RateLimiterUnavailable as e:
                log.error("Message sent but contact could not be recorded", error=str(e))
        else:
            await self.rate_limiter.release(task.user_id, token)

        await self._log_delivery(
            task,
            days_since_visit,
            STATUS_SENT if result.success else STATUS_FAILED,
            result.error_detail,
        )
        return result

    async def _dispatch(
        self, task: EngagementTask, now: datetime
    ) -> tuple[DispatchResult, float | None] | None:
        completed = await self.reader.list_appointments(
            task.user_id, statuses=[AppointmentStatus.COMPLETED], limit=HISTORY_WINDOW
        )
        pattern = calculate_visit_pattern(completed)

        contact = await self.reader.get_customer_contact(task.user_id)
        route = contact.preferred_route(settings.ENGAGEMENT_CHANNELS) if contact else None

        last_visit = completed[0] if completed else None
        days_since_visit = (
            (now - last_visit.date).total_seconds() / 86400 if last_visit else None
        )

        if route is None:
            logger.info("No contact method available", user_id=task.user_id)
            await self._log_delivery(
                task, days_since_visit, STATUS_FAILED, "No contact method available"
            )
            return None

        channel, recipient = route
        text = render_message(task.campaign_type, contact.name, days_since_visit, pattern)

        options = {}
        if (
            channel == Channel.TELEGRAM
            and task.campaign_type == CampaignType.FEEDBACK
            and last_visit is not None
        ):
            options["reply_markup"] = feedback_keyboard(last_visit.id)

        logger.debug(
            "Dispatching engagement message",
            user_id=task.user_id,
            channel=channel.value,
            campaign_type=task.campaign_type.value,
            average_interval_days=pattern.average_interval_days,
            pattern_confidence=pattern.confidence,
        )

        result = await self.dispatcher.send(channel, recipient, text, **options)
        return result, days_since_visit

    async def _log_delivery(
        self,
        task: EngagementTask,
        days_since_visit: float | None,
        status: str,
        error: str | None,
    ) -> None:
        try:
            await self.retention_log.log_message(
                task.user_id,
                task.campaign_type,
                int(days_since_visit or 0),
                status,
                error,
            )
        except DataUnavailable as e:
            logger.warning("Could not write retention log", user_id=task.user_id, error=str(e))

    async def handle_payload(self, payload: str) -> None:
        """Decode, process and acknowledge one queue item."""
        try:
            task = EngagementTask.from_payload(payload)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Dropping malformed engagement task", error=str(e), payload=payload[:80])
            await self.redis.ack_from_inflight(settings.SUGGESTION_INFLIGHT_KEY, payload)
            return

        try:
            await self.process_task(task)
        except Exception as e:
            logger.error(
                "Engagement task failed",
                user_id=task.user_id,
                task_id=task.task_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await clear_pending_marker(task, self.redis)
            await self.redis.ack_from_inflight(settings.SUGGESTION_INFLIGHT_KEY, payload)

    async def recover_inflight(self) -> int:
        """
        Re-queue items left in flight by a crashed worker.

        Assumes a single worker process owns the in-flight list at startup.
        """
        stranded = await self.redis.list_range(settings.SUGGESTION_INFLIGHT_KEY)
        recovered = 0
        for payload in stranded:
            if await self.redis.requeue_from_inflight(
                settings.SUGGESTION_INFLIGHT_KEY, settings.SUGGESTION_QUEUE_KEY, payload
            ):
                recovered += 1

        if recovered:
            logger.info("Recovered in-flight engagement tasks", count=recovered)
        return recovered

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Pop tasks until stop_event is set."""
        stop_event = stop_event or asyncio.Event()
        semaphore = asyncio.Semaphore(self.concurrency)

        await self.recover_inflight()
        logger.info("Suggestion worker started", concurrency=self.concurrency)

        while not stop_event.is_set():
            started = time.monotonic()
            payload = await self.redis.pop_to_inflight(
                settings.SUGGESTION_QUEUE_KEY,
                settings.SUGGESTION_INFLIGHT_KEY,
                timeout=settings.SUGGESTION_POP_TIMEOUT_SECONDS,
            )

            if payload is None:
                # An immediate None means Redis errored rather than timed out
                if time.monotonic() - started < 1:
                    await asyncio.sleep(1)
                continue

            await semaphore.acquire()
            worker_task = asyncio.create_task(self._run_payload(payload, semaphore))
            self._in_progress.add(worker_task)
            worker_task.add_done_callback(self._in_progress.discard)

        if self._in_progress:
            await asyncio.gather(*self._in_progress, return_exceptions=True)
        logger.info("Suggestion worker stopped")

    async def _run_payload(self, payload: str, semaphore: asyncio.Semaphore) -> None:
        try:
            await self.handle_payload(payload)
        finally:
            semaphore.release()


suggestion_worker = SuggestionWorker()


async def start_suggestion_worker() -> None:
    """Entry point for the worker runner."""
    await suggestion_worker.run()
