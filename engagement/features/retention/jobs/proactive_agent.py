"""
Proactive agent - the cron-driven half of the engagement pipeline.

One tick:
    IDLE -> SCANNING -> CLASSIFYING -> ELIGIBLE_SET -> DISPATCH_EMITTED -> IDLE

The tick only reads history and last-contact state and enqueues one
task per eligible user; the suggestion worker does the pattern lookup and
the send. Ticks are idempotent at the classification level because the
classifier is stateless and the rate limiter owns all cross-tick state.
"""

import asyncio
from datetime import UTC, datetime, timedelta

from engagement.config import settings
from engagement.features.retention.domain import (
    CampaignDecision,
    CampaignType,
    DataUnavailable,
    RateLimiterUnavailable,
    UserEngagementState,
)
from engagement.features.retention.pipeline import classify_campaign
from engagement.features.retention.repository import AppointmentRepository
from engagement.features.retention.services.rate_limiter import contact_rate_limiter
from engagement.features.retention.services.scheduler import (
    EngagementSchedulerError,
    enqueue_engagement_task,
)
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PHASE_IDLE = "IDLE"
PHASE_SCANNING = "SCANNING"
PHASE_CLASSIFYING = "CLASSIFYING"
PHASE_ELIGIBLE_SET = "ELIGIBLE_SET"
PHASE_DISPATCH_EMITTED = "DISPATCH_EMITTED"


class ProactiveCycleMetrics:
    """Counters for one proactive agent tick."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.users_scanned = 0
        self.buckets: dict[str, int] = {c.value: 0 for c in CampaignType}
        self.eligible = 0
        self.rate_limited = 0
        self.tasks_enqueued = 0
        self.already_pending = 0
        self.total_duration_seconds = 0.0
        self.skipped_reason: str | None = None
        self.errors: list[dict] = []

    def record_decision(self, decision: CampaignDecision):
        self.buckets[decision.campaign_type.value] += 1
        if decision.eligible:
            self.eligible += 1
        elif decision.campaign_type != CampaignType.NONE:
            self.rate_limited += 1

    def record_error(self, user_id: str | None, stage: str, error: str):
        self.errors.append(
            {
                "user_id": user_id,
                "stage": stage,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.warning("Proactive agent user error", user_id=user_id, stage=stage, error=error)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "proactive_agent",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "skipped": self.skipped_reason is not None,
            "reason": self.skipped_reason,
            "users_scanned": self.users_scanned,
            "buckets": dict(self.buckets),
            "eligible": self.eligible,
            "rate_limited": self.rate_limited,
            "tasks_enqueued": self.tasks_enqueued,
            "already_pending": self.already_pending,
            "errors_count": len(self.errors),
        }


class ProactiveAgentJob:
    """Scans appointment history and emits one engagement task per eligible user."""

    def __init__(self, reader=None, rate_limiter=None, enqueue=None):
        self.reader = reader or AppointmentRepository
        self.rate_limiter = rate_limiter or contact_rate_limiter
        self.enqueue = enqueue or enqueue_engagement_task
        self.is_running = False
        self.phase = PHASE_IDLE
        self.last_run_time: datetime | None = None
        self.metrics = ProactiveCycleMetrics()

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single tick.

        Never raises for store or per-user failures: an unreachable store
        skips the tick, a per-user failure skips that user.
        """
        if self.is_running:
            logger.warning("Proactive agent already running, skipping this tick")
            return {"skipped": True, "reason": "already_running"}

        now = now or datetime.now(UTC)
        thresholds = settings.engagement_thresholds()

        try:
            self.is_running = True
            self.metrics.reset()

            self.phase = PHASE_SCANNING
            states = await self._scan(now)
            if states is None:
                return self._finish()

            self.phase = PHASE_CLASSIFYING
            eligible: list[CampaignDecision] = []
            for state in states:
                try:
                    decision = classify_campaign(
                        state.user_id,
                        state.days_since_visit(now),
                        state.days_since_contact(now),
                        thresholds,
                    )
                except Exception as e:
                    self.metrics.record_error(state.user_id, "classify", str(e))
                    continue

                self.metrics.record_decision(decision)
                if decision.eligible:
                    eligible.append(decision)

            self.phase = PHASE_ELIGIBLE_SET
            logger.info(
                "Eligible set built",
                users_scanned=self.metrics.users_scanned,
                eligible=len(eligible),
                rate_limited=self.metrics.rate_limited,
            )

            self.phase = PHASE_DISPATCH_EMITTED
            for decision in eligible:
                try:
                    task = await self.enqueue(decision.user_id, decision.campaign_type)
                except EngagementSchedulerError as e:
                    self.metrics.record_error(decision.user_id, "enqueue", str(e))
                    continue

                if task is None:
                    self.metrics.already_pending += 1
                else:
                    self.metrics.tasks_enqueued += 1

            self.last_run_time = now
            return self._finish()

        finally:
            self.phase = PHASE_IDLE
            self.is_running = False

    async def _scan(self, now: datetime) -> list[UserEngagementState] | None:
        """Bulk read of candidates, their last visit and last contact. None skips the tick."""
        thresholds = settings.engagement_thresholds()

        try:
            stale = await self.reader.list_users_with_visit_older_than(thresholds.rebooking_days)
            recent = await self.reader.list_users_with_visit_within(
                thresholds.feedback_delay_hours
            )
            candidates = sorted(stale | recent)
            last_visits = await self.reader.last_completed_visits(candidates)
        except DataUnavailable as e:
            logger.warning("Appointment store unavailable, skipping tick", error=str(e))
            self.metrics.skipped_reason = "data_unavailable"
            return None

        try:
            last_contacts = await self.rate_limiter.last_contacts(candidates)
        except RateLimiterUnavailable as e:
            logger.warning("Last-contact store unavailable, skipping tick", error=str(e))
            self.metrics.skipped_reason = "rate_limiter_unavailable"
            return None

        self.metrics.users_scanned = len(candidates)
        return [
            UserEngagementState(
                user_id=user_id,
                last_completed_visit_at=last_visits.get(user_id),
                last_contact_at=last_contacts.get(user_id),
            )
            for user_id in candidates
        ]

    def _finish(self) -> dict:
        self.metrics.finalize()
        metrics = self.metrics.to_dict()
        logger.info("Proactive agent tick completed", **metrics)
        return metrics

    def get_job_status(self) -> dict:
        return {
            "job_name": "proactive_agent",
            "is_running": self.is_running,
            "phase": self.phase,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": settings.PROACTIVE_AGENT_INTERVAL_MINUTES,
            "thresholds": {
                "feedback_delay_hours": settings.FEEDBACK_DELAY_HOURS,
                "rebooking_weeks": settings.REBOOKING_WEEKS,
                "winback_weeks": settings.WINBACK_WEEKS,
                "rate_limit_days": settings.RATE_LIMIT_DAYS,
            },
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """Unhealthy when no tick has completed for twice the interval."""
        now = datetime.now(UTC)
        overdue_threshold = timedelta(minutes=settings.PROACTIVE_AGENT_INTERVAL_MINUTES * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue,
            "service": "proactive_agent",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }

        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )

        return health_status


# Singleton instance for application use
proactive_agent_job = ProactiveAgentJob()


async def run_proactive_cycle() -> dict:
    """Run a single proactive agent tick (cron entry point)."""
    return await proactive_agent_job.run_once()


def get_proactive_agent_status() -> dict:
    return proactive_agent_job.get_job_status()


def proactive_agent_health() -> dict:
    return proactive_agent_job.health_check()


async def start_proactive_agent_scheduler():
    """
    Run the proactive agent on a fixed interval.

    A tick that fails unexpectedly is logged and the loop keeps going; the
    next tick re-derives everything from history.
    """
    interval_seconds = settings.PROACTIVE_AGENT_INTERVAL_MINUTES * 60
    logger.info(
        "Starting proactive agent scheduler",
        interval_minutes=settings.PROACTIVE_AGENT_INTERVAL_MINUTES,
    )

    while True:
        try:
            await run_proactive_cycle()
            await asyncio.sleep(interval_seconds)

        except asyncio.CancelledError:
            logger.info("Proactive agent scheduler stopped")
            raise
        except Exception as e:
            logger.error(
                "Error in proactive agent scheduler", error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(60)
