"""
Domain models for the retention engagement feature.

Lightweight dataclasses shared by the repository, pipeline, services and
job layers. Everything except submitted Feedback and the rate limiter's
last-contact timestamp is derived per tick or per worker invocation and
never persisted.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class AppointmentStatus(StrEnum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class CampaignType(StrEnum):
    FEEDBACK = "FEEDBACK"
    REBOOKING = "REBOOKING"
    WINBACK = "WINBACK"
    NONE = "NONE"

    @property
    def message_type(self) -> str:
        """Name used in the retention_messages log."""
        return _MESSAGE_TYPES[self]


_MESSAGE_TYPES = {
    CampaignType.FEEDBACK: "FEEDBACK_REQUEST",
    CampaignType.REBOOKING: "REBOOKING_NUDGE",
    CampaignType.WINBACK: "WIN_BACK",
    CampaignType.NONE: "NONE",
}


class Channel(StrEnum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"


@dataclass(slots=True, frozen=True)
class Appointment:
    """A single booking, read-only to the engine."""

    id: str
    user_id: str
    service_id: str | None
    date: datetime
    status: AppointmentStatus


@dataclass(slots=True, frozen=True)
class EngagementThresholds:
    feedback_delay_hours: int = 4
    rebooking_weeks: int = 4
    winback_weeks: int = 8
    rate_limit_days: int = 7

    @property
    def rebooking_days(self) -> int:
        return self.rebooking_weeks * 7

    @property
    def winback_days(self) -> int:
        return self.winback_weeks * 7


@dataclass(slots=True)
class UserEngagementState:
    """Inputs the classifier needs for one user during one tick."""

    user_id: str
    last_completed_visit_at: datetime | None
    last_contact_at: datetime | None

    def days_since_visit(self, now: datetime) -> float | None:
        return _days_between(self.last_completed_visit_at, now)

    def days_since_contact(self, now: datetime) -> float | None:
        return _days_between(self.last_contact_at, now)


@dataclass(slots=True, frozen=True)
class VisitPattern:
    average_interval_days: float | None
    most_frequent_service_id: str | None
    confidence: float
    sample_count: int

    @property
    def has_prediction(self) -> bool:
        return self.average_interval_days is not None


@dataclass(slots=True, frozen=True)
class CampaignDecision:
    user_id: str
    campaign_type: CampaignType
    eligible: bool


@dataclass(slots=True, frozen=True)
class DispatchResult:
    channel: str
    recipient: str
    success: bool
    error_detail: str | None = None


@dataclass(slots=True, frozen=True)
class CustomerContact:
    """Messaging handles for one customer."""

    user_id: str
    name: str
    auth_provider: str | None = None
    telegram_id: int | None = None
    whatsapp_phone: str | None = None

    def preferred_route(
        self, enabled_channels: Iterable[str] | None = None
    ) -> tuple[Channel, str] | None:
        """
        Telegram first when linked, otherwise WhatsApp.

        Channels missing from enabled_channels are skipped; None means
        every channel is enabled.
        """
        enabled = None
        if enabled_channels is not None:
            enabled = {str(channel).lower() for channel in enabled_channels}

        candidates = (
            (Channel.TELEGRAM, str(self.telegram_id) if self.telegram_id else None),
            (Channel.WHATSAPP, self.whatsapp_phone or None),
        )
        for channel, recipient in candidates:
            if recipient and (enabled is None or channel.value in enabled):
                return channel, recipient
        return None


@dataclass(slots=True)
class EngagementTask:
    """Queue payload handed from the proactive agent to the suggestion worker."""

    user_id: str
    campaign_type: CampaignType
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> str:
        return json.dumps(
            {
                "task_id": self.task_id,
                "user_id": self.user_id,
                "campaign_type": self.campaign_type.value,
                "enqueued_at": self.enqueued_at.isoformat(),
            }
        )

    @classmethod
    def from_payload(cls, payload: str) -> EngagementTask:
        data = json.loads(payload)
        return cls(
            user_id=str(data["user_id"]),
            campaign_type=CampaignType(data["campaign_type"]),
            task_id=data["task_id"],
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
        )


@dataclass(slots=True, frozen=True)
class Feedback:
    """A customer's rating of one completed appointment."""

    appointment_id: str
    user_id: str
    rating: int
    comment: str | None = None


def _days_between(earlier: datetime | None, now: datetime) -> float | None:
    if earlier is None:
        return None
    return (now - earlier).total_seconds() / 86400

