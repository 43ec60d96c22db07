"""
Service layer for the retention feature.
"""

from .feedback import handle_feedback_callback, submit_feedback
from .messaging import (
    MessagingDispatcher,
    MessagingTransport,
    TelegramTransport,
    WhatsAppTransport,
    messaging_dispatcher,
    send_engagement_message,
)
from .rate_limiter import ContactRateLimiter, contact_rate_limiter
from .scheduler import EngagementSchedulerError, enqueue_engagement_task

__all__ = [
    "ContactRateLimiter",
    "contact_rate_limiter",
    "EngagementSchedulerError",
    "enqueue_engagement_task",
    "handle_feedback_callback",
    "submit_feedback",
    "MessagingDispatcher",
    "MessagingTransport",
    "TelegramTransport",
    "WhatsAppTransport",
    "messaging_dispatcher",
    "send_engagement_message",
]
