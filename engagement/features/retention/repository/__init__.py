"""
Persistence layer for the retention feature.
"""

from .appointment_repository import AppointmentRepository
from .feedback_repository import FeedbackRepository
from .retention_log_repository import STATUS_FAILED, STATUS_SENT, RetentionLogRepository

__all__ = [
    "AppointmentRepository",
    "FeedbackRepository",
    "RetentionLogRepository",
    "STATUS_SENT",
    "STATUS_FAILED",
]
