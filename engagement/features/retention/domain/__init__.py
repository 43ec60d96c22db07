"""
Domain models and errors for the retention engagement feature.
"""

from .errors import (  # noqa: F401
    ConfigurationError,
    DataUnavailable,
    FeedbackValidationError,
    ProviderError,
    RateLimiterUnavailable,
    SendRequestValidationError,
)
from .models import (  # noqa: F401
    Appointment,
    AppointmentStatus,
    CampaignDecision,
    CampaignType,
    Channel,
    CustomerContact,
    DispatchResult,
    EngagementTask,
    EngagementThresholds,
    Feedback,
    UserEngagementState,
    VisitPattern,
)
