"""
Error taxonomy for the engagement engine.
"""


class EngagementError(Exception):
    """Base class carrying the failing operation and whether a retry can help."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class DataUnavailable(EngagementError):
    """The appointment store cannot be reached; skip this tick."""


class ProviderError(EngagementError):
    """A messaging provider rejected or failed a send."""

    def __init__(
        self,
        message: str,
        channel: str,
        status_code: int | None = None,
        operation: str | None = "send",
        recoverable: bool = True,
    ):
        super().__init__(message, operation=operation, recoverable=recoverable)
        self.channel = channel
        self.status_code = status_code


class ConfigurationError(EngagementError):
    """A required provider credential is missing."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message, operation="startup", recoverable=False)
        self.missing = missing or []


class SendRequestValidationError(EngagementError):
    """Malformed manual send request."""

    def __init__(self, message: str):
        super().__init__(message, operation="validate_request", recoverable=False)


class RateLimiterUnavailable(EngagementError):
    """Last-contact state cannot be read or written."""


class FeedbackValidationError(EngagementError):
    """Feedback submission with missing fields or an out-of-range rating."""

    def __init__(self, message: str):
        super().__init__(message, operation="validate_feedback", recoverable=False)
