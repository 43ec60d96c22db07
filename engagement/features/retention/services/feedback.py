"""
Feedback collection for post-visit rating requests.

Ratings arrive either as a direct API submission or as a tap on one of
the Telegram rating buttons attached to FEEDBACK messages.
"""

from engagement.features.retention.domain import (
    DataUnavailable,
    Feedback,
    FeedbackValidationError,
)
from engagement.features.retention.repository import FeedbackRepository
from engagement.features.retention.services.templates import (
    feedback_reply,
    parse_feedback_callback,
)
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5

UNKNOWN_ACCOUNT_REPLY = "Sorry, I couldn't identify your account. Please try again."
SAVE_FAILED_REPLY = (
    "Sorry, I had trouble saving your feedback. Please try again or contact us directly."
)


async def submit_feedback(
    appointment_id: str | None,
    user_id: str | None,
    rating: int | None,
    comment: str | None = None,
    repository=None,
) -> bool:
    """
    Validate and store one rating.

    Returns:
        True if stored, False if the appointment already had a rating.

    Raises:
        FeedbackValidationError: missing field or rating outside 1-5.
        DataUnavailable: the store could not be written.
    """
    repository = repository or FeedbackRepository

    fields = (("appointmentId", appointment_id), ("userId", user_id), ("rating", rating))
    missing = [name for name, value in fields if value is None or value == ""]
    if missing:
        raise FeedbackValidationError(f"Missing required fields: {', '.join(missing)}")

    if not MIN_RATING <= rating <= MAX_RATING:
        raise FeedbackValidationError(
            f"Rating must be a number between {MIN_RATING} and {MAX_RATING}"
        )

    return await repository.create_feedback(
        Feedback(
            appointment_id=str(appointment_id),
            user_id=str(user_id),
            rating=rating,
            comment=comment,
        )
    )


async def handle_feedback_callback(
    callback_data: str, telegram_id: int, repository=None
) -> str | None:
    """
    Record a rating button tap from Telegram.

    Returns:
        The reply text for the customer, or None when callback_data is
        not a rating button.
    """
    parsed = parse_feedback_callback(callback_data)
    if parsed is None:
        return None

    repository = repository or FeedbackRepository
    appointment_id, rating = parsed

    try:
        user_id = await repository.get_user_id_by_telegram_id(telegram_id)
        if user_id is None:
            logger.warning("Rating from unknown Telegram user", appointment_id=appointment_id)
            return UNKNOWN_ACCOUNT_REPLY

        await submit_feedback(appointment_id, user_id, rating, repository=repository)
    except (DataUnavailable, FeedbackValidationError) as e:
        logger.error(
            "Could not record feedback",
            appointment_id=appointment_id,
            rating=rating,
            error=str(e),
        )
        return SAVE_FAILED_REPLY

    return feedback_reply(rating)
