"""
Message copy for each retention campaign.
"""

from engagement.config import settings
from engagement.features.retention.domain import CampaignType, VisitPattern

FEEDBACK_RATINGS = (("😞 Not Great", 1), ("👌 Okay", 3), ("🤩 Amazing!", 5))

FEEDBACK_CALLBACK_PREFIX = "feedback"

FEEDBACK_THANK_YOU = {
    5: (
        "🤩 *Amazing! Thank you!*\n\n"
        "We're thrilled you had a great experience! Your 5-star feedback means the world to us.\n\n"
        "We look forward to seeing you again soon!"
    ),
    3: (
        "👌 *Thanks for your feedback!*\n\n"
        "We appreciate you taking the time to share your thoughts.\n\n"
        "We're always working to improve our service!"
    ),
}
FEEDBACK_SORRY = (
    "😞 *We're sorry to hear that*\n\n"
    "Thank you for your honest feedback. We take this seriously and will work to improve.\n\n"
    "If you'd like to share more details, please feel free to message us."
)


def feedback_keyboard(appointment_id: str) -> dict:
    """Inline keyboard with three rating buttons for Telegram feedback requests."""
    return {
        "inline_keyboard": [
            [
                {
                    "text": label,
                    "callback_data": f"{FEEDBACK_CALLBACK_PREFIX}:{appointment_id}:{rating}",
                }
                for label, rating in FEEDBACK_RATINGS
            ]
        ]
    }


def parse_feedback_callback(callback_data: str) -> tuple[str, int] | None:
    """
    Read (appointment_id, rating) back out of a rating button's callback data.

    Returns None for callback data that did not come from feedback_keyboard.
    """
    parts = (callback_data or "").split(":")
    if len(parts) != 3 or parts[0] != FEEDBACK_CALLBACK_PREFIX:
        return None

    _, appointment_id, rating = parts
    if not appointment_id or not rating.isdigit():
        return None
    return appointment_id, int(rating)


def feedback_reply(rating: int) -> str:
    """Answer shown to the customer after they tap a rating."""
    return FEEDBACK_THANK_YOU.get(rating, FEEDBACK_SORRY)


def _cadence_hint(pattern: VisitPattern | None) -> str:
    if pattern is None or not pattern.has_prediction:
        return "Most clients rebook every 4-6 weeks for best results."
    weeks = max(1, round(pattern.average_interval_days / 7))
    unit = "week" if weeks == 1 else "weeks"
    return f"You usually visit us every {weeks} {unit}."


def render_message(
    campaign_type: CampaignType,
    customer_name: str,
    days_since_visit: float | None,
    pattern: VisitPattern | None = None,
) -> str:
    """Build the outbound text for a campaign."""
    name = customer_name or "there"
    weeks_since = int((days_since_visit or 0) // 7)

    if campaign_type == CampaignType.FEEDBACK:
        return f"Hi {name}! How was your visit today?\n\nWe'd love to hear your feedback! 💬"

    if campaign_type == CampaignType.REBOOKING:
        return (
            f"Hi {name}! It's been {weeks_since} weeks since your last visit.\n\n"
            f"Time for a refresh? {_cadence_hint(pattern)}\n\n"
            "Tap below to book your next appointment! 📅"
        )

    if campaign_type == CampaignType.WINBACK:
        return (
            f"We miss you, {name}! It's been {weeks_since} weeks since we saw you at "
            f"{settings.SALON_NAME}.\n\n"
            "Your chair is waiting. 💈\n\n"
            "Book your next appointment and let us help you look your best!"
        )

    raise ValueError(f"No message template for campaign {campaign_type}")
