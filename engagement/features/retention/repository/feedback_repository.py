"""
Customer feedback collected from rating buttons on feedback requests.
"""

from engagement.db.helpers import DatabaseError, execute_query, fetch_one
from engagement.features.retention.domain import DataUnavailable, Feedback
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FeedbackRepository:
    @classmethod
    async def create_feedback(cls, feedback: Feedback) -> bool:
        """
        Store a rating for an appointment.

        One rating per appointment; a repeated tap keeps the first one.

        Returns:
            True if a new row was written, False if the appointment was already rated.
        """
        query = """
            INSERT INTO feedback (appointment_id, user_id, rating, comment)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (appointment_id) DO NOTHING
        """
        try:
            inserted = await execute_query(
                query,
                (feedback.appointment_id, feedback.user_id, feedback.rating, feedback.comment),
            )
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not store feedback: {e}", operation="create_feedback"
            ) from e

        if not inserted:
            logger.info("Appointment already rated", appointment_id=feedback.appointment_id)
            return False

        logger.info(
            "Feedback stored",
            appointment_id=feedback.appointment_id,
            user_id=feedback.user_id,
            rating=feedback.rating,
        )
        return True

    @classmethod
    async def get_user_id_by_telegram_id(cls, telegram_id: int) -> str | None:
        """Map a Telegram sender back to the customer account."""
        try:
            row = await fetch_one("SELECT id FROM users WHERE telegram_id = %s", (telegram_id,))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not resolve Telegram user: {e}", operation="get_user_id_by_telegram_id"
            ) from e

        return str(row["id"]) if row else None
