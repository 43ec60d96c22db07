"""
Append-only log of retention message delivery attempts.
"""

from engagement.db.helpers import DatabaseError, execute_query
from engagement.features.retention.domain import CampaignType, DataUnavailable
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"


class RetentionLogRepository:
    @classmethod
    async def log_message(
        cls,
        user_id: str,
        campaign_type: CampaignType,
        days_since_last_visit: int,
        delivery_status: str,
        delivery_error: str | None = None,
    ) -> None:
        query = """
            INSERT INTO retention_messages (
                user_id, message_type, days_since_last_visit, delivery_status, delivery_error
            )
            VALUES (%s, %s, %s, %s, %s)
        """
        try:
            await execute_query(
                query,
                (
                    user_id,
                    campaign_type.message_type,
                    days_since_last_visit,
                    delivery_status,
                    delivery_error,
                ),
            )
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not write retention log: {e}", operation="log_message"
            ) from e

        logger.debug(
            "Retention message logged",
            user_id=user_id,
            message_type=campaign_type.message_type,
            delivery_status=delivery_status,
        )
