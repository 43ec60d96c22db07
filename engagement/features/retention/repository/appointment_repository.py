"""
Appointment history reader.

Read-only access to the booking subsystem's appointments and the users'
messaging handles. Every store failure surfaces as DataUnavailable so the
proactive agent can skip the tick instead of crashing.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from engagement.db.helpers import DatabaseError, fetch_all, fetch_one
from engagement.features.retention.domain import (
    Appointment,
    AppointmentStatus,
    CustomerContact,
    DataUnavailable,
)
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class AppointmentRepository:
    """Read helpers backing the proactive agent and the suggestion worker."""

    APPOINTMENT_COLUMNS = "id, user_id, service_id, date, status"

    @classmethod
    def _row_to_appointment(cls, row: dict) -> Appointment:
        return Appointment(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            service_id=str(row["service_id"]) if row.get("service_id") is not None else None,
            date=_as_utc(row["date"]),
            status=AppointmentStatus(row["status"]),
        )

    @classmethod
    async def list_appointments(
        cls,
        user_id: str,
        statuses: Iterable[AppointmentStatus] | None = None,
        limit: int | None = None,
    ) -> list[Appointment]:
        """
        Return a customer's appointments, most recent first.

        Args:
            user_id: Customer id
            statuses: Optional status filter
            limit: Optional cap on returned rows
        """
        query = f"SELECT {cls.APPOINTMENT_COLUMNS} FROM appointments WHERE user_id = %s"
        params: list = [user_id]

        if statuses is not None:
            query += " AND status = ANY(%s)"
            params.append([str(s) for s in statuses])

        query += " ORDER BY date DESC"

        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        try:
            rows = await fetch_all(query, tuple(params))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not load appointments: {e}", operation="list_appointments"
            ) from e

        return [cls._row_to_appointment(row) for row in rows]

    @classmethod
    async def list_users_with_visit_older_than(cls, days: int) -> set[str]:
        """Users whose most recent COMPLETED visit is more than `days` days old."""
        query = """
            SELECT user_id
            FROM appointments
            WHERE status = 'COMPLETED' AND user_id IS NOT NULL
            GROUP BY user_id
            HAVING MAX(date) < NOW() - make_interval(days => %s)
        """
        try:
            rows = await fetch_all(query, (days,))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not scan visit history: {e}",
                operation="list_users_with_visit_older_than",
            ) from e

        return {str(row["user_id"]) for row in rows}

    @classmethod
    async def list_users_with_visit_within(cls, hours: int) -> set[str]:
        """Users with a COMPLETED visit in the last `hours` hours."""
        query = """
            SELECT DISTINCT user_id
            FROM appointments
            WHERE status = 'COMPLETED' AND user_id IS NOT NULL
              AND date >= NOW() - make_interval(hours => %s)
              AND date <= NOW()
        """
        try:
            rows = await fetch_all(query, (hours,))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not scan recent visits: {e}", operation="list_users_with_visit_within"
            ) from e

        return {str(row["user_id"]) for row in rows}

    @classmethod
    async def last_completed_visits(cls, user_ids: Iterable[str]) -> dict[str, datetime]:
        """Most recent COMPLETED visit per user."""
        ids = list(user_ids)
        if not ids:
            return {}

        query = """
            SELECT user_id, MAX(date) AS last_visit_at
            FROM appointments
            WHERE status = 'COMPLETED' AND user_id = ANY(%s)
            GROUP BY user_id
        """
        try:
            rows = await fetch_all(query, (ids,))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not load last visits: {e}", operation="last_completed_visits"
            ) from e

        return {str(row["user_id"]): _as_utc(row["last_visit_at"]) for row in rows}

    @classmethod
    async def get_customer_contact(cls, user_id: str) -> CustomerContact | None:
        """Messaging handles for a customer, None if the user no longer exists."""
        query = """
            SELECT id, name, auth_provider, telegram_id, whatsapp_phone
            FROM users
            WHERE id = %s
        """
        try:
            row = await fetch_one(query, (user_id,))
        except DatabaseError as e:
            raise DataUnavailable(
                f"Could not load customer: {e}", operation="get_customer_contact"
            ) from e

        if not row:
            return None

        return CustomerContact(
            user_id=str(row["id"]),
            name=row["name"],
            auth_provider=row.get("auth_provider"),
            telegram_id=row.get("telegram_id"),
            whatsapp_phone=row.get("whatsapp_phone"),
        )
