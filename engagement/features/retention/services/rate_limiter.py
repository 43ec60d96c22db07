"""
Per-user contact rate limiter.

Enforces at most one outbound engagement message per user per
RATE_LIMIT_DAYS, independent of campaign type. The last-contact
timestamp in Redis is the only state that survives across ticks.

Sending is a check-then-act sequence, so it is guarded twice:

1. reserve() takes a per-user lock (SET NX EX) and re-reads the
   last-contact value after acquiring it. Only one dispatch per user can
   be in flight, and a commit made by the previous lock holder is always
   visible to the next one.
2. record_contact() writes the timestamp through a Lua script that only
   moves the value forward, then releases the lock.

Usage:
    token = await contact_rate_limiter.reserve(user_id)
    if token:
        result = await dispatcher.send(...)
        if result.success:
            await contact_rate_limiter.record_contact(user_id, now, token)
        else:
            await contact_rate_limiter.release(user_id, token)
"""

import uuid
from datetime import UTC, datetime, timedelta

from engagement.config import settings
from engagement.features.retention.domain import RateLimiterUnavailable
from engagement.infrastructure.observability.logging import get_logger
from engagement.services.redis_client import fast_redis

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_epoch_us(at: datetime) -> int:
    """Exact integer microseconds since the epoch."""
    return (at - EPOCH) // timedelta(microseconds=1)


def from_epoch_us(value: str | int) -> datetime:
    return EPOCH + timedelta(microseconds=int(value))


class ContactRateLimiter:
    LAST_CONTACT_KEY = "engagement:last_contact:{user_id}"
    RESERVATION_KEY = "engagement:contact_lock:{user_id}"

    def __init__(
        self,
        redis_client=None,
        window_days: int | None = None,
        reservation_ttl_s: int | None = None,
    ):
        """
        Args:
            redis_client: FastRedisClient-compatible client (default: shared pool)
            window_days: Fixed window override; None reads RATE_LIMIT_DAYS on every check
            reservation_ttl_s: Lock expiry, must outlive one provider call
        """
        self._redis = redis_client or fast_redis
        self._window_days = window_days
        self._reservation_ttl_s = reservation_ttl_s

    @property
    def window(self) -> timedelta:
        days = self._window_days if self._window_days is not None else settings.RATE_LIMIT_DAYS
        return timedelta(days=days)

    @property
    def reservation_ttl_s(self) -> int:
        return self._reservation_ttl_s or settings.CONTACT_RESERVATION_TTL_SECONDS

    def _last_contact_key(self, user_id: str) -> str:
        return self.LAST_CONTACT_KEY.format(user_id=user_id)

    def _reservation_key(self, user_id: str) -> str:
        return self.RESERVATION_KEY.format(user_id=user_id)

    async def last_contacts(self, user_ids: list[str]) -> dict[str, datetime | None]:
        """Bulk read of last-contact timestamps."""
        if not user_ids:
            return {}

        values = await self._redis.mget([self._last_contact_key(uid) for uid in user_ids])
        if values is None:
            raise RateLimiterUnavailable(
                "Last-contact store unreachable", operation="last_contacts"
            )

        return {
            uid: from_epoch_us(value) if value else None
            for uid, value in zip(user_ids, values)
        }

    async def last_contact_at(self, user_id: str) -> datetime | None:
        contacts = await self.last_contacts([user_id])
        return contacts[user_id]

    def _outside_window(self, last_contact: datetime | None, now: datetime) -> bool:
        return last_contact is None or now - last_contact >= self.window

    async def may_contact(self, user_id: str, now: datetime | None = None) -> bool:
        """True when the user has not been contacted within the window."""
        now = now or datetime.now(UTC)
        return self._outside_window(await self.last_contact_at(user_id), now)

    async def reserve(self, user_id: str, now: datetime | None = None) -> str | None:
        """
        Claim the right to message a user.

        Returns:
            A reservation token, or None when the user is inside the window or
            another dispatch for the same user is in flight.

        Raises:
            RateLimiterUnavailable: If Redis cannot be reached.
        """
        now = now or datetime.now(UTC)

        if not await self.may_contact(user_id, now):
            return None

        token = uuid.uuid4().hex
        acquired = await self._redis.set_if_absent(
            self._reservation_key(user_id), token, self.reservation_ttl_s
        )
        if acquired is None:
            raise RateLimiterUnavailable("Could not acquire contact reservation", operation="reserve")
        if not acquired:
            logger.info("Contact already in flight", user_id=user_id)
            return None

        # A previous holder may have committed between our check and the lock
        try:
            still_allowed = await self.may_contact(user_id, now)
        except RateLimiterUnavailable:
            await self.release(user_id, token)
            raise

        if not still_allowed:
            await self.release(user_id, token)
            return None

        return token

    async def release(self, user_id: str, token: str) -> None:
        """Drop a reservation without recording a contact."""
        released = await self._redis.compare_and_delete(self._reservation_key(user_id), token)
        if not released:
            logger.warning("Contact reservation already expired", user_id=user_id)

    async def record_contact(
        self, user_id: str, at: datetime | None = None, token: str | None = None
    ) -> bool:
        """
        Persist a confirmed send. Call only after the provider accepted the message.

        Returns:
            False if a later contact was already stored (value left untouched).
        """
        at = at or datetime.now(UTC)
        written = await self._redis.set_if_greater(
            self._last_contact_key(user_id), to_epoch_us(at)
        )

        if token:
            await self.release(user_id, token)

        if written is None:
            raise RateLimiterUnavailable("Could not record contact", operation="record_contact")

        if not written:
            logger.warning(
                "Ignored out-of-order contact timestamp", user_id=user_id, at=at.isoformat()
            )
        else:
            logger.debug("Contact recorded", user_id=user_id, at=at.isoformat())

        return written


# Shared instance
contact_rate_limiter = ContactRateLimiter()
