from datetime import UTC, datetime, timedelta

import pytest

from engagement.config import settings
from engagement.features.retention.domain import CampaignType, CustomerContact, EngagementTask
from engagement.features.retention.jobs.suggestion_worker import SuggestionWorker
from engagement.features.retention.services.rate_limiter import ContactRateLimiter
from engagement.features.retention.services.scheduler import enqueue_engagement_task
from tests.fakes import FakeAppointmentReader, FakeDispatcher, make_appointment

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def reader():
    return FakeAppointmentReader(
        [
            make_appointment("u1", 30, now=NOW, appointment_id="a-30"),
            make_appointment("u1", 58, now=NOW, appointment_id="a-58"),
            make_appointment("u2", 1 / 24, now=NOW, appointment_id="a-fresh"),
            make_appointment("u3", 40, now=NOW),
        ],
        contacts={
            "u1": CustomerContact(user_id="u1", name="Ana", telegram_id=987654),
            "u2": CustomerContact(user_id="u2", name="Ben", telegram_id=123456),
            "u3": CustomerContact(user_id="u3", name="Cy", whatsapp_phone="+15551234567"),
        },
    )


@pytest.fixture
def limiter(fake_redis):
    return ContactRateLimiter(redis_client=fake_redis, window_days=7)


def _worker(reader, limiter, dispatcher, retention_log, fake_redis):
    return SuggestionWorker(
        reader=reader,
        rate_limiter=limiter,
        dispatcher=dispatcher,
        retention_log=retention_log,
        redis_client=fake_redis,
        concurrency=2,
    )


@pytest.mark.asyncio
async def test_successful_send_records_contact(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result.success is True
    assert fake_dispatcher.sent[0]["channel"] == "telegram"
    assert fake_dispatcher.sent[0]["recipient"] == "987654"
    assert "Ana" in fake_dispatcher.sent[0]["text"]
    assert "every 4 weeks" in fake_dispatcher.sent[0]["text"]
    assert await limiter.last_contact_at("u1") == NOW
    assert "engagement:contact_lock:u1" not in fake_redis.store
    assert fake_retention_log.entries == [
        {
            "user_id": "u1",
            "message_type": "REBOOKING_NUDGE",
            "days_since_last_visit": 30,
            "delivery_status": "SENT",
            "delivery_error": None,
        }
    ]


@pytest.mark.asyncio
async def test_failed_send_does_not_record_contact(
    reader, limiter, fake_retention_log, fake_redis
):
    dispatcher = FakeDispatcher(success=False, error_detail="Provider timed out after 15.0s")
    worker = _worker(reader, limiter, dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result.success is False
    assert await limiter.last_contact_at("u1") is None
    assert "engagement:contact_lock:u1" not in fake_redis.store
    assert fake_retention_log.entries[0]["delivery_status"] == "FAILED"
    assert fake_retention_log.entries[0]["delivery_error"] == "Provider timed out after 15.0s"

    # Next tick may try again
    assert await limiter.reserve("u1", NOW) is not None


@pytest.mark.asyncio
async def test_user_inside_window_is_not_messaged(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    await limiter.record_contact("u1", NOW - timedelta(days=2))
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result is None
    assert fake_dispatcher.sent == []


@pytest.mark.asyncio
async def test_feedback_over_telegram_carries_rating_keyboard(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    await worker.process_task(EngagementTask("u2", CampaignType.FEEDBACK), NOW)

    keyboard = fake_dispatcher.sent[0]["options"]["reply_markup"]["inline_keyboard"][0]
    assert [button["callback_data"] for button in keyboard] == [
        "feedback:a-fresh:1",
        "feedback:a-fresh:3",
        "feedback:a-fresh:5",
    ]


@pytest.mark.asyncio
async def test_whatsapp_used_when_telegram_not_linked(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    await worker.process_task(EngagementTask("u3", CampaignType.WINBACK), NOW)

    sent = fake_dispatcher.sent[0]
    assert sent["channel"] == "whatsapp"
    assert sent["recipient"] == "+15551234567"
    assert sent["options"] == {}
    assert settings.SALON_NAME in sent["text"]


@pytest.mark.asyncio
async def test_missing_contact_is_logged_and_released(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    reader.contacts.pop("u1")
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result is None
    assert fake_dispatcher.sent == []
    assert fake_retention_log.entries[0]["delivery_error"] == "No contact method available"
    assert "engagement:contact_lock:u1" not in fake_redis.store


@pytest.mark.asyncio
async def test_store_outage_releases_reservation(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    reader.unavailable = True
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    assert await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW) is None
    assert "engagement:contact_lock:u1" not in fake_redis.store


@pytest.mark.asyncio
async def test_handle_payload_acks_and_clears_marker(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)
    task = await enqueue_engagement_task("u1", CampaignType.REBOOKING, redis_client=fake_redis)
    payload = await fake_redis.pop_to_inflight(
        settings.SUGGESTION_QUEUE_KEY, settings.SUGGESTION_INFLIGHT_KEY
    )

    await worker.handle_payload(payload)

    assert len(fake_dispatcher.sent) == 1
    assert fake_redis.lists[settings.SUGGESTION_INFLIGHT_KEY] == []
    assert f"engagement:queued:{task.user_id}" not in fake_redis.store


@pytest.mark.asyncio
async def test_malformed_payload_is_dropped(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)
    fake_redis.lists[settings.SUGGESTION_INFLIGHT_KEY] = ["not json"]

    await worker.handle_payload("not json")

    assert fake_dispatcher.sent == []
    assert fake_redis.lists[settings.SUGGESTION_INFLIGHT_KEY] == []


@pytest.mark.asyncio
async def test_recover_inflight_requeues_stranded_tasks(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis
):
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)
    payload = EngagementTask("u1", CampaignType.REBOOKING).to_payload()
    fake_redis.lists[settings.SUGGESTION_INFLIGHT_KEY] = [payload]

    assert await worker.recover_inflight() == 1
    assert fake_redis.lists[settings.SUGGESTION_QUEUE_KEY] == [payload]
    assert fake_redis.lists[settings.SUGGESTION_INFLIGHT_KEY] == []


@pytest.mark.asyncio
async def test_disabled_channel_falls_back_to_enabled_one(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis, monkeypatch
):
    monkeypatch.setattr(settings, "ENGAGEMENT_CHANNELS", ["whatsapp"])
    reader.contacts["u1"] = CustomerContact(
        user_id="u1", name="Ana", telegram_id=987654, whatsapp_phone="+15557654321"
    )
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result.success is True
    assert fake_dispatcher.sent[0]["channel"] == "whatsapp"
    assert fake_dispatcher.sent[0]["recipient"] == "+15557654321"


@pytest.mark.asyncio
async def test_only_disabled_channel_linked_sends_nothing(
    reader, limiter, fake_dispatcher, fake_retention_log, fake_redis, monkeypatch
):
    monkeypatch.setattr(settings, "ENGAGEMENT_CHANNELS", ["whatsapp"])
    worker = _worker(reader, limiter, fake_dispatcher, fake_retention_log, fake_redis)

    result = await worker.process_task(EngagementTask("u1", CampaignType.REBOOKING), NOW)

    assert result is None
    assert fake_dispatcher.sent == []
    assert fake_retention_log.entries[0]["delivery_error"] == "No contact method available"
    assert "engagement:contact_lock:u1" not in fake_redis.store
