import pytest

from engagement.features.retention.domain import FeedbackValidationError
from engagement.features.retention.services.feedback import (
    SAVE_FAILED_REPLY,
    UNKNOWN_ACCOUNT_REPLY,
    handle_feedback_callback,
    submit_feedback,
)
from engagement.features.retention.services.templates import (
    FEEDBACK_SORRY,
    feedback_keyboard,
    feedback_reply,
    parse_feedback_callback,
)
from tests.fakes import FakeFeedbackRepository


@pytest.fixture
def repository():
    return FakeFeedbackRepository(telegram_users={987654: "u1"})


def test_keyboard_buttons_parse_back():
    buttons = feedback_keyboard("appt-42")["inline_keyboard"][0]

    parsed = [parse_feedback_callback(button["callback_data"]) for button in buttons]

    assert parsed == [("appt-42", 1), ("appt-42", 3), ("appt-42", 5)]


@pytest.mark.parametrize(
    "data",
    ["", "feedback:appt-42", "feedback::5", "feedback:appt-42:x", "book:appt-42:5", None],
)
def test_unrelated_callback_data_is_not_parsed(data):
    assert parse_feedback_callback(data) is None


def test_reply_matches_rating():
    assert "Amazing" in feedback_reply(5)
    assert "Thanks for your feedback" in feedback_reply(3)
    assert feedback_reply(1) == FEEDBACK_SORRY


@pytest.mark.asyncio
async def test_submit_feedback_stores_rating(repository):
    assert await submit_feedback("a-1", "u1", 4, "Lovely", repository=repository) is True

    stored = repository.feedback["a-1"]
    assert (stored.user_id, stored.rating, stored.comment) == ("u1", 4, "Lovely")


@pytest.mark.asyncio
async def test_submit_feedback_lists_missing_fields(repository):
    with pytest.raises(FeedbackValidationError) as exc_info:
        await submit_feedback(None, "", None, repository=repository)

    assert str(exc_info.value) == "Missing required fields: appointmentId, userId, rating"


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, -1])
async def test_submit_feedback_rejects_out_of_range(repository, rating):
    with pytest.raises(FeedbackValidationError):
        await submit_feedback("a-1", "u1", rating, repository=repository)

    assert repository.feedback == {}


@pytest.mark.asyncio
async def test_callback_records_rating_for_linked_user(repository):
    reply = await handle_feedback_callback("feedback:a-9:3", 987654, repository=repository)

    assert reply == feedback_reply(3)
    assert repository.feedback["a-9"].user_id == "u1"


@pytest.mark.asyncio
async def test_callback_from_unlinked_user(repository):
    reply = await handle_feedback_callback("feedback:a-9:3", 555, repository=repository)

    assert reply == UNKNOWN_ACCOUNT_REPLY
    assert repository.feedback == {}


@pytest.mark.asyncio
async def test_callback_with_store_down_apologises(repository):
    repository.unavailable = True

    reply = await handle_feedback_callback("feedback:a-9:5", 987654, repository=repository)

    assert reply == SAVE_FAILED_REPLY


@pytest.mark.asyncio
async def test_non_rating_callback_is_ignored(repository):
    assert await handle_feedback_callback("reschedule:a-9", 987654, repository=repository) is None
