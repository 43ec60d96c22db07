"""
Retention engagement routes.

Operational endpoints for the engagement engine: manual sends through a
messaging channel, feedback collection (API and Telegram rating buttons),
proactive agent status, and a per-user view of the computed visit
pattern.
"""

from fastapi import APIRouter, Body, Depends, HTTPException

from engagement.features.retention.domain import (
    AppointmentStatus,
    Channel,
    DataUnavailable,
    FeedbackValidationError,
    SendRequestValidationError,
)
from engagement.features.retention.jobs.proactive_agent import (
    get_proactive_agent_status,
    proactive_agent_health,
)
from engagement.features.retention.pipeline import HISTORY_WINDOW, calculate_visit_pattern
from engagement.features.retention.repository import AppointmentRepository, FeedbackRepository
from engagement.features.retention.services.feedback import (
    handle_feedback_callback,
    submit_feedback,
)
from engagement.features.retention.services.messaging import (
    MessagingDispatcher,
    messaging_dispatcher,
    send_engagement_message,
)
from engagement.infrastructure.observability.logging import get_logger
from engagement.models.api.engagement_request import FeedbackRequest, SendTestMessageRequest
from engagement.models.api.engagement_response import (
    FeedbackResponse,
    SendTestMessageResponse,
    SendUsageResponse,
    VisitPatternResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/engagement", tags=["engagement"])


def get_dispatcher() -> MessagingDispatcher:
    return messaging_dispatcher


@router.get("/test/{channel}/send", response_model=SendUsageResponse)
async def describe_send_endpoint(channel: str) -> SendUsageResponse:
    """Usage hint for the manual send endpoint."""
    recipient = "+15551234567" if channel.lower() == "whatsapp" else "123456789"
    return SendUsageResponse(
        endpoint=f"POST /engagement/test/{channel}/send",
        description=f"Send a plain text message through the {channel} channel",
        body={"to": "recipient id or phone number", "text": "message body"},
        example=f'{{"to": "{recipient}", "text": "Hello from the salon"}}',
    )


@router.post("/test/{channel}/send", response_model=SendTestMessageResponse)
async def send_test_message(
    channel: str,
    request: SendTestMessageRequest | None = None,
    dispatcher: MessagingDispatcher = Depends(get_dispatcher),
) -> SendTestMessageResponse:
    """
    Send a message directly, bypassing classification and rate limiting.

    400 when `to` or `text` is missing (including an empty body) or the
    channel is unknown. A provider rejection is reported as 200 with
    success=false.
    """
    request = request or SendTestMessageRequest()
    recipient = str(request.to) if request.to is not None else None

    try:
        result = await send_engagement_message(channel, recipient, request.text, dispatcher)
    except SendRequestValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if result.success:
        message = f"Message sent via {result.channel}"
    else:
        message = f"Message could not be sent via {result.channel}"

    return SendTestMessageResponse(
        success=result.success,
        message=message,
        to=result.recipient,
        text_length=len(request.text),
        error_detail=result.error_detail,
    )


def get_feedback_repository():
    return FeedbackRepository


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_customer_feedback(
    request: FeedbackRequest | None = None,
    repository=Depends(get_feedback_repository),
) -> FeedbackResponse:
    """Store a 1-5 rating for an appointment. 400 on missing fields or a bad rating."""
    request = request or FeedbackRequest()

    try:
        recorded = await submit_feedback(
            request.appointment_id,
            request.user_id,
            request.rating,
            request.comment,
            repository=repository,
        )
    except FeedbackValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except DataUnavailable as e:
        logger.error("Feedback submission failed", error=str(e))
        raise HTTPException(status_code=503, detail="Feedback store unavailable") from e

    return FeedbackResponse(
        message="Feedback received successfully" if recorded else "Feedback already received",
        rating=request.rating,
        recorded=recorded,
    )


@router.post("/telegram/webhook")
async def telegram_webhook(
    update: dict | None = Body(default=None),
    repository=Depends(get_feedback_repository),
    dispatcher: MessagingDispatcher = Depends(get_dispatcher),
) -> dict:
    """
    Telegram bot updates. Handles taps on the feedback rating buttons.

    Always answers 200, including for updates it ignores.
    """
    callback = (update or {}).get("callback_query") or {}
    sender_id = (callback.get("from") or {}).get("id")
    if not callback.get("data") or sender_id is None:
        return {"ok": True, "handled": False}

    reply = await handle_feedback_callback(callback["data"], sender_id, repository=repository)
    if reply is None:
        return {"ok": True, "handled": False}

    chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id", sender_id)
    result = await dispatcher.send(Channel.TELEGRAM, str(chat_id), reply)
    return {"ok": True, "handled": True, "replied": result.success}


@router.get("/status")
async def get_engagement_status() -> dict:
    """Proactive agent status and health."""
    return {
        "proactive_agent": get_proactive_agent_status(),
        "health": proactive_agent_health(),
    }


@router.get("/users/{user_id}/pattern", response_model=VisitPatternResponse)
async def get_user_visit_pattern(user_id: str) -> VisitPatternResponse:
    """Visit pattern over the user's most recent completed appointments."""
    try:
        appointments = await AppointmentRepository.list_appointments(
            user_id, statuses=[AppointmentStatus.COMPLETED], limit=HISTORY_WINDOW
        )
    except DataUnavailable as e:
        logger.error("Pattern lookup failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=503, detail="Appointment store unavailable") from e

    pattern = calculate_visit_pattern(appointments)
    return VisitPatternResponse(
        user_id=user_id,
        average_interval_days=pattern.average_interval_days,
        most_frequent_service_id=pattern.most_frequent_service_id,
        confidence=pattern.confidence,
        sample_count=pattern.sample_count,
        has_prediction=pattern.has_prediction,
    )
