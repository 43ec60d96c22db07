# engagement/models/api/engagement_request.py
"""
Engagement API request models.
"""

from pydantic import BaseModel, ConfigDict, Field


class SendTestMessageRequest(BaseModel):
    """
    Body for the manual send endpoint.

    Both fields are optional at the schema level so a missing value is
    reported as a 400 with a descriptive message instead of a 422.
    """

    to: str | int | None = Field(default=None, description="Phone number or Telegram chat id")
    text: str | None = Field(default=None, description="Message body")


class FeedbackRequest(BaseModel):
    """Rating left by a customer for one appointment. Missing fields are a 400."""

    model_config = ConfigDict(populate_by_name=True)

    appointment_id: str | None = Field(default=None, alias="appointmentId")
    user_id: str | None = Field(default=None, alias="userId")
    rating: int | None = Field(default=None, description="1 to 5")
    comment: str | None = None
