# engagement/models/api/engagement_response.py
"""
Engagement API response models.
"""

from pydantic import BaseModel, ConfigDict, Field


class SendTestMessageResponse(BaseModel):
    """Outcome of a manual send. success=false means the provider rejected it."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    to: str
    text_length: int = Field(..., alias="textLength")
    error_detail: str | None = Field(default=None, alias="errorDetail")


class SendUsageResponse(BaseModel):
    endpoint: str
    description: str
    body: dict
    example: str


class VisitPatternResponse(BaseModel):
    user_id: str
    average_interval_days: float | None
    most_frequent_service_id: str | None
    confidence: float
    sample_count: int
    has_prediction: bool


class FeedbackResponse(BaseModel):
    message: str
    rating: int
    recorded: bool
