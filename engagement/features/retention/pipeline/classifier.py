"""
Campaign classifier - maps visit recency and contact recency to a bucket.

Stateless: the bucket is re-derived from raw history on every tick, so a
user blocked by the rate limit today is simply picked up again later.
"""

from engagement.features.retention.domain.models import (
    CampaignDecision,
    CampaignType,
    EngagementThresholds,
)


def classify_bucket(
    days_since_last_completed_visit: float | None,
    days_since_last_contact: float | None,
    thresholds: EngagementThresholds,
) -> CampaignType:
    """
    Pick the campaign bucket. First match wins.

    Args:
        days_since_last_completed_visit: None when the user never completed a visit.
        days_since_last_contact: None when the user was never contacted.
        thresholds: Campaign thresholds.
    """
    days = days_since_last_completed_visit
    if days is None or days < 0:
        return CampaignType.NONE

    contacted_since_visit = days_since_last_contact is not None and days_since_last_contact <= days
    if days * 24 <= thresholds.feedback_delay_hours and not contacted_since_visit:
        return CampaignType.FEEDBACK

    if thresholds.rebooking_days <= days < thresholds.winback_days:
        return CampaignType.REBOOKING

    if days >= thresholds.winback_days:
        return CampaignType.WINBACK

    return CampaignType.NONE


def classify_campaign(
    user_id: str,
    days_since_last_completed_visit: float | None,
    days_since_last_contact: float | None,
    thresholds: EngagementThresholds,
) -> CampaignDecision:
    """Bucket the user, then gate on the rate-limit window."""
    campaign_type = classify_bucket(
        days_since_last_completed_visit, days_since_last_contact, thresholds
    )
    outside_window = (
        days_since_last_contact is None or days_since_last_contact >= thresholds.rate_limit_days
    )
    return CampaignDecision(
        user_id=user_id,
        campaign_type=campaign_type,
        eligible=campaign_type != CampaignType.NONE and outside_window,
    )
