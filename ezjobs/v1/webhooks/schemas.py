"""
Webhook Pydantic schemas.
"""

from pydantic import BaseModel, Field


class WebhookCreate(BaseModel):
    """Schema for creating a webhook subscription."""

    url: str = Field(..., description="Endpoint receiving POSTed events")
    events: list[str] = Field(
        ..., min_length=1, description="Event types to receive; '*' for all"
    )
    secret: str | None = Field(
        default=None, description="Signing secret; generated when omitted"
    )
    active: bool = True


class WebhookUpdate(BaseModel):
    url: str | None = None
    events: list[str] | None = Field(default=None, min_length=1)
    active: bool | None = None


class WebhookTriggerRequest(BaseModel):
    """Schema for manually triggering an event, used to test an endpoint."""

    event_type: str = Field(..., min_length=1)
    payload: dict = Field(default_factory=dict)
