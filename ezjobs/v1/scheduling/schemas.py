"""
Scheduling Pydantic schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ScheduleSendRequest(BaseModel):
    """Schema for scheduling a document send."""

    send_at: datetime = Field(..., description="When to send; naive values are UTC")
    timezone: str | None = Field(
        default=None, description="Sender's IANA timezone, kept for display"
    )


class ReminderResponse(BaseModel):
    id: str
    signer_id: str | None
    reminder_type: str
    scheduled_for: datetime
    job_id: str | None
