"""
Dead letter queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DeadLetterResponse(BaseModel):
    """Schema for dead letter entry API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source_queue: str
    original_job_id: UUID
    job_type: str
    payload: dict[str, Any]
    error: str
    error_stack: str | None = None
    attempts_made: int
    max_attempts: int
    status: str
    moved_at: datetime
    retried_at: datetime | None = None
    retried_job_id: UUID | None = None
    updated_at: datetime


class DeadLetterListResponse(BaseModel):
    entries: list[DeadLetterResponse]
    total: int
    limit: int
    offset: int


class DeadLetterStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_queue: dict[str, int]
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None


class BatchRequest(BaseModel):
    """Schema for batch retry/discard requests."""

    ids: list[str] = Field(..., min_length=1, max_length=50)


class RetryResult(BaseModel):
    success: bool
    job_id: UUID | None = None
    error: str | None = None


class CleanupRequest(BaseModel):
    older_than_days: int = Field(default=30, ge=1, le=3650)
