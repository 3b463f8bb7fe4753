"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobStatusResponse(BaseModel):
    """Status snapshot of one job, shaped for polling clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    queue: str
    type: str
    status: str
    progress: int = 0
    attempts: int
    max_attempts: int = Field(serialization_alias="maxAttempts")
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime = Field(serialization_alias="createdAt")
    processed_at: datetime | None = Field(default=None, serialization_alias="processedAt")
    finished_at: datetime | None = Field(default=None, serialization_alias="finishedAt")


class QueueMetrics(BaseModel):
    """Job counts for one queue."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class MetricsResponse(BaseModel):
    queues: dict[str, QueueMetrics]
    totals: QueueMetrics
    dead_letter_pending: int = 0
