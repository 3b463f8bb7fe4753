"""
Typed job payloads.

Every queue accepts a closed set of job types; each job type maps to exactly
one payload model. Payloads are stored as camelCase JSON.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class QueueName(str, Enum):
    EMAIL = "email"
    PDF_PROCESSING = "pdf-processing"
    WEBHOOK_DELIVERY = "webhook-delivery"
    CLEANUP = "cleanup"
    SCHEDULED_SEND = "scheduled-send"
    DEADLINE_REMINDERS = "deadline-reminders"


class JobType(str, Enum):
    SEND_EMAIL = "SEND_EMAIL"
    GENERATE_THUMBNAIL = "GENERATE_THUMBNAIL"
    OPTIMIZE_PDF = "OPTIMIZE_PDF"
    FLATTEN_PDF = "FLATTEN_PDF"
    ADD_WATERMARK = "ADD_WATERMARK"
    MERGE_PDFS = "MERGE_PDFS"
    WEBHOOK_DELIVERY = "WEBHOOK_DELIVERY"
    WEBHOOK_RETRY_SWEEP = "WEBHOOK_RETRY_SWEEP"
    SCHEDULED_SEND = "SCHEDULED_SEND"
    DEADLINE_REMINDER = "DEADLINE_REMINDER"
    CLEANUP = "CLEANUP"


class JobPayload(BaseModel):
    """Base for payload models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SendEmailPayload(JobPayload):
    to: str
    subject: str
    html: str
    text: str | None = None


class ThumbnailPayload(JobPayload):
    document_id: str
    file_path: str
    max_width: int | None = Field(default=None, gt=0)
    max_height: int | None = Field(default=None, gt=0)


class OptimizePdfPayload(JobPayload):
    document_id: str
    file_path: str


class FlattenPdfPayload(JobPayload):
    document_id: str
    file_path: str


class WatermarkPayload(JobPayload):
    document_id: str
    file_path: str
    watermark_text: str
    options: dict[str, Any] | None = None


class MergePdfsPayload(JobPayload):
    document_ids: list[str] = Field(min_length=1)
    file_paths: list[str] = Field(min_length=2)
    output_path: str


class WebhookDeliveryPayload(JobPayload):
    event_id: str


class WebhookRetrySweepPayload(JobPayload):
    limit: int = Field(default=100, ge=1, le=1000)


class ScheduledSendPayload(JobPayload):
    document_id: str
    scheduled_at: str
    user_id: str
    timezone: str | None = None


class ReminderType(str, Enum):
    ONE_DAY = "1_day"
    THREE_DAY = "3_day"
    SEVEN_DAY = "7_day"
    CUSTOM = "custom"
    OWNER = "owner"


class DeadlineReminderPayload(JobPayload):
    document_id: str
    signer_id: str | None = None
    reminder_type: ReminderType
    reminder_id: str


class CleanupType(str, Enum):
    TEMP_FILES = "temp_files"
    ORPHANED_DOCUMENTS = "orphaned_documents"
    ORPHANED_SIGNATURES = "orphaned_signatures"
    FULL_CLEANUP = "full_cleanup"


class CleanupPayload(JobPayload):
    type: CleanupType
    max_age_hours: int | None = Field(default=None, gt=0)


QUEUE_PAYLOADS: dict[QueueName, dict[JobType, type[JobPayload]]] = {
    QueueName.EMAIL: {JobType.SEND_EMAIL: SendEmailPayload},
    QueueName.PDF_PROCESSING: {
        JobType.GENERATE_THUMBNAIL: ThumbnailPayload,
        JobType.OPTIMIZE_PDF: OptimizePdfPayload,
        JobType.FLATTEN_PDF: FlattenPdfPayload,
        JobType.ADD_WATERMARK: WatermarkPayload,
        JobType.MERGE_PDFS: MergePdfsPayload,
    },
    QueueName.WEBHOOK_DELIVERY: {
        JobType.WEBHOOK_DELIVERY: WebhookDeliveryPayload,
        JobType.WEBHOOK_RETRY_SWEEP: WebhookRetrySweepPayload,
    },
    QueueName.CLEANUP: {JobType.CLEANUP: CleanupPayload},
    QueueName.SCHEDULED_SEND: {JobType.SCHEDULED_SEND: ScheduledSendPayload},
    QueueName.DEADLINE_REMINDERS: {JobType.DEADLINE_REMINDER: DeadlineReminderPayload},
}
