"""create job, dead letter, webhook and reminder tables

Revision ID: 3b7c1e9a4d20
Revises:
Create Date: 2026-10-18 09:12:41.318204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "queue_name", sa.Text, nullable=False, comment="Named queue this job belongs to"
        ),
        sa.Column("job_type", sa.Text, nullable=False, comment="Payload variant tag"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            server_default="{}",
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="waiting",
            comment="Job status: waiting|delayed|active|completed|failed",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="5",
            comment="Priority 1-10, lower is higher priority",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run job",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Number of attempts started",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Attempts before dead-lettering",
        ),
        sa.Column(
            "backoff", sa.JSON, nullable=True, comment="Backoff config used between attempts"
        ),
        sa.Column(
            "dedupe_key",
            sa.Text,
            nullable=True,
            comment="Key shared by at most one live job per queue",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that holds the lease"
        ),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last worker heartbeat",
        ),
        # Results and progress
        sa.Column(
            "progress",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Progress percentage",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result"),
        sa.Column("error", sa.Text, nullable=True, comment="Last failure message"),
        sa.Column("error_stack", sa.Text, nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "processed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Start of the latest attempt",
        ),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('waiting', 'delayed', 'active', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="jobs_priority_check"),
    )

    # Claim: next runnable job of a queue by priority, then run_at
    op.create_index(
        "ix_jobs_claim",
        "jobs",
        ["queue_name", "status", "priority", "run_at"],
        postgresql_where=sa.text("status IN ('waiting', 'delayed')"),
    )
    # Stall recovery scans active jobs by heartbeat
    op.create_index(
        "ix_jobs_active_heartbeat",
        "jobs",
        ["queue_name", "heartbeat_at"],
        postgresql_where=sa.text("status = 'active'"),
    )
    # Retention pruning by finish time
    op.create_index("ix_jobs_finished", "jobs", ["queue_name", "status", "finished_at"])
    # Deduplication against live jobs
    op.create_index(
        "ix_jobs_dedupe_key",
        "jobs",
        ["queue_name", "dedupe_key"],
        postgresql_where=sa.text(
            "dedupe_key IS NOT NULL AND status IN ('waiting', 'delayed', 'active')"
        ),
    )

    op.create_table(
        "repeatable_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("queue_name", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("cron", sa.Text, nullable=True),
        sa.Column("every_ms", sa.Integer, nullable=True),
        sa.Column("payload", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("priority", sa.SmallInteger, nullable=False, server_default="5"),
        sa.Column("next_run_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("queue_name", "name", name="repeatable_jobs_queue_name_key"),
        sa.CheckConstraint(
            "(cron IS NOT NULL) <> (every_ms IS NOT NULL)",
            name="repeatable_jobs_schedule_check",
        ),
    )
    op.create_index("ix_repeatable_jobs_next_run", "repeatable_jobs", ["next_run_at"])

    op.create_table(
        "dead_letter_queue",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("source_queue", sa.Text, nullable=False),
        sa.Column("original_job_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("job_type", sa.Text, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("error", sa.Text, nullable=False),
        sa.Column("error_stack", sa.Text, nullable=True),
        sa.Column("attempts_made", sa.SmallInteger, nullable=False),
        sa.Column("max_attempts", sa.SmallInteger, nullable=False),
        sa.Column("backoff", sa.JSON, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column(
            "moved_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("retried_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("retried_job_id", sa.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'retried', 'discarded')",
            name="dead_letter_queue_status_check",
        ),
    )
    op.create_index(
        "ix_dead_letter_queue_source_status",
        "dead_letter_queue",
        ["source_queue", "status", "moved_at"],
    )
    op.create_index(
        "ix_dead_letter_queue_status_updated",
        "dead_letter_queue",
        ["status", "updated_at"],
    )

    op.create_table(
        "webhooks",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.Text, nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("secret", sa.Text, nullable=False),
        sa.Column("events", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_webhooks_owner_id", "webhooks", ["owner_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "webhook_id",
            sa.UUID(as_uuid=True),
            sa.ForeignKey("webhooks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("attempts", sa.SmallInteger, nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("response_status", sa.Integer, nullable=True),
        sa.Column("response_body", sa.Text, nullable=True),
        sa.Column("response_time_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'delivered', 'failed')",
            name="webhook_events_status_check",
        ),
    )
    op.create_index(
        "ix_webhook_events_webhook_created", "webhook_events", ["webhook_id", "created_at"]
    )
    op.create_index(
        "ix_webhook_events_status_retry", "webhook_events", ["status", "next_retry_at"]
    )

    op.create_table(
        "document_reminders",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("document_id", sa.UUID(as_uuid=True), nullable=False),
        sa.Column("signer_id", sa.UUID(as_uuid=True), nullable=True),
        sa.Column("reminder_type", sa.Text, nullable=False),
        sa.Column("scheduled_for", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("job_id", sa.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_document_reminders_document", "document_reminders", ["document_id"]
    )
    op.create_index("ix_document_reminders_signer", "document_reminders", ["signer_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_document_reminders_signer", table_name="document_reminders")
    op.drop_index("ix_document_reminders_document", table_name="document_reminders")
    op.drop_table("document_reminders")

    op.drop_index("ix_webhook_events_status_retry", table_name="webhook_events")
    op.drop_index("ix_webhook_events_webhook_created", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_webhooks_owner_id", table_name="webhooks")
    op.drop_table("webhooks")

    op.drop_index("ix_dead_letter_queue_status_updated", table_name="dead_letter_queue")
    op.drop_index("ix_dead_letter_queue_source_status", table_name="dead_letter_queue")
    op.drop_table("dead_letter_queue")

    op.drop_index("ix_repeatable_jobs_next_run", table_name="repeatable_jobs")
    op.drop_table("repeatable_jobs")

    op.drop_index("ix_jobs_dedupe_key", table_name="jobs")
    op.drop_index("ix_jobs_finished", table_name="jobs")
    op.drop_index("ix_jobs_active_heartbeat", table_name="jobs")
    op.drop_index("ix_jobs_claim", table_name="jobs")
    op.drop_table("jobs")
