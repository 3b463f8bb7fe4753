"""
Application context: every store, queue and service of one process.

Built once at startup and passed explicitly (FastAPI ``app.state``, the CLI,
tests). Nothing in the job system reaches for module-level singletons.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from ezjobs.config.settings import JobStoreBackend, Settings
from ezjobs.infra.database import Database
from ezjobs.infra.email import EmailSender, LoggingEmailSender
from ezjobs.infra.pdf import PassthroughPdfService, PdfService
from ezjobs.infra.shutdown import ShutdownManager
from ezjobs.infra.storage import LocalStorage
from ezjobs.v1.cleanup.service import CleanupService
from ezjobs.v1.documents.gateway import DocumentGateway, MemoryDocumentGateway
from ezjobs.v1.documents.sql_gateway import SqlDocumentGateway
from ezjobs.v1.email.jobs import EmailJobService
from ezjobs.v1.infra.dlq.service import DeadLetterQueueService
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.registry_init import build_queues, build_worker_pools
from ezjobs.v1.infra.jobs.scheduler import RepeatableScheduler
from ezjobs.v1.infra.jobs.schedules import (
    register_cleanup_schedules,
    register_webhook_schedules,
)
from ezjobs.v1.infra.jobs.service import JobService
from ezjobs.v1.infra.jobs.sql_store import SqlJobStore
from ezjobs.v1.infra.jobs.store import JobStore, MemoryJobStore
from ezjobs.v1.infra.jobs.worker import WorkerPool
from ezjobs.v1.pdf.service import PdfJobService
from ezjobs.v1.scheduling.reminders import ReminderService
from ezjobs.v1.scheduling.scheduled_send import ScheduledSendService
from ezjobs.v1.webhooks.delivery import WebhookDeliveryService
from ezjobs.v1.webhooks.service import WebhookService
from ezjobs.v1.webhooks.sql_store import SqlWebhookStore
from ezjobs.v1.webhooks.store import MemoryWebhookStore, WebhookStore

logger = logging.getLogger(__name__)

# Shutdown order: intake first, then workers, then shared connections.
SCHEDULER_SHUTDOWN_PRIORITY = 30
POOL_SHUTDOWN_PRIORITY = 20
CONNECTION_SHUTDOWN_PRIORITY = 0


@dataclass
class AppContext:
    settings: Settings
    store: JobStore
    webhook_store: WebhookStore
    documents: DocumentGateway
    email: EmailSender
    storage: LocalStorage
    pdf: PdfService
    http_client: httpx.AsyncClient
    database: Database | None = None

    queues: dict[str, Queue] = field(init=False)
    dlq: DeadLetterQueueService = field(init=False)
    jobs: JobService = field(init=False)
    webhooks: WebhookService = field(init=False)
    delivery: WebhookDeliveryService = field(init=False)
    scheduled_send: ScheduledSendService = field(init=False)
    reminders: ReminderService = field(init=False)
    cleanup: CleanupService = field(init=False)
    pdf_jobs: PdfJobService = field(init=False)
    email_jobs: EmailJobService = field(init=False)

    pools: dict[str, WorkerPool] = field(init=False, default_factory=dict)
    scheduler: RepeatableScheduler | None = field(init=False, default=None)
    shutdown: ShutdownManager = field(init=False)

    def __post_init__(self) -> None:
        settings = self.settings
        self.queues = build_queues(self.store, settings)
        self.dlq = DeadLetterQueueService(self.store, self.queues)
        self.jobs = JobService(self.store, self.queues)
        self.webhooks = WebhookService(
            self.webhook_store, self.queue(QueueName.WEBHOOK_DELIVERY)
        )
        self.dlq.register_retry_hook(
            JobType.WEBHOOK_DELIVERY.value, self.webhooks.reset_for_job_retry
        )
        self.delivery = WebhookDeliveryService(
            self.webhook_store,
            self.http_client,
            timeout_s=settings.webhook_timeout_s,
            max_attempts=settings.webhook_max_attempts,
            user_agent=settings.webhook_user_agent,
        )
        self.scheduled_send = ScheduledSendService(
            self.queue(QueueName.SCHEDULED_SEND), self.documents
        )
        self.reminders = ReminderService(
            self.queue(QueueName.DEADLINE_REMINDERS), self.documents
        )
        self.cleanup = CleanupService(
            self.storage,
            self.documents,
            self.webhooks,
            self.dlq,
            webhook_event_retention_days=settings.webhook_event_retention_days,
            dlq_retention_days=settings.dlq_retention_days,
        )
        self.pdf_jobs = PdfJobService(self.queue(QueueName.PDF_PROCESSING))
        self.email_jobs = EmailJobService(self.queue(QueueName.EMAIL))

        self.shutdown = ShutdownManager(timeout_s=settings.shutdown_grace_s + 5)
        self.shutdown.register(
            "http-client", self.http_client.aclose, CONNECTION_SHUTDOWN_PRIORITY
        )
        if self.database is not None:
            self.shutdown.register(
                "database", self.database.close, CONNECTION_SHUTDOWN_PRIORITY
            )

    def queue(self, name: QueueName | str) -> Queue:
        return self.queues[getattr(name, "value", name)]

    async def register_schedules(self) -> None:
        await register_cleanup_schedules(self.queue(QueueName.CLEANUP))
        await register_webhook_schedules(
            self.queue(QueueName.WEBHOOK_DELIVERY),
            every_ms=self.settings.webhook_sweep_interval_ms,
        )

    async def start_workers(self, queue_names: list[str] | None = None) -> None:
        """Register schedules, then start the scheduler and worker pools."""
        if self.pools:
            raise RuntimeError("Workers are already running")

        await self.register_schedules()
        pools = build_worker_pools(self)
        if queue_names:
            pools = {name: pool for name, pool in pools.items() if name in queue_names}

        self.scheduler = RepeatableScheduler(
            self.store, self.queues, self.settings.scheduler_poll_interval_s
        )
        self.scheduler.start()
        self.shutdown.register(
            "repeatable-scheduler", self.scheduler.stop, SCHEDULER_SHUTDOWN_PRIORITY
        )

        for pool in pools.values():
            pool.start()
        self.pools = pools
        # Pools drain side by side so one grace period bounds them all.
        self.shutdown.register("worker-pools", self.stop_pools, POOL_SHUTDOWN_PRIORITY)
        logger.info("Workers started", extra={"queues": sorted(pools)})

    async def stop_pools(self) -> None:
        grace = self.settings.shutdown_grace_s
        pools = list(self.pools.values())
        results = await asyncio.gather(
            *(pool.stop(grace) for pool in pools), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, Exception)]
        for pool, result in zip(pools, results):
            if isinstance(result, Exception):
                logger.error(
                    "Worker pool failed to stop",
                    extra={"queue": pool.name, "error": str(result)},
                )
        if errors:
            raise errors[0]

    async def close(self, reason: str = "shutdown") -> bool:
        return await self.shutdown.shutdown(reason)

    async def health(self) -> dict:
        """Store reachability and pool states."""
        try:
            await self.store.ping()
            store_ok, store_error = True, None
        except Exception as e:
            store_ok, store_error = False, str(e)
        return {
            "store": {
                "backend": self.settings.job_store_backend.value,
                "connected": store_ok,
                "error": store_error,
            },
            "pools": [pool.describe() for pool in self.pools.values()],
            "scheduler_running": bool(self.scheduler and self.scheduler.running),
        }


def build_context(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    documents: DocumentGateway | None = None,
    email: EmailSender | None = None,
    pdf: PdfService | None = None,
    storage: LocalStorage | None = None,
) -> AppContext:
    """Build stores for the configured backend and wire every service."""
    database = None
    if settings.job_store_backend == JobStoreBackend.DATABASE:
        database = Database(settings)
        store: JobStore = SqlJobStore(database)
        webhook_store: WebhookStore = SqlWebhookStore(database)
        documents = documents or SqlDocumentGateway(database)
    else:
        store = MemoryJobStore()
        webhook_store = MemoryWebhookStore()
        documents = documents or MemoryDocumentGateway()

    return AppContext(
        settings=settings,
        store=store,
        webhook_store=webhook_store,
        documents=documents,
        email=email or LoggingEmailSender(),
        storage=storage or LocalStorage(settings.storage_path),
        pdf=pdf or PassthroughPdfService(),
        http_client=http_client or httpx.AsyncClient(),
        database=database,
    )
