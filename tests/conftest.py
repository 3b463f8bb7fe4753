import asyncio
import time
from collections.abc import Callable, Generator
from datetime import timedelta
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

import httpx
import pytest
from fastapi.testclient import TestClient

from ezjobs.config.settings import AuthMode, JobStoreBackend, Settings, get_settings
from ezjobs.context import AppContext, build_context
from ezjobs.infra.email import LoggingEmailSender
from ezjobs.infra.storage import LocalStorage
from ezjobs.main import create_app
from ezjobs.v1.documents.gateway import MemoryDocumentGateway
from ezjobs.v1.documents.models import (
    Document,
    DocumentStatus,
    Signer,
    SignerStatus,
    User,
)
from ezjobs.v1.infra.jobs.models import Job, JobStatus, utcnow
from ezjobs.v1.infra.jobs.queue import Queue
from ezjobs.v1.infra.jobs.registry_init import build_queues
from ezjobs.v1.infra.jobs.store import MemoryJobStore, new_dead_letter
from ezjobs.v1.infra.jobs.worker import ActiveJob, PoolTimings


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for an in-memory job store rooted in a temp directory."""
    return Settings(
        _env_file=None,
        job_store_backend=JobStoreBackend.MEMORY,
        auth_mode=AuthMode.NONE,
        storage_path=str(tmp_path / "uploads"),
        run_workers=False,
        job_poll_interval_ms=10,
        scheduler_poll_interval_s=0.05,
        shutdown_grace_s=1.0,
    )


@pytest.fixture
def store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
def queues(store, settings) -> dict[str, Queue]:
    return build_queues(store, settings)


@pytest.fixture
def documents() -> MemoryDocumentGateway:
    return MemoryDocumentGateway()


@pytest.fixture
def email() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def storage(settings) -> LocalStorage:
    return LocalStorage(settings.storage_path)


@pytest.fixture
def webhook_responses() -> list[httpx.Response]:
    """Responses served, in order, to outbound webhook POSTs (default 200)."""
    return []


@pytest.fixture
def webhook_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def http_client(webhook_responses, webhook_requests) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        if webhook_responses:
            return webhook_responses.pop(0)
        return httpx.Response(200, text="ok")

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def ctx(settings, documents, email, storage, http_client) -> AppContext:
    """Application context wired to in-memory stores."""
    return build_context(
        settings,
        http_client=http_client,
        documents=documents,
        email=email,
        storage=storage,
    )


@pytest.fixture
def app(ctx, settings):
    """FastAPI application serving the in-memory context."""
    app = create_app(context=ctx)
    app.dependency_overrides[get_settings] = lambda: settings

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def member_headers():
    """Headers of a caller without admin rights."""
    return {"X-Roles": "member"}


@pytest.fixture
def fast_timings() -> PoolTimings:
    return PoolTimings(
        poll_interval_s=0.01,
        lease_timeout_s=30,
        heartbeat_interval_s=0.05,
        stalled_check_interval_s=60,
        maintenance_interval_s=60,
        error_backoff_s=0.01,
    )


async def wait_until(predicate: Callable[[], Any], timeout: float = 5.0) -> None:
    """Poll ``predicate`` (sync or async) until truthy or fail the test."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        await asyncio.sleep(0.01)
    pytest.fail("Condition not met before timeout")


def make_active_job(queue: Queue, job_type: str, payload: dict[str, Any]) -> ActiveJob:
    """An ActiveJob for calling a handler directly, outside a worker pool."""
    return ActiveJob(
        id=uuid4(),
        queue_name=queue.name,
        job_type=job_type,
        payload=queue.parse_payload(job_type, payload),
        attempts=1,
        max_attempts=3,
        _pool=SimpleNamespace(store=queue.store),
    )


def make_user(**overrides) -> User:
    fields = {"id": uuid4(), "email": "owner@example.com", "name": "Olivia Owner"}
    fields.update(overrides)
    return User(**fields)


def make_document(user_id: UUID, **overrides) -> Document:
    fields = {
        "id": uuid4(),
        "user_id": user_id,
        "title": "Lease Agreement",
        "status": DocumentStatus.DRAFT.value,
        "workflow_type": None,
        "file_path": None,
        "expires_at": None,
        "reminder_settings": None,
        "updated_at": utcnow(),
    }
    fields.update(overrides)
    return Document(**fields)


def make_signer(document_id: UUID, order: int = 0, **overrides) -> Signer:
    fields = {
        "id": uuid4(),
        "document_id": document_id,
        "email": f"signer{order}@example.com",
        "name": f"Signer {order}",
        "signing_order": order,
        "status": SignerStatus.PENDING.value,
        "access_token": f"token-{order}-{uuid4().hex[:8]}",
        "updated_at": utcnow(),
    }
    fields.update(overrides)
    return Signer(**fields)


def seed_dead_letter(
    store: MemoryJobStore,
    queue_name: str = "email",
    job_type: str = "SEND_EMAIL",
    payload: dict[str, Any] | None = None,
    moved_ago: timedelta = timedelta(0),
):
    """Insert a failed job and its dead letter entry without running a worker."""
    now = utcnow() - moved_ago
    job = Job(
        id=uuid4(),
        queue_name=queue_name,
        job_type=job_type,
        payload=payload
        or {"to": "a@example.com", "subject": "Hello", "html": "<p>Hi</p>"},
        status=JobStatus.FAILED.value,
        priority=5,
        run_at=now,
        attempts=3,
        max_attempts=3,
        backoff={"type": "exponential", "delay_ms": 1000},
        progress=0,
        created_at=now,
        updated_at=now,
        finished_at=now,
    )
    store.jobs[job.id] = job
    entry = new_dead_letter(job, "SMTP unavailable", None)
    entry.moved_at = now
    entry.updated_at = now
    store.dead_letters[entry.id] = entry
    return entry
