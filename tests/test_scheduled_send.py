from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from conftest import make_active_job, make_document, make_signer, make_user

from ezjobs.infra.email import LoggingEmailSender, SigningRequestEmail
from ezjobs.v1.core.exceptions import ConflictError, NotFoundError, ValidationError
from ezjobs.v1.documents.models import DocumentStatus, SignerStatus, WorkflowType
from ezjobs.v1.infra.jobs.models import JobStatus, utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.scheduling.scheduled_send import (
    ScheduledSendError,
    ScheduledSendHandler,
    ScheduledSendService,
    scheduled_send_key,
)

APP_URL = "https://app.ezsign.test"


@pytest.fixture
def send_queue(queues):
    return queues[QueueName.SCHEDULED_SEND.value]


@pytest.fixture
def service(send_queue, documents) -> ScheduledSendService:
    return ScheduledSendService(send_queue, documents)


@pytest.fixture
def owner(documents):
    user = make_user()
    documents.add(user)
    return user


@pytest.fixture
def document(documents, owner):
    doc = make_document(owner.id)
    documents.add(doc)
    return doc


def in_minutes(minutes: int) -> datetime:
    return utcnow() + timedelta(minutes=minutes)


class FailingEmailSender(LoggingEmailSender):
    """Refuses signing requests to one address."""

    def __init__(self, bad_address: str):
        super().__init__()
        self.bad_address = bad_address

    async def send_signing_request(self, email: SigningRequestEmail) -> None:
        if email.recipient_email == self.bad_address:
            raise ConnectionError("SMTP unavailable")
        await super().send_signing_request(email)


async def test_schedule_creates_delayed_job(service, document, store):
    send_at = in_minutes(30)

    result = await service.schedule_document_send(
        document.id, str(document.user_id), send_at, "Europe/Berlin"
    )

    job = store.jobs[result.job_id]
    assert job.status == JobStatus.DELAYED.value
    assert job.dedupe_key == scheduled_send_key(document.id)
    assert job.max_attempts == 3
    assert job.backoff == {"type": "exponential", "delay_ms": 60000}
    assert job.run_at >= send_at - timedelta(seconds=1)
    assert job.payload["documentId"] == str(document.id)
    assert job.payload["timezone"] == "Europe/Berlin"

    assert document.status == DocumentStatus.SCHEDULED.value
    assert document.scheduled_send_at == send_at
    assert document.scheduled_timezone == "Europe/Berlin"
    assert document.schedule_job_id == str(result.job_id)


async def test_naive_send_time_is_utc(service, document):
    send_at = datetime.now(UTC).replace(tzinfo=None) + timedelta(hours=1)

    await service.schedule_document_send(document.id, "u", send_at)

    assert document.scheduled_send_at.tzinfo is UTC


async def test_reschedule_replaces_pending_job(service, document, store):
    first = await service.schedule_document_send(document.id, "u", in_minutes(30))
    second = await service.schedule_document_send(document.id, "u", in_minutes(90))

    assert second.job_id != first.job_id
    assert list(store.jobs) == [second.job_id]
    assert document.schedule_job_id == str(second.job_id)


async def test_schedule_in_the_past_is_rejected(service, document, store):
    with pytest.raises(ValidationError, match="must be in the future"):
        await service.schedule_document_send(document.id, "u", in_minutes(-1))
    assert store.jobs == {}


async def test_schedule_unknown_document(service):
    with pytest.raises(NotFoundError):
        await service.schedule_document_send(uuid4(), "u", in_minutes(5))


async def test_schedule_conflicts_with_running_send(service, document, store):
    result = await service.schedule_document_send(document.id, "u", in_minutes(5))
    store.jobs[result.job_id].run_at = utcnow()
    await store.claim_job(QueueName.SCHEDULED_SEND.value, "worker-1")

    with pytest.raises(ConflictError, match="being sent"):
        await service.schedule_document_send(document.id, "u", in_minutes(60))


async def test_cancel_removes_job_and_resets_document(service, document, store):
    await service.schedule_document_send(document.id, "u", in_minutes(30))

    assert await service.cancel_scheduled_send(document.id) == 1
    assert store.jobs == {}
    assert document.status == DocumentStatus.DRAFT.value
    assert document.scheduled_send_at is None
    assert document.schedule_job_id is None


async def test_cancel_unknown_document(service):
    with pytest.raises(NotFoundError):
        await service.cancel_scheduled_send(uuid4())


# Handler


def send_job(queue, document, user_id="not-a-uuid"):
    return make_active_job(
        queue,
        JobType.SCHEDULED_SEND.value,
        {
            "documentId": str(document.id),
            "scheduledAt": utcnow().isoformat(),
            "userId": user_id,
        },
    )


async def test_handler_sends_to_every_pending_signer(send_queue, documents, email, owner):
    doc = make_document(owner.id, status=DocumentStatus.SCHEDULED.value)
    signers = [make_signer(doc.id, order) for order in range(3)]
    signers[2].status = SignerStatus.SIGNED.value
    documents.add(doc, *signers)
    handler = ScheduledSendHandler(documents, email, APP_URL)

    result = await handler.handle(send_job(send_queue, doc, str(owner.id)))

    assert result["success"] is True
    assert result["notified"] == 2
    assert result["failed"] == 0
    assert doc.status == DocumentStatus.PENDING.value
    assert doc.scheduled_send_at is None
    assert [e.recipient_email for e in email.sent] == [
        "signer0@example.com",
        "signer1@example.com",
    ]
    assert email.sent[0].signing_url == f"{APP_URL}/sign/{signers[0].access_token}"
    assert email.sent[0].sender_name == "owner"


async def test_sequential_workflow_notifies_first_signer_only(
    send_queue, documents, email, owner
):
    doc = make_document(
        owner.id,
        status=DocumentStatus.SCHEDULED.value,
        workflow_type=WorkflowType.SEQUENTIAL.value,
    )
    documents.add(doc, make_signer(doc.id, 1), make_signer(doc.id, 0))
    handler = ScheduledSendHandler(documents, email, APP_URL)

    result = await handler.handle(send_job(send_queue, doc))

    assert result["notified"] == 1
    assert [e.recipient_email for e in email.sent] == ["signer0@example.com"]


async def test_one_failed_email_does_not_stop_the_others(send_queue, documents, owner):
    doc = make_document(owner.id, status=DocumentStatus.SCHEDULED.value)
    documents.add(doc, make_signer(doc.id, 0), make_signer(doc.id, 1))
    email = FailingEmailSender("signer0@example.com")
    handler = ScheduledSendHandler(documents, email, APP_URL)

    result = await handler.handle(send_job(send_queue, doc))

    assert result["success"] is True
    assert result["notified"] == 1
    assert result["failed"] == 1


async def test_handler_skips_cancelled_schedule(send_queue, documents, email, document):
    handler = ScheduledSendHandler(documents, email, APP_URL)

    result = await handler.handle(send_job(send_queue, document))

    assert result["success"] is False
    assert result["reason"] == "not_scheduled"
    assert email.sent == []


async def test_handler_skips_missing_document(send_queue, documents, email):
    handler = ScheduledSendHandler(documents, email, APP_URL)
    ghost = make_document(uuid4())

    result = await handler.handle(send_job(send_queue, ghost))

    assert result["reason"] == "document_not_found"


async def test_handler_fails_without_signers(send_queue, documents, email, owner):
    doc = make_document(owner.id, status=DocumentStatus.SCHEDULED.value)
    documents.add(doc)
    handler = ScheduledSendHandler(documents, email, APP_URL)

    with pytest.raises(ScheduledSendError, match="No signers"):
        await handler.handle(send_job(send_queue, doc))
    assert doc.status == DocumentStatus.SCHEDULED.value


# Routes


def test_schedule_route(client, documents, owner):
    doc = make_document(owner.id)
    documents.add(doc)
    send_at = in_minutes(45).isoformat()

    response = client.post(
        f"/v1/documents/{doc.id}/schedule",
        json={"send_at": send_at, "timezone": "America/New_York"},
    )

    assert response.status_code == 202
    data = response.json()["data"]
    assert data["document_id"] == str(doc.id)
    assert data["timezone"] == "America/New_York"
    assert doc.status == DocumentStatus.SCHEDULED.value

    response = client.delete(f"/v1/documents/{doc.id}/schedule")
    assert response.status_code == 200
    assert response.json()["data"]["removed"] == 1
    assert doc.status == DocumentStatus.DRAFT.value


def test_schedule_route_rejects_past_time(client, documents, owner):
    doc = make_document(owner.id)
    documents.add(doc)

    response = client.post(
        f"/v1/documents/{doc.id}/schedule", json={"send_at": in_minutes(-10).isoformat()}
    )

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Scheduled time must be in the future"


def test_schedule_route_unknown_document(client):
    response = client.post(
        f"/v1/documents/{uuid4()}/schedule", json={"send_at": in_minutes(10).isoformat()}
    )
    assert response.status_code == 404
