import json
from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
from conftest import make_active_job, wait_until

from ezjobs.v1.infra.jobs.models import utcnow
from ezjobs.v1.infra.jobs.payloads import JobType, QueueName
from ezjobs.v1.webhooks.delivery import (
    DeliveryOutcome,
    WebhookDeliveryError,
    WebhookDeliveryService,
    is_retryable_status,
)
from ezjobs.v1.webhooks.handlers import WebhookDeliveryHandler
from ezjobs.v1.webhooks.models import WebhookDeliveryEvent, WebhookEventStatus
from ezjobs.v1.webhooks.service import WebhookService
from ezjobs.v1.webhooks.signing import canonical_json, verify_signature
from ezjobs.v1.webhooks.store import MemoryWebhookStore

OWNER = "owner-1"


@pytest.fixture
def settings(settings):
    """Job-level retries within milliseconds so pools reach the DLQ quickly."""
    return settings.model_copy(update={"job_backoff_base_ms": 1})


@pytest.fixture
def webhook_store() -> MemoryWebhookStore:
    return MemoryWebhookStore()


@pytest.fixture
def webhook_queue(queues):
    return queues[QueueName.WEBHOOK_DELIVERY.value]


@pytest.fixture
def webhooks(webhook_store, webhook_queue) -> WebhookService:
    return WebhookService(webhook_store, webhook_queue)


@pytest.fixture
def delivery(webhook_store, http_client) -> WebhookDeliveryService:
    return WebhookDeliveryService(webhook_store, http_client, max_attempts=5)


@pytest.fixture
async def subscription(webhooks):
    return await webhooks.create_subscription(
        OWNER, "https://hooks.example.com/ezsign", ["document.completed"]
    )


@pytest.fixture
async def event_id(webhooks, subscription):
    (event_id,) = await webhooks.trigger(
        OWNER, "document.completed", {"documentId": "doc-1"}
    )
    return event_id


async def test_successful_delivery(delivery, webhook_store, event_id, webhook_requests):
    outcome = await delivery.process_event(event_id)

    assert outcome == DeliveryOutcome.DELIVERED
    event = await webhook_store.get_event(event_id)
    assert event.status == WebhookEventStatus.DELIVERED.value
    assert event.attempts == 1
    assert event.response_status == 200
    assert event.response_body == "ok"
    assert event.next_retry_at is None
    assert len(webhook_requests) == 1


async def test_request_is_signed(delivery, subscription, event_id, webhook_requests):
    await delivery.process_event(event_id)

    (request,) = webhook_requests
    assert str(request.url) == "https://hooks.example.com/ezsign"
    assert request.headers["X-EzSign-Event"] == "document.completed"
    assert request.headers["X-EzSign-Delivery-ID"] == str(event_id)
    assert request.headers["User-Agent"] == "EzSign-Webhooks/1.0"
    assert request.headers["X-EzSign-Signature"].startswith("sha256=")

    timestamp = int(request.headers["X-EzSign-Timestamp"])
    signature = request.headers["X-EzSign-Signature"]
    assert verify_signature(subscription.secret, timestamp, request.content, signature)
    assert not verify_signature("whsec_wrong", timestamp, request.content, signature)
    assert not verify_signature(subscription.secret, timestamp + 1, request.content, signature)


async def test_body_is_the_event_envelope(delivery, event_id, webhook_requests):
    await delivery.process_event(event_id)

    body = json.loads(webhook_requests[0].content)
    assert body["id"] == str(event_id)
    assert body["event"] == "document.completed"
    assert body["data"] == {"documentId": "doc-1"}
    assert webhook_requests[0].content == canonical_json(body)


async def test_server_errors_are_retried_until_delivered(
    delivery, webhook_store, event_id, webhook_responses
):
    webhook_responses.extend(httpx.Response(500, text="down") for _ in range(3))

    outcomes = [await delivery.process_event(event_id) for _ in range(4)]

    assert outcomes == [DeliveryOutcome.RETRY_SCHEDULED] * 3 + [DeliveryOutcome.DELIVERED]
    event = await webhook_store.get_event(event_id)
    assert event.attempts == 4
    assert event.status == WebhookEventStatus.DELIVERED.value
    assert event.error_message is None


async def test_failed_attempt_schedules_first_ladder_step(
    delivery, webhook_store, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(503))
    before = utcnow()

    await delivery.process_event(event_id)

    event = await webhook_store.get_event(event_id)
    assert event.status == WebhookEventStatus.PENDING.value
    assert event.error_message == "HTTP 503"
    assert before + timedelta(seconds=59) <= event.next_retry_at
    assert event.next_retry_at <= utcnow() + timedelta(seconds=61)


async def test_client_error_fails_without_retry(
    delivery, webhook_store, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(404, text="no such hook"))

    outcome = await delivery.process_event(event_id)

    assert outcome == DeliveryOutcome.FAILED
    event = await webhook_store.get_event(event_id)
    assert event.status == WebhookEventStatus.FAILED.value
    assert event.attempts == 1
    assert event.next_retry_at is None
    assert event.response_body == "no such hook"


async def test_attempts_are_capped(webhook_store, http_client, event_id, webhook_responses):
    delivery = WebhookDeliveryService(webhook_store, http_client, max_attempts=2)
    webhook_responses.extend([httpx.Response(500), httpx.Response(500)])

    assert await delivery.process_event(event_id) == DeliveryOutcome.RETRY_SCHEDULED
    assert await delivery.process_event(event_id) == DeliveryOutcome.FAILED
    assert (await webhook_store.get_event(event_id)).attempts == 2


async def test_response_body_is_truncated(
    delivery, webhook_store, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(200, text="x" * 5000))

    await delivery.process_event(event_id)

    assert len((await webhook_store.get_event(event_id)).response_body) == 1000


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (httpx.ConnectError("[Errno 111] Connection refused"), "Connection refused"),
        (
            httpx.ConnectError("[Errno -2] Name or service not known"),
            "DNS resolution failed - hostname not found",
        ),
        (httpx.ReadTimeout("timed out"), "Request timeout after 10 seconds"),
    ],
)
async def test_transport_errors_are_described_and_retried(
    webhook_store, event_id, error, message
):
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        delivery = WebhookDeliveryService(webhook_store, client)
        outcome = await delivery.process_event(event_id)

    assert outcome == DeliveryOutcome.RETRY_SCHEDULED
    event = await webhook_store.get_event(event_id)
    assert event.error_message == message
    assert event.response_status is None


async def test_missing_or_delivered_events_are_skipped(delivery, event_id, webhook_requests):
    assert await delivery.process_event(uuid4()) == DeliveryOutcome.SKIPPED

    await delivery.process_event(event_id)
    assert await delivery.process_event(event_id) == DeliveryOutcome.SKIPPED
    assert len(webhook_requests) == 1


@pytest.mark.parametrize(
    ("status_code", "retryable"),
    [(None, True), (408, True), (429, True), (500, True), (599, True),
     (400, False), (401, False), (404, False), (410, False)],
)
def test_retryable_statuses(status_code, retryable):
    assert is_retryable_status(status_code) is retryable


async def test_handler_reports_outcome(delivery, webhook_queue, event_id):
    handler = WebhookDeliveryHandler(delivery)
    job = make_active_job(
        webhook_queue, JobType.WEBHOOK_DELIVERY.value, {"eventId": str(event_id)}
    )

    result = await handler.handle(job)

    assert result == {"eventId": str(event_id), "outcome": "delivered"}


async def test_handler_completes_job_when_retry_is_scheduled(
    delivery, webhook_queue, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(502))
    handler = WebhookDeliveryHandler(delivery)
    job = make_active_job(
        webhook_queue, JobType.WEBHOOK_DELIVERY.value, {"eventId": str(event_id)}
    )

    result = await handler.handle(job)

    assert result["outcome"] == "retry_scheduled"


async def test_handler_raises_on_terminal_failure(
    delivery, webhook_queue, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(410))
    handler = WebhookDeliveryHandler(delivery)
    job = make_active_job(
        webhook_queue, JobType.WEBHOOK_DELIVERY.value, {"eventId": str(event_id)}
    )

    with pytest.raises(WebhookDeliveryError, match="HTTP 410"):
        await handler.handle(job)


async def test_failed_event_is_not_resent(
    delivery, webhook_store, event_id, webhook_responses, webhook_requests
):
    webhook_responses.append(httpx.Response(400))
    assert await delivery.process_event(event_id) == DeliveryOutcome.FAILED

    assert await delivery.process_event(event_id) == DeliveryOutcome.FAILED

    assert len(webhook_requests) == 1
    event = await webhook_store.get_event(event_id)
    assert event.attempts == 1
    assert event.status == WebhookEventStatus.FAILED.value


async def test_begin_attempt_only_accepts_pending_events(
    delivery, webhook_store, event_id, webhook_responses
):
    webhook_responses.append(httpx.Response(400))
    await delivery.process_event(event_id)

    assert await webhook_store.begin_attempt(event_id) is None
    assert (await webhook_store.get_event(event_id)).attempts == 1


async def test_rejected_event_reaches_dead_letter_queue_after_one_post(
    ctx, webhook_responses, webhook_requests
):
    webhook_responses.extend(httpx.Response(400) for _ in range(5))
    await ctx.webhooks.create_subscription(
        OWNER, "https://hooks.example.com/ezsign", ["document.completed"]
    )
    (event_id,) = await ctx.webhooks.trigger(OWNER, "document.completed", {})

    await ctx.start_workers([QueueName.WEBHOOK_DELIVERY.value])
    try:
        await wait_until(lambda: ctx.store.dead_letters)
    finally:
        await ctx.close()

    (entry,) = ctx.store.dead_letters.values()
    assert entry.job_type == JobType.WEBHOOK_DELIVERY.value
    assert entry.attempts_made == 3
    assert len(webhook_requests) == 1
    event = await ctx.webhook_store.get_event(event_id)
    assert event.attempts == 1
    assert event.status == WebhookEventStatus.FAILED.value


async def test_dead_letter_retry_resends_failed_event(
    ctx, webhook_responses, webhook_requests
):
    webhook_responses.append(httpx.Response(400))
    await ctx.webhooks.create_subscription(
        OWNER, "https://hooks.example.com/ezsign", ["document.completed"]
    )
    (event_id,) = await ctx.webhooks.trigger(OWNER, "document.completed", {})

    await ctx.start_workers([QueueName.WEBHOOK_DELIVERY.value])
    try:
        await wait_until(lambda: ctx.store.dead_letters)
        (entry,) = ctx.store.dead_letters.values()
        await ctx.dlq.retry_job(entry.id)

        async def delivered():
            event = await ctx.webhook_store.get_event(event_id)
            return event.is_delivered()

        await wait_until(delivered)
    finally:
        await ctx.close()

    assert len(webhook_requests) == 2
    assert (await ctx.webhook_store.get_event(event_id)).attempts == 2


def make_event(status: WebhookEventStatus, attempts: int) -> WebhookDeliveryEvent:
    now = utcnow()
    return WebhookDeliveryEvent(
        id=uuid4(),
        webhook_id=uuid4(),
        event_type="document.completed",
        payload={},
        status=status.value,
        attempts=attempts,
        created_at=now,
        updated_at=now,
    )


@pytest.mark.parametrize(
    ("status", "attempts", "expected"),
    [
        (WebhookEventStatus.PENDING, 1, True),
        (WebhookEventStatus.PENDING, 4, True),
        (WebhookEventStatus.PENDING, 5, False),
        (WebhookEventStatus.DELIVERED, 1, False),
        (WebhookEventStatus.FAILED, 1, False),
    ],
)
def test_should_retry(status, attempts, expected):
    assert make_event(status, attempts).should_retry(max_attempts=5) is expected


@pytest.mark.parametrize(
    ("attempts", "delay"),
    [(0, timedelta(minutes=1)), (1, timedelta(minutes=5)), (2, timedelta(minutes=15)),
     (3, timedelta(hours=1)), (4, timedelta(hours=6)), (9, timedelta(hours=6))],
)
def test_calculate_next_retry_follows_ladder(attempts, delay):
    now = utcnow()
    assert WebhookDeliveryEvent.calculate_next_retry(attempts, now) == now + delay


async def test_attempt_cap_comes_from_the_service(
    webhook_store, http_client, event_id, webhook_responses
):
    delivery = WebhookDeliveryService(webhook_store, http_client, max_attempts=1)
    webhook_responses.append(httpx.Response(503))

    assert await delivery.process_event(event_id) == DeliveryOutcome.FAILED
    assert (await webhook_store.get_event(event_id)).next_retry_at is None
