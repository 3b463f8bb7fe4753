"""
Signed HTTP delivery of webhook events.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

import httpx

from ezjobs.v1.webhooks.models import (
    DEFAULT_MAX_DELIVERY_ATTEMPTS,
    RESPONSE_BODY_LIMIT,
    WebhookDeliveryEvent,
    WebhookEventStatus,
)
from ezjobs.v1.webhooks.signing import SIGNATURE_PREFIX, canonical_json, sign_payload
from ezjobs.v1.webhooks.store import WebhookStore

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "EzSign-Webhooks/1.0"


class WebhookDeliveryError(Exception):
    """Raised when an event has used all of its delivery attempts."""

    def __init__(self, event_id: UUID, message: str):
        self.event_id = event_id
        super().__init__(f"Webhook event {event_id} failed permanently: {message}")


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DeliveryResult:
    success: bool
    status_code: int | None
    response_body: str | None
    response_time_ms: int
    error_message: str | None = None


def is_retryable_status(status_code: int | None) -> bool:
    """Network errors, 408, 429 and 5xx are worth another attempt; other 4xx are not."""
    if status_code is None:
        return True
    return status_code in (408, 429) or 500 <= status_code < 600


def describe_transport_error(error: httpx.HTTPError, timeout_s: float) -> str:
    if isinstance(error, httpx.TimeoutException):
        return f"Request timeout after {timeout_s:g} seconds"
    if isinstance(error, httpx.ConnectError):
        text = str(error).lower()
        if "name or service not known" in text or "getaddrinfo" in text or "nodename" in text:
            return "DNS resolution failed - hostname not found"
        if "refused" in text:
            return "Connection refused"
    return str(error) or error.__class__.__name__


class WebhookDeliveryService:
    """Performs one delivery attempt per call and records its outcome on the event."""

    def __init__(
        self,
        store: WebhookStore,
        http_client: httpx.AsyncClient,
        *,
        timeout_s: float = 10.0,
        max_attempts: int = DEFAULT_MAX_DELIVERY_ATTEMPTS,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.store = store
        self.http_client = http_client
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts
        self.user_agent = user_agent

    def build_headers(
        self, event_type: str, delivery_id: str, timestamp: int, signature: str
    ) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-EzSign-Signature": SIGNATURE_PREFIX + signature,
            "X-EzSign-Event": event_type,
            "X-EzSign-Delivery-ID": delivery_id,
            "X-EzSign-Timestamp": str(timestamp),
        }

    async def deliver(
        self, url: str, secret: str, event: WebhookDeliveryEvent
    ) -> DeliveryResult:
        """POST the signed payload; never raises for transport failures."""
        body = canonical_json(event.payload)
        timestamp = int(time.time())
        headers = self.build_headers(
            event.event_type, str(event.id), timestamp, sign_payload(secret, timestamp, body)
        )

        started = time.monotonic()
        try:
            response = await self.http_client.post(
                url,
                content=body,
                headers=headers,
                timeout=self.timeout_s,
                follow_redirects=False,
            )
        except httpx.HTTPError as e:
            return DeliveryResult(
                success=False,
                status_code=None,
                response_body=None,
                response_time_ms=_elapsed_ms(started),
                error_message=describe_transport_error(e, self.timeout_s),
            )

        success = 200 <= response.status_code < 300
        return DeliveryResult(
            success=success,
            status_code=response.status_code,
            response_body=response.text[:RESPONSE_BODY_LIMIT],
            response_time_ms=_elapsed_ms(started),
            error_message=None if success else f"HTTP {response.status_code}",
        )

    async def process_event(self, event_id: UUID) -> DeliveryOutcome:
        """
        Attempt delivery of one event.

        Missing and already-delivered events are skipped. An event that has
        already failed terminally is reported as failed without another POST;
        only redelivery puts it back to pending. A failed attempt goes back
        to pending with the next ladder time while attempts remain and the
        failure is retryable; otherwise the event fails terminally.
        """
        begun = await self.store.begin_attempt(event_id)
        if begun is None:
            existing = await self.store.get_event(event_id)
            if existing is not None and existing.is_failed():
                logger.info(
                    "Webhook event already failed, not resending",
                    extra={"event_id": str(event_id), "attempts": existing.attempts},
                )
                return DeliveryOutcome.FAILED
            logger.info(
                "Webhook event missing or already delivered, skipping",
                extra={"event_id": str(event_id)},
            )
            return DeliveryOutcome.SKIPPED

        event, subscription = begun
        result = await self.deliver(subscription.url, subscription.secret, event)

        if result.success:
            await self.store.record_attempt(
                event.id,
                WebhookEventStatus.DELIVERED,
                response_status=result.status_code,
                response_body=result.response_body,
                response_time_ms=result.response_time_ms,
                error_message=None,
                next_retry_at=None,
            )
            logger.info(
                "Webhook event delivered",
                extra={
                    "event_id": str(event.id),
                    "webhook_id": str(subscription.id),
                    "status_code": result.status_code,
                    "attempts": event.attempts,
                    "response_time_ms": result.response_time_ms,
                },
            )
            return DeliveryOutcome.DELIVERED

        retry = is_retryable_status(result.status_code) and event.should_retry(
            self.max_attempts
        )
        next_retry_at = (
            WebhookDeliveryEvent.calculate_next_retry(event.attempts - 1) if retry else None
        )
        await self.store.record_attempt(
            event.id,
            WebhookEventStatus.PENDING if retry else WebhookEventStatus.FAILED,
            response_status=result.status_code,
            response_body=result.response_body,
            response_time_ms=result.response_time_ms,
            error_message=result.error_message,
            next_retry_at=next_retry_at,
        )

        logger.warning(
            "Webhook delivery attempt failed",
            extra={
                "event_id": str(event.id),
                "webhook_id": str(subscription.id),
                "status_code": result.status_code,
                "attempts": event.attempts,
                "max_attempts": self.max_attempts,
                "error": result.error_message,
                "next_retry_at": next_retry_at.isoformat() if next_retry_at else None,
            },
        )
        if retry:
            return DeliveryOutcome.RETRY_SCHEDULED
        return DeliveryOutcome.FAILED


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
