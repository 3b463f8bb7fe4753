"""
Webhook subscription and delivery history endpoints.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query

from ezjobs.context import AppContext
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import create_success_response
from ezjobs.v1.core.security import Principal, PrincipalDep
from ezjobs.v1.webhooks.models import WebhookEventStatus
from ezjobs.v1.webhooks.schemas import (
    WebhookCreate,
    WebhookTriggerRequest,
    WebhookUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("", response_model=dict, status_code=201)
async def create_webhook(
    request: WebhookCreate,
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Create a webhook subscription. The full secret is only returned here."""
    subscription = await ctx.webhooks.create_subscription(
        owner_id=principal.user_id,
        url=request.url,
        events=request.events,
        secret=request.secret,
        active=request.active,
    )
    data = subscription.public_dict()
    data["secret"] = subscription.secret
    return create_success_response(data=data, message="Webhook created")


@router.get("", response_model=dict)
async def list_webhooks(
    principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    subscriptions = await ctx.webhooks.list_subscriptions(principal.user_id)
    return create_success_response(
        data={"webhooks": [s.public_dict() for s in subscriptions]}
    )


@router.post("/events/{event_id}/redeliver", response_model=dict)
async def redeliver_event(
    event_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Queue another delivery attempt for an undelivered event."""
    result = await ctx.webhooks.redeliver(event_id, principal.user_id)
    return create_success_response(
        data={"event_id": str(event_id), "job_id": str(result.job_id)},
        message="Redelivery queued",
    )


@router.post("/test", response_model=dict)
async def trigger_test_event(
    request: WebhookTriggerRequest,
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Send an event to the caller's own matching subscriptions."""
    event_ids = await ctx.webhooks.trigger(
        principal.user_id, request.event_type, request.payload
    )
    return create_success_response(data={"event_ids": [str(e) for e in event_ids]})


@router.get("/{webhook_id}", response_model=dict)
async def get_webhook(
    webhook_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    subscription = await ctx.webhooks.get_subscription(webhook_id, principal.user_id)
    return create_success_response(data=subscription.public_dict())


@router.patch("/{webhook_id}", response_model=dict)
async def update_webhook(
    webhook_id: UUID,
    request: WebhookUpdate,
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    subscription = await ctx.webhooks.update_subscription(
        webhook_id, principal.user_id, request.model_dump(exclude_none=True)
    )
    return create_success_response(data=subscription.public_dict())


@router.delete("/{webhook_id}", response_model=dict)
async def delete_webhook(
    webhook_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    await ctx.webhooks.delete_subscription(webhook_id, principal.user_id)
    return create_success_response(data={"success": True, "id": str(webhook_id)})


@router.get("/{webhook_id}/events", response_model=dict)
async def list_webhook_events(
    webhook_id: UUID,
    status: WebhookEventStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Delivery history of one subscription, newest first."""
    events, total = await ctx.webhooks.list_events(
        webhook_id, principal.user_id, status=status, limit=limit, offset=offset
    )
    return create_success_response(
        data={
            "events": [e.to_dict() for e in events],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    )
