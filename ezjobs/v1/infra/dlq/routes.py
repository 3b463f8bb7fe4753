"""
Dead letter queue admin endpoints.
"""

import logging
from typing import Any

from fastapi import APIRouter, Query

from ezjobs.context import AppContext
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import NotFoundError, create_success_response
from ezjobs.v1.core.security import AdminDep, Principal
from ezjobs.v1.infra.dlq.models import DeadLetterStatus
from ezjobs.v1.infra.dlq.schemas import (
    BatchRequest,
    CleanupRequest,
    DeadLetterListResponse,
    DeadLetterResponse,
    DeadLetterStatsResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/dlq", tags=["dead-letter-queue"])


@router.get("/stats", response_model=dict)
async def get_stats(
    principal: Principal = AdminDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Counts of dead letter entries by status and queue."""
    stats = await ctx.dlq.get_stats()
    return create_success_response(
        data=DeadLetterStatsResponse(**stats).model_dump(mode="json")
    )


@router.get("/queues", response_model=dict)
async def get_queue_names(
    principal: Principal = AdminDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Queues that have dead letter entries."""
    return create_success_response(data={"queues": await ctx.dlq.get_queue_names()})


@router.get("", response_model=dict)
async def list_entries(
    queue_name: str | None = Query(default=None, description="Filter by source queue"),
    status: DeadLetterStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    sort_by: str = Query(default="moved_at", description="Sort column"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    principal: Principal = AdminDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """List dead letter entries with filtering and pagination."""
    entries, total = await ctx.dlq.list_entries(
        queue_name=queue_name,
        status=status,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    response_data = DeadLetterListResponse(
        entries=[DeadLetterResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.post("/retry-batch", response_model=dict)
async def retry_batch(
    request: BatchRequest,
    principal: Principal = AdminDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Retry several entries; each id reports its own outcome."""
    results = await ctx.dlq.retry_batch(request.ids)
    logger.info(
        "Dead letter batch retry via API",
        extra={"requested": len(request.ids), "user_id": principal.user_id},
    )
    return create_success_response(
        data={
            "results": {k: v.model_dump(mode="json") for k, v in results.items()},
            "succeeded": sum(r.success for r in results.values()),
            "failed": sum(not r.success for r in results.values()),
        }
    )


@router.post("/discard-batch", response_model=dict)
async def discard_batch(
    request: BatchRequest,
    principal: Principal = AdminDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Discard several entries; each id reports its own outcome."""
    results = await ctx.dlq.discard_batch(request.ids)
    logger.info(
        "Dead letter batch discard via API",
        extra={"requested": len(request.ids), "user_id": principal.user_id},
    )
    return create_success_response(
        data={
            "results": results,
            "succeeded": sum(results.values()),
            "failed": sum(not ok for ok in results.values()),
        }
    )


@router.post("/cleanup", response_model=dict)
async def cleanup(
    request: CleanupRequest | None = None,
    principal: Principal = AdminDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Purge retried and discarded entries older than the retention window."""
    request = request or CleanupRequest(older_than_days=ctx.settings.dlq_retention_days)
    deleted = await ctx.dlq.cleanup(request.older_than_days)
    return create_success_response(
        data={"deleted": deleted, "older_than_days": request.older_than_days}
    )


@router.get("/{entry_id}", response_model=dict)
async def get_entry(
    entry_id: str, principal: Principal = AdminDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Get one dead letter entry."""
    entry = await ctx.dlq.get_by_id(entry_id)
    if entry is None:
        raise NotFoundError("Dead letter entry not found", {"id": entry_id})
    return create_success_response(
        data=DeadLetterResponse.model_validate(entry).model_dump(mode="json")
    )


@router.post("/{entry_id}/retry", response_model=dict)
async def retry_entry(
    entry_id: str, principal: Principal = AdminDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Re-enqueue the entry's job from attempt 0 on its source queue."""
    job_id = await ctx.dlq.retry_job(entry_id)
    logger.info(
        "Dead letter entry retried via API",
        extra={"dead_letter_id": entry_id, "user_id": principal.user_id},
    )
    return create_success_response(
        data={"success": True, "id": entry_id, "job_id": str(job_id)},
        message="Job re-enqueued",
    )


@router.post("/{entry_id}/discard", response_model=dict)
async def discard_entry(
    entry_id: str, principal: Principal = AdminDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Mark the entry discarded."""
    if not await ctx.dlq.discard_job(entry_id):
        raise NotFoundError(
            "Dead letter entry not found or already resolved", {"id": entry_id}
        )
    return create_success_response(data={"success": True, "id": entry_id})
