"""
Job status API endpoints.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query

from ezjobs.context import AppContext
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import NotFoundError, create_success_response
from ezjobs.v1.core.security import Principal, PrincipalDep

logger = logging.getLogger(__name__)
router = APIRouter(tags=["jobs"])


@router.get("/jobs/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    queue: str | None = Query(default=None, description="Restrict to one queue"),
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Get the status, progress and result of a job."""
    status = await ctx.jobs.get_job_status(job_id, queue)
    if status is None:
        raise NotFoundError("Job not found", {"job_id": str(job_id)})
    return create_success_response(data=status.model_dump(mode="json", by_alias=True))


@router.get("/metrics", response_model=dict)
async def get_metrics(
    principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Job counts for every queue."""
    metrics = await ctx.jobs.get_metrics()
    return create_success_response(data=metrics.model_dump(mode="json"))
