"""
Manual cleanup trigger.
"""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ezjobs.context import AppContext
from ezjobs.v1.cleanup.service import trigger_cleanup
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import create_success_response
from ezjobs.v1.core.security import AdminDep, Principal
from ezjobs.v1.infra.jobs.payloads import CleanupType, QueueName

router = APIRouter(prefix="/admin/cleanup", tags=["cleanup"])


class CleanupTriggerRequest(BaseModel):
    type: CleanupType = CleanupType.FULL_CLEANUP
    max_age_hours: int | None = Field(default=None, gt=0)


@router.post("", response_model=dict, status_code=202)
async def trigger(
    request: CleanupTriggerRequest | None = None,
    principal: Principal = AdminDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    request = request or CleanupTriggerRequest()
    result = await trigger_cleanup(
        ctx.queues[QueueName.CLEANUP.value], request.type, request.max_age_hours
    )
    return create_success_response(
        data={"job_id": str(result.job_id), "type": request.type.value},
        message="Cleanup queued",
    )
