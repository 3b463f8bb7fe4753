"""
Scheduled send and deadline reminder endpoints.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter

from ezjobs.context import AppContext
from ezjobs.v1.core.context import ContextDep
from ezjobs.v1.core.exceptions import create_success_response
from ezjobs.v1.core.security import Principal, PrincipalDep
from ezjobs.v1.scheduling.schemas import ReminderResponse, ScheduleSendRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["scheduling"])


@router.post("/{document_id}/schedule", response_model=dict, status_code=202)
async def schedule_send(
    document_id: UUID,
    request: ScheduleSendRequest,
    principal: Principal = PrincipalDep,
    ctx: AppContext = ContextDep,
) -> dict[str, Any]:
    """Schedule (or reschedule) sending a document to its signers."""
    result = await ctx.scheduled_send.schedule_document_send(
        document_id, principal.user_id, request.send_at, request.timezone
    )
    return create_success_response(
        data={
            "document_id": str(document_id),
            "job_id": str(result.job_id),
            "send_at": request.send_at.isoformat(),
            "timezone": request.timezone,
        },
        message="Document scheduled",
    )


@router.delete("/{document_id}/schedule", response_model=dict)
async def cancel_schedule(
    document_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    removed = await ctx.scheduled_send.cancel_scheduled_send(document_id)
    return create_success_response(
        data={"document_id": str(document_id), "removed": removed},
        message="Scheduled send cancelled",
    )


@router.post("/{document_id}/reminders", response_model=dict)
async def schedule_reminders(
    document_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    """Queue deadline reminders for every pending signer of the document."""
    reminders = await ctx.reminders.schedule_reminders_for_document(document_id)
    return create_success_response(
        data={
            "document_id": str(document_id),
            "reminders": [
                ReminderResponse(
                    id=str(r.id),
                    signer_id=str(r.signer_id) if r.signer_id else None,
                    reminder_type=r.reminder_type,
                    scheduled_for=r.scheduled_for,
                    job_id=str(r.job_id) if r.job_id else None,
                ).model_dump(mode="json")
                for r in reminders
            ],
        }
    )


@router.delete("/{document_id}/reminders", response_model=dict)
async def cancel_reminders(
    document_id: UUID, principal: Principal = PrincipalDep, ctx: AppContext = ContextDep
) -> dict[str, Any]:
    cancelled = await ctx.reminders.cancel_reminders_for_document(document_id)
    return create_success_response(
        data={"document_id": str(document_id), "cancelled": cancelled}
    )
