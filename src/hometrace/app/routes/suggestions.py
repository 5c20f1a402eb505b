"""Visit suggestion endpoints.

Mounted under ``/api/visits/suggestions``; the router is registered before
the visits router so ``/suggestions`` is not captured as a visit id.
Emails go out as background tasks after the response is sent.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.routes.auth import get_caller
from hometrace.domain.caller import Caller
from hometrace.domain.enums import SuggestionStatus
from hometrace.domain.schemas import (
    MessageResponse,
    Page,
    SuggestionAcceptResponse,
    SuggestionCreate,
    SuggestionReject,
    SuggestionResponse,
    VisitResponse,
)
from hometrace.infra.database import get_db
from hometrace.services import notification_service, visit_suggestions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/visits/suggestions", tags=["suggestions"])


@router.get("", response_model=Page[SuggestionResponse])
async def list_suggestions(
    status: Optional[SuggestionStatus] = Query(None),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Received suggestions for buyers, sent ones for realtors."""
    suggestions, total = await visit_suggestions.list_suggestions(
        db,
        caller,
        status=status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return Page[SuggestionResponse](
        items=[SuggestionResponse.model_validate(s) for s in suggestions],
        page=page,
        limit=limit,
        total=total,
    )


@router.post("", response_model=SuggestionResponse, status_code=201)
async def create_suggestion(
    body: SuggestionCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    suggestion = await visit_suggestions.suggest(
        db,
        caller,
        buyer_id=body.buyer_id,
        house_id=body.house_id,
        suggested_at=body.suggested_at,
        message=body.message,
    )
    ctx = await _email_context(db, suggestion)
    background_tasks.add_task(_send_created_email, ctx)
    return SuggestionResponse.model_validate(suggestion)


@router.get("/{suggestion_id}", response_model=SuggestionResponse)
async def get_suggestion(
    suggestion_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    suggestion = await visit_suggestions.get_suggestion(db, suggestion_id, caller)
    return SuggestionResponse.model_validate(suggestion)


@router.delete("/{suggestion_id}", response_model=MessageResponse)
async def withdraw_suggestion(
    suggestion_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    await visit_suggestions.withdraw(db, suggestion_id, caller)
    return MessageResponse(message="Suggestion withdrawn", id=suggestion_id)


@router.post("/{suggestion_id}/accept", response_model=SuggestionAcceptResponse)
async def accept_suggestion(
    suggestion_id: str,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    suggestion, visit = await visit_suggestions.accept(db, suggestion_id, caller)
    ctx = await _email_context(db, suggestion)
    background_tasks.add_task(_send_response_email, ctx, True)
    return SuggestionAcceptResponse(
        message="Visit scheduled",
        suggestion=SuggestionResponse.model_validate(suggestion),
        visit=VisitResponse.model_validate(visit),
    )


@router.post("/{suggestion_id}/reject", response_model=SuggestionResponse)
async def reject_suggestion(
    suggestion_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[SuggestionReject] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    reason = body.reason if body else None
    suggestion = await visit_suggestions.reject(db, suggestion_id, caller, reason)
    ctx = await _email_context(db, suggestion)
    background_tasks.add_task(_send_response_email, ctx, False, reason)
    return SuggestionResponse.model_validate(suggestion)


async def _email_context(db: AsyncSession, suggestion):
    """Load email recipients. Errors are logged and mean no email."""
    try:
        return await notification_service.suggestion_context(db, suggestion)
    except Exception as exc:
        logger.warning("Suggestion %s: could not load email context: %s", suggestion.id, exc)
        return None


async def _send_created_email(ctx):
    """Background task: tell the buyer about a new suggestion."""
    try:
        await notification_service.notify_suggestion_created(ctx)
    except Exception as exc:
        logger.warning("Suggestion email failed: %s", exc)


async def _send_response_email(ctx, accepted: bool, reason: Optional[str] = None):
    """Background task: tell the realtor how the buyer responded."""
    try:
        await notification_service.notify_suggestion_response(ctx, accepted, reason)
    except Exception as exc:
        logger.warning("Suggestion response email failed: %s", exc)
