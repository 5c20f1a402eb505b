"""Visit lifecycle API endpoints.

Buyers own their visits; connected realtors can read them. Every status
change goes through ``visit_lifecycle`` and answers 409 when the current
status does not allow it.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.routes.auth import get_caller
from hometrace.domain.caller import Caller
from hometrace.domain.enums import VisitStatus
from hometrace.domain.schemas import (
    MessageResponse,
    Page,
    VisitComplete,
    VisitCreate,
    VisitResponse,
    VisitUpdate,
)
from hometrace.infra.database import get_db
from hometrace.services import visit_lifecycle

router = APIRouter(prefix="/api/visits", tags=["visits"])


@router.get("", response_model=Page[VisitResponse])
async def list_visits(
    status: Optional[VisitStatus] = Query(None),
    house_id: Optional[str] = Query(None, alias="houseId"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """List visits, role-filtered and ordered by scheduled time."""
    visits, total = await visit_lifecycle.list_visits(
        db,
        caller,
        status=status,
        house_id=house_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return Page[VisitResponse](
        items=[VisitResponse.model_validate(v) for v in visits],
        page=page,
        limit=limit,
        total=total,
    )


@router.post("", response_model=VisitResponse, status_code=201)
async def schedule_visit(
    body: VisitCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    visit = await visit_lifecycle.schedule(db, caller, body.house_id, body.scheduled_at, body.notes)
    return VisitResponse.model_validate(visit)


@router.get("/{visit_id}", response_model=VisitResponse)
async def get_visit(
    visit_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    visit = await visit_lifecycle.get_visit(db, visit_id, caller)
    return VisitResponse.model_validate(visit)


@router.patch("/{visit_id}", response_model=VisitResponse)
async def update_visit(
    visit_id: str,
    body: VisitUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Reschedule or edit notes of a visit that has not started."""
    visit = await visit_lifecycle.reschedule(db, visit_id, caller, body.scheduled_at, body.notes)
    return VisitResponse.model_validate(visit)


@router.delete("/{visit_id}", response_model=MessageResponse)
async def delete_visit(
    visit_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    await visit_lifecycle.remove(db, visit_id, caller)
    return MessageResponse(message="Visit deleted", id=visit_id)


# --- Transitions ---


@router.post("/{visit_id}/start", response_model=VisitResponse)
async def start_visit(
    visit_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    visit = await visit_lifecycle.start(db, visit_id, caller)
    return VisitResponse.model_validate(visit)


@router.post("/{visit_id}/complete", response_model=VisitResponse)
async def complete_visit(
    visit_id: str,
    body: Optional[VisitComplete] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    body = body or VisitComplete()
    visit = await visit_lifecycle.complete(
        db,
        visit_id,
        caller,
        overall_impression=body.overall_impression,
        would_buy=body.would_buy,
        notes=body.notes,
    )
    return VisitResponse.model_validate(visit)


@router.post("/{visit_id}/cancel", response_model=VisitResponse)
async def cancel_visit(
    visit_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    visit = await visit_lifecycle.cancel(db, visit_id, caller)
    return VisitResponse.model_validate(visit)
