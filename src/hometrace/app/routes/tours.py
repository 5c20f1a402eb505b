"""Tour and tour stop endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.routes.auth import get_caller
from hometrace.domain.caller import Caller
from hometrace.domain.enums import TourStatus
from hometrace.domain.models import Tour
from hometrace.domain.schemas import (
    MessageResponse,
    RouteOptimizationResponse,
    RouteOptimizeRequest,
    TourCreate,
    TourResponse,
    TourStatusUpdate,
    TourStopCreate,
    TourStopLinkVisit,
    TourStopReorder,
    TourStopResponse,
    TourUpdate,
)
from hometrace.infra.database import get_db
from hometrace.services import tour_service

router = APIRouter(prefix="/api/tours", tags=["tours"])


async def _serialize_tour(db: AsyncSession, tour: Tour) -> TourResponse:
    stops = await tour_service.list_stops(db, tour.id)
    return TourResponse.model_validate(tour).model_copy(
        update={"stops": [TourStopResponse.model_validate(s) for s in stops]}
    )


@router.get("", response_model=list[TourResponse])
async def list_tours(
    status: Optional[TourStatus] = Query(None),
    buyer_id: Optional[str] = Query(None, alias="buyerId"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    tours = await tour_service.list_tours(db, caller, status=status, buyer_id=buyer_id)
    return [await _serialize_tour(db, t) for t in tours]


@router.post("", response_model=TourResponse, status_code=201)
async def create_tour(
    body: TourCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.create_tour(
        db,
        caller,
        name=body.name,
        buyer_id=body.buyer_id,
        scheduled_date=body.scheduled_date,
        notes=body.notes,
    )
    return await _serialize_tour(db, tour)


@router.get("/{tour_id}", response_model=TourResponse)
async def get_tour(
    tour_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.get_tour(db, tour_id, caller)
    return await _serialize_tour(db, tour)


@router.patch("/{tour_id}", response_model=TourResponse)
async def update_tour(
    tour_id: str,
    body: TourUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.update_tour(db, tour_id, caller, body)
    return await _serialize_tour(db, tour)


@router.delete("/{tour_id}", response_model=MessageResponse)
async def delete_tour(
    tour_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    await tour_service.delete_tour(db, tour_id, caller)
    return MessageResponse(message="Tour deleted", id=tour_id)


@router.post("/{tour_id}/status", response_model=TourResponse)
async def update_tour_status(
    tour_id: str,
    body: TourStatusUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    tour = await tour_service.update_status(db, tour_id, body.status, caller)
    return await _serialize_tour(db, tour)


# --- Stops ---


@router.post("/{tour_id}/stops", response_model=TourStopResponse, status_code=201)
async def add_stop(
    tour_id: str,
    body: TourStopCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    stop = await tour_service.add_stop(
        db,
        tour_id,
        caller,
        house_id=body.house_id,
        estimated_time=body.estimated_time,
        notes=body.notes,
    )
    return TourStopResponse.model_validate(stop)


@router.put("/{tour_id}/stops", response_model=list[TourStopResponse])
async def reorder_stops(
    tour_id: str,
    body: TourStopReorder,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    stops = await tour_service.reorder_stops(db, tour_id, caller, body.stops)
    return [TourStopResponse.model_validate(s) for s in stops]


@router.delete("/{tour_id}/stops", response_model=MessageResponse)
async def remove_stop(
    tour_id: str,
    stop_id: str = Query(..., alias="stopId"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    await tour_service.remove_stop(db, tour_id, stop_id, caller)
    return MessageResponse(message="Stop removed", id=stop_id)


@router.post("/{tour_id}/stops/{stop_id}/visit", response_model=TourStopResponse)
async def link_stop_visit(
    tour_id: str,
    stop_id: str,
    body: TourStopLinkVisit,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    stop = await tour_service.link_stop_to_visit(db, tour_id, stop_id, body.visit_id, caller)
    return TourStopResponse.model_validate(stop)


@router.post("/{tour_id}/optimize-route", response_model=RouteOptimizationResponse)
async def optimize_route(
    tour_id: str,
    body: Optional[RouteOptimizeRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Preview the shortest stop order, or save it with ``apply``."""
    body = body or RouteOptimizeRequest()
    plan = await tour_service.optimize_route(
        db,
        tour_id,
        caller,
        start_house_id=body.start_house_id,
        apply=body.apply,
    )
    return RouteOptimizationResponse(
        tour_id=plan.tour.id,
        total_distance_km=plan.total_distance_km,
        estimated_minutes=plan.estimated_minutes,
        improvement_pct=plan.improvement_pct,
        maps_url=plan.maps_url,
        applied=plan.applied,
        stops=[TourStopResponse.model_validate(s) for s in plan.stops],
        excluded=[TourStopResponse.model_validate(s) for s in plan.excluded],
    )
