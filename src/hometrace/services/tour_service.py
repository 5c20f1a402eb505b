"""Tours: a realtor's ordered itinerary of houses.

Status graph::

    PLANNED -> IN_PROGRESS -> COMPLETED
       |            |
       +------------+--> CANCELLED

Stops can only change while the tour is PLANNED or IN_PROGRESS.
``order_index`` defines traversal order; gaps left by removed stops are kept.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.domain.caller import Caller
from hometrace.domain.clock import utcnow
from hometrace.domain.enums import TourStatus
from hometrace.domain.errors import (
    DuplicateError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from hometrace.domain.models import House, Tour, TourStop, Visit
from hometrace.services import route_optimizer
from hometrace.services.connection_service import is_connected
from hometrace.services.house_service import get_house

logger = logging.getLogger(__name__)

S = TourStatus

TRANSITION_MAP: dict[TourStatus, set[TourStatus]] = {
    S.PLANNED: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

TERMINAL_STATES: set[TourStatus] = {s for s, targets in TRANSITION_MAP.items() if not targets}

EDITABLE_STATES: set[TourStatus] = {S.PLANNED, S.IN_PROGRESS}


class TourStateMachine:
    """Validates tour status transitions."""

    def validate_transition(self, current_status: TourStatus, target_status: TourStatus) -> bool:
        if target_status in TRANSITION_MAP[current_status]:
            return True

        if current_status in TERMINAL_STATES:
            reason = f"No transitions allowed from {current_status.value}"
        elif current_status == target_status:
            reason = f"Tour is already {current_status.value}"
        elif current_status == S.PLANNED and target_status == S.COMPLETED:
            reason = "Tour must be started before it can be completed"
        else:
            reason = f"Transition from {current_status.value} to {target_status.value} is not allowed"
        raise InvalidStateTransitionError(current_status, target_status, reason)


state_machine = TourStateMachine()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_tour_or_404(db: AsyncSession, tour_id: str) -> Tour:
    result = await db.execute(select(Tour).where(Tour.id == tour_id))
    tour = result.scalar_one_or_none()
    if tour is None:
        raise NotFoundError("Tour")
    return tour


def _check_owner(tour: Tour, caller: Caller) -> None:
    if caller.is_admin or tour.realtor_id == caller.user_id:
        return
    raise ForbiddenError("Only the tour's realtor can modify it")


def _check_editable(tour: Tour) -> None:
    status = TourStatus(tour.status)
    if status not in EDITABLE_STATES:
        raise InvalidStateTransitionError(
            status,
            status,
            f"Stops cannot be changed on a {status.value.lower()} tour",
        )


async def _get_stop_or_404(db: AsyncSession, tour_id: str, stop_id: str) -> TourStop:
    result = await db.execute(
        select(TourStop).where(TourStop.id == stop_id, TourStop.tour_id == tour_id)
    )
    stop = result.scalar_one_or_none()
    if stop is None:
        raise NotFoundError("Tour stop")
    return stop


async def _check_buyer(db: AsyncSession, caller: Caller, buyer_id: Optional[str]) -> None:
    # An unconnected buyer is reported as missing, not forbidden
    if buyer_id and caller.is_realtor and not await is_connected(db, caller.user_id, buyer_id):
        raise NotFoundError("Buyer")


async def _assign_order(db: AsyncSession, stops: dict[str, TourStop], new_index: dict[str, int]) -> None:
    # Park the moved stops on negative slots first so the unique index never collides
    for position, stop_id in enumerate(new_index, start=1):
        stops[stop_id].order_index = -position
    await db.flush()
    for stop_id, order_index in new_index.items():
        stops[stop_id].order_index = order_index


async def list_stops(db: AsyncSession, tour_id: str) -> list[TourStop]:
    result = await db.execute(
        select(TourStop).where(TourStop.tour_id == tour_id).order_by(TourStop.order_index.asc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


async def create_tour(
    db: AsyncSession,
    caller: Caller,
    name: str,
    buyer_id: Optional[str] = None,
    scheduled_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Tour:
    if not (caller.is_realtor or caller.is_admin):
        raise ForbiddenError("Only realtors can create tours")
    await _check_buyer(db, caller, buyer_id)

    tour = Tour(
        name=name,
        realtor_id=caller.user_id,
        buyer_id=buyer_id,
        status=S.PLANNED.value,
        scheduled_date=scheduled_date,
        notes=notes,
    )
    db.add(tour)
    await db.commit()
    logger.info("Tour %s created (realtor=%s, buyer=%s)", tour.id, caller.user_id, buyer_id)
    return tour


async def get_tour(db: AsyncSession, tour_id: str, caller: Caller) -> Tour:
    """The owning realtor, the tour's buyer or an admin."""
    tour = await _get_tour_or_404(db, tour_id)
    if caller.is_admin or caller.user_id in (tour.realtor_id, tour.buyer_id):
        return tour
    raise ForbiddenError()


async def list_tours(
    db: AsyncSession,
    caller: Caller,
    status: Optional[TourStatus] = None,
    buyer_id: Optional[str] = None,
) -> list[Tour]:
    query = select(Tour)
    if caller.is_realtor:
        query = query.where(Tour.realtor_id == caller.user_id)
    elif caller.is_buyer:
        query = query.where(Tour.buyer_id == caller.user_id)

    if status:
        query = query.where(Tour.status == TourStatus(status).value)
    if buyer_id:
        query = query.where(Tour.buyer_id == buyer_id)

    result = await db.execute(query.order_by(Tour.scheduled_date.asc(), Tour.created_at.desc()))
    return list(result.scalars().all())


async def update_status(db: AsyncSession, tour_id: str, new_status: TourStatus, caller: Caller) -> Tour:
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)

    current = TourStatus(tour.status)
    target = TourStatus(new_status)
    state_machine.validate_transition(current, target)

    tour.status = target.value
    tour.updated_at = utcnow()
    await db.commit()
    logger.info(
        "Tour %s: %s → %s (user=%s)",
        tour.id,
        current.value,
        target.value,
        caller.user_id,
    )
    return tour


async def update_tour(db: AsyncSession, tour_id: str, caller: Caller, data) -> Tour:
    """Apply a partial ``TourUpdate``. A status change goes through ``update_status``."""
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)

    fields = data.model_fields_set
    status_change = (
        "status" in fields
        and data.status is not None
        and TourStatus(data.status) != TourStatus(tour.status)
    )
    if status_change:
        state_machine.validate_transition(TourStatus(tour.status), TourStatus(data.status))

    if "buyer_id" in fields:
        await _check_buyer(db, caller, data.buyer_id)
        tour.buyer_id = data.buyer_id
    if "name" in fields and data.name is not None:
        tour.name = data.name
    if "scheduled_date" in fields:
        tour.scheduled_date = data.scheduled_date
    if "notes" in fields:
        tour.notes = data.notes
    tour.updated_at = utcnow()
    await db.commit()

    if status_change:
        tour = await update_status(db, tour_id, data.status, caller)
    return tour


async def delete_tour(db: AsyncSession, tour_id: str, caller: Caller) -> None:
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)

    tour.deleted_at = utcnow()
    await db.commit()
    logger.info("Tour %s deleted (user=%s)", tour.id, caller.user_id)


# ---------------------------------------------------------------------------
# Stops
# ---------------------------------------------------------------------------


async def add_stop(
    db: AsyncSession,
    tour_id: str,
    caller: Caller,
    house_id: str,
    estimated_time: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> TourStop:
    """Append a house to the end of the tour."""
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)
    _check_editable(tour)
    await get_house(db, house_id)

    result = await db.execute(
        select(TourStop.id).where(TourStop.tour_id == tour_id, TourStop.house_id == house_id)
    )
    if result.first() is not None:
        raise DuplicateError("House is already in this tour")

    max_index = (
        await db.execute(select(func.max(TourStop.order_index)).where(TourStop.tour_id == tour_id))
    ).scalar_one_or_none()

    stop = TourStop(
        tour_id=tour_id,
        house_id=house_id,
        order_index=(max_index or 0) + 1,
        estimated_time=estimated_time,
        notes=notes,
    )
    db.add(stop)
    await db.commit()
    logger.info("Tour %s: added stop %s (house=%s, order=%d)", tour_id, stop.id, house_id, stop.order_index)
    return stop


async def remove_stop(db: AsyncSession, tour_id: str, stop_id: str, caller: Caller) -> None:
    """Delete a stop. Remaining stops keep their order_index."""
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)
    _check_editable(tour)
    stop = await _get_stop_or_404(db, tour_id, stop_id)

    await db.delete(stop)
    await db.commit()
    logger.info("Tour %s: removed stop %s", tour_id, stop_id)


async def reorder_stops(db: AsyncSession, tour_id: str, caller: Caller, orders) -> list[TourStop]:
    """Assign new order_index values. ``orders`` is a list of ``TourStopOrder``."""
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)
    _check_editable(tour)

    stops = {stop.id: stop for stop in await list_stops(db, tour_id)}
    new_index = {item.id: item.order_index for item in orders}

    unknown = [stop_id for stop_id in new_index if stop_id not in stops]
    if unknown:
        raise NotFoundError("Tour stop", {"stopIds": unknown})

    final = {stop_id: new_index.get(stop_id, stop.order_index) for stop_id, stop in stops.items()}
    if len(set(final.values())) != len(final):
        raise ValidationError("Stop order values must be unique within a tour")

    await _assign_order(db, stops, new_index)
    await db.commit()

    logger.info("Tour %s: reordered %d stop(s) (user=%s)", tour_id, len(new_index), caller.user_id)
    return await list_stops(db, tour_id)


async def link_stop_to_visit(
    db: AsyncSession,
    tour_id: str,
    stop_id: str,
    visit_id: str,
    caller: Caller,
) -> TourStop:
    """Attach a visit to a stop. A visit serves at most one stop.

    The visit must belong to the tour's buyer, or, on a tour without a
    buyer, to a buyer the realtor is connected to.
    """
    tour = await _get_tour_or_404(db, tour_id)
    _check_owner(tour, caller)
    _check_editable(tour)
    stop = await _get_stop_or_404(db, tour_id, stop_id)

    result = await db.execute(select(Visit).where(Visit.id == visit_id))
    visit = result.scalar_one_or_none()
    if visit is None:
        raise NotFoundError("Visit")
    if tour.buyer_id:
        if visit.buyer_id != tour.buyer_id:
            raise ForbiddenError("Visit does not belong to this tour's buyer")
    elif caller.is_realtor and not await is_connected(db, caller.user_id, visit.buyer_id):
        raise ForbiddenError("You are not connected to this visit's buyer")
    if visit.house_id != stop.house_id:
        raise ValidationError(
            "Visit is for a different house than this stop",
            {"visitId": ["house does not match the stop"]},
        )

    result = await db.execute(
        select(TourStop.id).where(TourStop.visit_id == visit_id, TourStop.id != stop.id)
    )
    if result.first() is not None:
        raise DuplicateError("Visit is already linked to another tour stop")

    stop.visit_id = visit_id
    await db.commit()
    logger.info("Tour %s: stop %s linked to visit %s", tour_id, stop_id, visit_id)
    return stop



# ---------------------------------------------------------------------------
# Route optimization
# ---------------------------------------------------------------------------


@dataclass
class RoutePlan:
    tour: Tour
    stops: list[TourStop]
    excluded: list[TourStop]
    total_distance_km: float
    estimated_minutes: int
    improvement_pct: float
    maps_url: str
    applied: bool


async def optimize_route(
    db: AsyncSession,
    tour_id: str,
    caller: Caller,
    start_house_id: Optional[str] = None,
    apply: bool = False,
) -> RoutePlan:
    """Find the shortest visiting order for a tour's stops.

    Anyone who can read the tour gets a preview. With ``apply`` the owner's
    stops are renumbered from 1 in the computed order, and stops whose house
    has no coordinates follow in their current order.
    """
    tour = await get_tour(db, tour_id, caller)
    if apply:
        _check_owner(tour, caller)
        _check_editable(tour)

    stops = await list_stops(db, tour_id)
    result = await db.execute(select(House).where(House.id.in_([s.house_id for s in stops])))
    houses = {house.id: house for house in result.scalars()}

    located: dict[str, TourStop] = {}
    locations: list[route_optimizer.Location] = []
    excluded: list[TourStop] = []
    for stop in stops:
        house = houses.get(stop.house_id)
        if house is None or house.latitude is None or house.longitude is None:
            excluded.append(stop)
            continue
        located[stop.id] = stop
        locations.append(route_optimizer.Location(stop.id, house.latitude, house.longitude))

    if len(locations) < 2:
        raise ValidationError(
            "Tour needs at least 2 houses with coordinates to optimize the route",
            {"stops": [f"{len(locations)} stop(s) have coordinates"]},
        )

    start_id = None
    if start_house_id:
        start_id = next((s.id for s in located.values() if s.house_id == start_house_id), None)
        if start_id is None:
            raise ValidationError(
                "Start house must be a stop on this tour with coordinates",
                {"startHouseId": ["not a located stop on this tour"]},
            )

    route = route_optimizer.optimize(locations, start_id=start_id)
    ordered = [located[loc.id] for loc in route.locations]

    if apply:
        new_order = ordered + excluded
        await _assign_order(
            db,
            {stop.id: stop for stop in stops},
            {stop.id: position for position, stop in enumerate(new_order, start=1)},
        )
        tour.updated_at = utcnow()
        await db.commit()
        logger.info(
            "Tour %s: applied optimized route over %d stop(s), %.1f km (user=%s)",
            tour_id,
            len(ordered),
            route.total_distance_km,
            caller.user_id,
        )

    return RoutePlan(
        tour=tour,
        stops=ordered,
        excluded=excluded,
        total_distance_km=route.total_distance_km,
        estimated_minutes=route.estimated_minutes,
        improvement_pct=route_optimizer.improvement_pct(locations, route.locations),
        maps_url=route.maps_url,
        applied=apply,
    )
