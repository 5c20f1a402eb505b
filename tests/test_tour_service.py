"""Tests for tours, their status graph and their stops."""

import pytest
from sqlalchemy import func, select

from hometrace.domain.enums import TourStatus, UserRole, VisitStatus
from hometrace.domain.errors import (
    DuplicateError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from hometrace.domain.models import TourStop
from hometrace.domain.schemas import TourStopOrder, TourUpdate
from hometrace.services import tour_service
from hometrace.services.tour_service import TRANSITION_MAP, TourStateMachine

S = TourStatus


@pytest.fixture
async def realtor(make_user):
    return await make_user(role=UserRole.REALTOR)


@pytest.fixture
async def tour(make_tour, realtor):
    return await make_tour(realtor)


async def _stop_count(db_session, tour_id) -> int:
    return (
        await db_session.execute(select(func.count(TourStop.id)).where(TourStop.tour_id == tour_id))
    ).scalar_one()


# ---------------------------------------------------------------------------
# Status graph
# ---------------------------------------------------------------------------


class TestTourStateMachine:

    @pytest.mark.parametrize(
        "from_status,to_status",
        [(f, t) for f, targets in TRANSITION_MAP.items() for t in targets],
    )
    def test_valid_transitions(self, from_status, to_status):
        assert TourStateMachine().validate_transition(from_status, to_status) is True

    def test_planned_to_completed_rejected(self):
        with pytest.raises(InvalidStateTransitionError, match="must be started"):
            TourStateMachine().validate_transition(S.PLANNED, S.COMPLETED)

    @pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED])
    def test_terminal_has_no_exits(self, terminal):
        with pytest.raises(InvalidStateTransitionError, match="No transitions allowed"):
            TourStateMachine().validate_transition(terminal, S.IN_PROGRESS)


class TestUpdateStatus:

    async def test_planned_to_completed_directly_fails(
        self, db_session, caller_for, make_house, make_stop, realtor, tour
    ):
        await make_stop(tour, await make_house(), 1)
        await make_stop(tour, await make_house(address="14 Maple Street"), 2)

        with pytest.raises(InvalidStateTransitionError):
            await tour_service.update_status(db_session, tour.id, S.COMPLETED, caller_for(realtor))

        await db_session.refresh(tour)
        assert tour.status == S.PLANNED.value

    async def test_full_path(self, db_session, caller_for, realtor, tour):
        caller = caller_for(realtor)
        tour = await tour_service.update_status(db_session, tour.id, S.IN_PROGRESS, caller)
        tour = await tour_service.update_status(db_session, tour.id, S.COMPLETED, caller)
        assert tour.status == S.COMPLETED.value

    async def test_other_realtor_forbidden(self, db_session, caller_for, make_user, tour):
        other = await make_user(role=UserRole.REALTOR)
        with pytest.raises(ForbiddenError):
            await tour_service.update_status(db_session, tour.id, S.IN_PROGRESS, caller_for(other))

    async def test_update_tour_with_bad_status_changes_nothing(self, db_session, caller_for, realtor, tour):
        body = TourUpdate(name="Renamed", status=S.COMPLETED)

        with pytest.raises(InvalidStateTransitionError):
            await tour_service.update_tour(db_session, tour.id, caller_for(realtor), body)

        await db_session.refresh(tour)
        assert tour.name == "Saturday tour"

    async def test_update_tour_partial(self, db_session, caller_for, realtor, tour):
        body = TourUpdate(notes="Start at the north side", status=S.IN_PROGRESS)
        tour = await tour_service.update_tour(db_session, tour.id, caller_for(realtor), body)

        assert tour.notes == "Start at the north side"
        assert tour.name == "Saturday tour"
        assert tour.status == S.IN_PROGRESS.value


# ---------------------------------------------------------------------------
# create / read / delete
# ---------------------------------------------------------------------------


class TestTours:

    async def test_create_with_connected_buyer(self, db_session, caller_for, make_user, make_connection, realtor):
        buyer = await make_user(role=UserRole.BUYER)
        await make_connection(realtor, buyer)

        tour = await tour_service.create_tour(db_session, caller_for(realtor), "Weekend", buyer_id=buyer.id)
        assert tour.status == S.PLANNED.value
        assert tour.buyer_id == buyer.id

    async def test_create_with_unconnected_buyer(self, db_session, caller_for, make_user, realtor):
        buyer = await make_user(role=UserRole.BUYER)
        with pytest.raises(NotFoundError, match="Buyer not found"):
            await tour_service.create_tour(db_session, caller_for(realtor), "Weekend", buyer_id=buyer.id)

    async def test_buyer_cannot_create(self, db_session, caller_for, make_user):
        buyer = await make_user(role=UserRole.BUYER)
        with pytest.raises(ForbiddenError):
            await tour_service.create_tour(db_session, caller_for(buyer), "Mine")

    async def test_tour_buyer_can_read(self, db_session, caller_for, make_user, make_tour, realtor):
        buyer = await make_user(role=UserRole.BUYER)
        tour = await make_tour(realtor, buyer=buyer)

        found = await tour_service.get_tour(db_session, tour.id, caller_for(buyer))
        assert found.id == tour.id

    async def test_deleted_tour_not_found(self, db_session, caller_for, realtor, tour):
        await tour_service.delete_tour(db_session, tour.id, caller_for(realtor))

        with pytest.raises(NotFoundError):
            await tour_service.get_tour(db_session, tour.id, caller_for(realtor))
        assert await tour_service.list_tours(db_session, caller_for(realtor)) == []


# ---------------------------------------------------------------------------
# Stops
# ---------------------------------------------------------------------------


class TestStops:

    async def test_order_index_starts_at_one_and_appends(self, db_session, caller_for, make_house, realtor, tour):
        caller = caller_for(realtor)
        first = await tour_service.add_stop(db_session, tour.id, caller, (await make_house()).id)
        second = await tour_service.add_stop(db_session, tour.id, caller, (await make_house()).id)

        assert first.order_index == 1
        assert second.order_index == 2

    async def test_duplicate_house_rejected(self, db_session, caller_for, make_house, realtor, tour):
        caller = caller_for(realtor)
        house = await make_house()
        await tour_service.add_stop(db_session, tour.id, caller, house.id)

        with pytest.raises(DuplicateError):
            await tour_service.add_stop(db_session, tour.id, caller, house.id)
        assert await _stop_count(db_session, tour.id) == 1

    @pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
    async def test_cannot_add_to_closed_tour(self, db_session, caller_for, make_house, make_tour, realtor, status):
        tour = await make_tour(realtor, status=status)
        with pytest.raises(InvalidStateTransitionError, match="Stops cannot be changed"):
            await tour_service.add_stop(db_session, tour.id, caller_for(realtor), (await make_house()).id)

    async def test_remove_keeps_gaps(self, db_session, caller_for, make_house, make_stop, realtor, tour):
        a = await make_stop(tour, await make_house(), 1)
        b = await make_stop(tour, await make_house(), 2)
        c = await make_stop(tour, await make_house(), 3)

        await tour_service.remove_stop(db_session, tour.id, b.id, caller_for(realtor))

        stops = await tour_service.list_stops(db_session, tour.id)
        assert [(s.id, s.order_index) for s in stops] == [(a.id, 1), (c.id, 3)]

        # Next stop still goes after the highest index
        d = await tour_service.add_stop(db_session, tour.id, caller_for(realtor), (await make_house()).id)
        assert d.order_index == 4

    async def test_remove_unknown_stop(self, db_session, caller_for, realtor, tour):
        with pytest.raises(NotFoundError):
            await tour_service.remove_stop(db_session, tour.id, "nope", caller_for(realtor))

    async def test_reorder_swaps(self, db_session, caller_for, make_house, make_stop, realtor, tour):
        a = await make_stop(tour, await make_house(), 1)
        b = await make_stop(tour, await make_house(), 2)

        stops = await tour_service.reorder_stops(
            db_session,
            tour.id,
            caller_for(realtor),
            [TourStopOrder(id=a.id, order_index=2), TourStopOrder(id=b.id, order_index=1)],
        )
        assert [s.id for s in stops] == [b.id, a.id]

    async def test_reorder_collision_rejected(self, db_session, caller_for, make_house, make_stop, realtor, tour):
        a = await make_stop(tour, await make_house(), 1)
        await make_stop(tour, await make_house(), 2)

        with pytest.raises(ValidationError, match="unique"):
            await tour_service.reorder_stops(
                db_session, tour.id, caller_for(realtor), [TourStopOrder(id=a.id, order_index=2)]
            )


class TestLinkStopToVisit:

    async def test_link_and_duplicate(
        self, db_session, caller_for, make_user, make_house, make_stop, make_visit, make_tour, realtor
    ):
        buyer = await make_user(role=UserRole.BUYER)
        house = await make_house(buyer=buyer)
        tour_a = await make_tour(realtor, buyer=buyer)
        tour_b = await make_tour(realtor, buyer=buyer, name="Sunday tour")
        stop_a = await make_stop(tour_a, house, 1)
        stop_b = await make_stop(tour_b, house, 1)
        visit = await make_visit(buyer, house)

        linked = await tour_service.link_stop_to_visit(db_session, tour_a.id, stop_a.id, visit.id, caller_for(realtor))
        assert linked.visit_id == visit.id

        with pytest.raises(DuplicateError):
            await tour_service.link_stop_to_visit(db_session, tour_b.id, stop_b.id, visit.id, caller_for(realtor))

    async def test_visit_for_other_house_rejected(
        self, db_session, caller_for, make_user, make_connection, make_house, make_stop, make_visit, realtor, tour
    ):
        buyer = await make_user(role=UserRole.BUYER)
        await make_connection(realtor, buyer)
        stop = await make_stop(tour, await make_house(), 1)
        visit = await make_visit(buyer, await make_house())

        with pytest.raises(ValidationError, match="different house"):
            await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))

    async def test_deleted_visit_not_found(
        self, db_session, caller_for, make_user, make_house, make_stop, make_visit, realtor, tour
    ):
        buyer = await make_user(role=UserRole.BUYER)
        house = await make_house()
        stop = await make_stop(tour, house, 1)
        visit = await make_visit(buyer, house, status=VisitStatus.CANCELLED)
        visit.deleted_at = visit.created_at
        await db_session.flush()

        with pytest.raises(NotFoundError, match="Visit not found"):
            await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))

    async def test_other_buyers_visit_forbidden(
        self, db_session, caller_for, make_user, make_connection, make_house, make_stop, make_visit, make_tour, realtor
    ):
        buyer = await make_user(role=UserRole.BUYER)
        other_buyer = await make_user(role=UserRole.BUYER)
        await make_connection(realtor, other_buyer)
        house = await make_house(buyer=buyer)
        tour = await make_tour(realtor, buyer=buyer)
        stop = await make_stop(tour, house, 1)
        visit = await make_visit(other_buyer, house)

        with pytest.raises(ForbiddenError, match="tour's buyer"):
            await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))

        await db_session.refresh(stop)
        assert stop.visit_id is None

    async def test_unconnected_buyers_visit_forbidden(
        self, db_session, caller_for, make_user, make_house, make_stop, make_visit, realtor, tour
    ):
        stranger = await make_user(role=UserRole.BUYER)
        house = await make_house(buyer=stranger)
        stop = await make_stop(tour, house, 1)
        visit = await make_visit(stranger, house)

        with pytest.raises(ForbiddenError, match="not connected"):
            await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))

    async def test_connected_buyers_visit_on_tour_without_buyer(
        self, db_session, caller_for, make_user, make_connection, make_house, make_stop, make_visit, realtor, tour
    ):
        buyer = await make_user(role=UserRole.BUYER)
        await make_connection(realtor, buyer)
        house = await make_house(buyer=buyer)
        stop = await make_stop(tour, house, 1)
        visit = await make_visit(buyer, house)

        linked = await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))
        assert linked.visit_id == visit.id

    @pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
    async def test_cannot_link_on_closed_tour(
        self, db_session, caller_for, make_user, make_house, make_stop, make_visit, make_tour, realtor, status
    ):
        buyer = await make_user(role=UserRole.BUYER)
        house = await make_house(buyer=buyer)
        tour = await make_tour(realtor, buyer=buyer, status=status)
        stop = await make_stop(tour, house, 1)
        visit = await make_visit(buyer, house)

        with pytest.raises(InvalidStateTransitionError, match="Stops cannot be changed"):
            await tour_service.link_stop_to_visit(db_session, tour.id, stop.id, visit.id, caller_for(realtor))


# ---------------------------------------------------------------------------
# Route optimization
# ---------------------------------------------------------------------------


# Four houses on one meridian, added out of order: A(30.00) B(30.02) C(30.01) D(30.03)
_LATITUDES = {"A": 30.00, "B": 30.02, "C": 30.01, "D": 30.03}


@pytest.fixture
async def route_tour(make_user, make_house, make_stop, make_tour, realtor):
    """A tour whose stops are A, B, C, D and then E, a house without coordinates."""
    buyer = await make_user(role=UserRole.BUYER)
    tour = await make_tour(realtor, buyer=buyer)
    stops = {}
    for index, (label, lat) in enumerate(_LATITUDES.items(), start=1):
        house = await make_house(buyer=buyer, address=f"{label} Street", latitude=lat, longitude=-97.74)
        stops[label] = await make_stop(tour, house, index)
    stops["E"] = await make_stop(tour, await make_house(buyer=buyer, address="E Street"), 5)
    return tour, buyer, stops


def _labels(plan_stops, stops) -> list[str]:
    by_id = {stop.id: label for label, stop in stops.items()}
    return [by_id[s.id] for s in plan_stops]


class TestOptimizeRoute:

    async def test_preview_orders_by_distance(self, db_session, caller_for, realtor, route_tour):
        tour, _, stops = route_tour

        plan = await tour_service.optimize_route(db_session, tour.id, caller_for(realtor))

        assert _labels(plan.stops, stops) in (["A", "C", "B", "D"], ["D", "B", "C", "A"])
        assert _labels(plan.excluded, stops) == ["E"]
        assert plan.applied is False
        assert plan.improvement_pct == pytest.approx(40.0, abs=0.1)
        assert plan.maps_url.startswith("https://www.google.com/maps/dir/")

        # Preview leaves the stored order alone
        current = await tour_service.list_stops(db_session, tour.id)
        assert [s.id for s in current] == [stops[k].id for k in "ABCDE"]

    async def test_start_house_is_pinned(self, db_session, caller_for, realtor, route_tour):
        tour, _, stops = route_tour

        plan = await tour_service.optimize_route(
            db_session, tour.id, caller_for(realtor), start_house_id=stops["B"].house_id
        )
        assert _labels(plan.stops, stops)[0] == "B"

    async def test_apply_renumbers_stops(self, db_session, caller_for, realtor, route_tour):
        tour, _, stops = route_tour

        plan = await tour_service.optimize_route(
            db_session, tour.id, caller_for(realtor), start_house_id=stops["A"].house_id, apply=True
        )
        assert plan.applied is True

        current = await tour_service.list_stops(db_session, tour.id)
        assert [(label, s.order_index) for label, s in zip(_labels(current, stops), current)] == [
            ("A", 1),
            ("C", 2),
            ("B", 3),
            ("D", 4),
            ("E", 5),
        ]

    async def test_needs_two_located_stops(self, db_session, caller_for, make_house, make_stop, realtor, tour):
        await make_stop(tour, await make_house(latitude=30.0, longitude=-97.7), 1)
        await make_stop(tour, await make_house(address="No Coordinates Lane"), 2)

        with pytest.raises(ValidationError, match="at least 2 houses"):
            await tour_service.optimize_route(db_session, tour.id, caller_for(realtor))

    async def test_start_house_must_be_located_stop(self, db_session, caller_for, realtor, route_tour):
        tour, _, stops = route_tour

        with pytest.raises(ValidationError, match="Start house"):
            await tour_service.optimize_route(
                db_session, tour.id, caller_for(realtor), start_house_id=stops["E"].house_id
            )

    async def test_buyer_can_preview_but_not_apply(self, db_session, caller_for, route_tour):
        tour, buyer, _ = route_tour

        plan = await tour_service.optimize_route(db_session, tour.id, caller_for(buyer))
        assert len(plan.stops) == 4

        with pytest.raises(ForbiddenError):
            await tour_service.optimize_route(db_session, tour.id, caller_for(buyer), apply=True)

    async def test_cannot_apply_on_completed_tour(self, db_session, caller_for, realtor, route_tour):
        tour, _, _ = route_tour
        tour.status = S.COMPLETED.value
        await db_session.flush()

        with pytest.raises(InvalidStateTransitionError, match="Stops cannot be changed"):
            await tour_service.optimize_route(db_session, tour.id, caller_for(realtor), apply=True)
