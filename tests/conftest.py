"""Shared test infrastructure for the HomeTrace test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_user / make_house / make_connection: factories for the collaborators
- make_visit / make_suggestion / make_tour / make_stop: factories for the
  entities under test
- caller_for: builds the Caller a service receives for a user
- api_client / auth_headers: HTTP client over the full router set
"""

import uuid
from datetime import timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from hometrace.infra.database import Base

import hometrace.domain.models  # noqa: F401

from hometrace.domain.caller import Caller
from hometrace.domain.clock import utcnow
from hometrace.domain.enums import SuggestionStatus, TourStatus, UserRole, VisitStatus
from hometrace.domain.models import (
    BuyerRealtor,
    House,
    HouseBuyer,
    Tour,
    TourStop,
    User,
    Visit,
    VisitSuggestion,
)


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Users, connections and houses
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Factory that creates a User row.

    Usage:
        realtor = await make_user(role=UserRole.REALTOR)
    """
    async def _factory(
        role: UserRole = UserRole.BUYER,
        name: str = "",
        email: str = "",
    ) -> User:
        user_id = str(uuid.uuid4())
        user = User(
            id=user_id,
            email=email or f"{role.value}-{user_id[:8]}@test.com",
            password_hash="not-a-real-hash",
            name=name or f"Test {role.value.title()}",
            role=role.value,
            is_active=True,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


@pytest.fixture
def make_connection(db_session):
    async def _factory(realtor: User, buyer: User) -> BuyerRealtor:
        connection = BuyerRealtor(
            id=str(uuid.uuid4()),
            realtor_id=realtor.id,
            buyer_id=buyer.id,
            connected_at=utcnow(),
        )
        db_session.add(connection)
        await db_session.flush()
        return connection

    return _factory


@pytest.fixture
def make_house(db_session):
    """Factory that creates a House, optionally on a buyer's list.

    Usage:
        house = await make_house(buyer=buyer)
    """
    async def _factory(
        buyer: User | None = None,
        address: str = "12 Maple Street",
        city: str = "Austin",
        state: str = "TX",
        zip_code: str = "78701",
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> House:
        house = House(
            id=str(uuid.uuid4()),
            address=address,
            city=city,
            state=state,
            zip_code=zip_code,
            latitude=latitude,
            longitude=longitude,
            images=[],
        )
        db_session.add(house)
        if buyer is not None:
            db_session.add(
                HouseBuyer(id=str(uuid.uuid4()), house_id=house.id, buyer_id=buyer.id)
            )
        await db_session.flush()
        return house

    return _factory


# ---------------------------------------------------------------------------
# Visits, suggestions and tours
# ---------------------------------------------------------------------------

@pytest.fixture
def make_visit(db_session):
    async def _factory(
        buyer: User,
        house: House,
        status: VisitStatus = VisitStatus.SCHEDULED,
        scheduled_at=None,
        notes: str | None = None,
    ) -> Visit:
        visit = Visit(
            id=str(uuid.uuid4()),
            house_id=house.id,
            buyer_id=buyer.id,
            status=status.value,
            scheduled_at=scheduled_at or utcnow() + timedelta(days=2),
            notes=notes,
        )
        db_session.add(visit)
        await db_session.flush()
        return visit

    return _factory


@pytest.fixture
def make_suggestion(db_session):
    """Factory that creates a VisitSuggestion row directly.

    Bypasses the service so tests can place ``suggested_at`` anywhere,
    including inside the response window.

    Usage:
        suggestion = await make_suggestion(realtor, buyer, house, hours_ahead=10)
    """
    async def _factory(
        realtor: User,
        buyer: User,
        house: House,
        hours_ahead: float = 72,
        status: SuggestionStatus = SuggestionStatus.PENDING,
        message: str | None = None,
    ) -> VisitSuggestion:
        suggestion = VisitSuggestion(
            id=str(uuid.uuid4()),
            house_id=house.id,
            buyer_id=buyer.id,
            suggested_by_realtor_id=realtor.id,
            status=status.value,
            suggested_at=utcnow() + timedelta(hours=hours_ahead),
            message=message,
        )
        db_session.add(suggestion)
        await db_session.flush()
        return suggestion

    return _factory


@pytest.fixture
def make_tour(db_session):
    async def _factory(
        realtor: User,
        buyer: User | None = None,
        status: TourStatus = TourStatus.PLANNED,
        name: str = "Saturday tour",
    ) -> Tour:
        tour = Tour(
            id=str(uuid.uuid4()),
            name=name,
            realtor_id=realtor.id,
            buyer_id=buyer.id if buyer else None,
            status=status.value,
        )
        db_session.add(tour)
        await db_session.flush()
        return tour

    return _factory


@pytest.fixture
def make_stop(db_session):
    async def _factory(tour: Tour, house: House, order_index: int) -> TourStop:
        stop = TourStop(
            id=str(uuid.uuid4()),
            tour_id=tour.id,
            house_id=house.id,
            order_index=order_index,
        )
        db_session.add(stop)
        await db_session.flush()
        return stop

    return _factory


@pytest.fixture
def caller_for():
    def _factory(user: User) -> Caller:
        return Caller.from_user(user)

    return _factory


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client(db_session):
    """AsyncClient over every router, with get_db bound to the test session."""
    from hometrace.app.error_handlers import register_exception_handlers
    from hometrace.app.routes.auth import router as auth_router
    from hometrace.app.routes.connections import router as connections_router
    from hometrace.app.routes.houses import router as houses_router
    from hometrace.app.routes.suggestions import router as suggestions_router
    from hometrace.app.routes.tours import router as tours_router
    from hometrace.app.routes.visits import router as visits_router
    from hometrace.infra.database import get_db

    test_app = FastAPI()
    register_exception_handlers(test_app)
    test_app.include_router(auth_router)
    test_app.include_router(connections_router)
    test_app.include_router(houses_router)
    test_app.include_router(suggestions_router)
    test_app.include_router(visits_router)
    test_app.include_router(tours_router)

    async def _override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = _override_get_db

    return AsyncClient(
        transport=ASGITransport(app=test_app, raise_app_exceptions=False),
        base_url="http://testserver",
    )


@pytest.fixture
def auth_headers():
    from hometrace.services.auth_service import create_access_token

    def _factory(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _factory
