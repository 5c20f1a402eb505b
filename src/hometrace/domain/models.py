"""SQLAlchemy ORM models for HomeTrace.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime(timezone=True) for timestamps, stamped client-side with utcnow
  so they are loaded on the instance after flush; SQLite hands them back
  naive, callers treat naive values as UTC
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from hometrace.domain.clock import utcnow
from hometrace.domain.enums import SuggestionStatus, TourStatus, VisitStatus
from hometrace.infra.database import Base, SoftDeleteMixin


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class User(SoftDeleteMixin, Base):
    """Platform user: buyer, realtor or admin."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="buyer")  # buyer, realtor, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class BuyerRealtor(SoftDeleteMixin, Base):
    """Connection between a buyer and a realtor.

    Gates every realtor action on a buyer's houses, visits and tours.
    """

    __tablename__ = "buyer_realtors"
    __table_args__ = (UniqueConstraint("buyer_id", "realtor_id", name="uq_buyer_realtor"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    realtor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    connected_at = Column(DateTime(timezone=True), default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Houses
# ---------------------------------------------------------------------------


class House(SoftDeleteMixin, Base):
    """A property that can appear on buyers' lists, visits and tours."""

    __tablename__ = "houses"

    id = Column(String(36), primary_key=True, default=_uuid)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(50), nullable=False)
    zip_code = Column(String(20), nullable=False)
    price = Column(Integer, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    sqft = Column(Integer, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    images = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class HouseBuyer(SoftDeleteMixin, Base):
    """A house on a buyer's list."""

    __tablename__ = "house_buyers"
    __table_args__ = (UniqueConstraint("house_id", "buyer_id", name="uq_house_buyer"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    house_id = Column(String(36), ForeignKey("houses.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    added_by_realtor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Visits
# ---------------------------------------------------------------------------


class Visit(SoftDeleteMixin, Base):
    """One buyer's scheduled or completed walkthrough of one house."""

    __tablename__ = "visits"

    id = Column(String(36), primary_key=True, default=_uuid)
    house_id = Column(String(36), ForeignKey("houses.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=VisitStatus.SCHEDULED.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    overall_impression = Column(String(20), nullable=True)  # OverallImpression
    would_buy = Column(Boolean, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class VisitSuggestion(SoftDeleteMixin, Base):
    """A realtor's proposed date/time for a buyer to visit a house."""

    __tablename__ = "visit_suggestions"

    id = Column(String(36), primary_key=True, default=_uuid)
    house_id = Column(String(36), ForeignKey("houses.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    suggested_by_realtor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SuggestionStatus.PENDING.value, index=True)
    suggested_at = Column(DateTime(timezone=True), nullable=False)
    message = Column(Text, nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    # One visit per accepted suggestion
    resulting_visit_id = Column(String(36), ForeignKey("visits.id"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


class Tour(SoftDeleteMixin, Base):
    """A realtor-owned, ordered itinerary of houses to visit."""

    __tablename__ = "tours"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    realtor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=TourStatus.PLANNED.value, index=True)
    scheduled_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TourStop(Base):
    """One house in a tour. Removed stops are deleted outright."""

    __tablename__ = "tour_stops"
    __table_args__ = (
        UniqueConstraint("tour_id", "house_id", name="uq_tour_stop_house"),
        UniqueConstraint("tour_id", "order_index", name="uq_tour_stop_order"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tour_id = Column(String(36), ForeignKey("tours.id"), nullable=False, index=True)
    house_id = Column(String(36), ForeignKey("houses.id"), nullable=False)
    visit_id = Column(String(36), ForeignKey("visits.id"), nullable=True, unique=True)
    order_index = Column(Integer, nullable=False)
    estimated_time = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
