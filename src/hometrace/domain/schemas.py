"""Pydantic v2 schemas for API request/response validation.

Wire format is camelCase (``houseId``, ``scheduledAt``); snake_case field
names are accepted too.
"""

from datetime import datetime
from typing import Annotated, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hometrace.domain.clock import as_utc
from hometrace.domain.enums import (
    OverallImpression,
    SuggestionStatus,
    TourStatus,
    UserRole,
    VisitStatus,
)

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Page(CamelModel, Generic[T]):
    """One page of a list endpoint."""

    items: list[T]
    page: int
    limit: int
    total: int


class MessageResponse(CamelModel):
    message: str
    id: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserCreate(CamelModel):
    """Schema for creating a new user."""

    email: str
    password: str = Field(min_length=8)
    name: str
    role: UserRole = UserRole.BUYER
    phone: Optional[str] = None


class UserLogin(CamelModel):
    email: str
    password: str


class UserResponse(CamelModel):
    id: str
    email: str
    name: str
    role: str
    phone: Optional[str] = None
    is_active: bool


class TokenResponse(CamelModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: Optional[UserResponse] = None


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


class ConnectionCreate(CamelModel):
    buyer_email: str


class ConnectionResponse(CamelModel):
    id: str
    buyer_id: str
    realtor_id: str
    connected_at: Optional[UTCDateTime] = None


# ---------------------------------------------------------------------------
# Houses
# ---------------------------------------------------------------------------


class HouseCreate(CamelModel):
    """Add a house to a buyer's list. Realtors must name the buyer."""

    address: str = Field(min_length=1)
    city: str
    state: str
    zip_code: str
    price: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    images: list[str] = []
    buyer_id: Optional[str] = None
    notes: Optional[str] = None


class HouseResponse(CamelModel):
    id: str
    address: str
    city: str
    state: str
    zip_code: str
    price: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Visits
# ---------------------------------------------------------------------------


class VisitCreate(CamelModel):
    house_id: str
    scheduled_at: UTCDateTime
    notes: Optional[str] = None


class VisitUpdate(CamelModel):
    scheduled_at: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class VisitComplete(CamelModel):
    overall_impression: Optional[OverallImpression] = None
    would_buy: Optional[bool] = None
    notes: Optional[str] = None


class VisitResponse(CamelModel):
    id: str
    house_id: str
    buyer_id: str
    status: VisitStatus
    scheduled_at: UTCDateTime
    started_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None
    overall_impression: Optional[OverallImpression] = None
    would_buy: Optional[bool] = None
    notes: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None


# ---------------------------------------------------------------------------
# Visit suggestions
# ---------------------------------------------------------------------------


class SuggestionCreate(CamelModel):
    buyer_id: str
    house_id: str
    suggested_at: UTCDateTime
    message: Optional[str] = Field(default=None, max_length=500)


class SuggestionReject(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class SuggestionResponse(CamelModel):
    id: str
    house_id: str
    buyer_id: str
    suggested_by_realtor_id: str
    status: SuggestionStatus
    suggested_at: UTCDateTime
    message: Optional[str] = None
    accepted_at: Optional[UTCDateTime] = None
    rejected_at: Optional[UTCDateTime] = None
    rejection_reason: Optional[str] = None
    resulting_visit_id: Optional[str] = None
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None


class SuggestionAcceptResponse(CamelModel):
    message: str
    suggestion: SuggestionResponse
    visit: VisitResponse


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


class TourCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    buyer_id: Optional[str] = None
    scheduled_date: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class TourUpdate(CamelModel):
    """Partial update; only fields present in the body are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    buyer_id: Optional[str] = None
    scheduled_date: Optional[UTCDateTime] = None
    notes: Optional[str] = None
    status: Optional[TourStatus] = None


class TourStatusUpdate(CamelModel):
    status: TourStatus


class TourStopCreate(CamelModel):
    house_id: str
    estimated_time: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class TourStopOrder(CamelModel):
    id: str
    order_index: int = Field(ge=0)


class TourStopReorder(CamelModel):
    stops: list[TourStopOrder]


class TourStopLinkVisit(CamelModel):
    visit_id: str


class TourStopResponse(CamelModel):
    id: str
    tour_id: str
    house_id: str
    visit_id: Optional[str] = None
    order_index: int
    estimated_time: Optional[UTCDateTime] = None
    notes: Optional[str] = None


class TourResponse(CamelModel):
    id: str
    name: str
    realtor_id: str
    buyer_id: Optional[str] = None
    status: TourStatus
    scheduled_date: Optional[UTCDateTime] = None
    notes: Optional[str] = None
    stops: list[TourStopResponse] = []
    created_at: Optional[UTCDateTime] = None
    updated_at: Optional[UTCDateTime] = None


class RouteOptimizeRequest(CamelModel):
    start_house_id: Optional[str] = None
    apply: bool = False


class RouteOptimizationResponse(CamelModel):
    """Proposed stop order. ``stops`` is listed in visiting order."""

    tour_id: str
    total_distance_km: float
    estimated_minutes: int
    improvement_pct: float
    maps_url: str
    applied: bool
    stops: list[TourStopResponse]
    excluded: list[TourStopResponse] = []
