"""Domain enumerations for HomeTrace.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Account type; decides which side of the buyer/realtor handshake a user sits on."""

    BUYER = "buyer"
    REALTOR = "realtor"
    ADMIN = "admin"


class VisitStatus(str, Enum):
    """Lifecycle of a buyer's walkthrough of one house."""

    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OverallImpression(str, Enum):
    """Buyer's verdict recorded when a visit is completed."""

    LOVED = "LOVED"
    LIKED = "LIKED"
    NEUTRAL = "NEUTRAL"
    DISLIKED = "DISLIKED"


class SuggestionStatus(str, Enum):
    """Status of a realtor's proposed visit time."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class TourStatus(str, Enum):
    """Lifecycle of a realtor's tour itinerary."""

    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
