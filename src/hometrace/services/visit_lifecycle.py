"""Visit lifecycle: validates status transitions and applies them.

SCHEDULED -> IN_PROGRESS -> COMPLETED, with CANCELLED reachable from either
non-terminal state. Every write stamps the matching timestamp in the same
commit as the status change.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.domain.caller import Caller
from hometrace.domain.clock import as_utc, utcnow
from hometrace.domain.enums import OverallImpression, VisitStatus
from hometrace.domain.errors import (
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from hometrace.domain.models import Visit
from hometrace.services.connection_service import connected_buyer_ids, is_connected
from hometrace.services.house_service import get_house, is_on_list

logger = logging.getLogger(__name__)

S = VisitStatus

TRANSITION_MAP: dict[VisitStatus, set[VisitStatus]] = {
    S.SCHEDULED: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

TERMINAL_STATES: set[VisitStatus] = {s for s, targets in TRANSITION_MAP.items() if not targets}

# Human-readable reasons for the common wrong-state requests
_REASONS: dict[tuple[VisitStatus, VisitStatus], str] = {
    (S.IN_PROGRESS, S.IN_PROGRESS): "Visit is already in progress",
    (S.COMPLETED, S.IN_PROGRESS): "Visit has already been completed",
    (S.CANCELLED, S.IN_PROGRESS): "Cannot start a cancelled visit",
    (S.SCHEDULED, S.COMPLETED): "Visit has not been started",
    (S.COMPLETED, S.COMPLETED): "Visit has already been completed",
    (S.CANCELLED, S.COMPLETED): "Cannot complete a cancelled visit",
    (S.CANCELLED, S.CANCELLED): "Visit is already cancelled",
    (S.COMPLETED, S.CANCELLED): "Cannot cancel a completed visit",
}


class VisitStateMachine:
    """Validates visit status transitions."""

    def validate_transition(self, current_status: VisitStatus, target_status: VisitStatus) -> bool:
        """Return True if the transition is valid. Raise InvalidStateTransitionError if not."""
        if target_status in TRANSITION_MAP[current_status]:
            return True

        reason = _REASONS.get((current_status, target_status))
        if reason is None:
            if current_status in TERMINAL_STATES:
                reason = f"No transitions allowed from {current_status.value}"
            else:
                reason = f"Transition from {current_status.value} to {target_status.value} is not allowed"
        raise InvalidStateTransitionError(current_status, target_status, reason)

    def get_allowed_transitions(self, current_status: VisitStatus) -> list[VisitStatus]:
        return sorted(TRANSITION_MAP[current_status], key=lambda s: s.value)


state_machine = VisitStateMachine()


def _status(visit: Visit) -> VisitStatus:
    return VisitStatus(visit.status)


async def _get_visit_or_404(db: AsyncSession, visit_id: str) -> Visit:
    result = await db.execute(select(Visit).where(Visit.id == visit_id))
    visit = result.scalar_one_or_none()
    if visit is None:
        raise NotFoundError("Visit")
    return visit


def _check_owner(visit: Visit, caller: Caller, action: str) -> None:
    """Only the owning buyer (or an admin) may mutate a visit."""
    if caller.is_admin or visit.buyer_id == caller.user_id:
        return
    raise ForbiddenError(f"Only the visit owner can {action} it")


async def _transition(db: AsyncSession, visit: Visit, target: VisitStatus, caller: Caller) -> Visit:
    current = _status(visit)
    state_machine.validate_transition(current, target)

    now = utcnow()
    visit.status = target.value
    if target == S.IN_PROGRESS:
        visit.started_at = now
    elif target == S.COMPLETED:
        visit.completed_at = now
    visit.updated_at = now

    await db.commit()
    logger.info(
        "Visit %s: %s → %s (user=%s)",
        visit.id,
        current.value,
        target.value,
        caller.user_id,
    )
    return visit


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def schedule(
    db: AsyncSession,
    caller: Caller,
    house_id: str,
    scheduled_at: datetime,
    notes: Optional[str] = None,
) -> Visit:
    """Create a SCHEDULED visit for the calling buyer."""
    if not (caller.is_buyer or caller.is_admin):
        raise ForbiddenError("Only buyers can schedule visits")

    scheduled_at = as_utc(scheduled_at)
    if scheduled_at < utcnow():
        raise ValidationError(
            "Scheduled date cannot be in the past",
            {"scheduledAt": ["must not be in the past"]},
        )

    await get_house(db, house_id)
    if caller.is_buyer and not await is_on_list(db, house_id, caller.user_id):
        raise NotFoundError("House in your list")

    visit = Visit(
        house_id=house_id,
        buyer_id=caller.user_id,
        status=S.SCHEDULED.value,
        scheduled_at=scheduled_at,
        notes=notes,
    )
    db.add(visit)
    await db.commit()
    logger.info("Visit %s scheduled for house %s (buyer=%s)", visit.id, house_id, caller.user_id)
    return visit


async def start(db: AsyncSession, visit_id: str, caller: Caller) -> Visit:
    visit = await _get_visit_or_404(db, visit_id)
    _check_owner(visit, caller, "start")
    return await _transition(db, visit, S.IN_PROGRESS, caller)


async def complete(
    db: AsyncSession,
    visit_id: str,
    caller: Caller,
    overall_impression: Optional[OverallImpression] = None,
    would_buy: Optional[bool] = None,
    notes: Optional[str] = None,
) -> Visit:
    """Finish an in-progress visit and record the buyer's impression."""
    visit = await _get_visit_or_404(db, visit_id)
    _check_owner(visit, caller, "complete")
    state_machine.validate_transition(_status(visit), S.COMPLETED)

    if overall_impression is not None:
        visit.overall_impression = OverallImpression(overall_impression).value
    if would_buy is not None:
        visit.would_buy = would_buy
    if notes:
        visit.notes = f"{visit.notes}\n\n--- Completion Notes ---\n{notes}" if visit.notes else notes

    return await _transition(db, visit, S.COMPLETED, caller)


async def cancel(db: AsyncSession, visit_id: str, caller: Caller) -> Visit:
    visit = await _get_visit_or_404(db, visit_id)
    _check_owner(visit, caller, "cancel")
    return await _transition(db, visit, S.CANCELLED, caller)


async def remove(db: AsyncSession, visit_id: str, caller: Caller) -> Visit:
    """Soft-delete a visit at any status."""
    visit = await _get_visit_or_404(db, visit_id)
    _check_owner(visit, caller, "delete")

    visit.deleted_at = utcnow()
    await db.commit()
    logger.info("Visit %s deleted (status=%s, user=%s)", visit.id, visit.status, caller.user_id)
    return visit


async def reschedule(
    db: AsyncSession,
    visit_id: str,
    caller: Caller,
    scheduled_at: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Visit:
    """Change the time or notes of a visit that has not started yet."""
    visit = await _get_visit_or_404(db, visit_id)
    _check_owner(visit, caller, "update")

    current = _status(visit)
    if current != S.SCHEDULED:
        raise InvalidStateTransitionError(current, S.SCHEDULED, "Only scheduled visits can be updated")

    if scheduled_at is not None:
        scheduled_at = as_utc(scheduled_at)
        if scheduled_at < utcnow():
            raise ValidationError(
                "Scheduled date cannot be in the past",
                {"scheduledAt": ["must not be in the past"]},
            )
        visit.scheduled_at = scheduled_at
    if notes is not None:
        visit.notes = notes

    await db.commit()
    return visit


async def get_visit(db: AsyncSession, visit_id: str, caller: Caller) -> Visit:
    """Owner buyer, admin, or a realtor connected to the buyer (read-only)."""
    visit = await _get_visit_or_404(db, visit_id)
    if caller.is_admin or visit.buyer_id == caller.user_id:
        return visit
    if caller.is_realtor and await is_connected(db, caller.user_id, visit.buyer_id):
        return visit
    raise ForbiddenError()


async def list_visits(
    db: AsyncSession,
    caller: Caller,
    status: Optional[VisitStatus] = None,
    house_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Visit], int]:
    """Role-scoped visit listing ordered by scheduled time. Returns (items, total)."""
    query = select(Visit)

    if caller.is_buyer:
        query = query.where(Visit.buyer_id == caller.user_id)
    elif caller.is_realtor:
        buyer_ids = await connected_buyer_ids(db, caller.user_id)
        query = query.where(Visit.buyer_id.in_(buyer_ids))
    # admin sees all

    if status:
        query = query.where(Visit.status == VisitStatus(status).value)
    if house_id:
        query = query.where(Visit.house_id == house_id)
    if date_from:
        query = query.where(Visit.scheduled_at >= as_utc(date_from))
    if date_to:
        query = query.where(Visit.scheduled_at <= as_utc(date_to))

    total = (await db.execute(query.with_only_columns(func.count(Visit.id)))).scalar_one()

    query = query.order_by(Visit.scheduled_at.asc()).offset((page - 1) * limit).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total
