"""Visit suggestions: a realtor proposes a time, the buyer accepts or rejects.

PENDING -> ACCEPTED | REJECTED | EXPIRED, each reached at most once.

Expiry is lazy. A PENDING suggestion whose ``suggested_at`` is less than the
response window away is EXPIRED; the rewrite happens the next time the row is
read or someone tries to act on it. Accepting creates the Visit in the same
transaction as the status flip, and the flip only applies to a row that is
still PENDING in the database.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.config import get_settings
from hometrace.domain.caller import Caller
from hometrace.domain.clock import as_utc, utcnow
from hometrace.domain.enums import SuggestionStatus, VisitStatus
from hometrace.domain.errors import (
    DuplicateError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from hometrace.domain.models import Visit, VisitSuggestion
from hometrace.services.connection_service import is_connected
from hometrace.services.house_service import is_on_list

logger = logging.getLogger(__name__)

S = SuggestionStatus

RESPONSE_WINDOW = timedelta(hours=get_settings().suggestion_response_window_hours)

_ALREADY = {
    S.ACCEPTED: "Suggestion has already been accepted",
    S.REJECTED: "Suggestion has already been rejected",
    S.EXPIRED: "Suggestion has already expired",
}


def resolve_effective_status(
    status: SuggestionStatus,
    suggested_at: datetime,
    now: datetime,
    window: timedelta = RESPONSE_WINDOW,
) -> SuggestionStatus:
    """Return the status a suggestion really has at ``now``.

    Pure: only a PENDING suggestion can change, and it becomes EXPIRED once
    ``suggested_at`` is closer than ``window`` to ``now`` (or already past).
    """
    status = SuggestionStatus(status)
    if status == S.PENDING and as_utc(suggested_at) - as_utc(now) < window:
        return S.EXPIRED
    return status


async def refresh_status(
    db: AsyncSession,
    suggestion: VisitSuggestion,
    now: Optional[datetime] = None,
) -> SuggestionStatus:
    """Persist EXPIRED if the stored PENDING status has lapsed."""
    now = now or utcnow()
    stored = SuggestionStatus(suggestion.status)
    effective = resolve_effective_status(stored, suggestion.suggested_at, now)
    if effective == stored:
        return stored

    await db.execute(
        update(VisitSuggestion)
        .where(VisitSuggestion.id == suggestion.id, VisitSuggestion.status == S.PENDING.value)
        .values(status=effective.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(suggestion)
    logger.info("Suggestion %s: %s → %s (lazy)", suggestion.id, stored.value, suggestion.status)
    return SuggestionStatus(suggestion.status)


async def _expire_lapsed(db: AsyncSession, now: datetime) -> None:
    """Bulk form of ``refresh_status`` run before listing."""
    result = await db.execute(
        update(VisitSuggestion)
        .where(
            VisitSuggestion.status == S.PENDING.value,
            VisitSuggestion.suggested_at < now + RESPONSE_WINDOW,
        )
        .values(status=S.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Expired %d lapsed suggestion(s)", result.rowcount)
    await db.commit()


async def _get_suggestion_or_404(db: AsyncSession, suggestion_id: str) -> VisitSuggestion:
    result = await db.execute(select(VisitSuggestion).where(VisitSuggestion.id == suggestion_id))
    suggestion = result.scalar_one_or_none()
    if suggestion is None:
        raise NotFoundError("Suggestion")
    return suggestion


def _check_recipient(suggestion: VisitSuggestion, caller: Caller) -> None:
    if caller.is_admin or suggestion.buyer_id == caller.user_id:
        return
    raise ForbiddenError("Only the buyer can respond to this suggestion")


async def _require_pending(
    db: AsyncSession,
    suggestion: VisitSuggestion,
    target: SuggestionStatus,
    now: datetime,
) -> None:
    status = await refresh_status(db, suggestion, now)
    if status != S.PENDING:
        raise InvalidStateTransitionError(status, target, _ALREADY[status])


async def _compare_and_set(
    db: AsyncSession,
    suggestion: VisitSuggestion,
    target: SuggestionStatus,
    **values,
) -> None:
    """Flip a PENDING row to ``target``. Rolls back if another writer got there first."""
    result = await db.execute(
        update(VisitSuggestion)
        .where(
            VisitSuggestion.id == suggestion.id,
            VisitSuggestion.status == S.PENDING.value,
            VisitSuggestion.deleted_at.is_(None),
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        await db.refresh(suggestion)
        current = SuggestionStatus(suggestion.status)
        reason = _ALREADY.get(current, "Suggestion is no longer pending")
        raise InvalidStateTransitionError(current, target, reason)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def suggest(
    db: AsyncSession,
    caller: Caller,
    buyer_id: str,
    house_id: str,
    suggested_at: datetime,
    message: Optional[str] = None,
) -> VisitSuggestion:
    """Realtor proposes a visit time to one of their buyers."""
    if not (caller.is_realtor or caller.is_admin):
        raise ForbiddenError("Only realtors can suggest visits")
    if caller.is_realtor and not await is_connected(db, caller.user_id, buyer_id):
        raise ForbiddenError("You are not connected to this buyer")

    if not await is_on_list(db, house_id, buyer_id):
        raise NotFoundError("House in buyer's list")

    now = utcnow()
    suggested_at = as_utc(suggested_at)
    if suggested_at < now:
        raise ValidationError(
            "Suggested date cannot be in the past",
            {"suggestedAt": ["must not be in the past"]},
        )
    if suggested_at - now < RESPONSE_WINDOW:
        hours = int(RESPONSE_WINDOW.total_seconds() // 3600)
        raise ValidationError(
            f"Suggested date must be at least {hours} hours away so the buyer can respond",
            {"suggestedAt": [f"must be at least {hours} hours in the future"]},
        )

    result = await db.execute(
        select(VisitSuggestion).where(
            VisitSuggestion.house_id == house_id,
            VisitSuggestion.buyer_id == buyer_id,
            VisitSuggestion.status == S.PENDING.value,
        )
    )
    for existing in result.scalars().all():
        if await refresh_status(db, existing, now) == S.PENDING:
            raise DuplicateError(
                "A pending suggestion already exists for this house",
                {"suggestionId": existing.id},
            )

    suggestion = VisitSuggestion(
        house_id=house_id,
        buyer_id=buyer_id,
        suggested_by_realtor_id=caller.user_id,
        status=S.PENDING.value,
        suggested_at=suggested_at,
        message=message,
    )
    db.add(suggestion)
    await db.commit()
    logger.info(
        "Suggestion %s created for house %s (buyer=%s, realtor=%s)",
        suggestion.id,
        house_id,
        buyer_id,
        caller.user_id,
    )
    return suggestion


async def get_suggestion(db: AsyncSession, suggestion_id: str, caller: Caller) -> VisitSuggestion:
    """Buyer, suggesting realtor or admin. Applies lazy expiry."""
    suggestion = await _get_suggestion_or_404(db, suggestion_id)
    if not (
        caller.is_admin
        or suggestion.buyer_id == caller.user_id
        or suggestion.suggested_by_realtor_id == caller.user_id
    ):
        raise ForbiddenError()
    await refresh_status(db, suggestion)
    return suggestion


async def list_suggestions(
    db: AsyncSession,
    caller: Caller,
    status: Optional[SuggestionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[VisitSuggestion], int]:
    """Buyers see what they received, realtors what they sent, admins everything."""
    now = utcnow()
    await _expire_lapsed(db, now)

    query = select(VisitSuggestion)
    if caller.is_buyer:
        query = query.where(VisitSuggestion.buyer_id == caller.user_id)
    elif caller.is_realtor:
        query = query.where(VisitSuggestion.suggested_by_realtor_id == caller.user_id)

    if status:
        query = query.where(VisitSuggestion.status == SuggestionStatus(status).value)
    if date_from:
        query = query.where(VisitSuggestion.suggested_at >= as_utc(date_from))
    if date_to:
        query = query.where(VisitSuggestion.suggested_at <= as_utc(date_to))

    total = (await db.execute(query.with_only_columns(func.count(VisitSuggestion.id)))).scalar_one()

    query = (
        query.order_by(VisitSuggestion.suggested_at.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def accept(db: AsyncSession, suggestion_id: str, caller: Caller) -> tuple[VisitSuggestion, Visit]:
    """Accept a pending suggestion and schedule the visit it proposes.

    The Visit insert and the status flip share one transaction. If the flip
    matches no PENDING row the whole transaction is rolled back, so a lost
    race never leaves a Visit behind.
    """
    suggestion = await _get_suggestion_or_404(db, suggestion_id)
    _check_recipient(suggestion, caller)

    now = utcnow()
    await _require_pending(db, suggestion, S.ACCEPTED, now)
    if not await is_on_list(db, suggestion.house_id, suggestion.buyer_id):
        raise NotFoundError("House in buyer's list")

    visit = Visit(
        house_id=suggestion.house_id,
        buyer_id=suggestion.buyer_id,
        status=VisitStatus.SCHEDULED.value,
        scheduled_at=as_utc(suggestion.suggested_at),
        notes=suggestion.message,
    )
    db.add(visit)
    await db.flush()

    await _compare_and_set(
        db,
        suggestion,
        S.ACCEPTED,
        accepted_at=now,
        resulting_visit_id=visit.id,
        updated_at=now,
    )
    await db.commit()
    await db.refresh(suggestion)

    logger.info(
        "Suggestion %s: %s → %s (user=%s, visit=%s)",
        suggestion.id,
        S.PENDING.value,
        S.ACCEPTED.value,
        caller.user_id,
        visit.id,
    )
    return suggestion, visit


async def reject(
    db: AsyncSession,
    suggestion_id: str,
    caller: Caller,
    reason: Optional[str] = None,
) -> VisitSuggestion:
    suggestion = await _get_suggestion_or_404(db, suggestion_id)
    _check_recipient(suggestion, caller)

    now = utcnow()
    await _require_pending(db, suggestion, S.REJECTED, now)

    await _compare_and_set(
        db,
        suggestion,
        S.REJECTED,
        rejected_at=now,
        rejection_reason=reason,
        updated_at=now,
    )
    await db.commit()
    await db.refresh(suggestion)

    logger.info(
        "Suggestion %s: %s → %s (user=%s)",
        suggestion.id,
        S.PENDING.value,
        S.REJECTED.value,
        caller.user_id,
    )
    return suggestion


async def withdraw(db: AsyncSession, suggestion_id: str, caller: Caller) -> None:
    """The suggesting realtor (or an admin) soft-deletes a still-pending suggestion."""
    suggestion = await _get_suggestion_or_404(db, suggestion_id)
    if not (caller.is_admin or suggestion.suggested_by_realtor_id == caller.user_id):
        raise ForbiddenError("Only the realtor who made this suggestion can withdraw it")

    status = await refresh_status(db, suggestion)
    if status != S.PENDING:
        raise InvalidStateTransitionError(status, "WITHDRAWN", "Only pending suggestions can be withdrawn")

    suggestion.deleted_at = utcnow()
    await db.commit()
    logger.info("Suggestion %s withdrawn (user=%s)", suggestion.id, caller.user_id)
