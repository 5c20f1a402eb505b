"""Realtor-buyer connections.

A connection is what lets a realtor read a buyer's visits, suggest visits to
them and build tours for them.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.domain.caller import Caller
from hometrace.domain.clock import utcnow
from hometrace.domain.enums import UserRole
from hometrace.domain.errors import DuplicateError, ForbiddenError, NotFoundError
from hometrace.domain.models import BuyerRealtor, User

logger = logging.getLogger(__name__)


async def is_connected(db: AsyncSession, realtor_id: str, buyer_id: str) -> bool:
    """Return True if a live connection exists between the realtor and buyer."""
    result = await db.execute(
        select(BuyerRealtor.id).where(
            BuyerRealtor.realtor_id == realtor_id,
            BuyerRealtor.buyer_id == buyer_id,
        )
    )
    return result.first() is not None


async def connected_buyer_ids(db: AsyncSession, realtor_id: str) -> list[str]:
    result = await db.execute(
        select(BuyerRealtor.buyer_id).where(BuyerRealtor.realtor_id == realtor_id)
    )
    return list(result.scalars().all())


async def connect(db: AsyncSession, caller: Caller, buyer_email: str) -> BuyerRealtor:
    """Realtor links an existing buyer account to themselves."""
    if not caller.is_realtor:
        raise ForbiddenError("Only realtors can connect to buyers")

    result = await db.execute(
        select(User).where(User.email == buyer_email.lower(), User.role == UserRole.BUYER.value)
    )
    buyer = result.scalar_one_or_none()
    if buyer is None:
        raise NotFoundError("Buyer")

    # A tombstoned connection is revived rather than duplicated
    result = await db.execute(
        select(BuyerRealtor)
        .where(BuyerRealtor.realtor_id == caller.user_id, BuyerRealtor.buyer_id == buyer.id)
        .execution_options(include_deleted=True)
    )
    connection = result.scalar_one_or_none()
    if connection is not None and connection.deleted_at is None:
        raise DuplicateError("You are already connected to this buyer")

    now = utcnow()
    if connection is None:
        connection = BuyerRealtor(
            buyer_id=buyer.id,
            realtor_id=caller.user_id,
            connected_at=now,
        )
        db.add(connection)
    else:
        connection.deleted_at = None
        connection.connected_at = now

    await db.commit()
    logger.info("Realtor %s connected to buyer %s", caller.user_id, buyer.id)
    return connection


async def list_connections(db: AsyncSession, caller: Caller) -> list[BuyerRealtor]:
    query = select(BuyerRealtor)
    if caller.is_realtor:
        query = query.where(BuyerRealtor.realtor_id == caller.user_id)
    elif caller.is_buyer:
        query = query.where(BuyerRealtor.buyer_id == caller.user_id)
    result = await db.execute(query.order_by(BuyerRealtor.connected_at.desc()))
    return list(result.scalars().all())


async def disconnect(db: AsyncSession, connection_id: str, caller: Caller) -> None:
    """Either side of the connection (or an admin) can end it."""
    result = await db.execute(select(BuyerRealtor).where(BuyerRealtor.id == connection_id))
    connection = result.scalar_one_or_none()
    if connection is None:
        raise NotFoundError("Connection")
    if not caller.is_admin and caller.user_id not in (connection.buyer_id, connection.realtor_id):
        raise ForbiddenError()

    connection.deleted_at = utcnow()
    await db.commit()
    logger.info("Connection %s removed by %s", connection_id, caller.user_id)
