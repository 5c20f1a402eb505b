"""Buyer house lists."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.domain.caller import Caller
from hometrace.domain.errors import ForbiddenError, NotFoundError, ValidationError
from hometrace.domain.models import House, HouseBuyer
from hometrace.services.connection_service import is_connected

logger = logging.getLogger(__name__)


async def get_house(db: AsyncSession, house_id: str) -> House:
    result = await db.execute(select(House).where(House.id == house_id))
    house = result.scalar_one_or_none()
    if house is None:
        raise NotFoundError("House")
    return house


async def is_on_list(db: AsyncSession, house_id: str, buyer_id: str) -> bool:
    result = await db.execute(
        select(HouseBuyer.id).where(HouseBuyer.house_id == house_id, HouseBuyer.buyer_id == buyer_id)
    )
    return result.first() is not None


async def _resolve_list_owner(db: AsyncSession, caller: Caller, buyer_id: Optional[str]) -> str:
    if caller.is_buyer:
        if buyer_id and buyer_id != caller.user_id:
            raise ForbiddenError("Buyers can only manage their own house list")
        return caller.user_id
    if not buyer_id:
        raise ValidationError("buyerId is required", {"buyerId": ["required for realtors"]})
    if caller.is_realtor and not await is_connected(db, caller.user_id, buyer_id):
        raise ForbiddenError("You are not connected to this buyer")
    return buyer_id


async def add_house(db: AsyncSession, caller: Caller, data) -> House:
    """Create a house and put it on a buyer's list.

    ``data`` is a ``HouseCreate``. Buyers add to their own list; realtors add
    to a connected buyer's list.
    """
    buyer_id = await _resolve_list_owner(db, caller, data.buyer_id)

    house = House(
        address=data.address,
        city=data.city,
        state=data.state,
        zip_code=data.zip_code,
        price=data.price,
        bedrooms=data.bedrooms,
        bathrooms=data.bathrooms,
        sqft=data.sqft,
        latitude=data.latitude,
        longitude=data.longitude,
        images=list(data.images),
    )
    db.add(house)
    await db.flush()

    db.add(
        HouseBuyer(
            house_id=house.id,
            buyer_id=buyer_id,
            added_by_realtor_id=caller.user_id if caller.is_realtor else None,
            notes=data.notes,
        )
    )
    await db.commit()
    logger.info("House %s added to list of buyer %s", house.id, buyer_id)
    return house


async def list_houses(db: AsyncSession, caller: Caller, buyer_id: Optional[str] = None) -> list[House]:
    if caller.is_admin and not buyer_id:
        result = await db.execute(select(House).order_by(House.created_at.desc()))
        return list(result.scalars().all())

    owner_id = await _resolve_list_owner(db, caller, buyer_id)
    result = await db.execute(
        select(House)
        .join(HouseBuyer, HouseBuyer.house_id == House.id)
        .where(HouseBuyer.buyer_id == owner_id)
        .order_by(HouseBuyer.created_at.desc())
    )
    return list(result.scalars().all())
