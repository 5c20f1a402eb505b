"""House list endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.routes.auth import get_caller
from hometrace.domain.caller import Caller
from hometrace.domain.schemas import HouseCreate, HouseResponse
from hometrace.infra.database import get_db
from hometrace.services import house_service

router = APIRouter(prefix="/api/houses", tags=["houses"])


@router.get("", response_model=list[HouseResponse])
async def list_houses(
    buyer_id: Optional[str] = Query(None, alias="buyerId"),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """A buyer's house list. Realtors and admins pass ``buyerId``."""
    houses = await house_service.list_houses(db, caller, buyer_id)
    return [HouseResponse.model_validate(h) for h in houses]


@router.post("", response_model=HouseResponse, status_code=201)
async def add_house(
    body: HouseCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    house = await house_service.add_house(db, caller, body)
    return HouseResponse.model_validate(house)
