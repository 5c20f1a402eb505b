"""Realtor-buyer connection endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.app.routes.auth import get_caller, require_role
from hometrace.domain.caller import Caller
from hometrace.domain.enums import UserRole
from hometrace.domain.schemas import ConnectionCreate, ConnectionResponse, MessageResponse
from hometrace.infra.database import get_db
from hometrace.services import connection_service

router = APIRouter(prefix="/api/connections", tags=["connections"])


@router.get("", response_model=list[ConnectionResponse])
async def list_connections(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    connections = await connection_service.list_connections(db, caller)
    return [ConnectionResponse.model_validate(c) for c in connections]


@router.post(
    "",
    response_model=ConnectionResponse,
    status_code=201,
    dependencies=[Depends(require_role(UserRole.REALTOR.value))],
)
async def create_connection(
    body: ConnectionCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    """Realtor connects to an existing buyer account by email."""
    connection = await connection_service.connect(db, caller, body.buyer_email)
    return ConnectionResponse.model_validate(connection)


@router.delete("/{connection_id}", response_model=MessageResponse)
async def delete_connection(
    connection_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    await connection_service.disconnect(db, connection_id, caller)
    return MessageResponse(message="Connection removed", id=connection_id)
