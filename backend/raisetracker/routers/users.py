"""User routes: list for everyone signed in; create/update/delete for admins."""

import uuid as uuid_mod

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.core.auth import client_ip, get_current_session, require_admin
from raisetracker.core.errors import InvalidInputError
from raisetracker.core.session_tokens import AuthSession
from raisetracker.dependencies import get_db
from raisetracker.schemas.user import UserCreate, UserRead, UserSummary, UserUpdate
from raisetracker.services import user_service

router = APIRouter(prefix="/api/users", tags=["users"])


def _parse_user_id(value: str) -> uuid_mod.UUID:
    try:
        return uuid_mod.UUID(value)
    except ValueError:
        raise InvalidInputError("Invalid user id")


@router.get("", response_model=None)
async def list_users(
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    users = await user_service.list_users(db)
    if session.is_admin:
        return [UserRead.model_validate(u) for u in users]
    return [UserSummary.model_validate(u) for u in users]


@router.post("", status_code=201, response_model=UserRead)
async def create_user(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: AuthSession = Depends(require_admin),
):
    return await user_service.create_user(
        db,
        username=body.username,
        display_name=body.display_name,
        password=body.password,
        is_admin=body.is_admin,
        actor_id=admin.user_id,
        ip_address=client_ip(request),
    )


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: str,
    body: UserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: AuthSession = Depends(require_admin),
):
    return await user_service.update_user(
        db,
        _parse_user_id(user_id),
        display_name=body.display_name,
        password=body.password,
        is_admin=body.is_admin,
        actor_id=admin.user_id,
        ip_address=client_ip(request),
    )


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: AuthSession = Depends(require_admin),
):
    await user_service.delete_user(
        db,
        _parse_user_id(user_id),
        actor_id=admin.user_id,
        ip_address=client_ip(request),
    )
    return Response(status_code=204)
