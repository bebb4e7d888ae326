"""Investor routes: CRUD, follow-up tasks, activity history.

Reads return the record's version stamp in the body (``versionStamp``) and as
the ``ETag`` header. Writes take the stamp the client last read from
``If-Match`` or from ``versionStamp`` in the body; a stale stamp gets
409 ``{"code": "ETAG_MISMATCH"}``.
"""

import uuid as uuid_mod

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.core.auth import client_ip, get_current_session
from raisetracker.core.errors import InvalidInputError
from raisetracker.core.session_tokens import AuthSession
from raisetracker.dependencies import get_db
from raisetracker.models.investor import Investor
from raisetracker.schemas.investor import (
    ActivityEventRead,
    InvestorCreate,
    InvestorRead,
    InvestorSummary,
    InvestorUpdate,
    TaskCreate,
    TaskUpdate,
)
from raisetracker.services import investor_service

router = APIRouter(prefix="/api/investors", tags=["investors"])


def _parse_id(value: str, label: str) -> uuid_mod.UUID:
    try:
        return uuid_mod.UUID(value)
    except ValueError:
        raise InvalidInputError(f"Invalid {label}")


def parse_if_match(value: str | None) -> str | None:
    """``If-Match: "abc"`` / ``W/"abc"`` / ``abc`` → ``abc``; ``*`` means any."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    if not value or value == "*":
        return None
    return value


def expected_stamp(if_match: str | None, body_stamp: str | None) -> str | None:
    return parse_if_match(if_match) or body_stamp


def _with_etag(response: Response, investor: Investor) -> Investor:
    response.headers["ETag"] = f'"{investor.version_stamp}"'
    return investor


@router.get("", response_model=list[InvestorSummary])
async def list_investors(
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    return await investor_service.list_investors(db)


@router.get("/{investor_id}", response_model=InvestorRead)
async def get_investor(
    investor_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.get_investor(db, _parse_id(investor_id, "investor id"))
    return _with_etag(response, investor)


@router.post("", status_code=201, response_model=InvestorRead)
async def create_investor(
    body: InvestorCreate,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.create_investor(
        db,
        name=body.name,
        category=body.category,
        stage=body.stage,
        status=body.status,
        main_contact=body.main_contact,
        contact_email=body.contact_email,
        contact_phone=body.contact_phone,
        owner=body.owner,
        commit_amount=body.commit_amount,
        notes=body.notes,
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    response.headers["Location"] = f"/api/investors/{investor.id}"
    return _with_etag(response, investor)


@router.put("/{investor_id}", response_model=InvestorRead)
async def update_investor(
    investor_id: str,
    body: InvestorUpdate,
    request: Request,
    response: Response,
    if_match: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.update_investor(
        db,
        _parse_id(investor_id, "investor id"),
        body.changes(),
        expected_stamp=expected_stamp(if_match, body.version_stamp),
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    return _with_etag(response, investor)


@router.delete("/{investor_id}", status_code=204)
async def delete_investor(
    investor_id: str,
    request: Request,
    if_match: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    await investor_service.delete_investor(
        db,
        _parse_id(investor_id, "investor id"),
        expected_stamp=parse_if_match(if_match),
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    return Response(status_code=204)


@router.get("/{investor_id}/history", response_model=list[ActivityEventRead])
async def investor_history(
    investor_id: str,
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    return await investor_service.get_history(db, _parse_id(investor_id, "investor id"))


# ── Tasks ──


@router.post("/{investor_id}/tasks", response_model=InvestorRead)
async def add_task(
    investor_id: str,
    body: TaskCreate,
    request: Request,
    response: Response,
    if_match: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.add_task(
        db,
        _parse_id(investor_id, "investor id"),
        description=body.description,
        due_date=body.due_date,
        expected_stamp=expected_stamp(if_match, body.version_stamp),
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    return _with_etag(response, investor)


@router.put("/{investor_id}/tasks/{task_id}", response_model=InvestorRead)
async def update_task(
    investor_id: str,
    task_id: str,
    body: TaskUpdate,
    request: Request,
    response: Response,
    if_match: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.update_task(
        db,
        _parse_id(investor_id, "investor id"),
        _parse_id(task_id, "task id"),
        body.changes(),
        expected_stamp=expected_stamp(if_match, body.version_stamp),
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    return _with_etag(response, investor)


@router.delete("/{investor_id}/tasks/{task_id}", response_model=InvestorRead)
async def remove_task(
    investor_id: str,
    task_id: str,
    request: Request,
    response: Response,
    if_match: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    session: AuthSession = Depends(get_current_session),
):
    investor = await investor_service.remove_task(
        db,
        _parse_id(investor_id, "investor id"),
        _parse_id(task_id, "task id"),
        expected_stamp=parse_if_match(if_match),
        user_id=session.user_id,
        ip_address=client_ip(request),
    )
    return _with_etag(response, investor)
