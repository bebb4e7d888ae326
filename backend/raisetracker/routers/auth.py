"""Auth routes: login, session, logout, magic links, password reset."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.config import settings
from raisetracker.core.auth import (
    MAGIC_LINK_SENT,
    PASSWORD_RESET_SENT,
    clear_login_attempts,
    clear_session_cookie,
    client_ip,
    get_current_session,
    login_user,
    redeem_magic_link,
    request_magic_link,
    reset_password,
    set_session_cookie,
    start_session,
)
from raisetracker.core.errors import InvalidInputError
from raisetracker.core.session_tokens import AuthSession
from raisetracker.dependencies import get_db
from raisetracker.schemas.auth import EmailRequest, LoginRequest, SessionRead
from raisetracker.schemas.common import MessageResponse
from raisetracker.services.email_service import (
    send_magic_link_in_background,
    send_password_reset_in_background,
)

router = APIRouter(prefix="/api", tags=["auth"])

# Minted tokens are 43 characters; anything far longer is not worth a lookup.
MAX_MAGIC_LINK_TOKEN_LENGTH = 256


def _base_url(request: Request) -> str:
    return settings.public_base_url or str(request.base_url)


def _session_read(session: AuthSession) -> SessionRead:
    return SessionRead(
        user_id=session.user_id,
        display_name=session.display_name,
        is_admin=session.is_admin,
    )


@router.post("/login", response_model=SessionRead)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    user = await login_user(
        db, user_id=body.user_id, password=body.password, ip_address=client_ip(request)
    )
    clear_login_attempts(request)

    session = start_session(user)
    set_session_cookie(response, session)
    return _session_read(session)


@router.get("/session", response_model=SessionRead)
async def current_session(session: AuthSession = Depends(get_current_session)):
    return _session_read(session)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response):
    clear_session_cookie(response)
    return MessageResponse(message="Logged out")


@router.post("/request-magic-link", response_model=MessageResponse)
async def magic_link(
    body: EmailRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    token = await request_magic_link(db, email=body.email)
    if token is not None:
        background_tasks.add_task(
            send_magic_link_in_background, body.email, token, _base_url(request)
        )
    return MessageResponse(message=MAGIC_LINK_SENT)


@router.get("/validate-magic-link")
async def validate_magic_link(
    request: Request,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    user = None
    if len(token) <= MAX_MAGIC_LINK_TOKEN_LENGTH:
        user = await redeem_magic_link(db, token=token, ip_address=client_ip(request))
    if user is None:
        raise InvalidInputError("Invalid or expired magic link")

    clear_login_attempts(request)
    redirect = RedirectResponse(url="/", status_code=303)
    set_session_cookie(redirect, start_session(user))
    return redirect


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: EmailRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    password = await reset_password(db, email=body.email)
    if password is not None:
        background_tasks.add_task(send_password_reset_in_background, body.email, password)
    return MessageResponse(message=PASSWORD_RESET_SENT)
