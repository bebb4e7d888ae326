"""Authentication: password login, magic links, password reset, session cookies.

Sessions are stateless signed tokens (see ``core.session_tokens``) carried in
the ``AuthSession`` cookie. Anything touching account existence answers with
the same generic outcome whether or not the account exists.
"""

import logging
import uuid
from datetime import timedelta

from fastapi import Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.config import settings
from raisetracker.core.errors import AuthenticationError, PermissionDeniedError
from raisetracker.core.magic_links import magic_links
from raisetracker.core.passwords import (
    generate_temporary_password,
    hash_password,
    verify_password,
)
from raisetracker.core.rate_limit import login_limiter
from raisetracker.core.retry import retry_transient
from raisetracker.core.session_tokens import AuthSession, issue_token, revocations, verify_token
from raisetracker.models.user import User
from raisetracker.services import activity_service, user_service

logger = logging.getLogger("raisetracker.auth")

INVALID_CREDENTIALS = "Invalid username or password"
MAGIC_LINK_SENT = "If an account with that email exists, a magic link has been sent."
PASSWORD_RESET_SENT = "If an account with that email exists, a password reset email has been sent."

# Dummy hash so unknown usernames cost the same bcrypt work as wrong passwords.
_TIMING_HASH = hash_password(uuid.uuid4().hex)


def session_lifetime() -> timedelta:
    return timedelta(days=settings.session_lifetime_days)


def refresh_threshold() -> timedelta:
    return timedelta(days=settings.session_refresh_threshold_days)


def start_session(user: User) -> AuthSession:
    return AuthSession.start(
        user_id=user.id,
        display_name=user.display_name,
        is_admin=user.is_admin,
        lifetime=session_lifetime(),
    )


def read_session_token(token: str | None) -> AuthSession | None:
    if not token:
        return None
    return verify_token(token, settings.secret_key, revocations=revocations)


def set_session_cookie(response: Response, session: AuthSession) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        issue_token(session, settings.secret_key),
        expires=session.expires_at,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="strict",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="strict",
    )


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@retry_transient
async def login_user(
    db: AsyncSession,
    *,
    user_id: str,
    password: str,
    ip_address: str | None = None,
) -> User:
    """Check a username-or-id + password pair. Raises 401 on any mismatch."""
    user = await user_service.get_user(db, user_id)
    if user is None:
        verify_password(password, _TIMING_HASH)
        raise AuthenticationError(INVALID_CREDENTIALS)
    if not verify_password(password, user.password_hash):
        raise AuthenticationError(INVALID_CREDENTIALS)

    await activity_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.login",
        entity_type="User",
        entity_id=user.id,
        action="login",
        ip_address=ip_address,
    )
    return user


def clear_login_attempts(request: Request) -> None:
    key = getattr(request.state, "rate_limit_key", None)
    if key is not None:
        login_limiter.clear(key)


@retry_transient
async def request_magic_link(db: AsyncSession, *, email: str) -> str | None:
    """Mint a magic-link token for ``email``; ``None`` if there is no such user."""
    user = await user_service.get_user(db, email)
    if user is None:
        logger.info("Magic link requested for unknown account")
        return None
    record = magic_links.mint(user.id, email)
    return record.token


async def redeem_magic_link(
    db: AsyncSession, *, token: str, ip_address: str | None = None
) -> User | None:
    """Consume a magic-link token. ``None`` when it is unknown, used or expired.

    The token is spent once, before any database work, so a retried lookup
    cannot find it already used.
    """
    user_id = magic_links.redeem(token)
    if user_id is None:
        return None
    return await _magic_link_sign_in(db, user_id=user_id, ip_address=ip_address)


@retry_transient
async def _magic_link_sign_in(
    db: AsyncSession, *, user_id: uuid.UUID, ip_address: str | None
) -> User | None:
    user = await user_service.get_user(db, user_id)
    if user is None:
        return None

    await activity_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.magic_link",
        entity_type="User",
        entity_id=user.id,
        action="login",
        ip_address=ip_address,
    )
    return user


@retry_transient
async def reset_password(db: AsyncSession, *, email: str) -> str | None:
    """Give the account a new temporary password and return it (``None`` if unknown)."""
    user = await user_service.get_user(db, email)
    if user is None:
        return None
    password = generate_temporary_password()
    user.password_hash = hash_password(password)
    await db.flush()
    revocations.revoke_user(user.id)

    await activity_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.password_reset",
        entity_type="User",
        entity_id=user.id,
        action="reset_password",
    )
    return password


async def get_current_session(request: Request) -> AuthSession:
    """FastAPI dependency: the session the middleware attached, or 401."""
    session = getattr(request.state, "session", None)
    if session is None:
        session = read_session_token(request.cookies.get(settings.session_cookie_name))
    if session is None:
        raise AuthenticationError()
    return session


async def get_optional_session(request: Request) -> AuthSession | None:
    try:
        return await get_current_session(request)
    except AuthenticationError:
        return None


async def require_admin(request: Request) -> AuthSession:
    session = await get_current_session(request)
    if not session.is_admin:
        raise PermissionDeniedError()
    return session
