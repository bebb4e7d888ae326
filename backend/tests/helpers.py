"""Test helpers shared across test packages."""

from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.config import settings
from raisetracker.core.auth import start_session
from raisetracker.core.passwords import hash_password
from raisetracker.core.session_tokens import AuthSession, issue_token
from raisetracker.models.user import User

TEST_PASSWORD = "SecurePass123!"


async def make_user(
    db: AsyncSession,
    *,
    username: str = "member@example.com",
    display_name: str = "Member",
    password: str = TEST_PASSWORD,
    is_admin: bool = False,
) -> User:
    user = User(
        username=username,
        display_name=display_name,
        password_hash=hash_password(password),
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    return user


def session_cookie(session: AuthSession) -> dict[str, str]:
    """Cookie header for a session.

    The real cookie is Secure, so httpx won't replay it to http://test.
    """
    token = issue_token(session, settings.secret_key)
    return {"Cookie": f"{settings.session_cookie_name}={token}"}


def auth_headers(user: User) -> dict[str, str]:
    return session_cookie(start_session(user))


def cookie_value(response) -> str | None:
    """Session token from a response's Set-Cookie header, if any."""
    prefix = f"{settings.session_cookie_name}="
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(prefix):
            return header[len(prefix):].split(";", 1)[0].strip('"')
    return None
