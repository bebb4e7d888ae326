"""User accounts: lookup, admin-managed create/update/delete, bootstrap admin.

Changing a user's password or admin flag, or deleting the user, revokes every
session token issued to that user so far.
"""

import logging
import re
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.core.errors import InvalidInputError, NotFoundError
from raisetracker.core.passwords import hash_password
from raisetracker.core.retry import retry_transient
from raisetracker.core.session_tokens import revocations
from raisetracker.models.user import User
from raisetracker.services import activity_service

logger = logging.getLogger("raisetracker.users")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_username(value: str) -> str:
    return value.strip().lower()


async def get_user(db: AsyncSession, id_or_email: str | uuid.UUID) -> User | None:
    """Look a user up by id, or by username (case-insensitive)."""
    if isinstance(id_or_email, uuid.UUID):
        return await db.get(User, id_or_email)
    try:
        user_id = uuid.UUID(id_or_email)
    except ValueError:
        result = await db.execute(
            select(User).where(User.username == normalize_username(id_or_email))
        )
        return result.scalar_one_or_none()
    return await db.get(User, user_id)


@retry_transient
async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.display_name.asc()))
    return list(result.scalars().all())


@retry_transient
async def create_user(
    db: AsyncSession,
    *,
    username: str,
    display_name: str,
    password: str,
    is_admin: bool = False,
    actor_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> User:
    username = normalize_username(username)
    if not EMAIL_PATTERN.match(username):
        raise InvalidInputError("Username must be a valid email address")

    existing = await db.execute(select(User.id).where(User.username == username))
    if existing.scalar_one_or_none() is not None:
        raise InvalidInputError("Email address already exists")

    user = User(
        username=username,
        display_name=display_name,
        password_hash=hash_password(password),
        is_admin=is_admin,
    )
    db.add(user)
    await db.flush()

    await activity_service.log_event(
        db,
        user_id=actor_id,
        event_type="user.created",
        entity_type="User",
        entity_id=user.id,
        action="create",
        detail={"username": username, "is_admin": is_admin},
        ip_address=ip_address,
    )
    return user


@retry_transient
async def update_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    display_name: str | None = None,
    password: str | None = None,
    is_admin: bool | None = None,
    actor_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    changed: list[str] = []
    if display_name is not None and display_name.strip():
        user.display_name = display_name
        changed.append("display_name")
    if password is not None and password.strip():
        user.password_hash = hash_password(password)
        changed.append("password")
    if is_admin is not None and is_admin != user.is_admin:
        user.is_admin = is_admin
        changed.append("is_admin")
    await db.flush()

    if "password" in changed or "is_admin" in changed:
        revocations.revoke_user(user.id)

    await activity_service.log_event(
        db,
        user_id=actor_id,
        event_type="user.updated",
        entity_type="User",
        entity_id=user.id,
        action="update",
        detail={"fields": changed},
        ip_address=ip_address,
    )
    return user


@retry_transient
async def delete_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    actor_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> None:
    if actor_id == user_id:
        raise InvalidInputError("Cannot delete your own account")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    username = user.username
    await db.delete(user)
    await db.flush()
    revocations.revoke_user(user_id)

    await activity_service.log_event(
        db,
        user_id=actor_id,
        event_type="user.deleted",
        entity_type="User",
        entity_id=user_id,
        action="delete",
        detail={"username": username},
        ip_address=ip_address,
    )


async def ensure_bootstrap_admin(
    db: AsyncSession,
    *,
    username: str | None,
    password: str | None,
    display_name: str,
) -> User | None:
    """Create the first admin when configured and no users exist yet."""
    if not username or not password:
        return None
    count = await db.scalar(select(func.count()).select_from(User))
    if count:
        return None

    user = User(
        username=normalize_username(username),
        display_name=display_name,
        password_hash=hash_password(password),
        is_admin=True,
    )
    db.add(user)
    await db.flush()
    logger.info("Created bootstrap admin %s", user.username)
    return user
