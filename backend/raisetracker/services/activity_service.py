"""Activity log: append-only record of sign-ins and investor writes.

No update or delete methods are exposed.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from raisetracker.models.activity import ActivityEvent


async def log_event(
    db: AsyncSession,
    *,
    user_id: uuid.UUID | None,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> ActivityEvent:
    """Append an activity event to the current unit of work."""
    event = ActivityEvent(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(event)
    await db.flush()
    return event


async def get_events_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    event_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[ActivityEvent]:
    stmt = (
        select(ActivityEvent)
        .where(ActivityEvent.user_id == user_id)
        .order_by(ActivityEvent.timestamp.asc())
    )
    if event_type is not None:
        stmt = stmt.where(ActivityEvent.event_type == event_type)
    stmt = stmt.offset(offset).limit(limit)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_entity_history(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
) -> list[ActivityEvent]:
    """Every event recorded against one entity, oldest first."""
    stmt = (
        select(ActivityEvent)
        .where(
            ActivityEvent.entity_type == entity_type,
            ActivityEvent.entity_id == entity_id,
        )
        .order_by(ActivityEvent.timestamp.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
