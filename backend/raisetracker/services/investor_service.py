"""Investor service: investors, their follow-up tasks, and the version guard.

Every write to an investor (its own fields or its task list) is conditional on
the version stamp the caller last read:

* if the caller sends an expected stamp and it differs from the loaded row,
  the write is refused with :class:`ConflictError` before anything changes;
* the flush itself is ``UPDATE ... WHERE id = ? AND version_stamp = ?``, so a
  writer that commits between our read and our flush also yields a conflict.

A successful write assigns a new stamp, available as ``investor.version_stamp``.
All writes are activity-logged.
"""

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from raisetracker.core.errors import ConflictError, NotFoundError
from raisetracker.core.retry import retry_transient
from raisetracker.models.base import utcnow
from raisetracker.models.investor import Investor, InvestorTask
from raisetracker.services import activity_service

# Columns that cannot be cleared through a partial update; null means "keep".
REQUIRED_FIELDS = frozenset({"name", "category", "stage", "status"})
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "main_contact",
        "contact_email",
        "contact_phone",
        "category",
        "stage",
        "status",
        "owner",
        "commit_amount",
        "notes",
    }
)
TASK_FIELDS = frozenset({"description", "due_date", "done"})


@retry_transient
async def list_investors(db: AsyncSession) -> list[Investor]:
    """All investors, most recently updated first."""
    result = await db.execute(select(Investor).order_by(Investor.updated_at.desc()))
    return list(result.scalars().all())


async def _load(db: AsyncSession, investor_id: uuid.UUID) -> Investor:
    result = await db.execute(select(Investor).where(Investor.id == investor_id))
    investor = result.scalar_one_or_none()
    if investor is None:
        raise NotFoundError("Investor not found")
    return investor


@retry_transient
async def get_investor(db: AsyncSession, investor_id: uuid.UUID) -> Investor:
    """Investor with tasks; ``investor.version_stamp`` is its current stamp."""
    return await _load(db, investor_id)


def check_stamp(investor: Investor, expected_stamp: str | None) -> None:
    if expected_stamp is not None and expected_stamp != investor.version_stamp:
        raise ConflictError()


async def save_investor(
    db: AsyncSession, investor: Investor, *, expected_stamp: str | None = None
) -> str:
    """Conditionally write ``investor``; return its new version stamp.

    Raises :class:`ConflictError` when the stored stamp is not the expected
    one, or :class:`NotFoundError` when the row was deleted meanwhile. The
    session is rolled back in both cases; nothing was written.
    """
    check_stamp(investor, expected_stamp)
    investor_id = investor.id
    try:
        await db.flush()
    except StaleDataError:
        raise await _stale_write_error(db, investor_id)
    return investor.version_stamp


async def _stale_write_error(db: AsyncSession, investor_id: uuid.UUID) -> Exception:
    # Rollback expires every loaded object; only the id is safe to use after it.
    await db.rollback()
    still_there = await db.scalar(select(Investor.id).where(Investor.id == investor_id))
    if still_there is None:
        return NotFoundError("Investor not found")
    return ConflictError()


def _touch(investor: Investor, user_id: uuid.UUID | None) -> None:
    # Marks the parent row dirty, which is what bumps its version stamp.
    investor.updated_at = utcnow()
    investor.updated_by = user_id


@retry_transient
async def create_investor(
    db: AsyncSession,
    *,
    name: str,
    category: str,
    stage: str,
    status: str | None = None,
    main_contact: str | None = None,
    contact_email: str | None = None,
    contact_phone: str | None = None,
    owner: str | None = None,
    commit_amount: Decimal | None = None,
    notes: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> Investor:
    """Create an investor. New records have nothing to conflict with."""
    investor = Investor(
        name=name,
        category=category,
        stage=stage,
        status=status or "Active",
        main_contact=main_contact,
        contact_email=contact_email,
        contact_phone=contact_phone,
        owner=owner,
        commit_amount=commit_amount,
        notes=notes,
        created_by=user_id,
        updated_by=user_id,
        tasks=[],
    )
    db.add(investor)
    await db.flush()

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.created",
        entity_type="Investor",
        entity_id=investor.id,
        action="create",
        detail={"name": name, "stage": stage, "category": category},
        ip_address=ip_address,
    )
    return investor


@retry_transient
async def update_investor(
    db: AsyncSession,
    investor_id: uuid.UUID,
    changes: dict,
    *,
    expected_stamp: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> Investor:
    """Apply a partial update. ``changes`` holds only the fields the client sent."""
    investor = await _load(db, investor_id)
    check_stamp(investor, expected_stamp)

    applied: list[str] = []
    for field, value in changes.items():
        if field not in UPDATABLE_FIELDS:
            continue
        if value is None and field in REQUIRED_FIELDS:
            continue
        setattr(investor, field, value)
        applied.append(field)
    _touch(investor, user_id)

    previous_stamp = investor.version_stamp
    new_stamp = await save_investor(db, investor, expected_stamp=expected_stamp)

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.updated",
        entity_type="Investor",
        entity_id=investor.id,
        action="update",
        detail={"fields": applied, "from_stamp": previous_stamp, "to_stamp": new_stamp},
        ip_address=ip_address,
    )
    return investor


@retry_transient
async def delete_investor(
    db: AsyncSession,
    investor_id: uuid.UUID,
    *,
    expected_stamp: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> None:
    """Delete an investor and all of its tasks."""
    investor = await _load(db, investor_id)
    check_stamp(investor, expected_stamp)
    name = investor.name

    await db.delete(investor)
    try:
        await db.flush()
    except StaleDataError:
        raise await _stale_write_error(db, investor_id)

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.deleted",
        entity_type="Investor",
        entity_id=investor_id,
        action="delete",
        detail={"name": name},
        ip_address=ip_address,
    )


# ── Tasks ──


def _find_task(investor: Investor, task_id: uuid.UUID) -> InvestorTask:
    for task in investor.tasks:
        if task.id == task_id:
            return task
    raise NotFoundError("Task not found")


@retry_transient
async def add_task(
    db: AsyncSession,
    investor_id: uuid.UUID,
    *,
    description: str,
    due_date: date,
    expected_stamp: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> Investor:
    investor = await _load(db, investor_id)
    check_stamp(investor, expected_stamp)

    task = InvestorTask(description=description, due_date=due_date, done=False)
    investor.tasks.append(task)
    _touch(investor, user_id)
    await save_investor(db, investor, expected_stamp=expected_stamp)

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.task_added",
        entity_type="Investor",
        entity_id=investor.id,
        action="add_task",
        detail={"task_id": str(task.id), "description": description},
        ip_address=ip_address,
    )
    return investor


@retry_transient
async def update_task(
    db: AsyncSession,
    investor_id: uuid.UUID,
    task_id: uuid.UUID,
    changes: dict,
    *,
    expected_stamp: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> Investor:
    investor = await _load(db, investor_id)
    task = _find_task(investor, task_id)
    check_stamp(investor, expected_stamp)

    applied: list[str] = []
    for field, value in changes.items():
        if field not in TASK_FIELDS or value is None:
            continue
        setattr(task, field, value)
        applied.append(field)
    task.updated_at = utcnow()
    _touch(investor, user_id)
    await save_investor(db, investor, expected_stamp=expected_stamp)

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.task_updated",
        entity_type="Investor",
        entity_id=investor.id,
        action="update_task",
        detail={"task_id": str(task_id), "fields": applied},
        ip_address=ip_address,
    )
    return investor


@retry_transient
async def remove_task(
    db: AsyncSession,
    investor_id: uuid.UUID,
    task_id: uuid.UUID,
    *,
    expected_stamp: str | None = None,
    user_id: uuid.UUID | None = None,
    ip_address: str | None = None,
) -> Investor:
    investor = await _load(db, investor_id)
    task = _find_task(investor, task_id)
    check_stamp(investor, expected_stamp)

    investor.tasks.remove(task)
    _touch(investor, user_id)
    await save_investor(db, investor, expected_stamp=expected_stamp)

    await activity_service.log_event(
        db,
        user_id=user_id,
        event_type="investor.task_removed",
        entity_type="Investor",
        entity_id=investor.id,
        action="remove_task",
        detail={"task_id": str(task_id)},
        ip_address=ip_address,
    )
    return investor


@retry_transient
async def get_history(db: AsyncSession, investor_id: uuid.UUID):
    await _load(db, investor_id)
    return await activity_service.get_entity_history(db, "Investor", investor_id)
