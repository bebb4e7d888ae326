import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from raisetracker.models.base import Base, TimestampMixin, generate_uuid


def new_version_stamp(_previous: str | None) -> str:
    """Opaque stamp assigned on every INSERT/UPDATE of an investor row."""
    return uuid.uuid4().hex


class Investor(TimestampMixin, Base):
    """Investor record. Writes are guarded by ``version_stamp``.

    SQLAlchemy emits every UPDATE/DELETE as ``... WHERE id = ? AND
    version_stamp = ?`` and raises ``StaleDataError`` when no row matched.
    """

    __tablename__ = "investors"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    main_contact: Mapped[str | None] = mapped_column(String(256), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    stage: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="Active", server_default="Active"
    )
    owner: Mapped[str | None] = mapped_column(String(256), nullable=True)
    commit_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=2), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    version_stamp: Mapped[str] = mapped_column(String(32), nullable=False)

    tasks: Mapped[list["InvestorTask"]] = relationship(
        back_populates="investor",
        cascade="all, delete-orphan",
        order_by="InvestorTask.created_at",
        lazy="selectin",
    )

    __mapper_args__ = {
        "version_id_col": version_stamp,
        "version_id_generator": new_version_stamp,
    }


class InvestorTask(TimestampMixin, Base):
    __tablename__ = "investor_tasks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    investor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("investors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    investor: Mapped[Investor] = relationship(back_populates="tasks")
