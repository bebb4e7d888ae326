import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator

from raisetracker.schemas.common import ApiModel


class InvestorCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=256)
    main_contact: str | None = Field(None, max_length=256)
    contact_email: str | None = Field(None, max_length=256)
    contact_phone: str | None = Field(None, max_length=50)
    category: str = Field(..., max_length=50)
    stage: str = Field(..., max_length=50)
    status: str | None = Field(None, max_length=50)
    owner: str | None = Field(None, max_length=256)
    commit_amount: Decimal | None = None
    notes: str | None = None


class InvestorUpdate(ApiModel):
    """Partial update. Only fields present in the request body are applied.

    ``version_stamp`` is the stamp the client last read; the ``If-Match``
    header takes precedence when both are sent.
    """

    name: str | None = Field(None, min_length=1, max_length=256)
    main_contact: str | None = Field(None, max_length=256)
    contact_email: str | None = Field(None, max_length=256)
    contact_phone: str | None = Field(None, max_length=50)
    category: str | None = Field(None, max_length=50)
    stage: str | None = Field(None, max_length=50)
    status: str | None = Field(None, max_length=50)
    owner: str | None = Field(None, max_length=256)
    commit_amount: Decimal | None = None
    notes: str | None = None
    version_stamp: str | None = None

    @field_validator("commit_amount", mode="before")
    @classmethod
    def blank_amount_is_zero(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return Decimal("0")
        return value

    def changes(self) -> dict:
        """Fields the client actually sent, minus the concurrency stamp."""
        return self.model_dump(exclude_unset=True, exclude={"version_stamp"})


class TaskCreate(ApiModel):
    description: str = Field(..., min_length=1)
    due_date: date
    version_stamp: str | None = None


class TaskUpdate(ApiModel):
    description: str | None = Field(None, min_length=1)
    due_date: date | None = None
    done: bool | None = None
    version_stamp: str | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"version_stamp"})


class TaskRead(ApiModel):
    id: uuid.UUID
    investor_id: uuid.UUID
    description: str
    due_date: date
    done: bool
    created_at: datetime
    updated_at: datetime


class InvestorRead(ApiModel):
    id: uuid.UUID
    name: str
    main_contact: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    category: str
    stage: str
    status: str
    owner: str | None = None
    commit_amount: Decimal | None = None
    notes: str | None = None
    tasks: list[TaskRead] = []
    created_by: uuid.UUID | None = None
    created_at: datetime
    updated_by: uuid.UUID | None = None
    updated_at: datetime
    version_stamp: str


class InvestorSummary(ApiModel):
    id: uuid.UUID
    name: str
    stage: str
    category: str
    status: str
    owner: str | None = None
    commit_amount: Decimal | None = None
    updated_at: datetime


class ActivityEventRead(ApiModel):
    id: uuid.UUID
    user_id: uuid.UUID | None = None
    event_type: str
    action: str
    detail: dict | None = None
    timestamp: datetime
