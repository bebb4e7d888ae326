import uuid

from pydantic import Field

from raisetracker.schemas.common import ApiModel


class UserCreate(ApiModel):
    username: str = Field(..., max_length=256)
    display_name: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=8, max_length=128)
    is_admin: bool = False


class UserUpdate(ApiModel):
    display_name: str | None = Field(None, max_length=256)
    password: str | None = Field(None, min_length=8, max_length=128)
    is_admin: bool | None = None


class UserRead(ApiModel):
    id: uuid.UUID
    username: str
    display_name: str
    is_admin: bool


class UserSummary(ApiModel):
    id: uuid.UUID
    display_name: str
