import uuid

from pydantic import Field

from raisetracker.schemas.common import ApiModel


class LoginRequest(ApiModel):
    # Username (email) or user id
    user_id: str = Field(..., max_length=256)
    password: str = Field(..., max_length=128)


class EmailRequest(ApiModel):
    email: str = Field(..., max_length=256)


class SessionRead(ApiModel):
    user_id: uuid.UUID
    display_name: str
    is_admin: bool
