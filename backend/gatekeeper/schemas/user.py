import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gatekeeper.models.user import UserRole


class CamelModel(BaseModel):
    """Responses use camelCase keys; requests accept either spelling."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserCreate(CamelModel):
    username: str = Field(..., max_length=64)
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=128)


class LoginRequest(CamelModel):
    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=128)


class SessionValidateRequest(CamelModel):
    session_id: str = Field(..., max_length=128)


class UserRead(CamelModel):
    id: uuid.UUID
    username: str
    email: str
    role: UserRole
    created_at: datetime
    last_login_at: datetime | None = None


class AuthResponse(CamelModel):
    success: bool = True
    message: str
    session_id: str
    expires_at: datetime
    user: UserRead


class SessionValidateResponse(CamelModel):
    success: bool = True
    message: str = "Session is valid"
    user: UserRead


class CurrentUser(CamelModel):
    user_id: uuid.UUID
    username: str | None
    email: str | None
    is_admin: bool
    auth_method: str


class MessageResponse(CamelModel):
    success: bool = True
    message: str
