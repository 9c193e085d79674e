"""Pydantic schemas for authentication and account endpoints.

Includes request bodies (with the registration validation rules), token
responses and the public views of users and sessions. Field names are
camelCase on the wire and snake_case in Python.
"""

import re
from datetime import datetime
from typing import Annotated

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel

from tokenvault.models.auth import RefreshToken, User, as_utc, utcnow

USERNAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{2,255}$")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 256


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _check_username(value: str) -> str:
    if not USERNAME_PATTERN.match(value):
        raise ValueError(
            "Username must be 3-256 characters, start with a letter and only "
            "contain letters, numbers, underscores or hyphens."
        )
    return value


Username = Annotated[str, AfterValidator(_check_username), BeforeValidator(_strip)]
Email = Annotated[EmailStr, AfterValidator(str.lower), BeforeValidator(_strip)]
Name = Annotated[str, Field(min_length=1), BeforeValidator(_strip)]
# NOTE: passwords are taken verbatim; whitespace is significant.
Password = Annotated[
    str, Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserCreate(CamelModel):
    """Request body for registering a new user."""

    username: Username
    email: Email
    given_name: Name
    family_name: Name
    password: Password


class UserLogin(CamelModel):
    """Request body for logging in."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserUpdate(CamelModel):
    """Partial profile update; at least one field must be present."""

    username: Username | None = None
    email: Email | None = None
    given_name: Name | None = None
    family_name: Name | None = None
    password: Password | None = None
    password_repeat: str | None = None

    @model_validator(mode="after")
    def check_fields(self):
        if not any(
            (self.username, self.email, self.given_name, self.family_name, self.password)
        ):
            raise ValueError("None of the requested data was provided.")
        if self.password and self.password != self.password_repeat:
            raise ValueError("The new password was not repeated correctly.")
        return self


class UserReplace(UserCreate):
    """Full profile replacement; every field including the password."""

    password_repeat: str

    @model_validator(mode="after")
    def check_repeat(self):
        if self.password != self.password_repeat:
            raise ValueError("The new password was not repeated correctly.")
        return self


class RegisterResponse(BaseModel):
    id: str


class AccessToken(BaseModel):
    """Response containing an access token.

    The refresh token travels in an HttpOnly cookie and is never returned
    to JavaScript.
    """

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    message: str


class LogoutAllResponse(MessageResponse):
    revoked: int


class UserOut(CamelModel):
    """Public user representation returned by the API."""

    id: str
    username: str
    email: str
    given_name: str
    family_name: str


class SessionOut(CamelModel):
    """Public view of one refresh token (an active session)."""

    id: int
    created: datetime
    expires: datetime
    created_by_ip: str | None = None
    revoked: datetime | None = None
    is_expired: bool
    is_active: bool


class SessionListResponse(CamelModel):
    active_sessions: list[SessionOut]


def to_public_user(user: User) -> UserOut:
    """Map a stored user to its public view (the password hash is dropped)."""
    return UserOut(
        id=user.id,
        username=user.username,
        email=user.email,
        given_name=user.given_name,
        family_name=user.family_name,
    )


def to_public_session(token: RefreshToken, now: datetime | None = None) -> SessionOut:
    """Map a stored refresh token to its public view.

    The token value itself is never exposed; derived flags are computed
    against ``now``.
    """
    now = now or utcnow()
    return SessionOut(
        id=token.id,
        created=as_utc(token.created),
        expires=as_utc(token.expires),
        created_by_ip=token.created_by_ip,
        revoked=as_utc(token.revoked),
        is_expired=token.is_expired_at(now),
        is_active=token.is_active_at(now),
    )
