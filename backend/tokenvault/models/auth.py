"""Authentication models: users and refresh token tracking.

Models used for storing user accounts and the refresh tokens issued to
them. Refresh tokens form a forward chain through ``replaced_by_token``
when they are rotated.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from tokenvault.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """Database model representing an application user.

    Attributes:
        id: Primary key (UUID string).
        username: Unique login name.
        email: Unique, lower-cased email.
        given_name: Given name.
        family_name: Family name.
        hashed_password: Password hash; never serialized outward.
        created_at: Account creation timestamp.
        updated_at: Last profile/password change.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(256), nullable=False, unique=True, index=True)
    email = Column(String(320), nullable=False, unique=True)
    given_name = Column(String(256), nullable=False)
    family_name = Column(String(256), nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class RefreshToken(Base):
    """A single issued session-renewal credential.

    The token payload is immutable; only the revocation fields are ever
    written after creation.

    Attributes:
        id: Primary key.
        token: Opaque random token value (unique).
        user_id: Foreign key to `users.id`.
        expires: Expiration timestamp.
        created: Creation timestamp.
        created_by_ip: Client IP the token was issued to.
        revoked: Revocation timestamp, set once.
        revoked_by_ip: Client IP that revoked the token.
        replaced_by_token: Token value of the successor after rotation.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires = Column(DateTime(timezone=True), nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_by_ip = Column(String(64), nullable=True)
    revoked = Column(DateTime(timezone=True), nullable=True)
    revoked_by_ip = Column(String(64), nullable=True)
    replaced_by_token = Column(String(128), nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    def is_expired_at(self, now: datetime) -> bool:
        return now >= as_utc(self.expires)

    def is_active_at(self, now: datetime) -> bool:
        return self.revoked is None and not self.is_expired_at(now)

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(utcnow())

    @property
    def is_active(self) -> bool:
        return self.is_active_at(utcnow())
