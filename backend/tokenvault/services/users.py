"""User persistence: registration, lookup, authentication and profile edits.

Uniqueness of ``username`` and ``email`` is enforced by the database; a
rejected write is translated into :class:`DuplicateKeyError`.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.core.errors import DuplicateKeyError, NotFound
from tokenvault.core.logging import logger
from tokenvault.core.refresh_tokens import RefreshTokenManager
from tokenvault.core.security import DUMMY_HASH, get_password_hash, verify_password
from tokenvault.models.auth import User
from tokenvault.schemas.auth import UserCreate, UserReplace, UserUpdate

PROFILE_FIELDS = ("username", "email", "given_name", "family_name")


class UserStore:
    """Data access for :class:`User` rows within one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, message: str):
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise DuplicateKeyError(message) from exc

    async def create(self, data: UserCreate) -> User:
        """Register a new user with a hashed password.

        Raises:
            DuplicateKeyError: Username or email already registered.
        """
        user = User(
            username=data.username,
            email=data.email,
            given_name=data.given_name,
            family_name=data.family_name,
            hashed_password=get_password_hash(data.password),
        )
        self.db.add(user)
        await self._commit("The username and/or email address already registered.")
        logger.info("Registered user id={} username={}", user.id, user.username)
        return user

    async def get(self, user_id: str | None) -> User | None:
        if not user_id:
            return None
        return await self.db.get(User, user_id)

    async def get_or_404(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFound()
        return user

    async def get_by_username(self, username: str) -> User | None:
        result = await self.db.execute(select(User).filter(User.username == username))
        return result.scalars().first()

    async def authenticate(self, username: str, password: str) -> User | None:
        """Return the user when ``password`` matches, otherwise None."""
        user = await self.get_by_username(username)
        if not user:
            verify_password(password, DUMMY_HASH)
            logger.debug("Authentication failed: user not found username={}", username)
            return None
        if not verify_password(password, user.hashed_password):
            logger.warning("Authentication failed: invalid password username={}", username)
            return None
        return user

    async def update(self, user: User, data: UserUpdate | UserReplace) -> User:
        """Apply a partial or full profile update.

        Raises:
            DuplicateKeyError: New username or email collides with another user.
        """
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(user, field, changes[field])
        if data.password:
            user.hashed_password = get_password_hash(data.password)
        await self._commit("Username and/or email already registered.")
        await self.db.refresh(user)
        logger.info("Updated user id={} fields={}", user.id, sorted(changes))
        return user

    async def delete(self, user: User, tokens: RefreshTokenManager) -> None:
        """Delete ``user`` together with every refresh token it owns."""
        user_id = user.id
        await tokens.delete_all_for_user(user_id, commit=False)
        await self.db.delete(user)
        await self.db.commit()
        logger.info("Deleted user id={}", user_id)
