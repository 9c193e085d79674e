"""Refresh token lifecycle: issue, validate, rotate and revoke.

A refresh token is an opaque random string stored server-side. It is
single-use: every successful ``/refresh`` rotates it, revoking the old
record and pointing it at its successor through ``replaced_by_token``::

    T1 --rotate--> T2 --rotate--> T3
    (revoked,       (revoked,       (active)
     replaced=T2)    replaced=T3)

Ordering: during a rotation the new token is committed *before* the old
token's revocation is committed. A crash in between can leave two active
tokens for a session but never zero.

Expired and revoked tokens are both reported as :class:`TokenInactive` so
clients cannot probe whether a token was stolen or merely timed out.
"""

import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.config.config import Settings
from tokenvault.core.errors import StorageError, TokenInactive, TokenMissing
from tokenvault.core.logging import logger, mask_token
from tokenvault.models.auth import RefreshToken, User, utcnow

# 40 random bytes, hex encoded (80 characters)
TOKEN_BYTES = 40


def generate_token_value() -> str:
    return secrets.token_hex(TOKEN_BYTES)


class RefreshTokenManager:
    """Owns the refresh token rotation protocol for one database session.

    Args:
        db: Request-scoped async session.
        settings: Application settings (token lifetime).
    """

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.lifetime = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    async def issue(self, user: User, client_ip: str | None) -> RefreshToken:
        """Create and persist a new refresh token for ``user``.

        Raises:
            StorageError: The store rejected the write (e.g. a value
                collision). Safe to retry; nothing was persisted.
        """
        # NOTE: a rollback expires `user`; only the local id is used after it.
        user_id = user.id
        now = utcnow()
        token = RefreshToken(
            token=generate_token_value(),
            user_id=user_id,
            created=now,
            expires=now + self.lifetime,
            created_by_ip=client_ip,
        )
        self.db.add(token)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning("Refresh token write rejected for user_id={}", user_id)
            raise StorageError() from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError("Refresh token could not be stored") from exc

        logger.info(
            "Issued refresh token {} for user_id={} ip={}",
            mask_token(token.token),
            user_id,
            client_ip,
        )
        return token

    async def get(self, token_value: str | None) -> RefreshToken | None:
        if not token_value:
            return None
        result = await self.db.execute(
            select(RefreshToken).filter(RefreshToken.token == token_value)
        )
        return result.scalars().first()

    async def validate(self, token_value: str | None) -> RefreshToken:
        """Return the stored token if it exists and is active.

        Raises:
            TokenMissing: No value supplied, or no such token.
            TokenInactive: The token is revoked or expired.
        """
        if not token_value:
            raise TokenMissing("No refresh token supplied")

        token = await self.get(token_value)
        if token is None:
            raise TokenMissing()

        if not token.is_active:
            if token.replaced_by_token:
                # NOTE: a rotated token showing up again is a replay; the
                # chain is not revoked, only the attempt is recorded.
                logger.warning(
                    "Replay of rotated refresh token {} for user_id={}",
                    mask_token(token.token),
                    token.user_id,
                )
            raise TokenInactive()
        return token

    async def rotate(
        self, old_token: RefreshToken, client_ip: str | None
    ) -> tuple[RefreshToken, RefreshToken]:
        """Replace ``old_token`` with a freshly issued successor.

        Returns:
            tuple[RefreshToken, RefreshToken]: (new token, revoked old token).

        Raises:
            TokenInactive: ``old_token`` is no longer active, or a concurrent
                rotation revoked it first.
            StorageError: The new token could not be persisted.
        """
        if not old_token.is_active:
            raise TokenInactive()

        user = await self.db.get(User, old_token.user_id)
        if user is None:
            raise TokenInactive("Refresh token owner no longer exists")

        new_token = await self.issue(user, client_ip)

        # Compare-and-set: only revoke if nobody else has in the meantime.
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == old_token.id, RefreshToken.revoked.is_(None))
            .values(
                revoked=utcnow(),
                revoked_by_ip=client_ip,
                replaced_by_token=new_token.token,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount != 1:
            logger.warning(
                "Concurrent rotation of refresh token {}; discarding successor",
                mask_token(old_token.token),
            )
            await self.revoke(new_token, client_ip)
            raise TokenInactive()

        await self.db.refresh(old_token)
        logger.info(
            "Rotated refresh token {} -> {} for user_id={}",
            mask_token(old_token.token),
            mask_token(new_token.token),
            user.id,
        )
        return new_token, old_token

    async def revoke(self, token: RefreshToken, client_ip: str | None) -> RefreshToken:
        """Revoke ``token`` without issuing a replacement (logout).

        Revoking an already revoked token is a no-op: the original
        ``revoked``/``revoked_by_ip`` values are kept. The same holds when a
        concurrent request revoked it after ``token`` was loaded; that case
        is logged together with the surviving successor, if any.
        """
        if token.revoked is not None:
            return token

        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token.id, RefreshToken.revoked.is_(None))
            .values(revoked=utcnow(), revoked_by_ip=client_ip)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(token)

        if result.rowcount != 1:
            logger.warning(
                "Refresh token {} was already revoked by a concurrent request; "
                "successor={}",
                mask_token(token.token),
                mask_token(token.replaced_by_token),
            )
            return token

        logger.info(
            "Revoked refresh token {} for user_id={}",
            mask_token(token.token),
            token.user_id,
        )
        return token

    async def revoke_all_for_user(self, user_id: str, client_ip: str | None) -> int:
        """Revoke every unrevoked token of a user (logout everywhere).

        Returns:
            int: Number of tokens revoked.
        """
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(None))
            .values(revoked=utcnow(), revoked_by_ip=client_ip)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(
            "Revoked all refresh tokens for user_id={} (count={})",
            user_id,
            result.rowcount,
        )
        return result.rowcount

    async def delete_all_for_user(self, user_id: str, commit: bool = True) -> int:
        """Delete every token of a user; used when the account is removed."""
        result = await self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        if commit:
            await self.db.commit()
        logger.info(
            "Deleted refresh tokens for user_id={} (count={})", user_id, result.rowcount
        )
        return result.rowcount

    async def list_active_for_user(
        self, user_id: str, now: datetime | None = None
    ) -> list[RefreshToken]:
        now = now or utcnow()
        result = await self.db.execute(
            select(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(None),
                RefreshToken.expires > now,
            )
            .order_by(RefreshToken.created.desc())
        )
        return list(result.scalars().all())
