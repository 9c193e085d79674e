"""
Request-time authentication gates and refresh cookie helpers.

REFRESH TOKEN FLOW EXPLAINED:

1. LOGIN (POST /login):
   - User provides username + password
   - Server validates credentials
   - Server creates:
     * Access Token (RS256 JWT, minutes) - returned in the body
     * Refresh Token (opaque, 7 days) - stored in DB, sent as HttpOnly cookie

2. API REQUESTS (access gate):
   - Client sends "Authorization: Bearer <access token>"
   - Server verifies signature + expiry and loads the user
   - Deleted users are rejected even while their token is still valid

3. REFRESH (GET /refresh, refresh gate):
   - Client sends the refresh cookie
   - Server checks the token exists and is active (not revoked/expired)
   - Server rotates it: new token stored first, then the old one revoked
     with a pointer to its successor
   - New access token in the body, new refresh token in the cookie

4. LOGOUT (GET /logout):
   - Both gates must pass; the refresh token is revoked, cookie cleared

5. OWNERSHIP GATE:
   - Resource-scoped writes require the authenticated user to own the
     resource (403 otherwise, distinct from 401)
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tokenvault.config.config import Settings
from tokenvault.core.errors import Forbidden, TokenInactive, TokenMissing, Unauthorized
from tokenvault.core.logging import logger
from tokenvault.core.refresh_tokens import RefreshTokenManager
from tokenvault.core.token_signer import TokenSigner
from tokenvault.db.session import get_db
from tokenvault.models.auth import RefreshToken, User
from tokenvault.services.users import UserStore

BEARER_SCHEME = "Bearer"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_signer(request: Request) -> TokenSigner:
    return request.app.state.token_signer


def get_user_store(db: Annotated[AsyncSession, Depends(get_db)]) -> UserStore:
    return UserStore(db)


def get_refresh_token_manager(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> RefreshTokenManager:
    return RefreshTokenManager(db, settings)


def get_client_ip(request: Request) -> str:
    """Determine the client's IP address from the request.

    ``X-Forwarded-For`` is only honoured when ``TRUST_PROXY_HEADERS`` is
    enabled (deployments behind a reverse proxy); otherwise the direct
    client address exposed by the ASGI server is used.

    Args:
        request: FastAPI request object.

    Returns:
        str: Client IP address or "unknown" if it cannot be determined.
    """
    settings = get_settings(request)
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def parse_bearer(authorization: str | None) -> str:
    """Extract the token from an Authorization header value.

    The scheme must be exactly ``Bearer``.

    Raises:
        Unauthorized: Header missing, wrong scheme or empty token.
    """
    if not authorization:
        raise Unauthorized("Access token not provided")
    scheme, _, token = authorization.partition(" ")
    if scheme != BEARER_SCHEME:
        raise Unauthorized("Invalid authentication scheme")
    token = token.strip()
    if not token:
        raise Unauthorized("Access token not provided")
    return token


async def get_current_user(
    signer: Annotated[TokenSigner, Depends(get_token_signer)],
    users: Annotated[UserStore, Depends(get_user_store)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    """Access gate: validate the bearer token and return its live user."""
    claims = signer.verify(parse_bearer(authorization))
    user = await users.get(claims.get("sub"))
    if user is None:
        logger.warning("Access token for unknown user sub={}", claims.get("sub"))
        raise Unauthorized("User no longer exists")
    return user


@dataclass
class RefreshSession:
    """Result of the refresh gate: the active token and its owner."""

    token: RefreshToken
    user: User


async def get_refresh_session(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
    users: Annotated[UserStore, Depends(get_user_store)],
) -> RefreshSession:
    """Refresh gate: validate the refresh cookie.

    A missing cookie is an explicit 401, never an anonymous pass-through.
    """
    value = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not value:
        raise TokenMissing("No refresh token cookie")
    token = await tokens.validate(value)
    user = await users.get(token.user_id)
    if user is None:
        raise TokenInactive("Refresh token owner no longer exists")
    return RefreshSession(token=token, user=user)


def ensure_owner(current_user: User, owner_id: str) -> None:
    """Ownership gate.

    Raises:
        Forbidden: ``current_user`` does not own the resource.
    """
    if current_user.id != owner_id:
        logger.info("User {} denied access to resource of {}", current_user.id, owner_id)
        raise Forbidden()


def set_refresh_cookie(response: Response, settings: Settings, token: RefreshToken):
    """Set (or re-set after rotation) the refresh token cookie."""
    max_age = int(timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS).total_seconds())
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token.token,
        max_age=max_age,
        expires=max_age,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path="/",
    )


def clear_refresh_cookie(response: Response, settings: Settings):
    response.delete_cookie(
        settings.REFRESH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
    )
