"""Account routes: registration, login and refresh token rotation.

Exposes endpoints for registering, issuing and rotating access/refresh
tokens and for revoking refresh tokens per session or for all sessions.

Endpoints:
    - POST /register: Create an account
    - POST /login: Login (access token in body, refresh token in cookie)
    - GET /refresh: Rotate the refresh cookie and mint a new access token
    - GET /logout: Revoke the current refresh token
    - POST /logout-all: Revoke all of the user's refresh tokens
    - GET /sessions: List the user's active sessions
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from tokenvault.config.config import Settings
from tokenvault.core.auth_helper import (
    RefreshSession,
    clear_refresh_cookie,
    ensure_owner,
    get_client_ip,
    get_current_user,
    get_refresh_session,
    get_refresh_token_manager,
    get_settings,
    get_token_signer,
    get_user_store,
    set_refresh_cookie,
)
from tokenvault.core.errors import Unauthorized
from tokenvault.core.logging import logger
from tokenvault.core.refresh_tokens import RefreshTokenManager
from tokenvault.core.token_signer import TokenSigner
from tokenvault.models.auth import User
from tokenvault.schemas.auth import (
    AccessToken,
    LogoutAllResponse,
    MessageResponse,
    RegisterResponse,
    SessionListResponse,
    UserCreate,
    UserLogin,
    to_public_session,
)
from tokenvault.services.users import UserStore

router = APIRouter(tags=["account"])


def _token_response(
    signer: TokenSigner, settings: Settings, user: User, refresh_token
) -> JSONResponse:
    body = AccessToken(
        access_token=signer.sign(user),
        expires_in=int(signer.lifetime.total_seconds()),
    )
    resp = JSONResponse(content=body.model_dump())
    set_refresh_cookie(resp, settings, refresh_token)
    return resp


@router.post(
    "/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse
)
async def register(
    data: UserCreate,
    users: Annotated[UserStore, Depends(get_user_store)],
):
    """Register a new account.

    Returns:
        RegisterResponse: The new user's id.

    Raises:
        DuplicateKeyError: Username or email already registered (409).
    """
    user = await users.create(data)
    return RegisterResponse(id=user.id)


@router.post("/login", response_model=AccessToken)
async def login(
    request: Request,
    data: UserLogin,
    users: Annotated[UserStore, Depends(get_user_store)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
    signer: Annotated[TokenSigner, Depends(get_token_signer)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Authenticate user and issue access + refresh tokens.

    Returns:
        JSONResponse: Access token in response body and refresh token set
            as an HttpOnly cookie.

    Raises:
        Unauthorized: If authentication fails.
    """
    user = await users.authenticate(data.username, data.password)
    if not user:
        logger.warning("Failed login attempt for username={}", data.username)
        raise Unauthorized("Incorrect username or password")

    refresh_token = await tokens.issue(user, get_client_ip(request))
    resp = _token_response(signer, settings, user, refresh_token)
    logger.info("User {} logged in", user.username)
    return resp


@router.get("/refresh", response_model=AccessToken)
async def refresh_access_token(
    request: Request,
    session: Annotated[RefreshSession, Depends(get_refresh_session)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
    signer: Annotated[TokenSigner, Depends(get_token_signer)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Exchange the refresh cookie for a new access token.

    Token rotation is performed: a new refresh token is stored, then the
    old one is revoked and linked to it.

    Raises:
        Unauthorized: No refresh cookie, or the token is unknown/inactive.
    """
    new_token, _ = await tokens.rotate(session.token, get_client_ip(request))
    resp = _token_response(signer, settings, session.user, new_token)
    logger.info("Issued new refresh token for user {}", session.user.username)
    return resp


@router.get("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[RefreshSession, Depends(get_refresh_session)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Revoke the refresh token from the cookie (logout).

    Both the access token and the refresh cookie must be valid, and they
    must belong to the same user.
    """
    ensure_owner(current_user, session.token.user_id)
    await tokens.revoke(session.token, get_client_ip(request))

    resp = JSONResponse(content={"message": "Successfully logged out"})
    clear_refresh_cookie(resp, settings)
    logger.info("User {} logged out", current_user.username)
    return resp


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all_devices(
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Revoke all refresh tokens for the current user (logout everywhere).

    Useful when a user suspects account compromise or wants to force
    re-authentication on all devices.
    """
    count = await tokens.revoke_all_for_user(current_user.id, get_client_ip(request))
    resp = JSONResponse(
        content={"message": "Successfully logged out from all devices", "revoked": count}
    )
    clear_refresh_cookie(resp, settings)
    return resp


@router.get("/sessions", response_model=SessionListResponse)
async def get_active_sessions(
    current_user: Annotated[User, Depends(get_current_user)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
):
    """Return active (non-revoked, unexpired) refresh token sessions."""
    sessions = await tokens.list_active_for_user(current_user.id)
    return SessionListResponse(
        active_sessions=[to_public_session(token) for token in sessions]
    )
