"""User resource routes.

Reading a user only needs a valid access token; changing or deleting one
additionally requires the caller to own it.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from tokenvault.core.auth_helper import (
    ensure_owner,
    get_current_user,
    get_refresh_token_manager,
    get_user_store,
)
from tokenvault.core.refresh_tokens import RefreshTokenManager
from tokenvault.models.auth import User
from tokenvault.schemas.auth import UserOut, UserReplace, UserUpdate, to_public_user
from tokenvault.services.users import UserStore

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def read_users_me(
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Return the current authenticated user's information."""
    return to_public_user(current_user)


@router.get("/{user_id}", response_model=UserOut)
async def read_user(
    user_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    users: Annotated[UserStore, Depends(get_user_store)],
):
    """Return a user by id.

    Raises:
        NotFound: No user with ``user_id``.
    """
    return to_public_user(await users.get_or_404(user_id))


@router.patch("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def partial_update_user(
    user_id: str,
    data: UserUpdate,
    current_user: Annotated[User, Depends(get_current_user)],
    users: Annotated[UserStore, Depends(get_user_store)],
):
    """Partially update the caller's own profile and/or password."""
    user = await users.get_or_404(user_id)
    ensure_owner(current_user, user.id)
    await users.update(user, data)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def full_update_user(
    user_id: str,
    data: UserReplace,
    current_user: Annotated[User, Depends(get_current_user)],
    users: Annotated[UserStore, Depends(get_user_store)],
):
    """Replace every profile field of the caller's own account."""
    user = await users.get_or_404(user_id)
    ensure_owner(current_user, user.id)
    await users.update(user, data)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    users: Annotated[UserStore, Depends(get_user_store)],
    tokens: Annotated[RefreshTokenManager, Depends(get_refresh_token_manager)],
):
    """Delete the caller's account and every refresh token it owns."""
    user = await users.get_or_404(user_id)
    ensure_owner(current_user, user.id)
    await users.delete(user, tokens)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
