from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import get_current_actor, get_optional_user
from campus_eats.core.security import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from campus_eats.models.user import User
from campus_eats.schemas.auth import MeOut, ProfileUpdateIn, RefreshIn, RegisterIn, TokenPair
from campus_eats.services.users import (
    EmailAlreadyExists,
    InvalidCredentials,
    UserError,
    UserForbidden,
    UserNotFound,
    authenticate,
    get_user,
    register_user,
    update_profile,
)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_pair(user: User) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user_id=int(user.id), role=user.role),
        refresh_token=create_refresh_token(user_id=int(user.id)),
    )


@router.post("/register", response_model=MeOut, status_code=201)
async def register(
    payload: RegisterIn,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    actor = Actor.from_user(current_user) if current_user is not None else None
    try:
        return await register_user(
            db,
            actor,
            name=payload.name,
            email=payload.email,
            password=payload.password,
            role=payload.role,
        )
    except UserForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    except EmailAlreadyExists as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/login", response_model=TokenPair)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    # OAuth2 password form: "username" carries the email
    try:
        user = await authenticate(db, form_data.username, form_data.password)
    except InvalidCredentials as e:
        raise HTTPException(status_code=401, detail=str(e))

    return _token_pair(user)


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    payload: RefreshIn,
    db: AsyncSession = Depends(get_db),
):
    try:
        claims = decode_token(payload.refresh_token, expected_type="refresh")
        user = await get_user(db, int(claims["sub"]))
    except (TokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    except UserNotFound:
        raise HTTPException(status_code=401, detail="User not found")

    return _token_pair(user)


@router.get("/me", response_model=MeOut)
async def me(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await get_user(db, actor.id)


@router.put("/me", response_model=MeOut)
async def update_me(
    payload: ProfileUpdateIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await update_profile(db, actor, **payload.model_dump(exclude_unset=True))
    except UserError as e:
        raise HTTPException(status_code=400, detail=str(e))
