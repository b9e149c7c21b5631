from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.security import TokenError, decode_token
from campus_eats.models.enums import UserRole
from campus_eats.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def _user_from_token(token: str, db: AsyncSession) -> User:
    try:
        payload = decode_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Token missing user id (sub)")

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    res = await db.execute(select(User).where(User.id == user_id_int))
    user = res.scalar_one_or_none()

    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return await _user_from_token(token, db)


async def get_optional_user(
    token: str | None = Depends(optional_oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    if not token:
        return None
    try:
        return await _user_from_token(token, db)
    except HTTPException:
        # stale or broken tokens browse anonymously
        return None


def get_current_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


def require_manager(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != UserRole.MANAGER:
        raise HTTPException(status_code=403, detail="Manager only")
    return actor


def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role not in (UserRole.WORKER, UserRole.MANAGER):
        raise HTTPException(status_code=403, detail="Kitchen staff only")
    return actor
