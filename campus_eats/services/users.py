from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import utcnow
from campus_eats.core.security import hash_password, verify_password
from campus_eats.models.enums import UserRole
from campus_eats.models.user import User
from campus_eats.services import loyalty

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "name",
    "profile_picture_url",
    "address_city",
    "address_street",
    "address_number",
    "address_details",
)


class UserError(Exception):
    pass


class UserNotFound(UserError):
    pass


class EmailAlreadyExists(UserError):
    pass


class InvalidCredentials(UserError):
    pass


class UserForbidden(UserError):
    pass


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(User.email == normalize_email(email)))
    return res.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound("User not found")
    return user


async def register_user(
    db: AsyncSession,
    actor: Optional[Actor],
    *,
    name: str,
    email: str,
    password: str,
    role: UserRole = UserRole.STUDENT,
) -> User:
    """
    Create a user and an empty loyalty account.
    Anonymous callers can only register students; managers may pick any role.
    """
    role = UserRole(role)
    if role != UserRole.STUDENT and (actor is None or not actor.is_manager):
        raise UserForbidden("Only managers can register staff accounts")

    email = normalize_email(email)
    if await get_user_by_email(db, email) is not None:
        raise EmailAlreadyExists("Email already exists")

    now = utcnow()
    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role.value,
        created_at=now,
        updated_at=now,
    )

    try:
        db.add(user)
        try:
            await db.flush()  # ensures user.id
        except IntegrityError:
            # lost a race with a concurrent registration
            raise EmailAlreadyExists("Email already exists")

        await loyalty.get_or_create_account(db, int(user.id))

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"User {user.id} registered as {user.role}")
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentials("Invalid email or password")
    return user


async def update_profile(db: AsyncSession, actor: Actor, **fields) -> User:
    """Update name and profile fields. Email and role are not editable here."""
    user = await get_user(db, actor.id)

    try:
        for key, value in fields.items():
            if key not in PROFILE_FIELDS or value is None:
                continue
            if isinstance(value, str):
                value = value.strip() or None
            if key == "name" and not value:
                raise UserError("Name cannot be empty")
            setattr(user, key, value)

        user.updated_at = utcnow()
        await db.commit()
        return user

    except Exception:
        await db.rollback()
        raise
