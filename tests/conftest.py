"""
Shared fixtures: an in-memory SQLite database per test, seeded users and
menu items, and an HTTP client bound to the ASGI app.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ["DB_CREATE_ALL"] = "false"

from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import campus_eats.models  # noqa: F401
from campus_eats.core.actor import Actor
from campus_eats.core.db import Base, get_db
from campus_eats.core.security import create_access_token, hash_password
from campus_eats.models.enums import LoyaltyTransactionType, UserRole
from campus_eats.models.loyalty import LoyaltyAccount, LoyaltyTransaction
from campus_eats.models.menu_item import MenuItem
from campus_eats.models.user import User


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def make_user(session_factory, *, name, email, role, points=None):
    async with session_factory() as db:
        return await _add_user(db, name=name, email=email, role=role, points=points)


async def _add_user(db, *, name, email, role, points):
    user = User(name=name, email=email, password_hash=hash_password("Secret#123"), role=role.value)
    db.add(user)
    await db.flush()
    if points is not None:
        db.add(LoyaltyAccount(user_id=user.id, points=0))
        await db.flush()
        if points:
            await credit_points(db, user.id, points)
    await db.commit()
    return user


async def credit_points(db, user_id, points):
    """Give a user points through the ledger so balances stay reconciled."""
    res = await db.execute(select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id))
    account = res.scalar_one()
    account.points += points
    db.add(
        LoyaltyTransaction(
            loyalty_account_id=account.id,
            points_change=points,
            type=LoyaltyTransactionType.ADJUSTED.value,
            description="Test credit",
        )
    )
    await db.commit()
    return account


@pytest.fixture
async def student(session_factory):
    return await make_user(session_factory, name="Ana Student", email="ana@campus.edu", role=UserRole.STUDENT, points=0)


@pytest.fixture
async def other_student(session_factory):
    return await make_user(session_factory, name="Bob Student", email="bob@campus.edu", role=UserRole.STUDENT, points=0)


@pytest.fixture
async def worker(session_factory):
    return await make_user(session_factory, name="Kim Cook", email="kim@campus.edu", role=UserRole.WORKER)


@pytest.fixture
async def manager(session_factory):
    return await make_user(session_factory, name="Mia Manager", email="mia@campus.edu", role=UserRole.MANAGER)


@pytest.fixture
def student_actor(student):
    return Actor.from_user(student)


@pytest.fixture
def worker_actor(worker):
    return Actor.from_user(worker)


@pytest.fixture
def manager_actor(manager):
    return Actor.from_user(manager)


@pytest.fixture
async def menu(session_factory):
    """Pizza 20.00, cola 5.00, salad 12.50. Seeded outside the test session."""
    items = {
        "pizza": MenuItem(name="Pizza Margherita", price=Decimal("20.00"), category="Main", allergens=["gluten"]),
        "cola": MenuItem(name="Cola", price=Decimal("5.00"), category="Drinks"),
        "salad": MenuItem(name="Greek Salad", price=Decimal("12.50"), category="Main"),
    }
    async with session_factory() as db:
        db.add_all(items.values())
        await db.commit()
    return items


@pytest.fixture
async def client(session_factory):
    from campus_eats.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    token = create_access_token(user_id=int(user.id), role=user.role)
    return {"Authorization": f"Bearer {token}"}
