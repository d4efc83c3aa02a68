import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.db import Base
from app.core.security import hash_password
from app.models.meal import Meal
from app.models.ticket_type import TicketType
from app.models.user import User


@pytest.fixture
async def engine(tmp_path):
    # a file database so concurrent sessions get separate connections
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _add(db, obj):
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


@pytest.fixture
async def cashier(db) -> User:
    return await _add(
        db,
        User(name="Cashier One", username="cashier", password_hash=hash_password("secret123"), role="cashier"),
    )


@pytest.fixture
async def admin(db) -> User:
    return await _add(
        db,
        User(name="Admin", username="admin", password_hash=hash_password("secret123"), role="admin"),
    )


@pytest.fixture
async def adult_ticket(db) -> TicketType:
    return await _add(db, TicketType(category="Adult", subcategory="Standard", price=Decimal("50.00")))


@pytest.fixture
async def child_ticket(db) -> TicketType:
    return await _add(db, TicketType(category="Child", subcategory="Standard", price=Decimal("30.00")))


@pytest.fixture
async def burger(db) -> Meal:
    return await _add(db, Meal(name="Burger", price=Decimal("12.50"), age_group="adult"))


@pytest.fixture
async def juice(db) -> Meal:
    return await _add(db, Meal(name="Juice", price=Decimal("3.00"), age_group="all"))
