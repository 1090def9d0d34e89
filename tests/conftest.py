"""
Shared fixtures: a fresh in-memory SQLite database per test, seed helpers,
and a stand-in Redis that records published order updates.
"""
import os

# Must be set before campus_eats reads its settings.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("OPT_LOCK_BASE_DELAY_MS", "1")
os.environ.setdefault("OPT_LOCK_JITTER_MS", "1")
os.environ.setdefault("METRICS_ENABLED", "false")

import json
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campus_eats.core import notifier
from campus_eats.db.database import Base, utcnow
from campus_eats.models.coupon import Coupon, CouponType, UserCoupon
from campus_eats.models.kitchen import KitchenTask  # noqa: F401  (register table)
from campus_eats.models.loyalty import LoyaltyAccount
from campus_eats.models.menu import MenuItem
from campus_eats.models.payment import Payment  # noqa: F401  (register table)


# ─── Database ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ─── Seed helpers ──────────────────────────────────────────────────────────────
@pytest.fixture
def add_menu_item(db):
    async def _add(name="Burger", price="10.00", is_active=True, category="main"):
        item = MenuItem(name=name, price=Decimal(price), is_active=is_active, category=category)
        db.add(item)
        await db.commit()
        return item
    return _add


@pytest.fixture
def add_account(db):
    async def _add(user_id, points):
        account = LoyaltyAccount(user_id=user_id, points=points, created_at=utcnow(), updated_at=utcnow())
        db.add(account)
        await db.commit()
        return account
    return _add


@pytest.fixture
def add_coupon(db):
    async def _add(
        type=CouponType.PERCENTAGE_DISCOUNT,
        discount_value="20",
        points_cost=50,
        is_active=True,
        expires_in_days=30,
        specific_menu_item_id=None,
        minimum_order_amount=None,
        name="Lunch deal",
    ):
        coupon = Coupon(
            name=name,
            description="",
            type=type,
            discount_value=Decimal(discount_value),
            points_cost=points_cost,
            is_active=is_active,
            specific_menu_item_id=specific_menu_item_id,
            minimum_order_amount=Decimal(minimum_order_amount) if minimum_order_amount else None,
            expires_at=utcnow() + timedelta(days=expires_in_days) if expires_in_days is not None else None,
        )
        db.add(coupon)
        await db.commit()
        return coupon
    return _add


@pytest.fixture
def give_coupon(db):
    async def _give(user_id, coupon, is_used=False):
        user_coupon = UserCoupon(
            user_id=user_id,
            coupon_id=coupon.id,
            acquired_at=utcnow(),
            expires_at=coupon.expires_at,
            is_used=is_used,
        )
        db.add(user_coupon)
        await db.commit()
        return user_coupon
    return _give


# ─── Redis ─────────────────────────────────────────────────────────────────────
class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """No test talks to a real Redis; published updates are captured instead."""
    fake = FakeRedis()
    monkeypatch.setattr(notifier, "get_redis", lambda: fake)
    return fake
