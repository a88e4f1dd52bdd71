import sys
import os
import pytest
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

# Add the backend directory to the Python path
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.database import Base
from models import Campaign, DiscountRule, DiscountType, ProductTargetType, CustomerTargetType

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)


def make_campaign(
    name: str = "Spring Sale",
    priority: int = 0,
    start_date: datetime = None,
    end_date: datetime = None,
    currency: str = "TRY",
    **limits,
) -> Campaign:
    """Build a draft campaign that is applicable now."""
    start_date = start_date or datetime.now(timezone.utc) - timedelta(days=1)
    end_date = end_date or datetime.now(timezone.utc) + timedelta(days=30)
    campaign = Campaign.create(
        name=name,
        start_date=start_date,
        end_date=end_date,
        priority=priority,
        currency=currency,
        **limits,
    )
    campaign.id = uuid.uuid4()
    return campaign


def make_rule(
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    discount_value="10",
    product_target_type: ProductTargetType = ProductTargetType.ALL_PRODUCTS,
    customer_target_type: CustomerTargetType = CustomerTargetType.ALL_CUSTOMERS,
    **kwargs,
) -> DiscountRule:
    rule = DiscountRule.create(
        discount_type=discount_type,
        discount_value=Decimal(str(discount_value)),
        product_target_type=product_target_type,
        customer_target_type=customer_target_type,
        **kwargs,
    )
    rule.id = uuid.uuid4()
    return rule


def activate(campaign: Campaign, *rules: DiscountRule) -> Campaign:
    """Attach rules (at least one) and move a draft campaign to Active."""
    for rule in rules or (make_rule(),):
        campaign.add_discount_rule(rule)
    campaign.schedule()
    campaign.activate()
    return campaign


@pytest.fixture
def campaign_factory():
    return make_campaign


@pytest.fixture
def rule_factory():
    return make_rule


@pytest.fixture
def persist(db_session):
    """Save campaigns (with their rules) and commit."""
    async def _persist(*campaigns: Campaign):
        db_session.add_all(campaigns)
        await db_session.commit()
        return campaigns[0] if len(campaigns) == 1 else campaigns
    return _persist


@pytest.fixture
def activate_campaign():
    return activate
