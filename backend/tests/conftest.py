"""Shared pytest fixtures.

Each test gets its own SQLite file database so that several sessions can
write concurrently, the way API requests do against Postgres.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("STRIPE_RETRY_BASE_DELAY_SECONDS", "0")

from datetime import datetime, timedelta
from typing import Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database import Base, get_session
from app.modules.billing.models import Account, AccountStatus, PlanTier
from app.modules.billing.repository import AccountRepository
from app.modules.billing.stripe_client import StripeClient, StripeInvoiceData


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a test database engine and initialize the schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(session):
    """Factory for accounts in a fresh billing period."""

    async def _make_account(
        plan_tier: PlanTier = PlanTier.STARTER,
        minutes_used: int = 0,
        sms_used: int = 0,
        emails_used: int = 0,
        auto_pay_overages: bool = False,
        stripe_customer_id: Optional[str] = None,
        status: AccountStatus = AccountStatus.ACTIVE,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> Account:
        repo = AccountRepository(session)
        account = await repo.create(
            name="Acme Dental",
            email="billing@acme.test",
            plan_tier=PlanTier(plan_tier).value,
            status=AccountStatus(status).value,
            auto_pay_overages=auto_pay_overages,
            stripe_customer_id=stripe_customer_id,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
        )
        if minutes_used or sms_used or emails_used:
            account = await repo.update_account(
                account.id,
                minutes_used=minutes_used,
                sms_used=sms_used,
                emails_used=emails_used,
            )
        return account

    return _make_account


@pytest.fixture
def past_period():
    """A billing period that ended yesterday."""
    end = datetime.utcnow().replace(microsecond=0) - timedelta(days=1)
    return end - timedelta(days=30), end


def _invoice(invoice_id: str = "in_test_123", customer_id: str = "cus_test") -> StripeInvoiceData:
    return StripeInvoiceData(
        id=invoice_id,
        customer_id=customer_id,
        status="paid",
        total=2000,
        amount_paid=2000,
        amount_due=0,
        currency="usd",
        paid=True,
    )


@pytest.fixture
def make_invoice():
    return _invoice


@pytest.fixture
def stripe_client():
    """Stripe client double whose overage charge succeeds."""
    client = MagicMock(spec=StripeClient)
    client.charge_overages.return_value = _invoice()
    return client


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client for the app bound to the test database."""
    from app.main import app

    async def _get_test_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_test_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
