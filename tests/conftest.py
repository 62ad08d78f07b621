"""Shared test fixtures for the accounting sync test suite."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from gym_accounting.core.database import Base
# Import all models so their metadata is registered on Base
import gym_accounting.models  # noqa: F401
from gym_accounting.core.errors import ProviderError
from gym_accounting.models.database import (
    AccountingIntegration,
    AccountMapping,
    Payment,
    Profile,
)
from gym_accounting.services.categorizer import REQUIRED_CATEGORIES
from gym_accounting.services.providers import ExportedTransaction, ProviderAdapter

ADMIN_TOKEN = "admin-token"
MEMBER_TOKEN = "member-token"


@pytest_asyncio.fixture
async def session_maker():
    """
    Session factory bound to a fresh in-memory SQLite database.

    Creates all tables before the test, drops them after.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(session_maker):
    """In-memory SQLite async session; each test gets a clean database."""
    async with session_maker() as session:
        yield session


class FakeAuthClient:
    """Resolves a fixed set of tokens to user ids."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = tokens
        self.closed = False

    async def get_user_id(self, token: str):
        return self.tokens.get(token)

    async def close(self):
        self.closed = True


@pytest.fixture
def auth_client():
    return FakeAuthClient({ADMIN_TOKEN: "admin-1", MEMBER_TOKEN: "member-1"})


@pytest_asyncio.fixture
async def profiles(async_session):
    """An admin and a regular member."""
    admin = Profile(id="admin-1", email="owner@gym.test", full_name="Gym Owner", role="admin")
    member = Profile(id="member-1", email="sam@example.com", full_name="Sam Lee", role="member")
    async_session.add_all([admin, member])
    await async_session.commit()
    return admin, member


@pytest.fixture
def make_integration(async_session):
    async def _make(provider: str = "quickbooks", status: str = "active", **kwargs) -> AccountingIntegration:
        integration = AccountingIntegration(provider=provider, status=status, realm_id="realm-1", **kwargs)
        async_session.add(integration)
        await async_session.commit()
        return integration
    return _make


@pytest.fixture
def make_mappings(async_session):
    async def _make(provider: str = "quickbooks", categories=REQUIRED_CATEGORIES) -> list[AccountMapping]:
        mappings = [
            AccountMapping(
                provider=provider,
                revenue_category=c.value,
                external_account_id=f"acct-{c.value}",
                external_account_name=f"Sales:{c.value}",
            )
            for c in categories
        ]
        async_session.add_all(mappings)
        await async_session.commit()
        return mappings
    return _make


@pytest.fixture
def make_payment(async_session):
    counter = {"n": 0}

    async def _make(payment_type: str = "day-pass", **kwargs) -> Payment:
        counter["n"] += 1
        values = {
            "id": f"pay-{counter['n']:04d}",
            "user_id": "member-1",
            "amount": 1500,
            "payment_type": payment_type,
            "status": "succeeded",
            "created_at": datetime(2025, 3, 1, 9, 0) + timedelta(minutes=counter["n"]),
        }
        values.update(kwargs)
        payment = Payment(**values)
        async_session.add(payment)
        await async_session.commit()
        return payment
    return _make


@pytest_asyncio.fixture
async def sync_ready(profiles, make_integration, make_mappings):
    """Active QuickBooks integration with every required mapping."""
    integration = await make_integration("quickbooks")
    await make_mappings("quickbooks")
    return integration


class StubAdapter(ProviderAdapter):
    """Adapter that accepts every payment except those listed in fail_ids."""

    provider = "quickbooks"

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.exported: list[str] = []
        self.closed = False

    async def export_payment(self, payment, mapping):
        if payment.payment_id in self.fail_ids:
            raise ProviderError("Sales receipt creation failed: Invalid account")
        self.exported.append(payment.payment_id)
        return ExportedTransaction(
            payment_id=payment.payment_id,
            external_id=f"QB-{payment.payment_id}",
            external_number=f"DOC-{len(self.exported)}",
            transaction_type="credit_memo" if payment.is_refund else "sales_receipt",
            amount=payment.amount,
            customer_id="cust-1",
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def stub_adapter_factory():
    """Returns (factory, adapters); adapters collects every adapter the factory builds."""
    def _build(fail_ids=()):
        adapters = []

        def factory(provider, session, integration, settings):
            adapter = StubAdapter(fail_ids)
            adapter.provider = provider
            adapters.append(adapter)
            return adapter

        return factory, adapters
    return _build
