"""Shared pytest fixtures for all tests."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-with-enough-length")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core import middleware as middleware_module
from app.core.dependencies import get_gateway, get_notification_emitter
from app.core.exceptions import AccountNotReadyError, UpstreamError
from app.core.security import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import PushToken, Transaction, User
from app.services.notifications import NotificationEmitter
from app.services.stripe_gateway import (
    AccountProfile,
    AccountStatus,
    BalanceAmount,
    CreatedPaymentLink,
    PaymentLinkRequest,
    PaymentMethodDetails,
    StripeConfig,
    StripeGateway,
)

WEBHOOK_SECRET = "whsec_test_fixture_secret"


# ===== FAKE COLLABORATORS =====

class FakeGateway(StripeGateway):
    """Records calls instead of talking to Stripe. Webhook verification stays real."""

    def __init__(self):
        super().__init__(
            StripeConfig(
                secret_key="sk_test_dummy",
                webhook_secret=WEBHOOK_SECRET,
                default_refresh_url="https://example.com/stripe/refresh",
                default_return_url="https://example.com/stripe/return",
            )
        )
        self.charges_enabled = True
        self.details_submitted = True
        self.created_accounts: list[AccountProfile] = []
        self.updated_accounts: list[str] = []
        self.onboarding_links: list[dict] = []
        self.created_links: list[PaymentLinkRequest] = []
        self.cancelled_links: list[str] = []
        self.payment_method = PaymentMethodDetails(type="card", card_brand="visa", card_last4="4242")
        self.fail_payment_method_lookup = False
        self.balance = [BalanceAmount(amount=150000, currency="JMD")]
        self.payouts: list[dict] = []
        self._link_counter = 0

    async def create_or_update_connected_account(self, profile, account_id=None):
        if account_id:
            self.updated_accounts.append(account_id)
            return account_id
        self.created_accounts.append(profile)
        return f"acct_new_{len(self.created_accounts)}"

    async def create_onboarding_link(self, account_id, refresh_url, return_url, link_type="account_onboarding"):
        self.onboarding_links.append(
            {"account_id": account_id, "refresh_url": refresh_url, "return_url": return_url, "type": link_type}
        )
        return f"https://connect.stripe.com/setup/{link_type}/{account_id}"

    async def get_account_status(self, account_id):
        return AccountStatus(
            id=account_id,
            charges_enabled=self.charges_enabled,
            payouts_enabled=self.charges_enabled,
            details_submitted=self.details_submitted,
        )

    async def create_payment_link(self, request):
        if not self.charges_enabled:
            raise AccountNotReadyError()
        self.created_links.append(request)
        self._link_counter += 1
        link_id = f"pl_test_{self._link_counter}"
        return CreatedPaymentLink(id=link_id, url=f"https://buy.stripe.com/{link_id}", active=True)

    async def cancel_payment_link(self, payment_link_id):
        self.cancelled_links.append(payment_link_id)
        return CreatedPaymentLink(
            id=payment_link_id, url=f"https://buy.stripe.com/{payment_link_id}", active=False
        )

    async def get_payment_method_details(self, payment_intent_id):
        if self.fail_payment_method_lookup:
            raise UpstreamError("Payment processor error during payment intent retrieve")
        return self.payment_method

    async def get_balance(self, account_id):
        return self.balance

    async def list_payouts(self, account_id, limit=20):
        return self.payouts[:limit]


class FakePushClient:
    def __init__(self):
        self.sent: list[dict] = []
        self.error: str | None = None

    async def send(self, tokens, title, body, data=None):
        self.sent.append({"tokens": tokens, "title": title, "body": body, "data": data or {}})
        if self.error:
            return None, self.error
        return [{"status": "ok"} for _ in tokens], None


# ===== DATABASE =====

@pytest.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'handypay_test.db'}", echo=False, poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def TestSessionLocal(test_engine):
    """Create session maker for tests."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(TestSessionLocal):
    """Get database session for direct DB access."""
    async with TestSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# ===== DEPENDENCY OVERRIDE =====

@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
async def notifier(push_client, TestSessionLocal):
    emitter = NotificationEmitter(push_client, TestSessionLocal)
    yield emitter
    await emitter.drain()


@pytest.fixture(autouse=True)
def override_dependencies(TestSessionLocal, gateway, notifier, monkeypatch):
    """Point the app, its middleware and its collaborators at the test doubles."""

    async def _override_get_db():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notification_emitter] = lambda: notifier
    monkeypatch.setattr(middleware_module, "AsyncSessionLocal", TestSessionLocal)

    yield

    app.dependency_overrides.clear()


# ===== SHARED FIXTURES =====

@pytest.fixture
async def client():
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def create_user(TestSessionLocal):
    """Insert a user in its own session so later reads are never stale."""

    async def _create_user(
        user_id: str = "user_1",
        stripe_account_id: str | None = "acct_1",
        **fields,
    ) -> User:
        fields.setdefault("email", f"{user_id}@example.com")
        fields.setdefault("first_name", "Test")
        fields.setdefault("last_name", "Merchant")
        fields.setdefault("full_name", "Test Merchant")
        fields.setdefault("auth_provider", "google")
        user = User(id=user_id, stripe_account_id=stripe_account_id, **fields)
        async with TestSessionLocal() as session:
            session.add(user)
            await session.commit()
        return user

    return _create_user


@pytest.fixture
def create_transaction(TestSessionLocal):
    async def _create_transaction(
        transaction_id: str = "plink_pl_123",
        user_id: str = "user_1",
        **fields,
    ) -> Transaction:
        fields.setdefault("type", "payment_link")
        fields.setdefault("amount", 2500)
        fields.setdefault("currency", "USD")
        fields.setdefault("description", "Garden work")
        fields.setdefault("status", "pending")
        transaction = Transaction(id=transaction_id, user_id=user_id, **fields)
        async with TestSessionLocal() as session:
            session.add(transaction)
            await session.commit()
        return transaction

    return _create_transaction


@pytest.fixture
def create_push_token(TestSessionLocal):
    async def _create_push_token(user_id: str = "user_1", token: str = "ExponentPushToken[abc]") -> PushToken:
        push_token = PushToken(user_id=user_id, token=token, platform="ios", is_active=True)
        async with TestSessionLocal() as session:
            session.add(push_token)
            await session.commit()
        return push_token

    return _create_push_token


@pytest.fixture
def fetch_transaction(TestSessionLocal):
    """Read a transaction through a fresh session."""

    async def _fetch(transaction_id: str) -> Transaction | None:
        async with TestSessionLocal() as session:
            return await session.get(Transaction, transaction_id)

    return _fetch


@pytest.fixture
def fetch_user(TestSessionLocal):
    async def _fetch(user_id: str) -> User | None:
        async with TestSessionLocal() as session:
            return await session.get(User, user_id)

    return _fetch
