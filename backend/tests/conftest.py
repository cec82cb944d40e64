"""
Pytest configuration and shared test fixtures.

Every test gets its own file-backed SQLite database (aiosqlite) with the
schema created from the models and a small seeded catalog. The payment
gateway is a mock, so no test talks to an external service.
"""

import itertools
import os
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable
from unittest.mock import MagicMock
from uuid import UUID, uuid4

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.api.deps import get_db_session_factory, get_gateway
from storefront.core.config import Settings, get_settings
from storefront.core.security import ROLE_ADMIN, ROLE_CUSTOMER, create_access_token
from storefront.database.base import Base
from storefront.database.connection import create_engine, create_session_factory
from storefront.database.models import Product
from storefront.main import create_app
from storefront.services.orders.service import OrderService
from storefront.services.payments.gateway import GatewayIntent
from storefront.services.payments.service import PaymentService
from storefront.services.payments.signature import verify_callback_signature

TEST_SIGNING_SECRET = "test-payment-signing-secret"

# id, sku, name, price, stock, active
CATALOG = [
    (1, "SKU-001", "Ceramic Mug", Decimal("150.00"), 100, True),
    (2, "SKU-002", "Limited Print", Decimal("75.00"), 1, True),
    (3, "SKU-003", "Espresso Machine", Decimal("20000.00"), 10, True),
    (4, "SKU-004", "Retired Kettle", Decimal("10.00"), 5, False),
    (5, "SKU-005", "Tea Sampler", Decimal("40.00"), 50, True),
]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """
    Test settings pointing at a per-test SQLite database.

    Tax and shipping are zero so totals equal the sum of line totals.
    """
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        environment="test",
        payment_signing_secret=TEST_SIGNING_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test_123",
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create the schema and seed the catalog."""
    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = create_session_factory(engine)
    async with factory.begin() as session:
        session.add_all(
            [
                Product(
                    id=product_id,
                    sku=sku,
                    name=name,
                    price=price,
                    stock_quantity=stock,
                    is_active=active,
                )
                for product_id, sku, name, price, stock, active in CATALOG
            ]
        )

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def mock_gateway() -> MagicMock:
    """
    Gateway adapter mock handing out unique intent references.

    Returns:
        Mock with ``create_intent``, ``verify_callback`` and ``parse_webhook``;
        callbacks are checked against the test signing secret
    """
    counter = itertools.count(1)
    gateway = MagicMock()

    def create_intent(amount, currency, receipt=None, idempotency_key=None):
        n = next(counter)
        return GatewayIntent(
            external_order_ref=f"pi_test_{n:04d}",
            amount_minor=int(Decimal(amount) * 100),
            currency=currency,
            client_secret=f"pi_test_{n:04d}_secret",
        )

    gateway.create_intent.side_effect = create_intent
    gateway.verify_callback.side_effect = lambda order_ref, payment_ref, signature: (
        verify_callback_signature(TEST_SIGNING_SECRET, order_ref, payment_ref, signature)
    )
    return gateway


@pytest.fixture
def order_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> OrderService:
    return OrderService(session_factory, settings=settings)


@pytest.fixture
def payment_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    mock_gateway: MagicMock,
    order_service: OrderService,
) -> PaymentService:
    return PaymentService(
        session_factory,
        gateway=mock_gateway,
        settings=settings,
        state_machine=order_service.state_machine,
    )


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def stock_of(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[int], Awaitable[int]]:
    """Read a product's committed stock in a fresh session."""

    async def read(product_id: int) -> int:
        async with session_factory() as session:
            result = await session.execute(
                select(Product.stock_quantity).where(Product.id == product_id)
            )
            return result.scalar_one()

    return read


@pytest_asyncio.fixture
async def client(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    mock_gateway: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the API wired to the test database and mock gateway.

    Yields:
        Async client speaking to the application in-process
    """
    app = create_app()
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: mock_gateway
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build a bearer header for a user and role."""

    def build(user_id: UUID, role: str = ROLE_CUSTOMER) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}

    return build


@pytest.fixture
def customer_headers(auth_headers, user_id: UUID) -> dict[str, str]:
    return auth_headers(user_id)


@pytest.fixture
def admin_headers(auth_headers) -> dict[str, str]:
    return auth_headers(uuid4(), role=ROLE_ADMIN)
