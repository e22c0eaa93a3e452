import os
from decimal import Decimal

# Must be set before the application modules read their settings.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BACKGROUND_TASKS_ENABLED", "false")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models
from settings import Settings
from services.couriers.common import Credentials
from services.couriers.melhor_envio import MelhorEnvioCourierService
from services.couriers.token_store import CredentialStore
from tests.fake_carrier import FakeCarrier


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        MELHOR_ENVIO_CLIENT_ID="client-1",
        MELHOR_ENVIO_CLIENT_SECRET="secret",
        MELHOR_ENVIO_REFRESH_TOKEN="refresh-0",
        MELHOR_ENVIO_TOKEN="",
        CARRIER_MAX_ATTEMPTS=3,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(client_id="client-1", client_secret="secret", refresh_token="refresh-0")


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def carrier() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture
def store(session_factory, credentials) -> CredentialStore:
    return CredentialStore(session_factory, "default", credentials)


@pytest_asyncio.fixture
async def courier(carrier, store, test_settings):
    service = MelhorEnvioCourierService(
        "default", store, test_settings, transport=httpx.MockTransport(carrier.handler), sleep=carrier.sleep
    )
    yield service
    await service.aclose()


@pytest_asyncio.fixture
async def order(db) -> models.Order:
    order = models.Order(
        id=42,
        name="#1042",
        customer_name="Maria Souza",
        customer_email="maria@example.com",
        customer_phone="(11) 98888-7777",
        customer_document="123.456.789-09",
        total_price=Decimal("99.80"),
        shipping_paid=Decimal("16.00"),
        shipping_address1="Rua das Flores, 120",
        shipping_address2="Apto 3",
        shipping_district="Centro",
        shipping_city="Campinas",
        shipping_province="SP",
        shipping_zip="13015-001",
        line_items=[
            models.LineItem(sku="CAP-01", name="Capinha", quantity=2, unit_price=Decimal("49.90")),
        ],
    )
    db.add(order)
    await db.commit()
    return order
