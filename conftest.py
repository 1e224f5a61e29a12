import hashlib
import os
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Awaitable, Callable

import pytest
import pytest_asyncio
from dependency_injector import providers
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from orderflow.application.container import ApplicationContainer
from orderflow.core.models import Cart, Order, ProductVariant, ShippingAddress
from orderflow.infrastructure.db_schema import metadata
from orderflow.infrastructure.repositories import (
    CartRepository,
    InventoryRepository,
    OrderRepository,
    SyncQueueRepository,
)
from orderflow.infrastructure.unit_of_work import UnitOfWork
from orderflow.presentation import admin_api, webhook_api

CONFIG_PATH = Path(__file__).parent / "orderflow" / "config.yaml"

TEST_MERCHANT_KEY = "TESTKEY123"
TEST_SALT = "TESTSALT456"


@pytest.fixture()
async def container(tmp_path: Path) -> ApplicationContainer:
    container = ApplicationContainer()
    container.config.from_yaml(CONFIG_PATH, required=True)
    dsn = os.getenv("TEST_DB_DSN", f"sqlite+aiosqlite:///{tmp_path}/orderflow.db")
    container.config.infrastructure.db.dsn.from_value(dsn)
    if dsn.startswith("sqlite"):
        # pool sizing does not apply to SQLite
        container.infrastructure_container.async_engine.override(
            providers.Singleton(create_async_engine, dsn)
        )
    container.config.infrastructure.easebuzz.merchant_key.from_value(TEST_MERCHANT_KEY)
    container.config.infrastructure.easebuzz.salt.from_value(TEST_SALT)
    return container


@pytest.fixture()
async def session_factory(
    container: ApplicationContainer,
) -> async_sessionmaker[AsyncSession]:
    return container.infrastructure_container.session_factory()


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def unit_of_work(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWork:
    return UnitOfWork(session_factory)


@pytest.fixture()
def fast_api_app(container: ApplicationContainer):
    app = FastAPI()
    app.include_router(webhook_api.router)
    app.include_router(admin_api.router)
    container.wire(modules=[webhook_api, admin_api])
    app.container = container
    yield app
    container.unwire()


@pytest_asyncio.fixture(autouse=True)
async def setup_database(container: ApplicationContainer):
    engine = container.infrastructure_container.async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def test_async_client(fast_api_app) -> AsyncClient:
    async with AsyncClient(
        transport=ASGITransport(app=fast_api_app),
        base_url="http://test.com",
    ) as client:
        client.app = fast_api_app
        yield client


@pytest.fixture
async def order_repo(session: AsyncSession) -> OrderRepository:
    return OrderRepository(session)


@pytest.fixture
async def inventory_repo(session: AsyncSession) -> InventoryRepository:
    return InventoryRepository(session)


@pytest.fixture
async def cart_repo(session: AsyncSession) -> CartRepository:
    return CartRepository(session)


@pytest.fixture
async def sync_queue_repo(session: AsyncSession) -> SyncQueueRepository:
    return SyncQueueRepository(session)


@pytest.fixture
def variant_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[ProductVariant]]:
    async def _(**kwargs) -> ProductVariant:
        defaults = {
            "id": f"V-{uuid.uuid4().hex[:8]}",
            "sku": f"SKU-{uuid.uuid4().hex[:8]}",
            "name": "Cotton kurta / M",
            "stock_quantity": 10,
        }
        defaults.update(kwargs)
        async with session_factory() as session:
            variant = await InventoryRepository(session).create(
                InventoryRepository.CreateDTO(**defaults)
            )
            await session.commit()
        return variant

    return _


@pytest.fixture
def cart_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Cart]]:
    async def _(user_id: str = "user-1", items: list[tuple[str, int]] = ()) -> Cart:
        async with session_factory() as session:
            cart = await CartRepository(session).create(
                CartRepository.CreateDTO(
                    user_id=user_id,
                    items=[
                        CartRepository.ItemDTO(variant_id=variant_id, quantity=quantity)
                        for variant_id, quantity in items
                    ],
                )
            )
            await session.commit()
        return cart

    return _


@pytest.fixture
def order_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Order]]:
    async def _(
        items: list[tuple[str, int]],
        order_id: str | None = None,
        cart_id: str | None = None,
        user_id: str = "user-1",
        unit_price: Decimal = Decimal("499.00"),
    ) -> Order:
        async with session_factory() as session:
            order = await OrderRepository(session).create(
                OrderRepository.CreateDTO(
                    id=order_id,
                    user_id=user_id,
                    customer_email="asha@example.com",
                    cart_id=cart_id,
                    items=[
                        OrderRepository.ItemDTO(
                            variant_id=variant_id,
                            name=f"Item {variant_id}",
                            quantity=quantity,
                            unit_price=unit_price,
                        )
                        for variant_id, quantity in items
                    ],
                    shipping=Decimal("50.00"),
                    shipping_address=ShippingAddress(
                        name="Asha Rao",
                        line1="12 MG Road",
                        city="Bengaluru",
                        state="Karnataka",
                        postal_code="560001",
                        phone="+919800000000",
                    ),
                )
            )
            await session.commit()
        return order

    return _


def sign_easebuzz_payload(fields: dict[str, str], salt: str = TEST_SALT) -> str:
    sequence = [salt] + [fields.get(name, "") for name in ("status", "firstname", "email")]
    sequence += [fields.get(f"udf{i}", "") for i in range(10, 0, -1)]
    sequence += [
        fields.get(name, "") for name in ("productinfo", "amount", "txnid", "key")
    ]
    return hashlib.sha512("|".join(sequence).encode("utf-8")).hexdigest()


@pytest.fixture
def easebuzz_payload_factory() -> Callable[..., dict[str, str]]:
    def _(order_id: str, status: str = "success", **overrides) -> dict[str, str]:
        fields = {
            "txnid": order_id,
            "easepayid": "EP1",
            "status": status,
            "udf1": order_id,
            "key": TEST_MERCHANT_KEY,
            "amount": "1547.00",
            "productinfo": "Order",
            "firstname": "Asha",
            "email": "asha@example.com",
            "mode": "UPI",
        }
        fields.update(overrides)
        fields["hash"] = sign_easebuzz_payload(fields)
        return fields

    return _
