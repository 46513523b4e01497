import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.pool import NullPool

from storefront.auth import create_access_token
from storefront.config import Settings, get_settings
from storefront.database import build_engine, build_session_maker, create_tables, get_session
from storefront.dependencies import get_gateway_client
from storefront.gateway import EsewaClient
from storefront.main import app
from storefront.models import Order, OrderItem, Product
from storefront.reconciliation import SettlementService

STATUS_URL = "https://esewa.test/api/epay/transaction/status/"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings():
    return Settings(status_url=STATUS_URL, success_page_url="http://shop.test/success",
                    failure_page_url="http://shop.test/failure")


@pytest.fixture
def db(tmp_path):
    """Session factory on a throwaway SQLite file.

    NullPool gives every session its own connection, so two sessions really
    are two concurrent transactions.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    run(create_tables(engine))
    yield build_session_maker(engine)
    run(engine.dispose())


class FakeEsewa:
    """Stands in for the eSewa status API through httpx.MockTransport."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.body = None
        self.error = None

    def answer(self, transaction_uuid, total_amount, status, ref_id=None):
        self.status_code = 200
        self.body = {
            "product_code": "EPAYTEST",
            "transaction_uuid": transaction_uuid,
            "total_amount": total_amount,
            "status": status,
            "ref_id": ref_id,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        if self.body is None:
            return httpx.Response(self.status_code, text="Service Unavailable")
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> EsewaClient:
        return EsewaClient(STATUS_URL, timeout=1.0, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def esewa():
    return FakeEsewa()


@pytest.fixture
def client(db, settings, esewa):
    async def override_session():
        async with db() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gateway_client] = esewa.client
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id="shopper-1"):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


# data helpers

async def add_product(maker, price="1000", stock=5, name="Linen Shirt") -> int:
    async with maker() as session:
        product = Product(name=name, price=Decimal(price), stock=stock)
        session.add(product)
        await session.commit()
        return product.id


async def add_order(maker, total, lines, transaction_uuid="txn-0001", created_at=None,
                    status="PENDING", needs_attention=False, user_id="shopper-1",
                    settlement_error=None) -> str:
    async with maker() as session:
        order = Order(
            user_id=user_id,
            transaction_uuid=transaction_uuid,
            subtotal=Decimal(total),
            total_amount=Decimal(total),
            status=status,
            needs_attention=needs_attention,
            settlement_error=settlement_error,
            created_at=created_at or datetime.now(timezone.utc),
            items=[OrderItem(product_id=pid, quantity=q, unit_price=Decimal(total)) for pid, q in lines],
        )
        session.add(order)
        await session.commit()
        return transaction_uuid


async def get_order(maker, transaction_uuid) -> Order:
    async with maker() as session:
        res = await session.execute(select(Order).where(Order.transaction_uuid == transaction_uuid))
        return res.scalar_one()


async def get_stock(maker, product_id) -> int:
    async with maker() as session:
        res = await session.execute(select(Product.stock).where(Product.id == product_id))
        return res.scalar_one()


async def reconcile(maker, settings, message, gateway=None, **kwargs):
    async with maker() as session:
        return await SettlementService(session, settings, gateway).reconcile(message, **kwargs)


async def reconcile_with_gateway(maker, settings, transaction_uuid, gateway):
    async with maker() as session:
        return await SettlementService(session, settings, gateway).reconcile_with_gateway(transaction_uuid)
