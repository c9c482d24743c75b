"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Settings are read at import time: point everything at local, inert backends
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("RAZORPAY__KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY__KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY__WEBHOOK_SECRET", "whsec_razorpay_test")

from functools import partial

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import GatewayOrder, GatewayPayment, GatewayRefund
from application.services.payment_service import PaymentApplicationService
from application.services.webhook_verifier import WebhookVerifier, compute_signature
from core.settings import PaymentSettings
from infrastructure.external.payments.razorpay_client import RazorpayClient
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "whsec_razorpay_test"


def make_settings() -> PaymentSettings:
    return PaymentSettings(
        razorpay={
            "key_id": "rzp_test_key",
            "key_secret": KEY_SECRET,
            "webhook_secret": WEBHOOK_SECRET,
        },
    )


def checkout_signature(order_id: str, payment_id: str) -> str:
    return compute_signature(f"{order_id}|{payment_id}", KEY_SECRET)


class FakeGateway:
    """In-memory gateway: orders/refunds are recorded, payments are staged by tests."""

    provider = "razorpay"

    def __init__(self, settings: PaymentSettings):
        self.settings = settings
        self.key_id = settings.razorpay.key_id
        self.payments: dict[str, GatewayPayment] = {}
        self.created_orders: list[GatewayOrder] = []
        self.refund_calls: list[tuple[str, int]] = []
        self._checkout = WebhookVerifier(settings.razorpay.key_secret)
        # webhook parsing and signature checks use the real adapter
        self._razorpay = RazorpayClient(settings)

    def stage_payment(self, payment_id: str, order_id: str, status: str = "captured", **kwargs) -> GatewayPayment:
        remote = GatewayPayment(id=payment_id, order_id=order_id, status=status, **kwargs)
        self.payments[payment_id] = remote
        return remote

    async def create_order(self, *, amount, currency, receipt, notes=None):
        order = GatewayOrder(
            id=f"order_test{len(self.created_orders) + 1}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
        )
        self.created_orders.append(order)
        return order

    async def fetch_payment(self, payment_id):
        return self.payments[payment_id]

    async def fetch_order_payments(self, order_id):
        return [p for p in self.payments.values() if p.order_id == order_id]

    async def refund(self, payment_id, *, amount, notes=None):
        self.refund_calls.append((payment_id, amount))
        return GatewayRefund(
            id=f"rfnd_test{len(self.refund_calls)}",
            payment_id=payment_id,
            amount=amount,
            status="processed",
        )

    def verify_checkout_signature(self, order_id, payment_id, signature):
        return self._checkout.verify_checkout(order_id, payment_id, signature)

    def parse_webhook(self, headers, body):
        return self._razorpay.parse_webhook(headers, body)


class FakeNotifier:
    def __init__(self):
        self.success: list[int] = []
        self.failure: list[int] = []

    def notify_success(self, payment_id: int) -> None:
        self.success.append(payment_id)

    def notify_failure(self, payment_id: int) -> None:
        self.failure.append(payment_id)


class FakeDispatcher:
    def __init__(self):
        self.synced: list[tuple[str, str | None]] = []

    def sync_order_status(self, order_id, provider=None):
        self.synced.append((order_id, provider))


@pytest.fixture
def payment_settings() -> PaymentSettings:
    return make_settings()


@pytest.fixture
def gateway(payment_settings) -> FakeGateway:
    return FakeGateway(payment_settings)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def service(uow_factory, gateway, notifier, payment_settings) -> PaymentApplicationService:
    return PaymentApplicationService(
        uow_factory=uow_factory,
        gateway=gateway,
        notifier=notifier,
        settings=payment_settings,
    )


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest_asyncio.fixture
async def client(uow_factory, gateway, notifier, dispatcher, payment_settings):
    from api import dependencies
    from main import app

    app.dependency_overrides[dependencies.get_payment_settings] = lambda: payment_settings
    app.dependency_overrides[dependencies.get_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_razorpay_gateway] = lambda: gateway
    app.dependency_overrides[dependencies.get_notifier] = lambda: notifier
    app.dependency_overrides[dependencies.get_task_dispatcher] = lambda: dispatcher
    app.dependency_overrides[dependencies.get_uow_factory] = lambda: uow_factory
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
