"""
Shared fixtures for the order lifecycle test suite.

Each test gets its own SQLite file database, a fake payment gateway and a
recording notifier. Environment is fixed before any service module is
imported because settings are read at import time.
"""
import os

os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["METRICS_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OTLP_ENDPOINT"] = ""
os.environ["NOTIFY_URL"] = ""
os.environ["OUTBOX_POLL_SECONDS"] = "0"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shared.config.database import Base, get_db
from shared.security import create_access_token
from services.order_service.dependencies import get_side_effect_runner
from services.order_service.models import Order, OutboxEvent
from services.order_service.schemas import OrderCreate
from services.order_service.service import OrderLifecycleService
from services.order_service.side_effects import SideEffectRunner
from services.payment_service.gateway import PaymentIntent, RefundResult, get_payment_gateway
from services.product_service.schemas import ProductCreate
from services.product_service.service import ProductService


class FakeGateway:
    """In-memory stand-in for the Razorpay adapter."""

    name = "razorpay"
    key_id = "rzp_test_key"
    valid_signature = "good-signature"

    def __init__(self):
        self.intents = []
        self.refunds = []
        self.fetched = []
        self.payments = {}
        self.fail_with = None

    async def create_payment_intent(self, amount_minor, currency, receipt, notes=None):
        self.intents.append({"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes})
        return PaymentIntent(
            id=f"order_fake{len(self.intents)}",
            status="created",
            amount=amount_minor,
            currency=currency,
            receipt=receipt,
        )

    def verify_callback(self, order_id, payment_id, signature):
        return signature == self.valid_signature

    async def fetch_payments_for_order(self, order_id):
        self.fetched.append(order_id)
        return self.payments.get(order_id, [])

    async def refund(self, payment_id, amount_minor, reason):
        if self.fail_with is not None:
            raise self.fail_with
        self.refunds.append((payment_id, amount_minor, reason))
        return RefundResult(refund_id=f"rfnd_{len(self.refunds)}", status="processed", amount=amount_minor)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def send(self, message):
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.messages.append(message)


def build_order_payload(**overrides) -> dict:
    payload = {
        "customer_name": "Asha Rao",
        "email": "Asha@Example.com",
        "phone": "9876543210",
        "address": {
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "pincode": "560001",
            "country": "India",
        },
        "items": [{"product_id": "p-1", "name": "Clay Lamp", "price": 500.0, "quantity": 2}],
        "total_amount": 1000.0,
        "payment_method": "cod",
        "payment_status": "pending",
    }
    payload.update(overrides)
    return payload


ONLINE_PAID = {
    "payment_method": "razorpay",
    "payment_status": "completed",
    "gateway_order_id": "order_123",
    "gateway_payment_id": "pay_123",
    "transaction_id": "pay_123",
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
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


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def runner(session_factory, notifier):
    return SideEffectRunner(session_factory, notifier)


@pytest.fixture
def lifecycle(db, gateway):
    return OrderLifecycleService(db, gateway)


@pytest.fixture
def order_payload():
    return build_order_payload


@pytest.fixture
def online_paid():
    return dict(ONLINE_PAID)


@pytest.fixture
def create_order(lifecycle):
    async def _create(**overrides) -> Order:
        return await lifecycle.create_order(OrderCreate(**build_order_payload(**overrides)))
    return _create


@pytest_asyncio.fixture
async def product(db):
    return await ProductService.create_product(
        db, ProductCreate(id="p-1", name="Clay Lamp", price=500.0, stock=10)
    )


@pytest.fixture
def fetch(session_factory):
    """Reads a row through a fresh session, bypassing the test session's identity map."""
    async def _fetch(model, key):
        async with session_factory() as session:
            return await session.get(model, key)
    return _fetch


@pytest.fixture
def outbox(session_factory):
    async def _outbox(order_id: str) -> list[OutboxEvent]:
        async with session_factory() as session:
            result = await session.execute(
                select(OutboxEvent).where(OutboxEvent.order_id == order_id).order_by(OutboxEvent.id)
            )
            return list(result.scalars().all())
    return _outbox


@pytest.fixture
def admin_headers():
    token = create_access_token("admin-1", role="admin", username="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    token = create_access_token("user-42")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def internal_headers():
    return {"X-Internal-API-Key": "test-internal-key"}


@pytest_asyncio.fixture
async def client(session_factory, gateway, runner):
    from main import app
    from services.order_service.main import order_app
    from services.payment_service.main import payment_app
    from services.product_service.main import product_app

    async def _get_db():
        async with session_factory() as session:
            yield session

    sub_apps = (order_app, payment_app, product_app)
    for sub_app in sub_apps:
        sub_app.dependency_overrides[get_db] = _get_db
        sub_app.dependency_overrides[get_payment_gateway] = lambda: gateway
        sub_app.dependency_overrides[get_side_effect_runner] = lambda: runner

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    for sub_app in sub_apps:
        sub_app.dependency_overrides.clear()
