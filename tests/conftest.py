import hashlib
import hmac
import json
import os
import threading
import time

import pytest

os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("WEBSITE_URL", "https://app.example.com")
os.environ.setdefault("AUTH_SECRET_KEY", "test-auth-secret")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.config import get_settings
from app.core.database import get_db, get_session_factory
from app.models import Base, Customer, Organization, User
from app.services.stripe_service import StripeService, get_stripe_service

# Setup in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class WorkerSession(Session):
    """Session opened by the webhook worker thread; ``closed`` is set when it is closed."""

    closed = threading.Event()

    def close(self):
        super().close()
        WorkerSession.closed.set()


WorkerSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=WorkerSession)


class FakeStripe(StripeService):
    """
    StripeService with the network calls replaced. Webhook signature checks are
    inherited, so tests sign payloads exactly like Stripe does.
    """

    def __init__(self):
        settings = get_settings()
        super().__init__(api_key="sk_test_dummy", webhook_secret=settings.STRIPE_WEBHOOK_SECRET)
        self.created_customers = []
        self.checkout_calls = []
        self.remote_customers = {}
        self.products = []
        self.prices = {}
        self.next_customer_id = None
        self.before_create = None
        self.checkout_url = "https://checkout.stripe.com/c/pay/cs_test_1"

    def create_customer(self, metadata, email=None, name=None, idempotency_key=None):
        if self.before_create:
            self.before_create()
        customer_id = self.next_customer_id or f"cus_test_{len(self.created_customers) + 1}"
        customer = {"id": customer_id, "email": email, "name": name, "metadata": metadata}
        self.created_customers.append({**customer, "idempotency_key": idempotency_key})
        return customer

    def retrieve_customer(self, customer_id):
        return self.remote_customers.get(customer_id, {"id": customer_id, "metadata": {}})

    def create_checkout_session(self, customer_id, price_id, success_url, cancel_url,
                                subscription_metadata=None):
        self.checkout_calls.append({
            "customer_id": customer_id,
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "subscription_metadata": subscription_metadata,
        })
        return {"id": "cs_test_1", "object": "checkout.session", "url": self.checkout_url}

    def create_portal_session(self, customer_id, return_url):
        return {
            "id": "bps_test_1",
            "customer": customer_id,
            "return_url": return_url,
            "url": f"https://billing.stripe.com/p/session/{customer_id}",
        }

    def list_products(self):
        return list(self.products)

    def list_prices(self, product_id):
        return list(self.prices.get(product_id, []))

    def retrieve_plan(self, plan_id):
        return {"id": plan_id, "object": "plan", "amount": 1900, "currency": "usd", "interval": "month"}


def sign_payload(payload: bytes, secret: str = None, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for the raw body."""
    secret = secret or get_settings().STRIPE_WEBHOOK_SECRET
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def subscription_event(
    event_type="customer.subscription.updated",
    sub_id="sub_1",
    customer="cus_1",
    status="active",
    period=(1_700_000_000, 1_702_592_000),
    price_id="price_pro_monthly",
    metadata=None,
    event_id="evt_1",
) -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": sub_id,
                "object": "subscription",
                "customer": customer,
                "status": status,
                "current_period_start": period[0],
                "current_period_end": period[1],
                "cancel_at_period_end": False,
                "metadata": metadata or {},
                "items": {"data": [{"id": "si_1", "price": {"id": price_id}}]},
            }
        },
    }


def session_token(user_id: str, org: str = None) -> str:
    settings = get_settings()
    claims = {"sub": user_id}
    if org:
        claims["org"] = org
    return jwt.encode(claims, settings.AUTH_SECRET_KEY, algorithm=settings.AUTH_ALGORITHM)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture(scope="function")
def client(db_session, fake_stripe):
    """Create a test client with overridden dependencies."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    WorkerSession.closed.clear()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: WorkerSessionLocal
    app.dependency_overrides[get_stripe_service] = lambda: fake_stripe

    with TestClient(app) as c:
        yield c

    app.dependency_overrides = {}


@pytest.fixture
def user(db_session):
    u = User(id="u1", email="ada@example.com", name="Ada Lovelace")
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture
def organization(db_session):
    org = Organization(id="org1", name="Analytical Engines", slug="analytical-engines")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def user_customer(db_session, user):
    customer = Customer(stripe_customer_id="cus_1", user_id=user.id)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {session_token(user.id)}"}


@pytest.fixture
def write_log():
    """Captures every INSERT/UPDATE/DELETE issued against the test engine."""
    statements = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().split(" ", 1)[0].upper() in ("INSERT", "UPDATE", "DELETE"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", capture)
    yield statements
    event.remove(engine, "before_cursor_execute", capture)


def post_event(client, event: dict, signature: str = None):
    payload = json.dumps(event).encode("utf-8")
    headers = {
        "stripe-signature": signature if signature is not None else sign_payload(payload),
        "content-type": "application/json",
    }
    return client.post("/api/webhooks/stripe", content=payload, headers=headers)
