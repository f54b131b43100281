import os

# Settings are read at import time; point them at test values before importing the app.
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import hashlib
import hmac
import json
import time
from contextlib import contextmanager
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from titan_billing.core.base import Base
from titan_billing.core import config as app_config

# Import models so they register with SQLAlchemy metadata.
from titan_billing.models.invoice import Invoice  # noqa: F401
from titan_billing.models.payment import Payment  # noqa: F401
from titan_billing.models.subscription import Subscription  # noqa: F401
from titan_billing.models.user import User
from titan_billing.models.user_activity import UserActivity  # noqa: F401

from titan_billing.core.database import get_db
from titan_billing.dependencies.auth import get_current_user
from titan_billing.routes.payments import get_stripe_service
from titan_billing.services.rate_limiter import InMemoryRateLimiter
from titan_billing.services.stripe import StripeService


def _sdk_object(values: dict) -> stripe.StripeObject:
    # SDK calls return StripeObjects, not dicts.
    return stripe.StripeObject.construct_from(values, "sk_test_123")


class FakeStripe:
    """
    Stand-in for the stripe module. Webhook verification is delegated to the real
    SDK so signatures are checked exactly as in production.
    """

    StripeError = stripe.StripeError
    SignatureVerificationError = stripe.SignatureVerificationError
    Webhook = stripe.Webhook

    def __init__(self):
        self.api_key = None
        self.customers: dict[str, dict] = {}
        self.modified_subscriptions: list[tuple[str, dict]] = []
        self.checkout_sessions: list[dict] = []
        self.portal_sessions: list[dict] = []
        self.fail_checkout = False

        fake = self

        class _CustomerAPI:
            def retrieve(self, customer_id):
                if customer_id not in fake.customers:
                    raise stripe.InvalidRequestError(f"No such customer: {customer_id}", "id")
                return _sdk_object(fake.customers[customer_id])

        class _SubscriptionAPI:
            def modify(self, subscription_id, **kwargs):
                fake.modified_subscriptions.append((subscription_id, kwargs.get("metadata") or {}))
                return _sdk_object({"id": subscription_id, "metadata": kwargs.get("metadata") or {}})

        class _CheckoutSessionAPI:
            def create(self, **kwargs):
                if fake.fail_checkout:
                    raise stripe.InvalidRequestError("No such price", "price")
                session = {"id": f"cs_test_{len(fake.checkout_sessions) + 1}", **kwargs}
                fake.checkout_sessions.append(session)
                return _sdk_object(session)

        class _PortalSessionAPI:
            def create(self, **kwargs):
                fake.portal_sessions.append(kwargs)
                return _sdk_object({"id": "bps_test", "url": f"https://billing.example.test/{kwargs['customer']}"})

        self.Customer = _CustomerAPI()
        self.Subscription = _SubscriptionAPI()
        self.checkout = SimpleNamespace(Session=_CheckoutSessionAPI())
        self.billing_portal = SimpleNamespace(Session=_PortalSessionAPI())

    def add_customer(self, customer_id: str, email: str | None) -> None:
        self.customers[customer_id] = {"id": customer_id, "email": email}


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header: v1 = HMAC-SHA256(secret, "<t>.<body>")."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests with StaticPool; reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests tweak the process-global settings object; restore values after each test.
    """
    keys = [
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "RATE_LIMIT_ENABLED",
        "FRONTEND_BASE_URL",
        "ENV",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    app_config.settings.STRIPE_SECRET_KEY = "sk_test_123"
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test_123"
    app_config.settings.FRONTEND_BASE_URL = "http://localhost:3000"
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture()
def fake_stripe():
    return FakeStripe()


@pytest.fixture()
def send_webhook():
    """
    POST an event to the webhook endpoint, signed with the configured secret.

    Usage:
        resp = send_webhook(client, event)
        resp = send_webhook(client, event, signature="t=1,v1=bad")
    """

    def _send(test_client: TestClient, event: dict, *, signature: str | None = None):
        body = json.dumps(event).encode("utf-8")
        header = signature or sign_payload(body, app_config.settings.STRIPE_WEBHOOK_SECRET)
        return test_client.post(
            "/api/payments/webhooks",
            content=body,
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )

    return _send


@pytest.fixture()
def rate_limiter():
    return InMemoryRateLimiter()


@pytest.fixture()
def app(db_session, fake_stripe, rate_limiter):
    import titan_billing.main as main

    fastapi_app = main.app
    fastapi_app.state.rate_limiter = rate_limiter

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_stripe_service] = lambda: StripeService(stripe_client=fake_stripe)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.rate_limiter = None


@pytest.fixture()
def users(db_session):
    """
    Two distinct users; the first starts with 5 credits.
    """
    user_a = User(
        user_id="user_a",
        email="test@example.com",
        first_name="Test",
        credits=Decimal("5"),
    )
    user_b = User(
        user_id="user_b",
        email="other@example.com",
        first_name="Other",
        credits=Decimal("0"),
    )
    db_session.add_all([user_a, user_b])
    db_session.commit()
    db_session.refresh(user_a)
    db_session.refresh(user_b)
    return user_a, user_b


@pytest.fixture()
def client(app, users):
    """
    Default client authenticated as user_a.
    """
    user_a, _ = users
    app.dependency_overrides[get_current_user] = lambda: user_a
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def anonymous_client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def client_for(app):
    """
    Context manager to create a client authenticated as an arbitrary user.

    Usage:
        with client_for(user) as c:
            ...
    """

    @contextmanager
    def _client_for(user: User):
        app.dependency_overrides[get_current_user] = lambda: user
        with TestClient(app) as c:
            yield c
        app.dependency_overrides.pop(get_current_user, None)

    return _client_for
