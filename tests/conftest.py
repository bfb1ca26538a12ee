import hashlib
import hmac
import itertools
import json
import os
import tempfile
import threading
import time

# Must be set before the app modules are imported
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "order_payment_service_test.db"),
)
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.auth
from app.database import Base, get_db, make_engine
from app.dependencies import get_gateway, get_notifier, get_session_factory
from app.errors import GatewayError
from app.gateway import Intent
from app.main import app as fastapi_app
from app.store import TransactionStore
from app.stripe_service import StripeGateway

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(StripeGateway):
    """Stripe adapter with in-memory intents; webhook verification stays real."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", tolerance=300)
        self.intents = {}
        self.by_key = {}
        self.create_calls = []
        self.retrieve_calls = []
        self.honor_idempotency = True
        self.fail_create = False
        self.fail_retrieve = False
        self.before_create = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_intent(self, amount, currency, metadata, idempotency_key=None, receipt_email=None):
        call_number = len(self.create_calls) + 1
        self.create_calls.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
                "receipt_email": receipt_email,
            }
        )
        if self.before_create:
            self.before_create(call_number)
        if self.fail_create:
            raise GatewayError("gateway unavailable")
        with self._lock:
            if self.honor_idempotency and idempotency_key in self.by_key:
                return self.by_key[idempotency_key]
            n = next(self._ids)
            intent = Intent(intent_id=f"pi_fake_{n}", secret=f"pi_fake_{n}_secret_{n}", status="requires_payment_method")
            self.intents[intent.intent_id] = intent
            if idempotency_key:
                self.by_key[idempotency_key] = intent
            return intent

    def retrieve_intent(self, intent_id):
        self.retrieve_calls.append(intent_id)
        if self.fail_retrieve:
            raise GatewayError("gateway unavailable")
        return self.intents[intent_id]

    def set_status(self, intent_id, status):
        current = self.intents[intent_id]
        self.intents[intent_id] = Intent(intent_id=current.intent_id, secret=current.secret, status=status)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, contact, outcome):
        self.sent.append((contact, outcome))
        if self.fail:
            raise RuntimeError("smtp down")


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'payments.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return TransactionStore(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def webhook_secret(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STALE_PENDING_SECONDS", "900")
    return WEBHOOK_SECRET


@pytest.fixture
def client(session_factory, gateway, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    # Bypass auth verification for tests
    fastapi_app.dependency_overrides[app.auth.verify_token] = lambda: {"sub": "user-token"}

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def make_event(event_type, intent_id, order_id=None, event_id="evt_test_1"):
    metadata = {"orderId": order_id} if order_id else {}
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
    }


def sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def signed_event():
    def build(event_type, intent_id, order_id=None, event_id="evt_test_1", secret=WEBHOOK_SECRET, timestamp=None):
        body = json.dumps(make_event(event_type, intent_id, order_id, event_id))
        return body, sign(body, secret=secret, timestamp=timestamp)

    return build
