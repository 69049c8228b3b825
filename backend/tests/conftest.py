"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import secrets
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time; point them at throwaway backends first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CONTENT_BACKEND", "static")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.core.config import settings
from app.db.session import get_db
from app.db import redis as redis_module
from app.models import Base
from app.models.user import User
from app.services.content import StaticContentRepository, set_content_repository
from app.services.order_service import create_order, update_gateway_metadata
from app.services.payments import GatewayMetadata
from app.services.user_service import create_user


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Gateway secrets used to sign test webhooks
WOMPI_EVENTS_SECRET = "test_wompi_events_secret"
EPAYCO_PUBLIC_KEY = "test_epayco_customer"
EPAYCO_PRIVATE_KEY = "test_epayco_private_key"
EPAYCO_P_KEY = "test_epayco_p_key"
NEQUI_WEBHOOK_SECRET = "test_nequi_webhook_secret"


def build_catalog(now: datetime = None) -> dict:
    """Content catalog with dates relative to now"""
    now = now or datetime.now(timezone.utc)
    return {
        "discountCodes": [
            {"_id": "dc-welcome", "code": "WELCOME10", "discountType": "percentage", "discountValue": 10},
            {"_id": "dc-free", "code": "FREE100", "discountType": "percentage", "discountValue": 100},
            {"_id": "dc-once", "code": "ONCE", "discountType": "fixed_amount", "discountValue": 20000,
             "currency": "COP", "usageType": "single_use"},
            {"_id": "dc-capped", "code": "CAPPED", "discountType": "percentage", "discountValue": 5,
             "maxUses": 1},
            {"_id": "dc-old", "code": "OLD", "discountType": "percentage", "discountValue": 10,
             "validUntil": (now - timedelta(days=30)).isoformat()},
            {"_id": "dc-soon", "code": "SOON", "discountType": "percentage", "discountValue": 10,
             "validFrom": (now + timedelta(days=30)).isoformat()},
            {"_id": "dc-off", "code": "OFF", "active": False, "discountType": "percentage", "discountValue": 10},
            {"_id": "dc-course", "code": "DRIPONLY", "discountType": "percentage", "discountValue": 20,
             "appliesToCourses": [{"_id": "course-drip", "title": "Drip Course"}]},
            {"_id": "dc-min", "code": "BIGSPENDER", "discountType": "percentage", "discountValue": 15,
             "minPurchaseAmount": 100000},
            {"_id": "dc-usd", "code": "USD5", "discountType": "fixed_amount", "discountValue": 5, "currency": "USD"},
        ],
        "events": [
            {
                "_id": "event-live",
                "title": "Live Workshop",
                "eventDate": (now - timedelta(days=2)).isoformat(),
                "perks": [
                    {"type": "workbook", "title": "Workbook", "deliveryMode": "automatic",
                     "assetUrl": "https://cdn.example.com/workbook.pdf"},
                    {"type": "meditation", "title": "Private meditation", "cap": 1,
                     "priorityPlans": [{"_id": "tier-gold", "name": "Gold"}]},
                ],
                "recording": {
                    "url": "https://video.example.com/replay/event-live",
                    "replayDurationDays": 7,
                    "replayByPlan": [{"tier": {"_id": "tier-gold", "name": "Gold"}, "durationDays": 30}],
                },
            },
            {
                "_id": "event-old",
                "title": "Last Month's Circle",
                "eventDate": (now - timedelta(days=10)).isoformat(),
                "recording": {
                    "url": "https://video.example.com/replay/event-old",
                    "replayDurationDays": 7,
                    "replayByPlan": [{"tier": {"_id": "tier-gold", "name": "Gold"}, "durationDays": 30}],
                },
            },
            {"_id": "event-unrecorded", "title": "Unrecorded Talk", "eventDate": now.isoformat()},
        ],
        "courses": [
            {
                "_id": "course-drip",
                "title": "Drip Course",
                "price": 200000,
                "dripEnabled": True,
                "defaultDripDays": 7,
                "modules": [
                    {
                        "_id": "module-1",
                        "title": "Foundations",
                        "lessons": [
                            {"_id": "lesson-1", "title": "Welcome", "isFreePreview": True},
                            {"_id": "lesson-2", "title": "Breath"},
                            {"_id": "lesson-3", "title": "Now", "dripMode": "immediate"},
                        ],
                    },
                    {
                        "_id": "module-2",
                        "title": "Advanced",
                        "unlockDate": (now + timedelta(days=60)).isoformat(),
                        "lessons": [{"_id": "lesson-4", "title": "Stillness", "dripMode": "immediate"}],
                    },
                ],
            },
            {"_id": "course-free", "title": "Free Course", "price": 0,
             "modules": [{"_id": "module-free", "lessons": [{"_id": "lesson-free"}]}]},
            {"_id": "course-member", "title": "Members Course", "price": 150000,
             "includedInMembership": True, "membershipTiers": [{"_id": "tier-gold", "name": "Gold"}]},
        ],
    }


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function", autouse=True)
def content_catalog():
    """Static content repository for every test"""
    repository = StaticContentRepository(build_catalog())
    set_content_repository(repository)
    yield repository
    set_content_repository(None)


@pytest.fixture(scope="function", autouse=True)
def gateway_secrets():
    """Webhook secrets for the gateways whose signatures are checked locally"""
    with patch.multiple(
        settings,
        WOMPI_EVENTS_SECRET=WOMPI_EVENTS_SECRET,
        EPAYCO_PUBLIC_KEY=EPAYCO_PUBLIC_KEY,
        EPAYCO_PRIVATE_KEY=EPAYCO_PRIVATE_KEY,
        EPAYCO_P_KEY=EPAYCO_P_KEY,
        NEQUI_WEBHOOK_SECRET=NEQUI_WEBHOOK_SECRET,
    ):
        yield


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Tables come from the test engine; OpenTelemetry stays off
        with patch("app.main.init_db"):
            with patch("app.main.initialize_otel", return_value=False):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    """Registered buyer"""
    return create_user(email="buyer@example.com", name="Ana Buyer", db=db_session)


@pytest.fixture(scope="function")
def test_user_2(db_session: Session) -> User:
    """Second buyer for ownership and capacity tests"""
    return create_user(email="second@example.com", name="Luis Second", db=db_session)


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    return create_user(email="admin@example.com", name="Admin", is_admin=True, db=db_session)


def login(client: TestClient, fake_redis, user: User) -> str:
    """Attach a session cookie for user to the client, as the auth service would"""
    session_id = secrets.token_urlsafe(32)
    fake_redis.setex(f"session:{session_id}", 2592000, str(user.id))
    client.cookies.set("session_id", session_id)
    return session_id


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client with a session for test_user"""
    login(client, mock_redis, test_user)
    return client


@pytest.fixture(scope="function")
def admin_client(client: TestClient, admin_user: User, mock_redis) -> TestClient:
    """Client with a session for admin_user"""
    login(client, mock_redis, admin_user)
    return client


def make_order(
    db: Session,
    user: User = None,
    order_type: str = "PREMIUM_CONTENT",
    item_id: str = "premium-1",
    item_name: str = "Premium Meditations",
    amount: float = 50000,
    currency: str = "COP",
    gateway: str = "wompi",
    transaction_id: str = "link_123",
    payment_method: str = "WOMPI_CARD",
    guest_email: str = None,
    extra_data: dict = None
):
    """PENDING order as checkout leaves it after the gateway accepted the payment"""
    order = create_order(
        db,
        user_id=user.id if user else None,
        guest_email=guest_email,
        guest_name="Guest Buyer" if guest_email else None,
        order_type=order_type,
        item_id=item_id,
        item_name=item_name,
        original_amount=amount,
        discount_amount=0,
        amount=amount,
        currency=currency,
        payment_method=payment_method,
        extra_data=extra_data or {}
    )
    if gateway:
        update_gateway_metadata(order, GatewayMetadata(
            gateway=gateway,
            transaction_id=transaction_id,
            reference=order.order_number,
            last_status="PENDING"
        ))
        db.commit()
        db.refresh(order)
    return order


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def wompi_webhook(transaction_id: str, status: str, reference: str = None, amount_in_cents: int = 5000000,
                  payment_link_id: str = None, timestamp: str = "1718000000"):
    """Signed Wompi transaction.updated delivery as (headers, raw body)"""
    transaction = {
        "id": transaction_id,
        "status": status,
        "reference": reference,
        "amount_in_cents": amount_in_cents,
        "currency": "COP",
    }
    if payment_link_id:
        transaction["payment_link_id"] = payment_link_id
    body = json.dumps({
        "event": "transaction.updated",
        "data": {"transaction": transaction},
        "sent_at": "2024-06-10T12:00:00Z",
    }).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Event-Timestamp": timestamp,
        "X-Event-Checksum": _hmac_hex(WOMPI_EVENTS_SECRET, timestamp.encode("utf-8") + body),
    }
    return headers, body


def epayco_confirmation(ref_payco: str, cod_response: str, invoice: str, amount: str = "50000",
                        currency: str = "COP", signature: str = None):
    """Signed ePayco form-encoded confirmation as (headers, raw body)"""
    from urllib.parse import urlencode

    fields = {
        "x_cust_id_cliente": EPAYCO_PUBLIC_KEY,
        "x_ref_payco": ref_payco,
        "x_transaction_id": f"tx-{ref_payco}",
        "x_amount": amount,
        "x_currency_code": currency,
        "x_cod_response": cod_response,
        "x_response": {"1": "Aceptada", "2": "Rechazada", "3": "Pendiente"}.get(cod_response, "Fallida"),
        "x_id_invoice": invoice,
    }
    message = "^".join([
        fields["x_cust_id_cliente"], EPAYCO_P_KEY, fields["x_ref_payco"],
        fields["x_transaction_id"], fields["x_amount"], fields["x_currency_code"],
    ])
    fields["x_signature"] = signature or _hmac_hex(EPAYCO_PRIVATE_KEY, message.encode("utf-8"))
    return {"Content-Type": "application/x-www-form-urlencoded"}, urlencode(fields).encode("utf-8")


def nequi_webhook(event_id: str, event_type: str, data: dict = None, subscription_id: str = None):
    """Signed Nequi notification as (headers, raw body)"""
    envelope = {"eventId": event_id, "eventType": event_type, "data": data or {}}
    if subscription_id:
        envelope["subscriptionId"] = subscription_id
    body = json.dumps(envelope).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Nequi-Signature": _hmac_hex(NEQUI_WEBHOOK_SECRET, body),
    }
    return headers, body
