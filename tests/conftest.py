import hashlib
import hmac
import json
import os
import time

# Must be set before core.config / core.database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["APP_ENV"] = "test"
os.environ["FRONTEND_URL"] = "https://livrestaka.fr"

import pytest
from fastapi.testclient import TestClient

from core.database import Base, engine, SessionLocal, get_db
import models  # noqa: F401
from models.order import Order, OrderStatus, PaymentStatus
from models.pending_order import PendingOrder, PENDING_ACTIVATION_SENTINEL
from models.service import Service
from models.user import User, UserRole
from utils.emailing import EmailDeliveryError, get_mailer
from utils.side_effects import SideEffects
from utils.storage import ObjectStorage, get_storage

WEBHOOK_SECRET = "whsec_test_secret"


def stripe_signature(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a stripe-signature header the way Stripe does."""
    ts = timestamp or int(time.time())
    signed_payload = f"{ts}.".encode() + body
    sig = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def checkout_completed(session_id: str = "cs_123", amount_total: int = 48000, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "amount_total": amount_total, "payment_status": "paid"}},
    }


class RecordingMailer:
    """Collects outgoing mail; raises for subjects containing any of fail_on."""

    def __init__(self):
        self.sent = []
        self.fail_on = set()

    def send(self, to_addr, subject, html, text=None, attachments=None):
        if any(marker in subject for marker in self.fail_on):
            raise EmailDeliveryError(f"forced failure for {subject}")
        self.sent.append({
            "to": to_addr,
            "subject": subject,
            "html": html,
            "text": text,
            "attachments": attachments or [],
        })

    def subjects(self):
        return [m["subject"] for m in self.sent]


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(s3_resource=None, bucket="", static_dir=str(tmp_path))


@pytest.fixture
def side_effects(storage, mailer):
    return SideEffects(storage, mailer)


@pytest.fixture
def app(db_session, mailer, storage):
    from main import app as fastapi_app

    def _get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_mailer] = lambda: mailer
    fastapi_app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def post_event(client):
    def _post(payload: dict, secret: str = WEBHOOK_SECRET, signature: str = None):
        body = json.dumps(payload).encode()
        header = signature if signature is not None else stripe_signature(body, secret)
        return client.post(
            "/payments/webhook",
            content=body,
            headers={"stripe-signature": header, "Content-Type": "application/json"},
        )
    return _post


@pytest.fixture
def make_user(db_session):
    def _make(email="client@example.com", role=UserRole.USER, is_active=True, first_name="Marie", last_name="Curie"):
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash="$2b$12$existinghashexistinghashexistinghashexistinghashexis",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@staka.fr", role=UserRole.ADMIN, first_name="Admin", last_name="Staka")


@pytest.fixture
def service(db_session):
    svc = Service(
        id="svc-1",
        name="Correction Standard",
        description="Correction orthographique et grammaticale",
        price_cents=48000,
    )
    db_session.add(svc)
    db_session.commit()
    return svc


@pytest.fixture
def make_pending_order(db_session):
    def _make(session_id="cs_123", email="a@b.com", service_id="svc-1", password_hash=PENDING_ACTIVATION_SENTINEL, description=None):
        pending = PendingOrder(
            first_name="Alice",
            last_name="Martin",
            email=email,
            password_hash=password_hash,
            phone="0600000000",
            service_id=service_id,
            stripe_session_id=session_id,
            description=description,
            pages=120,
        )
        db_session.add(pending)
        db_session.commit()
        return pending
    return _make


@pytest.fixture
def make_order(db_session):
    def _make(user, session_id="cs_existing", amount=48000, payment_status=PaymentStatus.UNPAID, pack_type="svc-1"):
        order = Order(
            user_id=user.id,
            title="Mon roman",
            description="Roman de 200 pages",
            status=OrderStatus.AWAITING,
            payment_status=payment_status,
            stripe_session_id=session_id,
            amount=amount,
            pack_type=pack_type,
        )
        db_session.add(order)
        db_session.commit()
        return order
    return _make
