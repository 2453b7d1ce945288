"""
Shared fixtures: an in-memory SQLite database per test, fake collaborators
(mailer, mining pool, crypto gateway) and a TestClient wired to them.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SMTP_HOST"] = ""
os.environ["INVOICE_CC_EMAIL"] = "invoices@example.com"
os.environ["CONFIRMO_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["OVERDUE_SWEEP_ENABLED"] = "false"
os.environ["SEED_ADMIN_PASSWORD"] = ""

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import app
from core.exceptions import CollaboratorError
from core.security import create_access_token, TokenData
from database import get_db
from database.base import Base, get_utc_now
from database.models import User, RoleType, Group, Miner, MinerStatus
from database.seed import ensure_default_pricing
from services.confirmo import get_confirmo_client
from services.email import get_email_service
from services.invoice import InvoiceService
from services.luxor import get_luxor_client


# ==================== FAKES ====================

class FakeMailer:
    """Records invoice emails instead of talking to SMTP."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def _record(self, kind, invoice, cc, **extra):
        if self.fail:
            raise CollaboratorError("Email transmission failed")
        self.sent.append({"kind": kind, "invoice_id": invoice.id, "to": invoice.user.email, "cc": cc, **extra})

    def send_invoice(self, invoice, pdf, cc, crypto_payment_url=None):
        self._record("invoice", invoice, cc, pdf=pdf, crypto_payment_url=crypto_payment_url)

    def send_cancellation(self, invoice, cc):
        self._record("cancellation", invoice, cc)

    def send_payment_received(self, invoice, cc):
        self._record("payment_received", invoice, cc)

    def kinds(self):
        return [m["kind"] for m in self.sent]


class FakeLuxor:
    def __init__(self):
        self.calls = []
        self.response = {"workers": []}
        self.error = None

    async def request(self, path, params=None):
        self.calls.append((path, dict(params or {})))
        if self.error:
            raise self.error
        return self.response


class FakeConfirmo:
    def __init__(self):
        self.created = []
        self.counter = 0

    def create_invoice(self, payload):
        self.counter += 1
        self.created.append(payload)
        return {
            "id": f"cf_{self.counter}",
            "url": f"https://pay.example.com/cf_{self.counter}",
            "status": "active",
            "expiresAt": (get_utc_now() + timedelta(hours=1)).isoformat() + "Z",
        }

    def get_invoice(self, confirmo_invoice_id):
        return {"id": confirmo_invoice_id, "status": "active"}


# ==================== DATABASE ====================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    ensure_default_pricing(session)
    yield session
    session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def luxor():
    return FakeLuxor()


@pytest.fixture
def confirmo():
    return FakeConfirmo()


# ==================== USERS ====================

def _make_user(session, email, role=RoleType.CLIENT, **kwargs) -> User:
    user = User(
        email=email,
        name=kwargs.pop("name", email.split("@")[0].title()),
        password_hash=kwargs.pop("password_hash", "not-a-real-hash"),
        role=role,
        is_active=True,
        **kwargs,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def make_user(db_session):
    def factory(email, role=RoleType.CLIENT, **kwargs):
        return _make_user(db_session, email, role, **kwargs)
    return factory


@pytest.fixture
def admin(db_session):
    return _make_user(db_session, "admin@example.com", RoleType.ADMIN, name="Admin")


@pytest.fixture
def super_admin(db_session):
    return _make_user(db_session, "root@example.com", RoleType.SUPER_ADMIN, name="Root")


@pytest.fixture
def customer(db_session):
    group = Group(name="Alpha Hosting", relationship_manager="Rita", email="rm@example.com")
    db_session.add(group)
    db_session.commit()
    return _make_user(
        db_session, "alice@example.com", name="Alice",
        luxor_subaccount_name="alice_sub", group_id=group.id,
    )


@pytest.fixture
def other_customer(db_session):
    return _make_user(db_session, "bob@example.com", name="Bob", luxor_subaccount_name="bob_sub")


@pytest.fixture
def add_miners(db_session):
    def factory(user, active=1, inactive=0):
        for i in range(active):
            db_session.add(Miner(user_id=user.id, name=f"S21-{i}", status=MinerStatus.ACTIVE))
        for i in range(inactive):
            db_session.add(Miner(user_id=user.id, name=f"S19-{i}", status=MinerStatus.INACTIVE))
        db_session.commit()
    return factory


# ==================== INVOICES ====================

@pytest.fixture
def invoice_service(db_session, mailer):
    return InvoiceService(db_session, mailer=mailer)


@pytest.fixture
def make_invoice(invoice_service, customer, admin):
    """DRAFT invoice, or ISSUED with issue=True. 10 x 25.50 unless told otherwise."""
    def factory(issue=False, user=None, total_miners=10, unit_price=Decimal("25.50"), **kwargs):
        invoice = invoice_service.create_invoice(
            (user or customer).id, total_miners=total_miners, unit_price=unit_price,
            actor_id=admin.id, **kwargs,
        )
        if issue:
            invoice, _ = invoice_service.issue_invoice(invoice.id, actor_id=admin.id)
        return invoice
    return factory


# ==================== API ====================

def token_for(user: User) -> str:
    return create_access_token(TokenData(user.id, user.email, user.role.value).to_dict())


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def client(db_session, mailer, luxor, confirmo):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: mailer
    app.dependency_overrides[get_luxor_client] = lambda: luxor
    app.dependency_overrides[get_confirmo_client] = lambda: confirmo
    yield TestClient(app)
    app.dependency_overrides.clear()
