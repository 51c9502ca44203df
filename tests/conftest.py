"""Pytest configuration and fixtures."""

import os
import secrets
from datetime import date, timedelta

# Settings are read at import time; configure before importing the app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["ENABLE_EMAIL"] = "true"
os.environ["ENABLE_PUSH"] = "true"
os.environ.setdefault("JWT_SECRET", f"test-only-{secrets.token_urlsafe(32)}")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from shiftboard.auth.security import create_access_token, get_password_hash, principal_for  # noqa: E402
from shiftboard.db import Base, enable_sqlite_foreign_keys, get_db  # noqa: E402
from shiftboard.main import app  # noqa: E402
from shiftboard.models.models import Company, User, Worker, WorkerAvailability  # noqa: E402
from shiftboard.services.errors import NotificationDispatchFailed  # noqa: E402
from shiftboard.services.notifications import NotificationDispatcher, get_dispatcher  # noqa: E402

SHIFT_DAY = date.today() + timedelta(days=7)
PASSWORD = "correct-horse-battery"


class RecordingEmailSender:
    """Email transport that records messages; addresses in fail_for raise."""

    is_configured = True

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, to, subject, body):
        if to in self.fail_for:
            raise NotificationDispatchFailed(f"Email to {to} failed: mailbox unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})


class RecordingPushClient:
    """Push transport that records batches; tokens in error_tokens get an error ticket."""

    is_configured = True

    def __init__(self):
        self.batches = []
        self.error_tokens = set()
        self.raise_error = False

    def send(self, messages):
        if self.raise_error:
            raise NotificationDispatchFailed("Push request failed: 503")
        self.batches.append(messages)
        return [
            {"status": "error", "message": "DeviceNotRegistered"} if m["to"] in self.error_tokens else {"status": "ok", "id": "ticket"}
            for m in messages
        ]

    @property
    def sent(self):
        return [m for batch in self.batches for m in batch]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def push_client():
    return RecordingPushClient()


@pytest.fixture
def dispatcher(email_sender, push_client):
    return NotificationDispatcher(email_sender=email_sender, push_client=push_client)


@pytest.fixture
def client(session_factory, dispatcher):
    """Create a test client bound to the per-test database."""

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def company(db):
    company = Company(
        name="Acme Events",
        email="ops@acme.com",
        password_hash=get_password_hash(PASSWORD),
        comp_code="ACME",
        push_token="ExponentPushToken[acme-office]",
    )
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def other_user(db):
    user = User(
        username="globex",
        email="owner@globex.com",
        password_hash=get_password_hash(PASSWORD),
        user_code="GLOBEX",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def make_worker(db, company):
    """Factory for workers of the Acme tenant (or another user_code)."""
    counter = {"n": 0}

    def _make(name=None, slots=(), approved=True, push_token=None, user_code=None):
        counter["n"] += 1
        name = name or f"Worker {counter['n']}"
        worker = Worker(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@example.com",
            password_hash=get_password_hash(PASSWORD),
            approved=approved,
            user_code=user_code or company.comp_code,
            push_token=push_token,
        )
        for day, shift in slots:
            worker.availability.append(WorkerAvailability(date=day, shift=shift))
        db.add(worker)
        db.commit()
        return worker

    return _make


@pytest.fixture
def tenant(company):
    return principal_for(company)


def auth_headers(account):
    token = create_access_token(principal_for(account))
    return {"Authorization": f"Bearer {token}"}


def of(obligations, template, channel=None):
    """Obligations for one template (and channel)."""
    return [o for o in obligations if o.template == template and (channel is None or o.channel == channel)]
