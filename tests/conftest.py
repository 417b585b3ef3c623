# tests/conftest.py
import os
from datetime import datetime
from decimal import Decimal

# Settings are read at import time, so these must be set before agencydesk loads
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agencydesk.auth import SessionContext, get_current_context
from agencydesk.database import Base, get_db
from agencydesk.main import app
from agencydesk.models import Client, Payment, Task, User

# One in-memory database shared by the test thread and the threadpool workers
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Make anyio run on asyncio
@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seed(db):
    """Two clients with one task each, an admin and one user per client"""
    acme = Client(id="client-acme", name="Acme Corp", email="billing@acme.test")
    globex = Client(id="client-globex", name="Globex", email="ap@globex.test")
    db.add_all([acme, globex])
    db.flush()

    db.add_all(
        [
            Task(id="task-site", title="Website Redesign", client_id=acme.id),
            Task(id="task-seo", title="SEO Audit", client_id=globex.id),
            User(id="user-admin", email="admin@agency.test", name="Admin", role="admin"),
            User(id="user-acme", email="owner@acme.test", role="client", client_id=acme.id),
            User(id="user-globex", email="owner@globex.test", role="client", client_id=globex.id),
        ]
    )
    db.commit()
    return {"acme": acme.id, "globex": globex.id, "acme_task": "task-site", "globex_task": "task-seo"}


@pytest.fixture
def admin_ctx():
    return SessionContext(user_id="user-admin", role="admin")


@pytest.fixture
def acme_ctx():
    return SessionContext(user_id="user-acme", role="client", client_id="client-acme")


@pytest.fixture
def globex_ctx():
    return SessionContext(user_id="user-globex", role="client", client_id="client-globex")


@pytest.fixture
def make_payment(db, seed):
    """Insert a payment row directly, bypassing the service"""
    counter = {"n": 0}

    def _make(
        status="due",
        amount="100.00",
        client="acme",
        due_date=None,
        created_at=None,
        is_deleted=False,
        **extra,
    ):
        counter["n"] += 1
        created = created_at or datetime(2025, 1, 1, 9, 0, counter["n"])
        updated = extra.pop("updated_at", None) or created
        payment = Payment(
            client_id=seed[client],
            task_id=seed[f"{client}_task"],
            amount=Decimal(str(amount)),
            status=status,
            due_date=due_date,
            is_deleted=is_deleted,
            created_at=created,
            updated_at=updated,
            **extra,
        )
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return _make


@pytest.fixture
def api(db):
    """
    Build an AsyncClient acting as the given session context.
    Usage: async with api(admin_ctx) as client: ...
    """

    def _override_get_db():
        yield db

    def _client(ctx=None):
        app.dependency_overrides[get_db] = _override_get_db
        if ctx is not None:
            app.dependency_overrides[get_current_context] = lambda: ctx
        else:
            app.dependency_overrides.pop(get_current_context, None)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    yield _client
    app.dependency_overrides.clear()

