"""
Pytest configuration and shared fixtures
"""
import os
import sys
import tempfile
import uuid
from datetime import datetime, timedelta
from pathlib import Path

# Settings are read at import time; configure the environment first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-minimum-32-chars-long")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="feedbackatm-uploads-"))

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from feedbackatm.config import settings
from feedbackatm.db import Base, get_db
from feedbackatm.main import app
from feedbackatm.models.models import (
    CleanerAssignment,
    CleaningTask,
    Company,
    ServicePoint,
    TaskStatus,
    User,
    UserRole,
)
from feedbackatm.services.identity import LoginResult, get_identity_client
from feedbackatm.storage.local_provider import LocalStorageProvider, get_storage


class FakeIdentityClient:
    """Stands in for the identity provider: fixed roles, recorded mirror calls."""

    def __init__(self):
        self.roles = {}
        self.calls = []
        self.login_result = LoginResult(200, {"access_token": "abc"}, ["mint_session=abc; Path=/; HttpOnly"])
        self.login_error = None

    def fetch_external_role(self, username):
        return self.roles.get(username)

    def login(self, username, password):
        if self.login_error is not None:
            raise self.login_error
        return self.login_result

    def create_user(self, username, password, role, email=None, token=None):
        self.calls.append(("create", username, role, token))

    def update_user(self, username, email=None, role=None, token=None):
        self.calls.append(("update", username, role, token))

    def delete_user(self, username, token=None):
        self.calls.append(("delete", username, token))


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def identity():
    return FakeIdentityClient()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "uploads"))


@pytest.fixture
def client(session_factory, identity, storage):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_identity_client] = lambda: identity
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(username, **claims):
    payload = {
        "sub": username,
        "type": "access",
        "exp": datetime.utcnow() + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth(username, **claims):
    return {"Authorization": f"Bearer {make_token(username, **claims)}"}


# ---- factories ----

def make_company(db, name="Acme"):
    company = Company(name=name, address="1 Main St")
    db.add(company)
    db.commit()
    return company


def make_user(db, username, role=UserRole.CLEANER, company=None):
    user = User(
        username=username,
        role=role.value,
        company_id=company.id if company is not None else None,
    )
    db.add(user)
    db.commit()
    return user


def make_point(db, company, name="P1", type="ATM"):
    point = ServicePoint(
        name=name,
        type=type,
        address=f"{name} street",
        latitude=40.4,
        longitude=49.8,
        company_id=company.id,
    )
    db.add(point)
    db.commit()
    return point


def assign(db, cleaner, *points):
    for p in points:
        db.add(CleanerAssignment(cleaner_id=cleaner.id, service_point_id=p.id))
    db.commit()


def make_task(db, cleaner, point, status=TaskStatus.PENDING, scheduled_at=None, **fields):
    task = CleaningTask(
        id=uuid.uuid4(),
        cleaner_id=cleaner.id,
        service_point_id=point.id,
        status=status.value,
        scheduled_at=scheduled_at,
        **fields,
    )
    db.add(task)
    db.commit()
    return task
