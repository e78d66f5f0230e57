import os

os.environ.setdefault("PASSWORD_BCRYPT_ROUNDS", "4")
os.environ.setdefault("APP_BASE_URL", "http://testserver")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heartf.core.config import settings
from heartf.database import Base, create_db_engine, get_db
from heartf.main import app
from heartf.models.org import Org, User
from heartf.services.lead_finder import search_cache
from heartf.services.passwords import hash_password

PASSWORD = "correct-horse-42"


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    monkeypatch.setattr(settings, "SEARCH_API_URL", "")
    monkeypatch.setattr(settings, "APP_BASE_URL", "http://testserver")
    search_cache.clear()
    yield
    search_cache.clear()


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with_client = TestClient(app)
    yield with_client
    app.dependency_overrides.clear()


@pytest.fixture
def org(db):
    org = Org(name="Heartfledge Logistics")
    db.add(org)
    db.commit()
    return org


def make_user(db, org, email, role="admin", *, password=PASSWORD, is_active=True, first_name="Test", last_name="User"):
    user = User(
        org_id=org.id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        password_hash=hash_password(password),
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    return user


def login(client, email, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response


@pytest.fixture
def admin(db, org):
    return make_user(db, org, "admin@heartf.test", "admin", first_name="Ada", last_name="Admin")


@pytest.fixture
def admin_client(client, admin):
    login(client, admin.email)
    return client
