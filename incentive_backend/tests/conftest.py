import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from incentive_backend.api.main import app, get_repository
from incentive_backend.core import users
from incentive_backend.repository import InMemoryRepository, SqlRepository
from incentive_database.db import make_engine
from incentive_database.models import Base


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine per test, foreign keys on."""
    return make_engine("sqlite://")


@pytest.fixture
def tables(engine):
    """Create tables for the test and drop them afterwards."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine, tables):
    """Provide a SQLAlchemy session for isolated test usage."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(params=["sql", "memory"])
def repo(request):
    """Core tests run once against each repository implementation."""
    if request.param == "memory":
        return InMemoryRepository()
    return SqlRepository(request.getfixturevalue("db_session"))


@pytest.fixture
def owner_id(repo):
    return users.register_user(repo, "Alice", "alice@example.com", "alicepassword123").id


@pytest.fixture
def other_id(repo):
    return users.register_user(repo, "Bob", "bob@example.com", "bobpassword456").id


@pytest.fixture
def client(db_session):
    """Fixture for FastAPI TestClient with test DB dependency override."""
    def override_get_repository():
        yield SqlRepository(db_session)

    app.dependency_overrides[get_repository] = override_get_repository

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def memory_client():
    """TestClient backed by a fresh InMemoryRepository."""
    store = InMemoryRepository()

    def override_get_repository():
        yield store

    app.dependency_overrides[get_repository] = override_get_repository

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def user_data():
    """Returns default user data for registration."""
    return {
        "name": "Alice",
        "email": "alice@example.com",
        "password": "alicepassword123"
    }


@pytest.fixture
def second_user_data():
    """Returns a second user's data."""
    return {
        "name": "Bob",
        "email": "bob@example.com",
        "password": "bobpassword456"
    }


def register_and_auth(client, name, email, password):
    """Helper for registering then logging in to get JWT token."""
    r1 = client.post("/api/auth/register", json={
        "name": name, "email": email, "password": password
    })
    assert r1.status_code in (201, 409)

    r2 = client.post("/api/auth/login", data={
        "username": email, "password": password
    })
    assert r2.status_code == 200
    return r2.json()["access_token"]


@pytest.fixture
def auth_header(client, user_data):
    """Returns {'Authorization': 'Bearer <token>'} for default user."""
    token = register_and_auth(client, user_data["name"], user_data["email"], user_data["password"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def second_auth_header(client, second_user_data):
    """Returns auth header for second user."""
    token = register_and_auth(client, second_user_data["name"], second_user_data["email"], second_user_data["password"])
    return {"Authorization": f"Bearer {token}"}
