"""
Pytest Configuration and Fixtures

Runs the API against an in-memory SQLite database shared across
connections through StaticPool.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vetadvisor.database import Base, Disease, Rule, Symptom, ensure_admin_exists
from vetadvisor.main import app, get_db

ADMIN_EMAIL = "admin@sapi.com"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def db_engine():
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
def db_session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(db_session_factory):
    session = db_session_factory()
    ensure_admin_exists(session, ADMIN_EMAIL, ADMIN_PASSWORD)
    yield session
    session.close()


@pytest.fixture
def knowledge_base(db):
    """Two diseases, three symptoms and the rules linking them."""
    db.add_all([
        Symptom(code="G01", name="Fever"),
        Symptom(code="G02", name="Diarrhea"),
        Symptom(code="G03", name="Loss of appetite"),
        Symptom(code="G04", name="Skin nodules"),
        Disease(code="P01", name="Anthrax", description="Acute bacterial disease.", remedy="Isolate and call a vet."),
        Disease(code="P02", name="Bloat", description="Rumen gas build-up.", remedy="Walk the animal, give anti-foaming agent."),
    ])
    db.flush()
    db.add_all([
        Rule(disease_code="P01", symptom_code="G01", cf=0.8),
        Rule(disease_code="P01", symptom_code="G02", cf=0.5),
        Rule(disease_code="P02", symptom_code="G02", cf=0.4),
        Rule(disease_code="P02", symptom_code="G03", cf=0.6),
    ])
    db.commit()
    return db


@pytest.fixture
def client(db, db_session_factory):
    def override_get_db():
        session = db_session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(client, role, email, password):
    res = client.post("/auth/login", json={"role": role, "email": email, "password": password})
    assert res.status_code == 200, res.text
    return client


@pytest.fixture
def admin_client(client):
    return _login(client, "admin", ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def user_client(client):
    res = client.post("/auth/register", json={"name": "Budi", "email": "budi@sapi.com", "password": "rahasia1"})
    assert res.status_code == 200, res.text
    return _login(client, "user", "budi@sapi.com", "rahasia1")
