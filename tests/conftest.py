# tests/conftest.py

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import backend.crud as crud
from backend import auth
from backend.db import Base, get_db
from backend.models import ADMIN_ROLE, USER_ROLE
from main import app


PASSWORD = "secret123"


@pytest.fixture()
def engine():
    """Banco SQLite em memoria, compartilhado por todas as sessoes do teste."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def make_user(db):
    def _make(email, first_name="Test", last_name="User", password=PASSWORD, admin=False):
        crud.ensure_roles_exist(db)
        user = crud.create_user(
            db,
            email=email,
            password_hash=auth.hash_password(password),
            first_name=first_name,
            last_name=last_name,
        )
        crud.add_user_to_role(db, user, USER_ROLE)
        if admin:
            crud.add_user_to_role(db, user, ADMIN_ROLE)
        return user

    return _make


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, email, password=PASSWORD):
    """Faz login pelo endpoint e guarda o token anti-CSRF nos headers do client."""
    response = client.post("/account/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    client.headers.update({"X-CSRF-Token": response.json()["csrf_token"]})
    return response.json()
