"""
Shared fixtures: an in-memory SQLite database behind the real session
factory, seeded users/requests, and JWTs minted with the real signer.
"""
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-thirty-two-characters")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from procurement.core.security import create_access_token
from procurement.db.session import Base, SessionLocal, engine, get_db, reset_schema_state
from procurement.db import models  # noqa - register models
from procurement.db.models import PurchaseRequest, User
from procurement.main import create_app

MANAGER_ID = 1
SUPPLIER_USER_ID = 2
VIEWER_ID = 3


@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    db.add_all([
        User(id=MANAGER_ID, name="Sourcing Manager", email="scm@example.test", role="SCM"),
        User(id=SUPPLIER_USER_ID, name="Supplier Rep", email="rep@example.test", role="supplier"),
        User(id=VIEWER_ID, name="Requester", email="req@example.test", role="requester"),
    ])
    db.commit()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        reset_schema_state()


@pytest.fixture
def purchase_request(db_session: Session) -> PurchaseRequest:
    request = PurchaseRequest(
        id=100,
        title="Laboratory centrifuges",
        justification="Replacement of end-of-life units",
        requester_id=VIEWER_ID,
        status="approved",
        estimated_cost=25000,
    )
    db_session.add(request)
    db_session.commit()
    db_session.refresh(request)
    return request


@pytest.fixture
def client(db_session: Session):
    app = create_app(run_startup=False)

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def auth_headers(user_id: int, role: str, permissions=None) -> dict:
    claims = {"sub": str(user_id), "role": role}
    if permissions is not None:
        claims["permissions"] = permissions
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def manager_headers():
    return auth_headers(MANAGER_ID, "SCM")


@pytest.fixture
def supplier_headers():
    return auth_headers(SUPPLIER_USER_ID, "supplier")


@pytest.fixture
def viewer_headers():
    return auth_headers(VIEWER_ID, "requester")
