import os
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("PUSH_DELIVERY_MODE", "log")

from tp_notifications import auth, models
from tp_notifications.api import app
from tp_notifications.database import Base, engine, get_db, SessionLocal

PASSWORD = "password123"


@pytest.fixture(scope="session", autouse=True)
def _ensure_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session():
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def helpers(client, db_session):
    def register_user(email: str) -> dict:
        resp = client.post(
            "/register",
            json={"email": email, "password": PASSWORD, "confirm_password": PASSWORD},
        )
        assert resp.status_code == 200
        return resp.json()

    def login(email: str, password: str = PASSWORD) -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return resp.json()["access_token"]

    def make_admin(email: str = "admin@tp-notif.fr", password: str = "admin12345") -> str:
        admin = models.User(
            email=email,
            password_hash=auth.get_password_hash(password),
            role=models.UserRole.admin,
        )
        db_session.add(admin)
        db_session.commit()
        return login(email, password)

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def subscribe(token: str, endpoint: str) -> int:
        resp = client.post(
            "/api/push/subscribe",
            json={"endpoint": endpoint, "keys": {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"}},
            headers=auth_header(token),
        )
        assert resp.status_code in (200, 201)
        return resp.json()["id"]

    def future_date(days: int = 7) -> str:
        return (date.today() + timedelta(days=days)).isoformat()

    def slot(days: int = 7, location: str = "Place de la Gare") -> dict:
        return {
            "date": future_date(days),
            "startTime": "10:00",
            "endTime": "12:00",
            "location": location,
            "description": "Présentoir mobile",
        }

    def send(admin_token: str, payload: dict):
        return client.post(
            "/api/admin/notifications/send",
            json=payload,
            headers=auth_header(admin_token),
        )

    return {
        "client": client,
        "db": db_session,
        "register_user": register_user,
        "login": login,
        "make_admin": make_admin,
        "auth_header": auth_header,
        "subscribe": subscribe,
        "future_date": future_date,
        "slot": slot,
        "send": send,
    }
