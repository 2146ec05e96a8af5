from datetime import date
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine
from werkzeug.security import generate_password_hash

from app import app, get_notifier
from db import create_db_and_tables, get_session
from models import User
from service import MealService
from tokens import issue_token

PASSWORD = "Str0ng!Passw0rd"
TEST_JWT_SECRET = "meal-orders-test-signing-secret-0123456789"


class RecordingNotifier:
    """Stands in for the SMTP notifier and records what would have been sent."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def _result(self):
        return {"success": True} if self.succeed else {"success": False, "error": "SMTP unavailable"}

    def send_email(self, to, subject, html, text=None):
        self.sent.append(("email", to, subject))
        return self._result()

    def send_meal_options_notification(self, week_start_date, users):
        emails = [u.email for u in users if u.email]
        self.sent.append(("meal_options", week_start_date, emails))
        return {"success": True, "sent": len(emails), "failed": 0, "errors": []}

    def send_invitation_email(self, email, token, is_admin, invited_by_email):
        self.sent.append(("invitation", email, token))
        return self._result()

    def send_feedback(self, to, subject, message, sender_name, sender_email):
        self.sent.append(("feedback", to, subject))
        return self._result()


class Clock:
    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)


@pytest.fixture(scope="function")
def test_engine():
    """In-memory database shared across connections."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return Clock(date(2025, 10, 13))


@pytest.fixture
def service(test_session, notifier, clock):
    return MealService(test_session, notifier=notifier, today=clock)


@pytest.fixture
def make_user(test_session):
    def _make_user(email=None, employee_name=None, is_admin=False, is_active=True, password=PASSWORD):
        user = User(
            email=email,
            password_hash=generate_password_hash(password) if email else None,
            is_admin=is_admin,
            employee_name=employee_name,
            is_active=is_active,
        )
        test_session.add(user)
        test_session.commit()
        test_session.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def client(test_session, notifier):
    """Create a test client with dependency overrides."""

    def get_test_session():
        yield test_session

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {issue_token(user)}"}


def make_xlsx(rows, title="Sheet1") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


OPTIONS_ROWS = [
    ["", "LUNI", "MARTI", "MIERCURI", "JOI", "VINERI"],
    ["", "Meniu 1", "Meniu 1", "Meniu 1", "Meniu 1", "Meniu 1"],
    ["", "Ciorba de legume", "Supa de pui", "Ciorba de burta", "Supa crema", "Bors"],
    ["", "Friptura de porc", "Peste la cuptor", "Pui cu orez", "Tocana de vita", "Sarmale"],
    ["", "Desert", "Desert", "Desert", "Desert", "Desert"],
    ["", "Salata", "Salata", "Salata", "Salata", "Salata"],
    ["", "Salata verde", "Salata de vinete", "", "Salata greceasca", "Salata de varza"],
    ["", "", "Rand fara luni", "", "", ""],
]
