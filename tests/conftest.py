"""Test bootstrap.

Every test runs against a fresh in-memory SQLite schema. Redis, the database
log handler and Google Sheets are off unless a test swaps them in.
"""

from __future__ import annotations

import os

# must be set before anything imports formdesk.core.config
os.environ["MYSQL_DSN"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["ERROR_LOG_TO_DB"] = "false"
os.environ["GOOGLE_SERVICE_ACCOUNT_JSON"] = ""
os.environ["SECRET_KEY"] = "test-access-secret"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret"

import pytest
from fastapi.testclient import TestClient

import formdesk.db.models  # noqa: F401
from formdesk.core.security import hash_password, issue_access, issue_refresh
from formdesk.db.base import Base
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.models.user import Role, User, UserStatus
from formdesk.db.session import SessionLocal, engine
from formdesk.main import app
from formdesk.services.sheets import get_sheets_client

PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)

CHOICE_QUESTION = {
    "id": "q_color",
    "title": "Favourite colour",
    "type": "multiple_choice",
    "required": True,
    "options": ["Red", "Blue"],
}
TEXT_QUESTION = {"id": "q_name", "title": "Name", "type": "short_answer", "required": True}
CSRF_TOKEN = "test-csrf-token"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role = Role.USER, modules: dict | None = None, email: str | None = None, **kw) -> User:
        counter["n"] += 1
        u = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            name=kw.pop("name", f"{role.value.title()} {counter['n']}"),
            password_hash=PASSWORD_HASH,
            role=role,
            status=kw.pop("status", UserStatus.ACTIVE),
            **kw,
        )
        u.module_permissions = modules
        db.add(u)
        db.commit()
        return u

    return _make


@pytest.fixture
def make_form(db):
    def _make(owner: User, status: FormStatus = FormStatus.PUBLISHED, questions=None, **kw) -> Form:
        f = Form(
            title=kw.pop("title", "Survey"),
            description="",
            status=status,
            created_by=owner.id,
            allow_edit_response=kw.pop("allow_edit_response", False),
            response_count=0,
            **kw,
        )
        f.questions = questions if questions is not None else [dict(TEXT_QUESTION), dict(CHOICE_QUESTION)]
        db.add(f)
        db.commit()
        return f

    return _make


@pytest.fixture
def sheets():
    """No sheet client unless a test installs one with set_sheets(...)."""
    holder = {"client": None}
    app.dependency_overrides[get_sheets_client] = lambda: holder["client"]

    def set_sheets(client):
        holder["client"] = client
        return client

    return set_sheets


@pytest.fixture
def api(sheets):
    """TestClient factory; api(user) is logged in as that user, api() is anonymous.

    Every client already holds a matching CSRF cookie and header.
    """
    clients = []

    def _client(user: User | None = None) -> TestClient:
        c = TestClient(app)
        c.cookies.set("csrf_token", CSRF_TOKEN)
        c.headers["X-CSRF-Token"] = CSRF_TOKEN
        if user is not None:
            c.cookies.set("access_token", issue_access(user))
            c.cookies.set("refresh_token", issue_refresh(user.id))
        clients.append(c)
        return c

    yield _client
    for c in clients:
        c.close()
