"""Pytest fixtures for the helpdesk tests.

Uses a file-backed SQLite database and FastAPI TestClient. Overrides the
`get_db`, `get_storage` and `get_dispatcher` dependencies so tests are isolated
from any real DB file, upload directory or mail API.
"""

import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_helpdesk_app.db")
os.environ.setdefault("MAIL_SUPPRESS_SEND", "1")
os.environ.setdefault("RATE_LIMIT", "20/minute")

import pytest
from fastapi.testclient import TestClient

import helpdesk.database as database
from helpdesk.auth import get_password_hash
from helpdesk.main import app
from helpdesk.models import CompanyModel, PermissionModel, RoleModel, UserModel
from helpdesk.notifications import get_dispatcher
from helpdesk.seed import PERMISSIONS
from helpdesk.storage import LocalFileStorage, get_storage
from helpdesk.ticket_keys import create_ticket as create_ticket_with_key

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///./test_helpdesk.db")

ALL_PERMISSIONS = tuple(PERMISSIONS)
STAFF_PERMISSIONS = ("dashboard.view", "tickets.view", "tickets.create", "tickets.edit", "tickets.delete")

engine = database.make_engine(TEST_DATABASE_URL)
TestingSessionLocal = database.make_session_factory(engine)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher and keeps every message it is asked to send."""

    def __init__(self):
        self.sent = []

    def send(self, template, recipient, data):
        self.sent.append({"template": template, "to": recipient, "data": data})
        return True

    def recipients(self, template):
        return sorted(m["to"] for m in self.sent if m["template"] == template)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and drop them after to ensure isolation."""
    database.Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        database.Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def test_engine():
    return engine


@pytest.fixture()
def session_factory():
    """Session factory bound to the test engine, for tests that need several connections."""
    return TestingSessionLocal


@pytest.fixture()
def db_session():
    """Provide a SQLAlchemy session for direct DB access in tests."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[database.get_db] = _override_get_db

# Rate limiting stays on in production; tests that need it re-enable it locally
app.state.limiter.enabled = False


@pytest.fixture(autouse=True)
def storage(tmp_path):
    """Upload storage rooted in a per-test temporary directory."""
    store = LocalFileStorage(str(tmp_path / "uploads"))
    app.dependency_overrides[get_storage] = lambda: store
    yield store
    app.dependency_overrides.pop(get_storage, None)


@pytest.fixture(autouse=True)
def outbox():
    dispatcher = RecordingDispatcher()
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield dispatcher
    app.dependency_overrides.pop(get_dispatcher, None)


@pytest.fixture()
def client():
    """FastAPI test client using the app with overridden dependencies."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def create_company(db_session):
    def _create_company(code: str | None = None, name: str | None = None, is_active: bool = True):
        code = code or ("C" + uuid.uuid4().hex[:6].upper())
        company = CompanyModel(name=name or f"Company {code}", code=code, is_active=is_active)
        db_session.add(company)
        db_session.commit()
        db_session.refresh(company)
        return company

    return _create_company


@pytest.fixture()
def create_role(db_session):
    def _create_role(name: str | None = None, permissions=(), companies=(), **flags):
        perms = []
        for perm_name in permissions:
            perm = db_session.query(PermissionModel).filter(PermissionModel.name == perm_name).first()
            if perm is None:
                perm = PermissionModel(name=perm_name)
                db_session.add(perm)
            perms.append(perm)
        role = RoleModel(name=name or ("role_" + uuid.uuid4().hex[:8]), **flags)
        role.permissions = perms
        role.companies = list(companies)
        db_session.add(role)
        db_session.commit()
        db_session.refresh(role)
        return role

    return _create_role


@pytest.fixture()
def create_user(db_session):
    def _create_user(name: str | None = None, email: str | None = None, password: str = "secret123", roles=(), company=None, **kwargs):
        name = name or ("user_" + uuid.uuid4().hex[:8])
        user = UserModel(
            name=name,
            email=email or f"{name.lower().replace(' ', '.')}@example.com",
            hashed_password=get_password_hash(password),
            company_id=company.id if company is not None else None,
            is_active=kwargs.get("is_active", True),
            department=kwargs.get("department"),
            position=kwargs.get("position"),
        )
        user.roles = list(roles)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture()
def login(client):
    def _login(user, password: str = "secret123"):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}

    return _login


@pytest.fixture()
def auth_headers(create_role, create_user, login):
    """Create a user holding `permissions` (own role) and return (headers, user)."""

    def _auth_headers(permissions=ALL_PERMISSIONS, companies=(), company=None, roles=(), password: str = "secret123", **kwargs):
        all_roles = list(roles)
        if permissions:
            all_roles.append(create_role(permissions=permissions, companies=companies))
        user = create_user(password=password, roles=all_roles, company=company, **kwargs)
        return login(user, password), user

    return _auth_headers


@pytest.fixture()
def make_ticket(db_session, storage):
    """Create a ticket through the key allocator, bypassing HTTP."""

    def _make_ticket(reporter, company, title: str = "Ticket", files=(), **fields):
        fields = {"title": title, **fields}
        return create_ticket_with_key(db_session, storage, reporter, company.id, fields, files)

    return _make_ticket
