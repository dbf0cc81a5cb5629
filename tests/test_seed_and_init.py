from sqlalchemy import inspect

from helpdesk import database as app_db
from helpdesk.models import CompanyModel, PermissionModel, RoleModel, UserModel
from helpdesk.seed import PERMISSIONS


def test_init_db_creates_tables(test_engine, monkeypatch):
    # Ensure clean state
    app_db.Base.metadata.drop_all(bind=test_engine)

    monkeypatch.setattr(app_db, "engine", test_engine)
    app_db.init_db()

    tables = set(inspect(test_engine).get_table_names())
    assert {
        "companies",
        "permissions",
        "roles",
        "users",
        "role_permissions",
        "role_companies",
        "user_roles",
        "tickets",
        "ticket_comments",
        "ticket_attachments",
        "ticket_histories",
    } <= tables


def test_seed_endpoint_creates_expected_data_and_is_idempotent(client, db_session):
    assert any(r.path == "/api/seed" for r in client.app.routes)

    r1 = client.post("/api/seed")
    assert r1.status_code == 200
    payload1 = r1.json()
    assert payload1["status"] == "ok"
    assert payload1["created"] == {"permissions": len(PERMISSIONS), "roles": 3, "companies": 1, "users": 3}

    admin = db_session.query(RoleModel).filter(RoleModel.name == "Admin").one()
    assert len(admin.permissions) == len(PERMISSIONS)
    assert admin.notify_on_ticket_create is True
    reporter = db_session.query(RoleModel).filter(RoleModel.name == "User").one()
    assert sorted(p.name for p in reporter.permissions) == ["dashboard.view", "tickets.create", "tickets.view"]

    r2 = client.post("/api/seed")
    assert r2.status_code == 200
    assert r2.json()["created"] == {"permissions": 0, "roles": 0, "companies": 0, "users": 0}

    assert db_session.query(PermissionModel).count() == len(PERMISSIONS)
    assert db_session.query(UserModel).count() == 3
    assert db_session.query(CompanyModel).filter(CompanyModel.code == "MAIN").count() == 1


def test_seeded_admin_can_log_in_and_file_tickets(client):
    client.post("/api/seed")

    r = client.post("/api/auth/login", json={"email": "admin@gmail.com", "password": "admin123"})
    assert r.status_code == 200, r.text
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    company_id = r.json()["user"]["company_id"]

    r = client.post("/api/tickets/", json={"title": "First ticket", "company_id": company_id}, headers=headers)
    assert r.status_code == 201, r.text
    assert r.json()["ticket"]["ticket_key"] == "MAIN-1"


def test_seeded_reporter_only_sees_own_tickets(client):
    client.post("/api/seed")

    def login(email, password):
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        return {"Authorization": f"Bearer {r.json()['access_token']}"}, r.json()["user"]["company_id"]

    admin, company_id = login("admin@gmail.com", "admin123")
    user, _ = login("user@gmail.com", "user123")

    client.post("/api/tickets/", json={"title": "admin's", "company_id": company_id}, headers=admin)
    client.post("/api/tickets/", json={"title": "user's", "company_id": company_id}, headers=user)

    assert client.get("/api/tickets/", headers=admin).json()["pagination"]["total"] == 2
    assert [t["title"] for t in client.get("/api/tickets/", headers=user).json()["data"]] == ["user's"]
