def test_login_and_me(client, create_company, create_role, create_user):
    acme = create_company(code="ACME")
    other = create_company(code="OTHER")
    role = create_role(name="Agents", permissions=["tickets.view", "dashboard.view"], companies=[other])
    create_user(name="Alice", email="alice@example.com", password="alicepass", roles=[role], company=acme)

    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "alicepass"})
    assert r.status_code == 200
    body = r.json()
    assert "access_token" in body
    assert body["user"]["role_names"] == ["Agents"]
    token = body["access_token"]

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    me = r.json()
    assert me["email"] == "alice@example.com"
    assert me["permissions"] == ["dashboard.view", "tickets.view"]
    assert me["allowed_company_ids"] == sorted([acme.id, other.id])


def test_login_with_wrong_password(client, create_user):
    create_user(email="bob@example.com", password="rightpass")

    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": "wrongpass"})
    assert r.status_code == 401
    body = r.json()
    err = body.get("error") or body["detail"]["error"]
    assert err["code"] == "invalid_credentials"


def test_inactive_user_cannot_login(client, create_user):
    create_user(email="gone@example.com", password="gonepass", is_active=False)

    r = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "gonepass"})
    assert r.status_code == 401
    body = r.json()
    err = body.get("error") or body["detail"]["error"]
    assert err["code"] == "user_inactive"


def test_missing_permission_is_forbidden(client, auth_headers):
    headers, _ = auth_headers(permissions=["tickets.view"])

    r = client.get("/api/companies/", headers=headers)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "permission_denied"
