def _error(resp):
    body = resp.json()
    return body.get("error") or body["detail"]["error"]


def test_get_and_update_profile(client, auth_headers, create_user):
    headers, me = auth_headers(email="me@example.com")
    create_user(email="taken@example.com")

    r = client.get("/api/profile/", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "me@example.com"

    r = client.patch("/api/profile/", json={"department": "Finance", "position": "Analyst"}, headers=headers)
    assert r.status_code == 200
    assert (r.json()["department"], r.json()["position"]) == ("Finance", "Analyst")

    r = client.patch("/api/profile/", json={"email": "taken@example.com"}, headers=headers)
    assert r.status_code == 409
    assert _error(r)["code"] == "email_in_use"


def test_change_password(client, auth_headers):
    headers, me = auth_headers(password="oldpassword")

    r = client.put(
        "/api/profile/password",
        json={"current_password": "wrong", "password": "newpassword", "password_confirmation": "newpassword"},
        headers=headers,
    )
    assert r.status_code == 422
    assert _error(r)["details"][0]["loc"] == ["body", "current_password"]

    r = client.put(
        "/api/profile/password",
        json={"current_password": "oldpassword", "password": "newpassword", "password_confirmation": "different"},
        headers=headers,
    )
    assert r.status_code == 422

    r = client.put(
        "/api/profile/password",
        json={"current_password": "oldpassword", "password": "newpassword", "password_confirmation": "newpassword"},
        headers=headers,
    )
    assert r.status_code == 200

    assert client.post("/api/auth/login", json={"email": me.email, "password": "newpassword"}).status_code == 200
    assert client.post("/api/auth/login", json={"email": me.email, "password": "oldpassword"}).status_code == 401


def test_photo_upload_replaces_previous_file(client, auth_headers, storage):
    headers, _ = auth_headers()

    r = client.post("/api/profile/photo", files={"photo": ("me.png", b"\x89PNG first", "image/png")}, headers=headers)
    assert r.status_code == 200, r.text
    first = r.json()["profile_photo"]
    assert first.startswith("profile-photos/")
    assert storage.exists(first)

    r = client.post("/api/profile/photo", files={"photo": ("me.jpg", b"\xff\xd8 second", "image/jpeg")}, headers=headers)
    second = r.json()["profile_photo"]
    assert second != first
    assert storage.exists(second)
    assert not storage.exists(first)


def test_photo_upload_rejects_wrong_type_and_size(client, auth_headers, monkeypatch):
    import helpdesk.routers.profile as profile_routes

    headers, _ = auth_headers()

    r = client.post("/api/profile/photo", files={"photo": ("cv.pdf", b"%PDF", "application/pdf")}, headers=headers)
    assert r.status_code == 422
    assert _error(r)["details"][0]["loc"] == ["body", "photo"]

    monkeypatch.setattr(profile_routes, "MAX_PHOTO_SIZE", 4)
    r = client.post("/api/profile/photo", files={"photo": ("big.png", b"0123456789", "image/png")}, headers=headers)
    assert r.status_code == 422
    assert "too large" in _error(r)["details"][0]["msg"]


def test_token_survives_email_change(client, auth_headers):
    headers, _ = auth_headers(email="before@example.com")

    r = client.patch("/api/profile/", json={"email": "after@example.com"}, headers=headers)
    assert r.status_code == 200

    r = client.get("/api/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "after@example.com"
