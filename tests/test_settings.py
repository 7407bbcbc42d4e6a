import pytest


@pytest.fixture()
def admin(login):
    login("admin")


def _new_admin(client, email="second@sq.test") -> dict:
    r = client.post(
        "/api/admin/settings/superadmins",
        json={"firstName": "Second", "lastName": "Admin", "email": email, "password": "longenough"},
    )
    assert r.status_code == 201, r.json
    return r.json["superAdmin"]


def test_create_and_list_super_admins(client, admin):
    created = _new_admin(client)
    assert created["role"] == "super_admin"

    listed = client.get("/api/admin/settings/superadmins").json["superAdmins"]
    assert [a["email"] for a in listed] == ["admin@sq.test", "second@sq.test"]

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "second@sq.test", "password": "longenough"})
    assert r.status_code == 200


def test_create_super_admin_validation(client, admin):
    r = client.post("/api/admin/settings/superadmins", json={"firstName": "A", "lastName": "B", "email": "a@b.test", "password": "short"})
    assert r.status_code == 400
    assert r.json["details"] == ["Password must be at least 8 characters long"]

    r = client.post(
        "/api/admin/settings/superadmins",
        json={"firstName": "A", "lastName": "B", "email": "alan@sq.test", "password": "longenough"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Email already in use"


def test_delete_super_admin(client, admin, seed):
    other = _new_admin(client)

    r = client.delete(f"/api/admin/settings/superadmins/{seed['admin']}")
    assert r.status_code == 400
    assert r.json["error"] == "Cannot delete your own account"

    r = client.delete(f"/api/admin/settings/superadmins/{seed['agent']}")
    assert r.status_code == 400
    assert r.json["error"] == "User is not a super admin"

    assert client.delete("/api/admin/settings/superadmins/9999").status_code == 404

    r = client.delete(f"/api/admin/settings/superadmins/{other['id']}")
    assert r.status_code == 200
    assert len(client.get("/api/admin/settings/superadmins").json["superAdmins"]) == 1


def test_reset_own_password(client, admin):
    r = client.post("/api/admin/settings/reset-password", json={"currentPassword": "nope-nope", "newPassword": "brandnew123"})
    assert r.status_code == 400
    assert r.json["error"] == "Current password is incorrect"

    r = client.post("/api/admin/settings/reset-password", json={"currentPassword": "password123", "newPassword": "short"})
    assert r.status_code == 400

    r = client.post("/api/admin/settings/reset-password", json={"currentPassword": "password123", "newPassword": "brandnew123"})
    assert r.status_code == 200
    assert r.json["message"] == "Password updated successfully"

    client.post("/api/auth/logout")
    assert client.post("/api/auth/login", json={"email": "admin@sq.test", "password": "password123"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "admin@sq.test", "password": "brandnew123"}).status_code == 200


def test_reset_other_admin_password(client, admin):
    other = _new_admin(client)
    r = client.post(
        "/api/admin/settings/reset-password",
        json={"currentPassword": "password123", "newPassword": "handedover1", "targetUserId": other["id"]},
    )
    assert r.status_code == 200

    r = client.post("/api/admin/settings/reset-password", json={"currentPassword": "password123", "newPassword": "x" * 10, "targetUserId": 9999})
    assert r.status_code == 404

    r = client.post("/api/admin/settings/reset-password", json={})
    assert r.status_code == 400
    assert r.json["details"] == ["Current password is required", "New password is required"]

    client.post("/api/auth/logout")
    assert client.post("/api/auth/login", json={"email": "second@sq.test", "password": "handedover1"}).status_code == 200


def test_update_own_details(client, admin):
    r = client.get("/api/admin/settings/update-details")
    assert r.json["user"]["email"] == "admin@sq.test"

    r = client.put("/api/admin/settings/update-details", json={"firstName": "Samantha", "lastName": "Super", "email": "Sam@SQ.test"})
    assert r.status_code == 200
    assert r.json["user"]["firstName"] == "Samantha"
    assert r.json["user"]["email"] == "sam@sq.test"

    r = client.put("/api/admin/settings/update-details", json={"firstName": "S", "lastName": "S", "email": "carl@acme.test"})
    assert r.status_code == 400
    assert r.json["error"] == "Email already in use"


def test_settings_require_super_admin(client, login):
    login("manager")
    assert client.get("/api/admin/settings/superadmins").status_code == 403
