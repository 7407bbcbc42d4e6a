def test_customer_login_code_sets_role_cookie(client):
    r = client.post("/api/auth/login", json={"loginCode": "cust001"})
    assert r.status_code == 200
    assert r.json["cookieName"] == "auth-token-customer"
    assert r.json["user"]["role"] == "customer"
    assert "auth-token-customer" in r.headers.get("Set-Cookie", "")

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json["user"]["email"] == "carl@acme.test"
    assert me.json["user"]["company"]["companyName"] == "Acme Insurance"


def test_email_and_login_code_pair_must_match(client):
    ok = client.post("/api/auth/login", json={"email": "ADA@acme.test", "loginCode": "ACME001"})
    assert ok.status_code == 200

    bad = client.post("/api/auth/login", json={"email": "carl@acme.test", "loginCode": "ACME001"})
    assert bad.status_code == 401
    assert bad.json["error"] == "Invalid email or login code"


def test_super_admin_password_login(client):
    r = client.post("/api/auth/login", json={"email": "admin@sq.test", "password": "password123"})
    assert r.status_code == 200
    assert r.json["cookieName"] == "auth-token-super-admin"

    bad = client.post("/api/auth/login", json={"email": "admin@sq.test", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json["error"] == "Invalid email or password"


def test_agent_login_requires_agent_record(client):
    r = client.post("/api/auth/login", json={"loginCode": "AGENT01", "isAgent": True})
    assert r.status_code == 200
    assert r.json["cookieName"] == "auth-token-agent"

    r = client.post("/api/auth/login", json={"loginCode": "CUST001", "isAgent": True})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid agent login code"


def test_login_without_credentials_is_invalid(client):
    r = client.post("/api/auth/login", json={"email": "carl@acme.test"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid request data"


def test_login_rate_limit_blocks_after_five_failures(client):
    for _ in range(5):
        r = client.post("/api/auth/login", json={"loginCode": "NOPE999"})
        assert r.status_code == 401
    r = client.post("/api/auth/login", json={"loginCode": "CUST001"})
    assert r.status_code == 429


def test_successful_login_resets_failure_count(client):
    for _ in range(4):
        client.post("/api/auth/login", json={"loginCode": "NOPE999"})
    assert client.post("/api/auth/login", json={"loginCode": "CUST001"}).status_code == 200
    for _ in range(4):
        client.post("/api/auth/login", json={"loginCode": "NOPE999"})
    assert client.post("/api/auth/login", json={"loginCode": "CUST001"}).status_code == 200


def test_stale_login_attempts_are_dropped(client, app):
    from collections import defaultdict
    from datetime import datetime, timedelta

    attempts = app.extensions.setdefault("login_attempts", defaultdict(list))
    attempts["10.0.0.9"] = [datetime.utcnow() - timedelta(seconds=600)]

    client.post("/api/auth/login", json={"loginCode": "NOPE999"})
    assert "10.0.0.9" not in attempts
    assert len(attempts["127.0.0.1"]) == 1

    assert client.post("/api/auth/login", json={"loginCode": "CUST001"}).status_code == 200
    assert "127.0.0.1" not in attempts


def test_missing_token_is_401_and_wrong_role_is_403(client, login):
    r = client.get("/api/agent/requests/detail?requestId=1")
    assert r.status_code == 401
    assert r.json["error"] == "Authentication required"

    login("customer")
    r = client.get("/api/agent/requests/detail?requestId=1")
    assert r.status_code == 403
    assert r.json["error"] == "Insufficient permissions"


def test_bearer_token_is_accepted(client, app):
    r = client.post("/api/auth/login", json={"loginCode": "AGENT01", "isAgent": True})
    cookie = client.get_cookie("auth-token-agent")
    token = cookie.value
    client.post("/api/auth/logout")

    fresh = app.test_client()
    me = fresh.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert me.status_code == 200
    assert me.json["user"]["role"] == "agent"


def test_logout_clears_session(client, login):
    login("customer")
    assert client.get("/api/auth/me").status_code == 200

    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert client.get("/api/auth/me").status_code == 401


def test_deactivated_user_token_stops_working(client, login, app, seed):
    from app.servicequeue.db import session_scope
    from app.servicequeue.models import User

    login("customer")
    with session_scope(app) as s:
        s.get(User, seed["customer"]).is_active = False
    assert client.get("/api/auth/me").status_code == 401


def test_timezone_update(client, login):
    login("agent")
    r = client.put("/api/user/timezone", json={"timezone": "Europe/Berlin"})
    assert r.status_code == 200
    assert r.json == {"success": True, "timezone": "Europe/Berlin"}
    assert client.get("/api/auth/me").json["user"]["timezone"] == "Europe/Berlin"

    r = client.put("/api/user/timezone", json={"timezone": ""})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid timezone"
