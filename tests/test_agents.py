import pytest


@pytest.fixture()
def admin(login):
    login("admin")


def test_create_agent_issues_login_code(client, admin, seed):
    r = client.post(
        "/api/admin/agents",
        json={"firstName": "Nora", "lastName": "New", "email": "Nora@SQ.test", "assignedCompanyIds": [seed["acme"]]},
    )
    assert r.status_code == 201, r.json
    agent = r.json["agent"]
    assert agent["email"] == "nora@sq.test"
    assert agent["role"] == "agent"
    assert len(agent["loginCode"]) == 7
    assert agent["assignedCompanies"] == [{"id": seed["acme"], "companyName": "Acme Insurance"}]
    assert agent["loginCode"] in r.json["message"]

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"loginCode": agent["loginCode"], "isAgent": True})
    assert r.status_code == 200


def test_create_agent_validation(client, admin, seed):
    r = client.post("/api/admin/agents", json={"firstName": "", "lastName": "X", "email": "bad"})
    assert r.status_code == 400
    assert "First name is required." in r.json["details"]
    assert "Invalid email address." in r.json["details"]

    r = client.post("/api/admin/agents", json={"firstName": "A", "lastName": "B", "email": "alan@sq.test"})
    assert r.status_code == 400
    assert r.json["error"] == "A user with this email already exists"

    r = client.post("/api/admin/agents", json={"firstName": "A", "lastName": "B", "email": "a@sq.test", "assignedCompanyIds": [999]})
    assert r.status_code == 400
    assert r.json["error"] == "Unknown company ids: 999"


def test_update_agent_companies_and_code(client, admin, seed):
    rows = client.get("/api/admin/agents").json["agents"]
    alan = next(a for a in rows if a["id"] == seed["agent"])

    r = client.put(
        f"/api/admin/agents/{alan['agentId']}",
        json={
            "firstName": "Alan",
            "lastName": "Agent",
            "email": "alan@sq.test",
            "loginCode": "agent09",
            "assignedCompanyIds": [seed["acme"], seed["other"]],
        },
    )
    assert r.status_code == 200, r.json
    assert r.json["agent"]["loginCode"] == "AGENT09"
    assert r.json["agent"]["assignedCompanyIds"] == [seed["acme"], seed["other"]]

    r = client.put(
        f"/api/admin/agents/{alan['agentId']}",
        json={"firstName": "Alan", "lastName": "Agent", "email": "alan@sq.test", "loginCode": "AGENT02"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "This login code is already in use"


def test_reset_agent_code(client, admin, seed):
    alan = next(a for a in client.get("/api/admin/agents").json["agents"] if a["id"] == seed["agent"])
    r = client.post("/api/admin/agents/reset-code", json={"agentId": alan["agentId"]})
    assert r.status_code == 200
    assert r.json["oldCode"] == "AGENT01"
    assert r.json["newCode"] != "AGENT01"

    client.post("/api/auth/logout")
    assert client.post("/api/auth/login", json={"loginCode": "AGENT01", "isAgent": True}).status_code == 401


def test_promote_and_demote(client, admin, seed):
    r = client.post(f"/api/admin/agents/{seed['agent']}/promote", json={"role": "agent_manager"})
    assert r.status_code == 200
    assert r.json["message"] == "Agent promoted to Agent Manager successfully"
    assert r.json["agent"]["previousRole"] == "agent"

    roster = client.get("/api/admin/agents/list").json
    assert roster["totalManagers"] == 2
    alan = next(a for a in roster["agents"] if a["id"] == seed["agent"])
    assert alan["canDemote"] is True

    r = client.post(f"/api/admin/agents/{seed['customer']}/promote", json={"role": "agent_manager"})
    assert r.status_code == 400
    assert r.json["error"] == "Can only promote/demote agent roles"

    r = client.post(f"/api/admin/agents/{seed['agent']}/promote", json={"role": "super_admin"})
    assert r.status_code == 400


def test_delete_agent(client, admin, seed):
    bea = next(a for a in client.get("/api/admin/agents").json["agents"] if a["id"] == seed["agent2"])
    r = client.delete(f"/api/admin/agents?agentId={bea['agentId']}")
    assert r.status_code == 200
    assert r.json["message"] == 'Agent "Bea Backup" deleted successfully'
    assert all(a["id"] != seed["agent2"] for a in client.get("/api/admin/agents").json["agents"])

    assert client.delete("/api/admin/agents/9999").status_code == 404


def test_agent_admin_is_super_admin_only(client, login):
    login("manager")
    assert client.get("/api/admin/agents").status_code == 403
    assert client.get("/api/admin/agents/list").status_code == 200
