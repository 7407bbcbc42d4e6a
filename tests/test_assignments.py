from app.servicequeue.db import session_scope
from app.servicequeue.models import Notification


def _assigned_request(client, login, seed) -> dict:
    login("manager")
    r = client.post(
        "/api/agent/requests",
        json={
            "serviceQueueId": "SQ-ASSIGN-1",
            "insured": "Jane Doe",
            "serviceRequestNarrative": "Renewal question.",
            "serviceQueueCategory": "policy_inquiry",
            "assignedById": seed["customer"],
            "assignedToId": seed["agent"],
        },
    )
    assert r.status_code == 201, r.json
    return r.json["request"]


def test_change_request_requires_reason(client, login, seed):
    req = _assigned_request(client, login, seed)
    login("agent")
    r = client.post("/api/agent/assignment-change", json={"requestId": req["id"], "requestedAssigneeId": seed["agent2"]})
    assert r.status_code == 400
    assert r.json["details"] == ["Reason is required."]


def test_change_request_rejects_non_agent_target(client, login, seed):
    req = _assigned_request(client, login, seed)
    login("agent")
    r = client.post(
        "/api/agent/assignment-change",
        json={"requestId": req["id"], "requestedAssigneeId": seed["customer"], "reason": "Out of office"},
    )
    assert r.status_code == 400


def test_approve_reassigns_request(client, login, seed, app):
    req = _assigned_request(client, login, seed)
    login("agent")
    r = client.post(
        "/api/agent/assignment-change",
        json={"requestId": req["id"], "requestedAssigneeId": seed["agent2"], "reason": "Out of office"},
    )
    assert r.status_code == 201, r.json
    change = r.json["changeRequest"]
    assert change["status"] == "pending"
    assert change["currentAssignee"]["id"] == seed["agent"]
    assert change["requestedAssignee"]["id"] == seed["agent2"]

    dup = client.post(
        "/api/agent/assignment-change",
        json={"requestId": req["id"], "requestedAssigneeId": seed["agent2"], "reason": "Again"},
    )
    assert dup.status_code == 400

    mine = client.get("/api/agent/assignment-change").json["changeRequests"]
    assert [c["id"] for c in mine] == [change["id"]]

    login("manager")
    pending = client.get("/api/agent/assignment-change").json["changeRequests"]
    assert [c["id"] for c in pending] == [change["id"]]

    r = client.post(
        "/api/agent/assignment-change/review",
        json={"changeRequestId": change["id"], "action": "approve", "reviewComment": "Covered"},
    )
    assert r.status_code == 200, r.json
    assert r.json["message"] == "Assignment change request approved successfully."
    assert r.json["changeRequest"]["reviewedBy"]["id"] == seed["manager"]

    detail = client.get(f"/api/agent/requests/detail?requestId={req['id']}").json["request"]
    assert detail["assignedToId"] == seed["agent2"]

    again = client.post("/api/agent/assignment-change/review", json={"changeRequestId": change["id"], "action": "reject"})
    assert again.status_code == 400
    assert again.json["details"] == ["Assignment change request has already been approved."]

    with session_scope(app) as s:
        types = {(n.user_id, n.type) for n in s.query(Notification).all()}
    assert (seed["manager"], "assignment_change_requested") in types
    assert (seed["agent"], "assignment_change_approved") in types
    assert (seed["agent2"], "request_assigned") in types


def test_reject_keeps_assignee(client, login, seed):
    req = _assigned_request(client, login, seed)
    login("agent")
    change = client.post(
        "/api/agent/assignment-change",
        json={"requestId": req["id"], "requestedAssigneeId": seed["agent2"], "reason": "Workload"},
    ).json["changeRequest"]

    login("manager")
    bad = client.post("/api/agent/assignment-change/review", json={"changeRequestId": change["id"], "action": "maybe"})
    assert bad.status_code == 400

    r = client.post("/api/agent/assignment-change/review", json={"changeRequestId": change["id"], "action": "reject"})
    assert r.status_code == 200
    assert r.json["changeRequest"]["status"] == "rejected"
    detail = client.get(f"/api/agent/requests/detail?requestId={req['id']}").json["request"]
    assert detail["assignedToId"] == seed["agent"]


def test_only_managers_review(client, login, seed):
    req = _assigned_request(client, login, seed)
    login("agent")
    change = client.post(
        "/api/agent/assignment-change",
        json={"requestId": req["id"], "requestedAssigneeId": seed["agent2"], "reason": "Workload"},
    ).json["changeRequest"]
    r = client.post("/api/agent/assignment-change/review", json={"changeRequestId": change["id"], "action": "approve"})
    assert r.status_code == 403
