from app.servicequeue.db import session_scope
from app.servicequeue.models import Notification


def _subtask(client, login, make_request, seed, **extra) -> dict:
    req = make_request()
    login("manager")
    r = client.post(
        "/api/agent/subtasks",
        json={"requestId": req["id"], "taskDescription": "Pull loss runs", "assignedToId": seed["agent"], **extra},
    )
    assert r.status_code == 201, r.json
    return r.json["subtask"]


def test_manager_assigns_subtask(client, login, make_request, seed, app):
    subtask = _subtask(client, login, make_request, seed, dueDate="2030-02-01")
    assert subtask["taskId"].startswith("TASK-")
    assert subtask["taskStatus"] == "new"
    assert subtask["dueDate"] == "2030-02-01"
    assert subtask["assignedTo"]["id"] == seed["agent"]
    assert subtask["assignedBy"]["id"] == seed["manager"]

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.type == "subtask_assigned").one()
    assert n.user_id == seed["agent"]


def test_subtask_validation(client, login, make_request, seed):
    req = make_request()
    login("manager")
    r = client.post("/api/agent/subtasks", json={"requestId": req["id"], "assignedToId": seed["customer"]})
    assert r.status_code == 400
    assert "Task description is required." in r.json["details"]
    assert "A valid assignee is required." in r.json["details"]

    r = client.post("/api/agent/subtasks", json={"requestId": 9999, "taskDescription": "x", "assignedToId": seed["agent"]})
    assert r.status_code == 404


def test_agents_cannot_create_subtasks(client, login, make_request, seed):
    req = make_request()
    login("agent")
    r = client.post("/api/agent/subtasks", json={"requestId": req["id"], "taskDescription": "x", "assignedToId": seed["agent"]})
    assert r.status_code == 403


def test_assignee_completes_subtask(client, login, make_request, seed, app):
    subtask = _subtask(client, login, make_request, seed)

    login("agent2")
    r = client.put("/api/agent/subtasks", json={"subtaskId": subtask["id"], "taskStatus": "closed"})
    assert r.status_code == 403

    login("agent")
    mine = client.get("/api/agent/subtasks").json["subtasks"]
    assert [t["id"] for t in mine] == [subtask["id"]]

    r = client.put(
        "/api/agent/subtasks",
        json={"subtaskId": subtask["id"], "taskStatus": "closed", "taskDescription": "Rewritten by agent"},
    )
    assert r.status_code == 200
    assert r.json["subtask"]["taskStatus"] == "closed"
    assert r.json["subtask"]["taskDescription"] == "Pull loss runs"

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.type == "subtask_completed").one()
    assert n.user_id == seed["manager"]


def test_subtasks_listed_per_request(client, login, make_request, seed):
    subtask = _subtask(client, login, make_request, seed)
    r = client.get(f"/api/agent/subtasks?requestId={subtask['requestId']}")
    assert [t["taskId"] for t in r.json["subtasks"]] == [subtask["taskId"]]
