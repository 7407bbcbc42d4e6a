from app.servicequeue.db import session_scope
from app.servicequeue.models import Notification
from app.servicequeue.modules.notifications.service import create_notification


def _seed_notifications(app, user_id: int, n: int) -> None:
    with session_scope(app) as s:
        for i in range(n):
            create_notification(s, user_id=user_id, title=f"Title {i}", message=f"Message {i}", metadata={"i": i})


def test_list_and_mark_read(client, login, seed, app):
    _seed_notifications(app, seed["agent"], 3)
    _seed_notifications(app, seed["agent2"], 1)
    login("agent")

    r = client.get("/api/notifications")
    assert r.status_code == 200
    assert r.json["unreadCount"] == 3
    items = r.json["notifications"]
    assert len(items) == 3
    assert {n["metadata"]["i"] for n in items} == {0, 1, 2}

    r = client.post("/api/notifications/read", json={"notificationId": items[0]["id"]})
    assert r.json == {"success": True, "updated": 1}
    assert client.get("/api/notifications").json["unreadCount"] == 2

    r = client.post("/api/notifications/mark-all-read")
    assert r.json["updated"] == 2
    assert client.get("/api/notifications").json["unreadCount"] == 0


def test_cannot_mark_someone_elses_notification(client, login, seed, app):
    _seed_notifications(app, seed["agent2"], 1)
    with session_scope(app) as s:
        other_id = s.query(Notification.id).filter(Notification.user_id == seed["agent2"]).scalar()

    login("agent")
    r = client.post("/api/notifications/read", json={"notificationId": other_id})
    assert r.json["updated"] == 0
    with session_scope(app) as s:
        assert s.get(Notification, other_id).read is False


def test_read_requires_id(client, login):
    login("customer")
    r = client.post("/api/notifications/read", json={})
    assert r.status_code == 400
    assert r.json["error"] == "Notification ID is required"


def test_list_is_capped_at_fifty(client, login, seed, app):
    _seed_notifications(app, seed["customer"], 55)
    login("customer")
    r = client.get("/api/notifications")
    assert len(r.json["notifications"]) == 50
    assert r.json["unreadCount"] == 55


def test_status_change_notifies_creator(client, make_request, login, seed, app):
    req = make_request()
    login("manager")
    client.put(
        "/api/agent/requests/detail",
        json={"requestId": req["id"], "taskStatus": "in_progress", "assignedToId": seed["agent"]},
    )

    with session_scope(app) as s:
        rows = s.query(Notification).filter(Notification.type == "status_changed").all()
    assert {n.user_id for n in rows} == {seed["customer"], seed["agent"]}
    assert all("in progress" in n.message for n in rows)


def test_notification_failure_does_not_break_request(client, login, seed, monkeypatch):
    from app.servicequeue import emails

    def boom(*args, **kwargs):
        raise RuntimeError("smtp exploded")

    monkeypatch.setattr(emails, "send_new_request", boom)
    login("manager")
    r = client.post(
        "/api/agent/requests",
        json={
            "serviceQueueId": "SQ-BOOM",
            "insured": "Jane Doe",
            "serviceRequestNarrative": "Narrative",
            "serviceQueueCategory": "other",
            "assignedById": seed["customer"],
            "assignedToId": seed["agent"],
        },
    )
    assert r.status_code == 201
    assert r.json["request"]["serviceQueueId"] == "SQ-BOOM"


def test_due_date_reminders(app, seed, make_request, login, client):
    from datetime import date, timedelta

    from scripts.send_due_reminders import run

    today = date(2030, 1, 10)
    soon = make_request(dueDate=(today + timedelta(days=1)).isoformat())
    later = make_request(dueDate=(today + timedelta(days=30)).isoformat())

    sent = run(today=today)
    assert sent >= 1

    with session_scope(app) as s:
        rows = s.query(Notification).filter(Notification.type == "due_date_reminder").all()
    # unassigned requests fall back to the agent managers
    assert {n.user_id for n in rows} == {seed["manager"]}
    assert all(soon["serviceQueueId"] in n.message for n in rows)
    assert not any(later["serviceQueueId"] in n.message for n in rows)
