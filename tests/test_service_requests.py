from app.servicequeue.db import session_scope
from app.servicequeue.models import Notification
from app.servicequeue.modules.service_requests.models import ServiceRequest


def _detail(client, request_id: int, who: str = "agent") -> dict:
    r = client.get(f"/api/{who}/requests/detail?requestId={request_id}")
    assert r.status_code == 200, r.json
    return r.json["request"]


def test_customer_submits_request(client, make_request, seed, app):
    req = make_request(dueDate="2030-01-15", dueTime="14:30")
    assert req["serviceQueueId"].startswith("SQ")
    assert req["taskStatus"] == "new"
    assert req["companyId"] == seed["acme"]
    assert req["assignedById"] == seed["customer"]
    assert req["assignedToId"] is None
    assert req["dueDate"] == "2030-01-15"
    assert req["dueTime"] == "14:30"

    with session_scope(app) as s:
        titles = {
            n.user_id: n.title
            for n in s.query(Notification).filter(Notification.type == "request_created").all()
        }
    # managers and the company's customer admins hear about new unassigned work
    assert titles[seed["manager"]] == "New Service Request"
    assert titles[seed["cadmin"]] == "New Service Request"
    assert seed["customer"] not in titles


def test_intake_requires_fields(client, login):
    login("customer")
    r = client.post("/api/customer", json={"insured": "", "serviceQueueCategory": "bogus"})
    assert r.status_code == 400
    details = r.json["details"]
    assert "Insured is required." in details
    assert "Service request narrative is required." in details
    assert "Assigned by is required." in details
    assert any(d.startswith("Invalid category.") for d in details)


def test_assigned_by_must_belong_to_own_company(client, login, seed):
    login("customer")
    r = client.post(
        "/api/customer/requests",
        json={
            "insured": "Jane Doe",
            "serviceRequestNarrative": "Address change",
            "serviceQueueCategory": "account_update",
            "assignedById": seed["other_customer"],
        },
    )
    assert r.status_code == 403


def test_other_company_cannot_see_request(client, make_request, login):
    req = make_request()
    login("other_customer")
    r = client.get(f"/api/customer/requests/detail?requestId={req['id']}")
    assert r.status_code == 404
    assert r.json["error"] == "Service request not found"

    listed = client.get("/api/customer/requests").json["requests"]
    assert listed == []


def test_close_rules_are_enforced_in_order(client, make_request, login, seed):
    req = make_request()
    login("manager")

    r = client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "closed"})
    assert r.status_code == 400
    assert r.json["details"] == ["Cannot close request without at least one note."]

    r = client.post("/api/agent/requests/notes", json={"requestId": req["id"], "noteContent": "Called the insured."})
    assert r.status_code == 201

    r = client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "closed"})
    assert r.json["details"] == ["Cannot close request that was never in progress."]

    r = client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "in_progress"})
    assert r.status_code == 200
    assert r.json["changes"]["taskStatus"] == {"old": "new", "new": "in_progress"}
    assert r.json["request"]["inProgressAt"] is not None

    r = client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "closed"})
    assert r.json["details"] == ["Cannot close request without an assigned agent."]

    r = client.put(
        "/api/agent/requests/detail",
        json={"requestId": req["id"], "taskStatus": "closed", "assignedToId": seed["agent"]},
    )
    assert r.status_code == 200, r.json
    closed = r.json["request"]
    assert closed["taskStatus"] == "closed"
    assert closed["closedAt"] is not None
    assert closed["assignedToId"] == seed["agent"]


def test_reopening_clears_closed_at(client, make_request, login, seed):
    req = make_request()
    login("manager")
    client.post("/api/agent/requests/notes", json={"requestId": req["id"], "noteContent": "Done."})
    client.put(
        "/api/agent/requests/detail",
        json={"requestId": req["id"], "taskStatus": "in_progress", "assignedToId": seed["agent"]},
    )
    client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "closed"})

    r = client.put("/api/agent/requests/detail", json={"requestId": req["id"], "taskStatus": "open"})
    assert r.status_code == 200
    assert r.json["request"]["closedAt"] is None
    assert r.json["request"]["inProgressAt"] is not None


def test_failed_update_leaves_request_untouched(client, make_request, login, app):
    req = make_request()
    login("manager")
    r = client.put(
        "/api/agent/requests/detail",
        json={"requestId": req["id"], "insured": "Someone Else", "taskStatus": "closed"},
    )
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.get(ServiceRequest, req["id"]).insured == "Jane Doe"


def test_agent_cannot_reassign(client, make_request, login, seed):
    req = make_request()
    login("agent")
    r = client.put(
        "/api/agent/requests/detail",
        json={"requestId": req["id"], "assignedToId": seed["agent"], "serviceQueueCategory": "claims_processing"},
    )
    assert r.status_code == 200
    assert "assignedToId" not in r.json["changes"]
    assert r.json["request"]["assignedToId"] is None
    assert r.json["request"]["serviceQueueCategory"] == "claims_processing"


def test_internal_notes_hidden_from_customers(client, make_request, login):
    req = make_request()
    login("agent")
    client.post("/api/agent/requests/notes", json={"requestId": req["id"], "noteContent": "Underwriter says no.", "isInternal": True})
    client.post("/api/agent/requests/notes", json={"requestId": req["id"], "noteContent": "We are on it."})

    staff_view = _detail(client, req["id"])
    assert len(staff_view["notes"]) == 2

    login("customer")
    customer_view = _detail(client, req["id"], who="customer")
    assert [n["noteContent"] for n in customer_view["notes"]] == ["We are on it."]


def test_customer_note_requires_content(client, make_request):
    req = make_request()
    r = client.post("/api/customer/requests/notes", json={"requestId": req["id"], "noteContent": "  "})
    assert r.status_code == 400
    assert r.json["details"] == ["Note content is required."]

    r = client.post("/api/customer/requests/notes", json={"requestId": req["id"], "noteContent": "Any update?"})
    assert r.status_code == 201
    assert r.json["note"]["isInternal"] is False


def test_manager_creates_request_with_explicit_id(client, login, seed):
    login("manager")
    body = {
        "serviceQueueId": "SQ-MANUAL-1",
        "insured": "Bob Builder",
        "serviceRequestNarrative": "Add a vehicle.",
        "serviceQueueCategory": "policy_inquiry",
        "assignedById": seed["customer"],
        "assignedToId": seed["agent"],
    }
    r = client.post("/api/agent/requests", json=body)
    assert r.status_code == 201, r.json
    assert r.json["request"]["companyId"] == seed["acme"]
    assert r.json["request"]["assignedToId"] == seed["agent"]

    dup = client.post("/api/agent/requests", json=body)
    assert dup.status_code == 400
    assert dup.json["details"] == ["Service queue ID SQ-MANUAL-1 already exists."]


def test_agents_cannot_create_requests(client, login, seed):
    login("agent")
    r = client.post(
        "/api/agent/requests",
        json={"serviceQueueId": "SQ-X", "insured": "X", "serviceRequestNarrative": "X", "serviceQueueCategory": "other", "assignedById": seed["customer"]},
    )
    assert r.status_code == 403


def test_summary_limits_agent_to_covered_companies(client, login, seed):
    login("manager")
    for sqid, customer in (("SQ-A", seed["customer"]), ("SQ-B", seed["other_customer"])):
        r = client.post(
            "/api/agent/requests",
            json={
                "serviceQueueId": sqid,
                "insured": "Insured",
                "serviceRequestNarrative": "Narrative",
                "serviceQueueCategory": "other",
                "assignedById": customer,
            },
        )
        assert r.status_code == 201

    login("agent")
    r = client.get("/api/agent/summary")
    assert [x["serviceQueueId"] for x in r.json["requests"]] == ["SQ-A"]
    assert r.json["summary"]["total"] == 1

    r = client.get("/api/agent")
    assert r.json["summary"]["total"] == 2


def test_admin_customer_note_email_failure(client, make_request, login, monkeypatch):
    from app.servicequeue import emails

    req = make_request()
    login("admin")
    monkeypatch.setattr(emails, "send_note_added", lambda *a, **kw: (False, "SMTP down"))
    r = client.post(
        "/api/admin/customers/requests/notes",
        json={"requestId": req["id"], "noteContent": "Your policy is renewed.", "recipientEmail": "carl@acme.test"},
    )
    assert r.status_code == 500
    assert r.json["error"] == "Note saved but email notification failed"

    notes = client.get("/api/admin/request").json["notes"]
    assert notes[0]["noteContent"] == "Your policy is renewed."


def test_activity_trail_records_lifecycle(client, make_request, login):
    req = make_request()
    login("admin")
    r = client.get(f"/api/admin/requests/{req['id']}/activity")
    assert r.status_code == 200
    assert [a["type"] for a in r.json["activities"]] == ["request_created"]


def test_customer_note_emails_recipient_instead_of_assignee(client, make_request, login, seed, monkeypatch):
    from app.servicequeue import emails

    req = make_request()
    login("manager")
    client.put("/api/agent/requests/detail", json={"requestId": req["id"], "assignedToId": seed["agent"]})

    sent = []
    monkeypatch.setattr(emails, "send_note_added", lambda to, **kw: sent.append(to) or (True, "sent"))
    login("customer")

    client.post("/api/customer/requests/notes", json={"requestId": req["id"], "noteContent": "Any update?"})
    assert "alan@sq.test" in sent

    sent.clear()
    r = client.post(
        "/api/customer/requests/notes",
        json={"requestId": req["id"], "noteContent": "Please copy my broker.", "recipientEmail": "Broker@Example.test"},
    )
    assert r.status_code == 201
    assert sent == ["broker@example.test"]


def test_admin_customer_note_unknown_request(client, login, monkeypatch):
    from app.servicequeue import emails

    login("admin")
    r = client.post(
        "/api/admin/customers/requests/notes",
        json={"requestId": 9999, "noteContent": "Hello", "recipientEmail": "carl@acme.test"},
    )
    assert r.status_code == 404

    monkeypatch.setattr(emails, "send_note_added", lambda *a, **kw: (False, "SMTP down"))
    r = client.post("/api/admin/customers/requests/notes", json={"noteContent": "Hello", "recipientEmail": "carl@acme.test"})
    assert r.status_code == 500
    assert r.json["error"] == "Failed to send email notification"
