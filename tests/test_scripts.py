from app.servicequeue.db import session_scope
from app.servicequeue.models import User
from scripts.init_db import seed_only


def test_seed_creates_super_admin_once(app, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "Root@SQ.test")
    monkeypatch.setenv("ADMIN_PASSWORD", "first-password")
    seed_only(database_url=app.config["DATABASE_URL"])

    monkeypatch.setenv("ADMIN_PASSWORD", "second-password")
    seed_only(database_url=app.config["DATABASE_URL"])

    with session_scope(app) as s:
        rows = s.query(User).filter(User.email == "root@sq.test").all()
        assert len(rows) == 1
        assert rows[0].role == "super_admin"

    client = app.test_client()
    assert client.post("/api/auth/login", json={"email": "root@sq.test", "password": "first-password"}).status_code == 200


def test_reminder_dry_run_sends_nothing(app, make_request):
    from scripts.send_due_reminders import run

    make_request(dueDate="2020-01-01")
    assert run(dry_run=True) == 0
