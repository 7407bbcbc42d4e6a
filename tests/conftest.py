import pytest
from werkzeug.security import generate_password_hash

from app.servicequeue import create_app
from app.servicequeue.db import session_scope
from app.servicequeue.models import Agent, Base, Company, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_SERVER"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def seed(app):
    """Two companies, their customers, two agents, a manager and a super admin. Returns ids."""
    with session_scope(app) as s:
        acme = Company(company_name="Acme Insurance", company_code="ACME001", primary_contact="Ada Admin", email="ops@acme.test")
        other = Company(company_name="Other Mutual", company_code="OTHR001", primary_contact="Otto Other", email="ops@other.test")
        s.add_all([acme, other])
        s.flush()

        cadmin = User(first_name="Ada", last_name="Admin", email="ada@acme.test", login_code="ACME001", role="customer_admin", company=acme)
        cust = User(first_name="Carl", last_name="Customer", email="carl@acme.test", login_code="CUST001", role="customer", company=acme)
        other_cust = User(first_name="Olga", last_name="Other", email="olga@other.test", login_code="OTHR001", role="customer_admin", company=other)
        agent = User(first_name="Alan", last_name="Agent", email="alan@sq.test", login_code="AGENT01", role="agent")
        agent2 = User(first_name="Bea", last_name="Backup", email="bea@sq.test", login_code="AGENT02", role="agent")
        manager = User(first_name="Mia", last_name="Manager", email="mia@sq.test", login_code="MGR0001", role="agent_manager")
        admin = User(
            first_name="Sam",
            last_name="Super",
            email="admin@sq.test",
            password_hash=generate_password_hash("password123"),
            role="super_admin",
        )
        s.add_all([cadmin, cust, other_cust, agent, agent2, manager, admin])
        s.flush()
        s.add_all(
            [
                Agent(user=agent, assigned_company_ids=[acme.id]),
                Agent(user=agent2, assigned_company_ids=[acme.id]),
                Agent(user=manager, assigned_company_ids=[]),
            ]
        )
        s.flush()
        ids = {
            "acme": acme.id,
            "other": other.id,
            "cadmin": cadmin.id,
            "customer": cust.id,
            "other_customer": other_cust.id,
            "agent": agent.id,
            "agent2": agent2.id,
            "manager": manager.id,
            "admin": admin.id,
        }
    return ids


@pytest.fixture()
def client(app, seed):
    return app.test_client()


@pytest.fixture()
def login(client):
    credentials = {
        "customer": {"loginCode": "CUST001"},
        "cadmin": {"email": "ada@acme.test", "loginCode": "ACME001"},
        "other_customer": {"loginCode": "OTHR001"},
        "agent": {"loginCode": "AGENT01", "isAgent": True},
        "agent2": {"loginCode": "AGENT02", "isAgent": True},
        "manager": {"loginCode": "MGR0001", "isAgent": True},
        "admin": {"email": "admin@sq.test", "password": "password123"},
    }

    def _login(who: str) -> dict:
        client.post("/api/auth/logout")
        r = client.post("/api/auth/login", json=credentials[who])
        assert r.status_code == 200, r.json
        return r.json["user"]

    return _login


@pytest.fixture()
def make_request(client, login, seed):
    """Submit a request as the Acme customer; returns the serialized request."""

    def _make(**overrides) -> dict:
        login("customer")
        data = {
            "insured": "Jane Doe",
            "serviceRequestNarrative": "Please update the policy address.",
            "serviceQueueCategory": "policy_inquiry",
            "assignedById": str(seed["customer"]),
        }
        data.update(overrides)
        r = client.post("/api/customer", data=data)
        assert r.status_code == 201, r.json
        return r.json["request"]

    return _make
