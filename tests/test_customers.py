import pytest

INSURED = {
    "insuredName": "Jane Doe",
    "primaryContactName": "Jane Doe",
    "contactEmail": "Jane@Example.com",
    "phone": "555-0100",
    "street": "1 Main St",
    "city": "Springfield",
    "state": "IL",
    "zipcode": "62701",
}


@pytest.fixture()
def admin(login):
    login("admin")


def test_create_company_makes_primary_admin(client, admin):
    r = client.post(
        "/api/admin/customers/manage",
        json={"companyName": "Globex Mutual", "primaryContact": "Hank Scorpio", "email": "Hank@Globex.test", "phone": "555-0199"},
    )
    assert r.status_code == 201, r.json
    code = r.json["companyCode"]
    assert len(code) == 7
    users = r.json["customer"]["users"]
    assert len(users) == 1
    assert users[0]["role"] == "customer_admin"
    assert users[0]["loginCode"] == code
    assert (users[0]["firstName"], users[0]["lastName"]) == ("Hank", "Scorpio")

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "hank@globex.test", "loginCode": code})
    assert r.status_code == 200


def test_create_company_rejects_duplicates(client, admin):
    r = client.post(
        "/api/admin/customers/manage",
        json={"companyName": "acme insurance", "primaryContact": "X Y", "email": "new@acme.test"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "A company with this name already exists"

    r = client.post("/api/admin/customers/manage", json={"companyName": "", "primaryContact": "", "email": "nope"})
    assert r.status_code == 400
    assert len(r.json["details"]) == 3


def test_reset_company_code_moves_primary_admin(client, admin, seed):
    r = client.post("/api/admin/customers/reset-code", json={"companyId": seed["acme"]})
    assert r.status_code == 200, r.json
    assert r.json["oldCompanyCode"] == "ACME001"
    new_code = r.json["newCompanyCode"]
    assert new_code != "ACME001"

    users = client.get(f"/api/admin/customers/users?customerId={seed['acme']}").json["users"]
    codes = {u["email"]: u["loginCode"] for u in users}
    assert codes["ada@acme.test"] == new_code
    assert codes["carl@acme.test"] == "CUST001"

    # the manage endpoint accepts the same action
    r = client.post("/api/admin/customers/manage", json={"action": "resetCode", "customerId": seed["acme"]})
    assert r.json["oldCompanyCode"] == new_code


def test_update_company_syncs_primary_admin(client, admin, seed):
    r = client.put(
        "/api/admin/customers/manage",
        json={"customerId": seed["acme"], "primaryContact": "Adaline Admin", "email": "hq@acme.test"},
    )
    assert r.status_code == 200, r.json
    assert set(r.json["changes"]) == {"primaryContact", "email"}
    admin_row = next(u for u in r.json["customer"]["users"] if u["role"] == "customer_admin")
    assert admin_row["firstName"] == "Adaline"
    assert admin_row["email"] == "hq@acme.test"

    r = client.put("/api/admin/customers/manage", json={"customerId": seed["acme"], "companyName": "Other Mutual"})
    assert r.status_code == 400


def test_delete_company_blocked_by_requests(client, make_request, login, seed):
    make_request()
    login("admin")
    r = client.delete(f"/api/admin/customers/manage?customerId={seed['acme']}")
    assert r.status_code == 400
    assert r.json["error"].startswith("Cannot delete customer with active service requests.")

    r = client.delete(f"/api/admin/customers/manage?customerId={seed['other']}")
    assert r.status_code == 200
    names = [c["companyName"] for c in client.get("/api/admin/companies").json["companies"]]
    assert names == ["Acme Insurance"]


def test_admin_manages_company_users(client, admin, seed):
    r = client.post(
        "/api/admin/customers/users",
        json={"customerId": seed["acme"], "firstName": "Dee", "lastName": "Doe", "email": "dee@acme.test", "role": "customer"},
    )
    assert r.status_code == 201, r.json
    dee = r.json["user"]
    assert dee["companyId"] == seed["acme"]
    assert len(dee["loginCode"]) == 7

    r = client.post(
        "/api/admin/customers/users",
        json={"customerId": seed["acme"], "firstName": "Z", "lastName": "Z", "email": "z@acme.test", "role": "agent"},
    )
    assert r.status_code == 400

    r = client.delete(f"/api/admin/customers/users?userId={dee['id']}&customerId={seed['other']}")
    assert r.status_code == 404
    r = client.delete(f"/api/admin/customers/users?userId={dee['id']}&customerId={seed['acme']}")
    assert r.status_code == 200


def test_update_details_renames_company_and_user(client, admin, seed):
    r = client.post(
        "/api/admin/customers/update-details",
        json={
            "customerId": seed["acme"],
            "companyName": "Acme Insurance Group",
            "userId": seed["customer"],
            "firstName": "Carla",
            "lastName": "Customer",
            "email": "carla@acme.test",
            "loginCode": "CUST002",
            "role": "customer",
        },
    )
    assert r.status_code == 200, r.json
    assert r.json["created"] is False
    assert r.json["customer"]["companyName"] == "Acme Insurance Group"
    assert r.json["user"]["loginCode"] == "CUST002"

    r = client.post(
        "/api/admin/customers/update-details",
        json={
            "customerId": seed["acme"],
            "companyName": "Acme",
            "userId": seed["other_customer"],
            "firstName": "X",
            "lastName": "Y",
            "email": "x@y.test",
            "loginCode": "XYZ1234",
            "role": "customer",
        },
    )
    assert r.status_code == 404


def test_update_details_requires_role(client, admin, seed, app):
    from app.servicequeue.db import session_scope
    from app.servicequeue.models import User

    r = client.post(
        "/api/admin/customers/update-details",
        json={
            "customerId": seed["acme"],
            "companyName": "Acme Insurance",
            "userId": seed["cadmin"],
            "firstName": "Ada",
            "lastName": "Admin",
            "email": "ada@acme.test",
            "loginCode": "ACME001",
        },
    )
    assert r.status_code == 400
    assert r.json["details"] == ["Role is required."]
    with session_scope(app) as s:
        assert s.get(User, seed["cadmin"]).role == "customer_admin"


def test_customer_overview_for_managers(client, make_request, login, seed):
    make_request()
    login("manager")
    r = client.get("/api/admin/customers")
    assert r.status_code == 200
    acme = next(c for c in r.json["customers"] if c["id"] == seed["acme"])
    assert acme["openTickets"] == 1
    assert acme["status"] == "very_active"
    assert r.json["summary"]["totalCustomers"] == 2

    head = client.head("/api/admin/customers")
    assert head.headers["X-Total-Customers"] == "2"

    detail = client.get(f"/api/admin/customers/{seed['acme']}").json["customer"]
    assert detail["totalTickets"] == 1
    assert {u["email"] for u in detail["users"]} == {"ada@acme.test", "carl@acme.test"}


def test_staff_insured_accounts(client, login, seed):
    login("manager")
    r = client.post(f"/api/admin/customers/{seed['acme']}/insured", json=INSURED)
    assert r.status_code == 201, r.json
    account = r.json["insuredAccount"]
    assert account["contactEmail"] == "jane@example.com"

    r = client.put(f"/api/admin/customers/{seed['acme']}/insured/{account['id']}", json={**INSURED, "city": "Shelbyville"})
    assert r.json["insuredAccount"]["city"] == "Shelbyville"

    assert client.get(f"/api/admin/customers/{seed['other']}/insured/{account['id']}").status_code == 404

    r = client.post(f"/api/admin/customers/{seed['acme']}/insured", json={**INSURED, "zipcode": ""})
    assert r.status_code == 400
    assert r.json["details"] == ["All fields are required"]


def test_customer_admin_insured_accounts(client, login):
    login("customer")
    r = client.post("/api/customer/insured-accounts", json=INSURED)
    assert r.status_code == 403

    login("cadmin")
    r = client.post("/api/customer/insured-accounts", json=INSURED)
    assert r.status_code == 201
    account_id = r.json["insuredAccount"]["id"]

    login("customer")
    names = client.get("/api/customer/insured-list").json["insured"]
    assert names == [{"id": account_id, "insuredName": "Jane Doe"}]
    assert client.delete(f"/api/customer/insured-accounts/{account_id}").status_code == 403

    login("other_customer")
    assert client.get(f"/api/customer/insured-accounts/{account_id}").status_code == 404


def test_customer_admin_manages_own_users(client, login, seed):
    login("cadmin")
    r = client.post(
        "/api/customer/admin/users",
        json={"firstName": "Eve", "lastName": "Extra", "email": "eve@acme.test", "loginCode": "eve1234"},
    )
    assert r.status_code == 201, r.json
    eve = r.json["user"]
    assert eve["role"] == "customer"
    assert eve["loginCode"] == "EVE1234"

    r = client.post("/api/customer/admin/users", json={"firstName": "F", "lastName": "G", "email": "f@acme.test", "loginCode": "ABC"})
    assert r.status_code == 400

    r = client.put("/api/customer/admin/users", json={"userId": eve["id"], "firstName": "Evelyn", "role": "customer_admin"})
    assert r.status_code == 200
    assert r.json["user"]["firstName"] == "Evelyn"
    assert r.json["user"]["role"] == "customer"

    # another company's user and the admin itself are out of reach
    assert client.put("/api/customer/admin/users", json={"userId": seed["other_customer"], "firstName": "X"}).status_code == 404
    assert client.delete(f"/api/customer/admin/users?userId={seed['cadmin']}").status_code == 404

    emails = {u["email"] for u in client.get("/api/customer/admin/users").json["users"]}
    assert emails == {"carl@acme.test", "eve@acme.test"}

    assert client.delete(f"/api/customer/admin/users?userId={eve['id']}").status_code == 200


def test_customer_lookups(client, login, seed):
    login("customer")
    agents = client.get("/api/customer/agents").json["agents"]
    by_type = {(a["id"], a["type"]) for a in agents}
    assert (seed["agent"], "agent") in by_type
    assert (seed["admin"], "super_admin") in by_type
    assert all(a["id"] != seed["manager"] for a in agents)

    company = client.get("/api/customer/companies").json["company"]
    assert company["companyCode"] == "ACME001"

    users = client.get("/api/customer").json["users"]
    assert {u["id"] for u in users} == {seed["cadmin"], seed["customer"]}
