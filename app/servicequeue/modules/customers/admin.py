from __future__ import annotations

import logging

from flask import Blueprint, abort, jsonify, make_response, request

from app.servicequeue import emails
from app.servicequeue.api import int_arg, invalid, request_payload, text
from app.servicequeue.constants import (
    CUSTOMER_ROLES,
    MANAGER_ROLES,
    ROLE_CUSTOMER,
    ROLE_CUSTOMER_ADMIN,
    ROLE_SUPER_ADMIN,
)
from app.servicequeue.db import db_session
from app.servicequeue.models import ActivityLog, Company, User
from app.servicequeue.modules.customers.models import InsuredAccount
from app.servicequeue.modules.customers.service import (
    CustomerError,
    apply_insured,
    company_overview,
    create_company,
    create_company_user,
    create_insured,
    delete_company,
    delete_company_user,
    overview_summary,
    request_counts,
    reset_company_code,
    serialize_company_activity,
    serialize_insured,
    update_company,
    update_details,
    validate_company_payload,
    validate_insured_payload,
    validate_user_payload,
)
from app.servicequeue.modules.notifications.service import (
    notify_company_code_reset,
    notify_customer_details_updated,
    notify_user_created,
)
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.serializers import serialize_company, serialize_user
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("customers_admin", __name__)


def _get_company(s, company_id: int | None) -> Company:
    if company_id is None:
        abort(400, description="Customer ID is required")
    company = s.get(Company, company_id)
    if company is None:
        abort(404, description="Customer not found")
    return company


def _company_id_from(payload: dict) -> int | None:
    for key in ("customerId", "companyId"):
        value = parse_int(payload.get(key))
        if value is None:
            value = parse_int(request.args.get(key))
        if value is not None:
            return value
    return None


def _send_welcome(user: User, company: Company) -> None:
    if user.role == ROLE_CUSTOMER_ADMIN:
        emails.send_customer_admin_welcome(
            user.email, first_name=user.first_name, login_code=user.login_code, company_name=company.company_name
        )
    else:
        emails.send_customer_welcome(
            user.email, first_name=user.first_name, login_code=user.login_code, company_name=company.company_name
        )


# ---------- Companies / users ----------
@bp.get("/companies")
@require_role(ROLE_SUPER_ADMIN)
def companies_list():
    s = db_session()
    rows = s.query(Company).order_by(Company.company_name.asc()).all()
    return jsonify({"companies": [serialize_company(c) for c in rows]})


@bp.get("/users")
@require_role(ROLE_SUPER_ADMIN)
def users_list():
    s = db_session()
    q = s.query(User)
    if (request.args.get("role") or "").strip() == "customers":
        q = q.filter(User.role.in_(CUSTOMER_ROLES))
    rows = q.order_by(User.created_at.desc(), User.id.desc()).all()
    out = []
    for u in rows:
        data = serialize_user(u)
        data["company"] = {"id": u.company.id, "companyName": u.company.company_name} if u.company else None
        out.append(data)
    return jsonify({"users": out})


# ---------- Customer overview ----------
@bp.route("/customers", methods=["GET", "HEAD"])
@require_role(*MANAGER_ROLES)
def customers_overview():
    s = db_session()
    if request.method == "HEAD":
        resp = make_response("", 200)
        resp.headers["X-Total-Customers"] = str(s.query(Company).count())
        return resp
    companies = s.query(Company).order_by(Company.company_name.asc()).all()
    rows = [company_overview(s, c) for c in companies]
    return jsonify({"customers": rows, "summary": overview_summary(rows)})


@bp.get("/customers/<int:company_id>")
@require_role(*MANAGER_ROLES)
def customer_detail(company_id: int):
    s = db_session()
    company = _get_company(s, company_id)
    data = serialize_company(company, include_users=True)
    data.update(request_counts(s, company.id))
    return jsonify({"customer": data})


# ---------- Manage ----------
@bp.get("/customers/manage")
@require_role(ROLE_SUPER_ADMIN)
def manage_list():
    s = db_session()
    rows = s.query(Company).order_by(Company.company_name.asc()).all()
    return jsonify({"customers": [serialize_company(c, include_users=True) for c in rows]})


@bp.post("/customers/manage")
@require_role(ROLE_SUPER_ADMIN)
def manage_create():
    payload = request_payload()
    if text(payload, "action") == "resetCode":
        return _reset_code(payload)

    s = db_session()
    u = current_user()
    errors = validate_company_payload(payload)
    if errors:
        return invalid(errors)
    try:
        company, admin = create_company(s, payload)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_user_created(s, admin, u)
    s.commit()
    emails.send_company_code(
        company.email,
        company_name=company.company_name,
        company_code=company.company_code,
        primary_contact=company.primary_contact,
    )
    _send_welcome(admin, company)
    return (
        jsonify(
            {
                "success": True,
                "customer": serialize_company(company, include_users=True),
                "companyCode": company.company_code,
                "message": (
                    f'Company "{company.company_name}" created successfully! Customer admin user created with '
                    f"login code {company.company_code} sent to {company.email}."
                ),
            }
        ),
        201,
    )


@bp.put("/customers/manage")
@require_role(ROLE_SUPER_ADMIN)
def manage_update():
    s = db_session()
    u = current_user()
    payload = request_payload()
    company = _get_company(s, _company_id_from(payload))
    errors = validate_company_payload(payload, partial=True)
    if errors:
        return invalid(errors)
    try:
        changes = update_company(s, company, payload)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    if changes:
        notify_customer_details_updated(s, company, u, changes=changes)
        s.commit()
    return jsonify({"success": True, "customer": serialize_company(company, include_users=True), "changes": changes})


@bp.delete("/customers/manage")
@require_role(ROLE_SUPER_ADMIN)
def manage_delete():
    s = db_session()
    company = _get_company(s, _company_id_from(request_payload()))
    name = company.company_name
    try:
        delete_company(s, company)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify(
        {"success": True, "message": f'Customer "{name}" and all associated users have been deleted successfully.'}
    )


def _reset_code(payload: dict):
    s = db_session()
    u = current_user()
    company = _get_company(s, _company_id_from(payload))
    try:
        old_code, new_code, admin, created = reset_company_code(s, company)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    if created:
        notify_user_created(s, admin, u)
    notify_company_code_reset(s, company, u)
    s.commit()
    emails.send_company_code_reset(company.email, company_name=company.company_name, company_code=new_code)
    if admin.email != company.email:
        emails.send_company_code_reset(admin.email, company_name=company.company_name, company_code=new_code)
    return jsonify(
        {
            "success": True,
            "oldCompanyCode": old_code,
            "newCompanyCode": new_code,
            "companyCode": new_code,
            "message": (
                f'Company code for "{company.company_name}" has been reset successfully! '
                f"New code {new_code} has been sent to {company.email}."
            ),
        }
    )


@bp.post("/customers/reset-code")
@require_role(ROLE_SUPER_ADMIN)
def customers_reset_code():
    return _reset_code(request_payload())


@bp.post("/customers/update-details")
@require_role(ROLE_SUPER_ADMIN)
def customers_update_details():
    s = db_session()
    u = current_user()
    payload = request_payload()
    company = _get_company(s, _company_id_from(payload))
    errors = validate_user_payload(payload, require_login_code=True)
    if not text(payload, "companyName"):
        errors.append("Company name is required.")
    if not text(payload, "role"):
        errors.append("Role is required.")
    if errors:
        return invalid(errors)
    try:
        user, created, changes = update_details(s, company, payload)
    except LookupError as e:
        s.rollback()
        abort(404, description=str(e))
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    if created:
        notify_user_created(s, user, u)
    if changes:
        notify_customer_details_updated(s, company, u, changes=changes)
    s.commit()
    if created:
        _send_welcome(user, company)
    return jsonify(
        {
            "success": True,
            "created": created,
            "user": serialize_user(user, include_login_code=True),
            "customer": serialize_company(company),
            "message": "Customer details updated successfully",
        }
    )


# ---------- Company users ----------
@bp.get("/customers/users")
@require_role(ROLE_SUPER_ADMIN)
def company_users_list():
    s = db_session()
    company = _get_company(s, int_arg("customerId", label="Customer ID"))
    rows = s.query(User).filter(User.company_id == company.id).order_by(User.created_at.asc(), User.id.asc()).all()
    out = []
    for x in rows:
        data = serialize_user(x, include_login_code=True)
        data["company"] = {"companyName": company.company_name, "companyCode": company.company_code}
        out.append(data)
    return jsonify({"users": out})


@bp.post("/customers/users")
@require_role(ROLE_SUPER_ADMIN)
def company_users_create():
    s = db_session()
    u = current_user()
    payload = request_payload()
    company = _get_company(s, _company_id_from(payload))
    errors = validate_user_payload(payload)
    if errors:
        return invalid(errors)
    try:
        user = create_company_user(s, company, payload, role=text(payload, "role") or ROLE_CUSTOMER)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_user_created(s, user, u)
    s.commit()
    _send_welcome(user, company)
    return jsonify({"success": True, "user": serialize_user(user, include_login_code=True)}), 201


@bp.delete("/customers/users")
@require_role(ROLE_SUPER_ADMIN)
def company_users_delete():
    s = db_session()
    payload = request_payload()
    user_id = parse_int(request.args.get("userId")) or parse_int(payload.get("userId"))
    company_id = _company_id_from(payload)
    if user_id is None or company_id is None:
        abort(400, description="User ID and Customer ID are required")
    user = s.get(User, user_id)
    if user is None or user.company_id != company_id:
        abort(404, description="User not found")
    name = user.full_name
    try:
        delete_company_user(s, user)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "message": f'User "{name}" deleted successfully'})


@bp.get("/customers/activity")
@require_role(ROLE_SUPER_ADMIN)
def company_activity():
    s = db_session()
    company = _get_company(s, int_arg("customerId", label="Customer ID"))
    rows = (
        s.query(ActivityLog)
        .filter(ActivityLog.company_id == company.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(15)
        .all()
    )
    return jsonify(
        {
            "success": True,
            "activities": [serialize_company_activity(a) for a in rows],
            "customer": {"id": company.id, "companyName": company.company_name},
        }
    )


# ---------- Insured accounts ----------
def _get_insured(s, company: Company, insured_id: int) -> InsuredAccount:
    account = s.get(InsuredAccount, insured_id)
    if account is None or account.company_id != company.id:
        abort(404, description="Insured account not found")
    return account


@bp.get("/customers/<int:company_id>/insured")
@require_role(*MANAGER_ROLES)
def insured_list(company_id: int):
    s = db_session()
    company = _get_company(s, company_id)
    rows = (
        s.query(InsuredAccount)
        .filter(InsuredAccount.company_id == company.id)
        .order_by(InsuredAccount.insured_name.asc())
        .all()
    )
    return jsonify({"insuredAccounts": [serialize_insured(a) for a in rows], "customer": serialize_company(company)})


@bp.post("/customers/<int:company_id>/insured")
@require_role(*MANAGER_ROLES)
def insured_create(company_id: int):
    s = db_session()
    company = _get_company(s, company_id)
    payload = request_payload()
    errors = validate_insured_payload(payload)
    if errors:
        return invalid(errors)
    account = create_insured(s, company.id, payload)
    s.commit()
    return jsonify({"success": True, "insuredAccount": serialize_insured(account)}), 201


@bp.get("/customers/<int:company_id>/insured/<int:insured_id>")
@require_role(*MANAGER_ROLES)
def insured_detail(company_id: int, insured_id: int):
    s = db_session()
    account = _get_insured(s, _get_company(s, company_id), insured_id)
    return jsonify({"insuredAccount": serialize_insured(account)})


@bp.put("/customers/<int:company_id>/insured/<int:insured_id>")
@require_role(*MANAGER_ROLES)
def insured_update(company_id: int, insured_id: int):
    s = db_session()
    account = _get_insured(s, _get_company(s, company_id), insured_id)
    payload = request_payload()
    errors = validate_insured_payload(payload)
    if errors:
        return invalid(errors)
    apply_insured(account, payload)
    s.commit()
    return jsonify({"success": True, "insuredAccount": serialize_insured(account)})


@bp.delete("/customers/<int:company_id>/insured/<int:insured_id>")
@require_role(*MANAGER_ROLES)
def insured_delete(company_id: int, insured_id: int):
    s = db_session()
    account = _get_insured(s, _get_company(s, company_id), insured_id)
    s.delete(account)
    s.commit()
    return jsonify({"success": True, "message": "Insured account deleted successfully"})
