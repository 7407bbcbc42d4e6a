from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.servicequeue import emails
from app.servicequeue.activity import serialize_activity
from app.servicequeue.api import invalid, request_payload
from app.servicequeue.constants import CODE_LENGTH, CUSTOMER_ROLES, ROLE_CUSTOMER, ROLE_CUSTOMER_ADMIN, ROLE_SUPER_ADMIN
from app.servicequeue.db import db_session
from app.servicequeue.models import ActivityLog, Company, User
from app.servicequeue.modules.customers.models import InsuredAccount
from app.servicequeue.modules.customers.service import (
    CustomerError,
    apply_insured,
    create_company_user,
    create_insured,
    delete_company_user,
    serialize_insured,
    update_company_user,
    validate_insured_payload,
    validate_user_payload,
)
from app.servicequeue.modules.notifications.service import company_agents, notify_user_created
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.serializers import serialize_company, serialize_user
from app.servicequeue.utils import parse_int

bp = Blueprint("customer_accounts", __name__)


def _company(s) -> Company:
    u = current_user()
    company = s.get(Company, u.company_id) if u.company_id is not None else None
    if company is None:
        abort(404, description="Company not found")
    return company


def _company_customer(s, company: Company, user_id: int | None) -> User:
    if user_id is None:
        abort(400, description="User ID is required")
    user = s.get(User, user_id)
    if user is None or user.company_id != company.id or user.role != ROLE_CUSTOMER:
        abort(404, description="User not found")
    return user


# ---------- Customer admin: users ----------
@bp.get("/admin/users")
@require_role(ROLE_CUSTOMER_ADMIN)
def admin_users_list():
    s = db_session()
    company = _company(s)
    rows = (
        s.query(User)
        .filter(User.company_id == company.id, User.role == ROLE_CUSTOMER)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return jsonify({"users": [serialize_user(x, include_login_code=True) for x in rows]})


@bp.post("/admin/users")
@require_role(ROLE_CUSTOMER_ADMIN)
def admin_users_create():
    s = db_session()
    u = current_user()
    company = _company(s)
    payload = request_payload()
    errors = validate_user_payload({**payload, "role": ROLE_CUSTOMER}, require_login_code=True)
    if errors:
        return invalid(errors)
    try:
        user = create_company_user(s, company, payload, role=ROLE_CUSTOMER, login_code=payload.get("loginCode"))
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_user_created(s, user, u)
    s.commit()
    emails.send_customer_welcome(
        user.email, first_name=user.first_name, login_code=user.login_code, company_name=company.company_name
    )
    return jsonify({"success": True, "user": serialize_user(user, include_login_code=True)}), 201


@bp.put("/admin/users")
@require_role(ROLE_CUSTOMER_ADMIN)
def admin_users_update():
    s = db_session()
    company = _company(s)
    payload = request_payload()
    user = _company_customer(s, company, parse_int(payload.get("userId")))
    errors = []
    if payload.get("loginCode") and len(str(payload["loginCode"]).strip()) < CODE_LENGTH:
        errors.append(f"Login code must be at least {CODE_LENGTH} characters.")
    if errors:
        return invalid(errors)
    try:
        # customer admins manage plain customers only; role stays fixed
        changes = update_company_user(s, user, {k: v for k, v in payload.items() if k != "role"})
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "changes": changes, "user": serialize_user(user, include_login_code=True)})


@bp.delete("/admin/users")
@require_role(ROLE_CUSTOMER_ADMIN)
def admin_users_delete():
    s = db_session()
    company = _company(s)
    user_id = parse_int(request.args.get("userId"))
    if user_id is None:
        user_id = parse_int(request_payload().get("userId"))
    user = _company_customer(s, company, user_id)
    try:
        delete_company_user(s, user)
    except CustomerError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "message": "User deleted successfully"})


@bp.get("/admin/activity")
@require_role(ROLE_CUSTOMER_ADMIN)
def admin_activity():
    s = db_session()
    company = _company(s)
    rows = (
        s.query(ActivityLog)
        .filter(ActivityLog.company_id == company.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(10)
        .all()
    )
    return jsonify({"activities": [serialize_activity(a) for a in rows]})


# ---------- Company lookups ----------
@bp.get("/agents")
@require_role(*CUSTOMER_ROLES)
def assignable_agents():
    """Agents covering the caller's company, plus super admins."""
    s = db_session()
    company = _company(s)
    out = [{**serialize_user(a), "type": "agent"} for a in company_agents(s, company.id)]
    admins = (
        s.query(User)
        .filter(User.role == ROLE_SUPER_ADMIN, User.is_active.is_(True))
        .order_by(User.first_name.asc())
        .all()
    )
    out.extend({**serialize_user(a), "type": "super_admin"} for a in admins)
    return jsonify({"agents": out})


@bp.get("/companies")
@require_role(*CUSTOMER_ROLES)
def own_company():
    s = db_session()
    return jsonify({"company": serialize_company(_company(s))})


# ---------- Insured accounts ----------
def _get_insured(s, company: Company, insured_id: int) -> InsuredAccount:
    account = s.get(InsuredAccount, insured_id)
    if account is None or account.company_id != company.id:
        abort(404, description="Insured account not found")
    return account


@bp.get("/insured-accounts")
@require_role(*CUSTOMER_ROLES)
def insured_list():
    s = db_session()
    company = _company(s)
    rows = (
        s.query(InsuredAccount)
        .filter(InsuredAccount.company_id == company.id)
        .order_by(InsuredAccount.insured_name.asc())
        .all()
    )
    return jsonify({"insuredAccounts": [serialize_insured(a) for a in rows]})


@bp.post("/insured-accounts")
@require_role(ROLE_CUSTOMER_ADMIN)
def insured_create():
    s = db_session()
    company = _company(s)
    payload = request_payload()
    errors = validate_insured_payload(payload)
    if errors:
        return invalid(errors, message=errors[0])
    account = create_insured(s, company.id, payload)
    s.commit()
    return jsonify({"success": True, "insuredAccount": serialize_insured(account)}), 201


@bp.get("/insured-accounts/<int:insured_id>")
@require_role(*CUSTOMER_ROLES)
def insured_detail(insured_id: int):
    s = db_session()
    account = _get_insured(s, _company(s), insured_id)
    return jsonify({"insuredAccount": serialize_insured(account)})


@bp.put("/insured-accounts/<int:insured_id>")
@require_role(ROLE_CUSTOMER_ADMIN)
def insured_update(insured_id: int):
    s = db_session()
    account = _get_insured(s, _company(s), insured_id)
    payload = request_payload()
    errors = validate_insured_payload(payload)
    if errors:
        return invalid(errors, message=errors[0])
    apply_insured(account, payload)
    s.commit()
    return jsonify({"success": True, "insuredAccount": serialize_insured(account)})


@bp.delete("/insured-accounts/<int:insured_id>")
@require_role(ROLE_CUSTOMER_ADMIN)
def insured_delete(insured_id: int):
    s = db_session()
    account = _get_insured(s, _company(s), insured_id)
    s.delete(account)
    s.commit()
    return jsonify({"success": True, "message": "Insured account deleted successfully"})


@bp.get("/insured-list")
@require_role(*CUSTOMER_ROLES)
def insured_names():
    s = db_session()
    company = _company(s)
    rows = (
        s.query(InsuredAccount.id, InsuredAccount.insured_name)
        .filter(InsuredAccount.company_id == company.id)
        .order_by(InsuredAccount.insured_name.asc())
        .all()
    )
    return jsonify({"insured": [{"id": i, "insuredName": name} for i, name in rows]})
