from __future__ import annotations

import logging
from datetime import date

from flask import Blueprint, abort, jsonify

from app.servicequeue.api import flag, int_arg, int_field, invalid, request_payload, text, uploaded_files
from app.servicequeue.constants import AGENT_ROLES, CUSTOMER_ROLES, MANAGER_ROLES, STAFF_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.models import Company, User
from app.servicequeue.modules.notifications.service import (
    notify_note_added,
    notify_request_assigned,
    notify_request_created,
    notify_request_updated,
)
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.modules.service_requests.service import (
    add_note,
    announce_attachments,
    attach_files,
    create_service_request,
    field,
    serialize_note,
    serialize_request,
    service_queue_id_taken,
    status_summary,
    update_service_request,
    validate_request_payload,
    visible_requests,
)
from app.servicequeue.rbac import current_user, is_manager, require_role
from app.servicequeue.serializers import serialize_company, serialize_user
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("agent_requests", __name__)


def _newest_first(q):
    return q.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())


def _get_request(s, request_id: int) -> ServiceRequest:
    req = s.get(ServiceRequest, request_id)
    if req is None:
        abort(404, description="Service request not found")
    return req


# ---------- Queues ----------
@bp.get("")
@require_role(*STAFF_ROLES)
def all_requests():
    s = db_session()
    rows = _newest_first(s.query(ServiceRequest)).all()
    return jsonify({"requests": [serialize_request(r) for r in rows], "summary": status_summary(rows, date.today())})


@bp.get("/my-requests")
@require_role(*STAFF_ROLES)
def my_requests():
    s = db_session()
    u = current_user()
    rows = _newest_first(s.query(ServiceRequest).filter(ServiceRequest.assigned_to_id == u.id)).all()
    return jsonify({"requests": [serialize_request(r) for r in rows], "summary": status_summary(rows, date.today())})


@bp.get("/summary")
@require_role(*STAFF_ROLES)
def summary():
    s = db_session()
    u = current_user()
    rows = _newest_first(visible_requests(s, u)).all()
    return jsonify({"requests": [serialize_request(r) for r in rows], "summary": status_summary(rows, date.today())})


# ---------- Create / detail ----------
@bp.post("/requests")
@require_role(*MANAGER_ROLES)
def request_create():
    s = db_session()
    u = current_user()
    payload = request_payload()

    errors = validate_request_payload(payload, require_assigned_by=True)
    service_queue_id = field(payload, "serviceQueueId")
    if not service_queue_id:
        errors.append("Service queue ID is required.")
    if errors:
        return invalid(errors)
    if service_queue_id_taken(s, service_queue_id):
        return invalid([f"Service queue ID {service_queue_id} already exists."])

    assigned_by = s.get(User, parse_int(payload.get("assignedById")) or 0)
    if assigned_by is None or assigned_by.company_id is None:
        return invalid(["Assigned by user must belong to a company."])

    assigned_to = None
    if field(payload, "assignedToId"):
        assigned_to = s.get(User, parse_int(payload.get("assignedToId")) or 0)
        if assigned_to is None or not assigned_to.is_active or assigned_to.role not in AGENT_ROLES:
            return invalid(["Assigned to user must be an active agent or agent manager."])

    req = create_service_request(
        s,
        payload,
        u,
        company_id=assigned_by.company_id,
        assigned_by=assigned_by,
        assigned_to=assigned_to,
        service_queue_id=service_queue_id,
    )
    saved = attach_files(s, req, uploaded_files(), u)
    s.commit()

    notify_request_created(s, req, u)
    if assigned_to is not None:
        notify_request_assigned(s, req, u)
    announce_attachments(s, req, u, saved)
    s.commit()
    return jsonify({"success": True, "request": serialize_request(req, detail=True)}), 201


@bp.get("/requests/detail")
@require_role(*STAFF_ROLES)
def request_detail():
    s = db_session()
    req = _get_request(s, int_arg("requestId"))
    return jsonify({"request": serialize_request(req, detail=True)})


@bp.put("/requests/detail")
@require_role(*STAFF_ROLES)
def request_update():
    s = db_session()
    u = current_user()
    payload = request_payload()
    req = _get_request(s, int_field(payload, "requestId"))

    changes, errors = update_service_request(s, req, payload, u, can_manage=is_manager(u))
    if errors:
        s.rollback()
        return invalid(errors)
    saved = attach_files(s, req, uploaded_files(), u)
    s.commit()

    notify_request_updated(s, req, u, changes)
    if "assignedToId" in changes:
        notify_request_assigned(s, req, u)
    announce_attachments(s, req, u, saved)
    s.commit()
    return jsonify({"success": True, "changes": changes, "request": serialize_request(req, detail=True)})


@bp.post("/requests/notes")
@require_role(*STAFF_ROLES)
def request_note_add():
    s = db_session()
    u = current_user()
    payload = request_payload()
    content = text(payload, "noteContent")
    if not content:
        return invalid(["Note content is required."])
    req = _get_request(s, int_field(payload, "requestId"))
    is_internal = flag(payload, "isInternal")

    note = add_note(s, req, u, content, is_internal=is_internal)
    s.commit()

    notify_note_added(s, req, u, content, is_internal=is_internal)
    s.commit()
    return jsonify({"success": True, "note": serialize_note(note)}), 201


# ---------- Lookups ----------
@bp.get("/agents")
@require_role(*STAFF_ROLES)
def agents_list():
    s = db_session()
    users = (
        s.query(User)
        .filter(User.role.in_(AGENT_ROLES), User.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return jsonify({"agents": [serialize_user(x) for x in users]})


@bp.get("/companies")
@require_role(*STAFF_ROLES)
def companies_list():
    s = db_session()
    rows = s.query(Company).order_by(Company.company_name.asc()).all()
    return jsonify({"companies": [serialize_company(c) for c in rows]})


@bp.get("/customers/users")
@require_role(*STAFF_ROLES)
def customer_users():
    s = db_session()
    company_id = int_arg("customerId", label="Customer ID")
    users = (
        s.query(User)
        .filter(User.company_id == company_id, User.role.in_(CUSTOMER_ROLES), User.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return jsonify({"users": [serialize_user(x) for x in users]})
