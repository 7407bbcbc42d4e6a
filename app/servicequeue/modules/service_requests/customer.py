from __future__ import annotations

import logging

from flask import Blueprint, abort, jsonify, request

from app.servicequeue import emails
from app.servicequeue.activity import serialize_activity
from app.servicequeue.api import int_arg, int_field, invalid, request_payload, text, uploaded_files
from app.servicequeue.constants import CUSTOMER_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.models import ActivityLog, User
from app.servicequeue.modules.notifications.service import notify_note_added, notify_request_created, notify_request_updated
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.modules.service_requests.service import (
    add_note,
    announce_attachments,
    attach_files,
    create_service_request,
    field,
    serialize_attachment,
    serialize_note,
    serialize_request,
    update_service_request,
    validate_request_payload,
)
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.serializers import serialize_user
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("customer_requests", __name__)


def _company_id(u: User) -> int:
    if u.company_id is None:
        abort(404, description="Company not found")
    return u.company_id


def _company_request(s, u: User, request_id: int) -> ServiceRequest:
    req = s.get(ServiceRequest, request_id)
    if req is None or req.company_id != u.company_id:
        abort(404, description="Service request not found")
    return req


def _submit(*, require_assigned_by: bool):
    s = db_session()
    u = current_user()
    company_id = _company_id(u)
    payload = request_payload()

    errors = validate_request_payload(payload, require_assigned_by=require_assigned_by)
    if errors:
        return invalid(errors)

    assigned_by = u
    if field(payload, "assignedById"):
        assigned_by = s.get(User, parse_int(payload.get("assignedById")) or 0)
        if assigned_by is None or assigned_by.company_id != company_id:
            abort(403, description="Assigned by user must belong to your company")

    req = create_service_request(s, payload, u, company_id=company_id, assigned_by=assigned_by)
    saved = attach_files(s, req, uploaded_files(), u)
    s.commit()

    notify_request_created(s, req, u)
    announce_attachments(s, req, u, saved)
    s.commit()
    return jsonify({"success": True, "request": serialize_request(req, detail=True, include_internal=False)}), 201


# ---------- Company users / intake ----------
@bp.get("")
@require_role(*CUSTOMER_ROLES)
def company_users():
    s = db_session()
    u = current_user()
    users = (
        s.query(User)
        .filter(User.company_id == _company_id(u), User.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return jsonify({"users": [serialize_user(x) for x in users]})


@bp.post("")
@require_role(*CUSTOMER_ROLES)
def intake_post():
    return _submit(require_assigned_by=True)


# ---------- Requests ----------
@bp.get("/requests")
@require_role(*CUSTOMER_ROLES)
def requests_list():
    s = db_session()
    u = current_user()
    rows = (
        s.query(ServiceRequest)
        .filter(ServiceRequest.company_id == _company_id(u))
        .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        .all()
    )
    return jsonify({"requests": [serialize_request(r) for r in rows]})


@bp.post("/requests")
@require_role(*CUSTOMER_ROLES)
def requests_create():
    return _submit(require_assigned_by=False)


@bp.get("/requests/detail")
@require_role(*CUSTOMER_ROLES)
def request_detail():
    s = db_session()
    u = current_user()
    req = _company_request(s, u, int_arg("requestId"))
    return jsonify({"request": serialize_request(req, detail=True, include_internal=False)})


@bp.put("/requests/detail")
@require_role(*CUSTOMER_ROLES)
def request_update():
    s = db_session()
    u = current_user()
    payload = request_payload()
    req = _company_request(s, u, int_field(payload, "requestId"))

    changes, errors = update_service_request(s, req, payload, u, can_manage=False, allow_time_spent=False)
    if errors:
        s.rollback()
        return invalid(errors)
    s.commit()

    notify_request_updated(s, req, u, changes)
    s.commit()
    return jsonify({"success": True, "changes": changes, "request": serialize_request(req, detail=True, include_internal=False)})


@bp.post("/requests/notes")
@require_role(*CUSTOMER_ROLES)
def request_note_add():
    s = db_session()
    u = current_user()
    payload = request_payload()
    content = text(payload, "noteContent")
    if not content:
        return invalid(["Note content is required."])
    req = _company_request(s, u, int_field(payload, "requestId"))

    note = add_note(s, req, u, content, is_internal=False)
    s.commit()

    recipient = text(payload, "recipientEmail").lower()
    notify_note_added(s, req, u, content, is_internal=False, send_emails=not recipient)
    s.commit()
    if recipient:
        emails.send_note_added(recipient, request=req, note_content=content, author_name=u.full_name)
    return jsonify({"success": True, "note": serialize_note(note)}), 201


@bp.get("/requests/<int:request_id>/activity")
@require_role(*CUSTOMER_ROLES)
def request_activity(request_id: int):
    s = db_session()
    u = current_user()
    req = _company_request(s, u, request_id)
    rows = (
        s.query(ActivityLog)
        .filter(ActivityLog.request_id == req.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .all()
    )
    return jsonify({"activities": [serialize_activity(a) for a in rows]})


@bp.post("/requests/<int:request_id>/upload")
@require_role(*CUSTOMER_ROLES)
def request_upload(request_id: int):
    s = db_session()
    u = current_user()
    req = _company_request(s, u, request_id)
    files = uploaded_files()
    if not files:
        abort(400, description="No files provided")

    saved = attach_files(s, req, files, u)
    s.commit()
    announce_attachments(s, req, u, saved)
    s.commit()
    logger.info("Uploaded %s/%s files to %s", len(saved), len(files), req.service_queue_id)
    return jsonify({"success": True, "attachments": [serialize_attachment(a) for a in saved]}), 201
