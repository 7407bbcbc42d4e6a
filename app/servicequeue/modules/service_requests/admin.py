from __future__ import annotations

import logging

from flask import Blueprint, abort, jsonify

from app.servicequeue import emails
from app.servicequeue.activity import serialize_activity
from app.servicequeue.api import invalid, request_payload, text, uploaded_files
from app.servicequeue.constants import AGENT_ROLES, MANAGER_ROLES, ROLE_SUPER_ADMIN
from app.servicequeue.db import db_session
from app.servicequeue.models import ActivityLog, User
from app.servicequeue.modules.notifications.service import (
    notify_note_added,
    notify_request_assigned,
    notify_request_created,
)
from app.servicequeue.modules.service_requests.models import RequestNote, ServiceRequest
from app.servicequeue.modules.service_requests.service import (
    add_note,
    announce_attachments,
    attach_files,
    create_service_request,
    field,
    serialize_attachment,
    serialize_note,
    serialize_request,
    service_queue_id_taken,
    validate_request_payload,
)
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.utils import is_valid_email, parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("admin_requests", __name__)


def _get_request(s, request_id: int) -> ServiceRequest:
    req = s.get(ServiceRequest, request_id)
    if req is None:
        abort(404, description="Service request not found")
    return req


@bp.get("/request")
@require_role(ROLE_SUPER_ADMIN)
def notes_overview():
    """Every note with its author and the owning request/company."""
    s = db_session()
    notes = s.query(RequestNote).order_by(RequestNote.created_at.desc(), RequestNote.id.desc()).all()
    out = []
    for n in notes:
        data = serialize_note(n)
        req = n.request
        data["request"] = {
            "id": req.id,
            "serviceQueueId": req.service_queue_id,
            "insured": req.insured,
            "company": {"id": req.company.id, "companyName": req.company.company_name} if req.company else None,
        }
        out.append(data)
    return jsonify({"notes": out})


@bp.post("/request")
@require_role(*MANAGER_ROLES)
def request_create():
    s = db_session()
    u = current_user()
    payload = request_payload()

    errors = validate_request_payload(payload, require_assigned_by=True)
    if errors:
        return invalid(errors)
    service_queue_id = field(payload, "serviceQueueId") or None
    if service_queue_id and service_queue_id_taken(s, service_queue_id):
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


@bp.get("/requests/<int:request_id>/activity")
@require_role(ROLE_SUPER_ADMIN)
def request_activity(request_id: int):
    s = db_session()
    req = _get_request(s, request_id)
    rows = (
        s.query(ActivityLog)
        .filter(ActivityLog.request_id == req.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .all()
    )
    return jsonify({"activities": [serialize_activity(a) for a in rows]})


@bp.post("/requests/<int:request_id>/upload")
@require_role(ROLE_SUPER_ADMIN)
def request_upload(request_id: int):
    s = db_session()
    u = current_user()
    req = _get_request(s, request_id)
    files = uploaded_files()
    if not files:
        abort(400, description="No files provided")

    saved = attach_files(s, req, files, u)
    s.commit()
    announce_attachments(s, req, u, saved)
    s.commit()
    return jsonify({"success": True, "attachments": [serialize_attachment(a) for a in saved]}), 201


@bp.post("/customers/requests/notes")
@require_role(ROLE_SUPER_ADMIN)
def customer_note_send():
    """
    Email a note to a customer contact; also store it on the request when one is given.
    """
    s = db_session()
    u = current_user()
    payload = request_payload()
    content = text(payload, "noteContent")
    recipient = text(payload, "recipientEmail").lower()
    errors = []
    if not content:
        errors.append("Note content is required.")
    if not is_valid_email(recipient):
        errors.append("A valid recipient email is required.")
    if errors:
        return invalid(errors)

    req = None
    note = None
    request_id = parse_int(payload.get("requestId"))
    if request_id is not None:
        req = s.get(ServiceRequest, request_id)
        if req is None:
            abort(404, description="Service request not found")
    if req is not None:
        note = add_note(s, req, u, content, is_internal=False)
        s.commit()
        notify_note_added(s, req, u, content, is_internal=False)
        s.commit()

    ok, message = emails.send_note_added(recipient, request=req, note_content=content, author_name=u.full_name)
    if not ok:
        logger.warning("Customer note email failed to=%s: %s", recipient, message)
        error = "Note saved but email notification failed" if note is not None else "Failed to send email notification"
        return jsonify({"error": error}), 500
    return jsonify({"success": True, "note": serialize_note(note) if note else None, "message": "Note sent successfully"})
