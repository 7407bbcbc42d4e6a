from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.servicequeue.api import int_field, invalid, request_payload, text
from app.servicequeue.constants import CHANGE_PENDING, MANAGER_ROLES, STAFF_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.modules.assignments.models import AssignmentChangeRequest
from app.servicequeue.modules.assignments.service import (
    AssignmentChangeError,
    request_change,
    review_change,
    serialize_change,
)
from app.servicequeue.modules.notifications.service import (
    notify_assignment_change_requested,
    notify_assignment_change_reviewed,
)
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.rbac import current_user, is_manager, require_role
from app.servicequeue.utils import parse_int

bp = Blueprint("assignments", __name__)


@bp.get("/assignment-change")
@require_role(*STAFF_ROLES)
def changes_list():
    s = db_session()
    u = current_user()
    q = s.query(AssignmentChangeRequest)
    request_id = parse_int(request.args.get("requestId"))
    if request_id is not None:
        q = q.filter(AssignmentChangeRequest.request_id == request_id)
    elif is_manager(u):
        q = q.filter(AssignmentChangeRequest.status == CHANGE_PENDING)
    else:
        q = q.filter(AssignmentChangeRequest.requested_by_id == u.id)
    rows = q.order_by(AssignmentChangeRequest.created_at.desc(), AssignmentChangeRequest.id.desc()).all()
    return jsonify({"changeRequests": [serialize_change(c) for c in rows]})


@bp.post("/assignment-change")
@require_role(*STAFF_ROLES)
def change_create():
    s = db_session()
    u = current_user()
    payload = request_payload()
    req = s.get(ServiceRequest, int_field(payload, "requestId", label="Request ID"))
    if req is None:
        abort(404, description="Service request not found")

    try:
        change = request_change(
            s, req, u, requested_assignee_id=payload.get("requestedAssigneeId"), reason=text(payload, "reason")
        )
    except AssignmentChangeError as e:
        s.rollback()
        return invalid([str(e)])
    s.commit()

    notify_assignment_change_requested(s, change, u)
    s.commit()
    return jsonify({"success": True, "changeRequest": serialize_change(change)}), 201


@bp.post("/assignment-change/review")
@require_role(*MANAGER_ROLES)
def change_review():
    s = db_session()
    u = current_user()
    payload = request_payload()
    change = s.get(AssignmentChangeRequest, int_field(payload, "changeRequestId", label="Change request ID"))
    if change is None:
        abort(404, description="Assignment change request not found")

    try:
        review_change(s, change, u, action=text(payload, "action"), comment=text(payload, "reviewComment"))
    except AssignmentChangeError as e:
        s.rollback()
        return invalid([str(e)])
    s.commit()

    notify_assignment_change_reviewed(s, change, u)
    s.commit()
    return jsonify(
        {
            "success": True,
            "message": f"Assignment change request {change.status} successfully.",
            "changeRequest": serialize_change(change),
        }
    )
