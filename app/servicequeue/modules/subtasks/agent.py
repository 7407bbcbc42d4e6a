from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.servicequeue.api import int_field, invalid, request_payload
from app.servicequeue.constants import MANAGER_ROLES, STAFF_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.modules.notifications.service import notify_subtask_assigned, notify_subtask_completed
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.modules.subtasks.models import SubTask
from app.servicequeue.modules.subtasks.service import (
    create_subtask,
    serialize_subtask,
    update_subtask,
    validate_subtask_payload,
)
from app.servicequeue.rbac import current_user, is_manager, require_role
from app.servicequeue.utils import parse_int

bp = Blueprint("subtasks", __name__)


@bp.get("/subtasks")
@require_role(*STAFF_ROLES)
def subtasks_list():
    s = db_session()
    u = current_user()
    q = s.query(SubTask)
    request_id = parse_int(request.args.get("requestId"))
    if request_id is not None:
        q = q.filter(SubTask.request_id == request_id)
    else:
        q = q.filter(SubTask.assigned_to_id == u.id)
    rows = q.order_by(SubTask.created_at.desc(), SubTask.id.desc()).all()
    return jsonify({"subtasks": [serialize_subtask(t) for t in rows]})


@bp.post("/subtasks")
@require_role(*MANAGER_ROLES)
def subtask_create():
    s = db_session()
    u = current_user()
    payload = request_payload()
    req = s.get(ServiceRequest, int_field(payload, "requestId", label="Request ID"))
    if req is None:
        abort(404, description="Service request not found")

    errors, assignee = validate_subtask_payload(s, payload)
    if errors:
        return invalid(errors)
    subtask = create_subtask(s, req, payload, u, assignee=assignee)
    s.commit()

    notify_subtask_assigned(s, subtask, u)
    s.commit()
    return jsonify({"success": True, "subtask": serialize_subtask(subtask)}), 201


@bp.put("/subtasks")
@require_role(*STAFF_ROLES)
def subtask_update():
    s = db_session()
    u = current_user()
    payload = request_payload()
    subtask = s.get(SubTask, int_field(payload, "subtaskId", label="Subtask ID"))
    if subtask is None:
        abort(404, description="Subtask not found")

    manager = is_manager(u)
    if not manager and subtask.assigned_to_id != u.id:
        abort(403, description="You can only update your own subtasks")

    completed_now, errors = update_subtask(s, subtask, payload, full_edit=manager)
    if errors:
        s.rollback()
        return invalid(errors)
    s.commit()

    if completed_now:
        notify_subtask_completed(s, subtask, u)
        s.commit()
    return jsonify({"success": True, "subtask": serialize_subtask(subtask)})
