from __future__ import annotations

import logging

from flask import Blueprint, abort, jsonify

from app.servicequeue import emails
from app.servicequeue.api import invalid, request_payload
from app.servicequeue.constants import ROLE_SUPER_ADMIN
from app.servicequeue.db import db_session
from app.servicequeue.models import User
from app.servicequeue.modules.notifications.service import notify_password_reset, notify_user_created
from app.servicequeue.modules.settings.service import (
    SettingsError,
    change_password,
    create_super_admin,
    delete_super_admin,
    update_own_details,
    validate_details_payload,
    validate_super_admin_payload,
)
from app.servicequeue.rbac import current_user, require_role
from app.servicequeue.serializers import serialize_user
from app.servicequeue.utils import parse_int

logger = logging.getLogger(__name__)

bp = Blueprint("settings", __name__)


@bp.get("/settings/superadmins")
@require_role(ROLE_SUPER_ADMIN)
def superadmins_list():
    s = db_session()
    rows = s.query(User).filter(User.role == ROLE_SUPER_ADMIN).order_by(User.created_at.asc(), User.id.asc()).all()
    return jsonify({"superAdmins": [serialize_user(x) for x in rows]})


@bp.post("/settings/superadmins")
@require_role(ROLE_SUPER_ADMIN)
def superadmins_create():
    s = db_session()
    u = current_user()
    payload = request_payload()
    errors = validate_super_admin_payload(payload)
    if errors:
        return invalid(errors)
    try:
        user = create_super_admin(s, payload)
    except SettingsError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_user_created(s, user, u)
    s.commit()
    emails.send_admin_credentials(user.email, first_name=user.first_name)
    return jsonify({"success": True, "message": "Super admin created successfully", "superAdmin": serialize_user(user)}), 201


@bp.delete("/settings/superadmins/<int:user_id>")
@require_role(ROLE_SUPER_ADMIN)
def superadmins_delete(user_id: int):
    s = db_session()
    u = current_user()
    if user_id == u.id:
        return jsonify({"error": "Cannot delete your own account"}), 400
    target = s.get(User, user_id)
    if target is None:
        abort(404, description="User not found")
    try:
        delete_super_admin(s, target, u)
    except SettingsError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "message": "Super admin deleted successfully"})


@bp.post("/settings/reset-password")
@require_role(ROLE_SUPER_ADMIN)
def reset_password():
    s = db_session()
    u = current_user()
    payload = request_payload()
    errors = []
    if not payload.get("currentPassword"):
        errors.append("Current password is required")
    if not payload.get("newPassword"):
        errors.append("New password is required")
    if errors:
        return invalid(errors)

    target = u
    target_id = parse_int(payload.get("targetUserId"))
    if target_id is not None and target_id != u.id:
        target = s.get(User, target_id)
        if target is None:
            abort(404, description="User not found")
    try:
        change_password(u, target, current_password=str(payload["currentPassword"]), new_password=str(payload["newPassword"]))
    except SettingsError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()

    notify_password_reset(s, target, u)
    s.commit()
    logger.info("Password updated user_id=%s by user_id=%s", target.id, u.id)
    return jsonify({"success": True, "message": "Password updated successfully"})


@bp.get("/settings/update-details")
@require_role(ROLE_SUPER_ADMIN)
def details_get():
    return jsonify({"user": serialize_user(current_user())})


@bp.put("/settings/update-details")
@require_role(ROLE_SUPER_ADMIN)
def details_update():
    s = db_session()
    u = current_user()
    payload = request_payload()
    errors = validate_details_payload(payload)
    if errors:
        return invalid(errors)
    try:
        update_own_details(s, u, payload)
    except SettingsError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 400
    s.commit()
    return jsonify({"success": True, "message": "Account details updated successfully", "user": serialize_user(u)})
