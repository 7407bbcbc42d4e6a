from __future__ import annotations

from flask import Blueprint, jsonify

from app.servicequeue.api import request_payload
from app.servicequeue.db import db_session
from app.servicequeue.models import Notification
from app.servicequeue.modules.notifications.service import serialize_notification
from app.servicequeue.rbac import current_user, require_auth
from app.servicequeue.utils import parse_int

bp = Blueprint("notifications", __name__)


@bp.get("")
@require_auth
def list_notifications():
    s = db_session()
    u = current_user()
    rows = (
        s.query(Notification)
        .filter(Notification.user_id == u.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(50)
        .all()
    )
    unread = s.query(Notification).filter(Notification.user_id == u.id, Notification.read.is_(False)).count()
    return jsonify({"notifications": [serialize_notification(n) for n in rows], "unreadCount": unread})


@bp.post("/read")
@require_auth
def mark_read():
    s = db_session()
    u = current_user()
    notification_id = parse_int(request_payload().get("notificationId"))
    if notification_id is None:
        return jsonify({"error": "Notification ID is required"}), 400
    updated = (
        s.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == u.id)
        .update({Notification.read: True}, synchronize_session=False)
    )
    s.commit()
    return jsonify({"success": True, "updated": updated})


@bp.post("/mark-all-read")
@require_auth
def mark_all_read():
    s = db_session()
    u = current_user()
    updated = (
        s.query(Notification)
        .filter(Notification.user_id == u.id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    s.commit()
    return jsonify({"success": True, "updated": updated})
