from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify

from app.servicequeue.api import request_payload
from app.servicequeue.db import db_session
from app.servicequeue.rbac import current_user, require_auth

bp = Blueprint("user", __name__)


@bp.put("/timezone")
@require_auth
def timezone():
    s = db_session()
    u = current_user()
    tz = request_payload().get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        return jsonify({"error": "Invalid timezone"}), 400
    u.timezone = tz.strip()
    u.updated_at = datetime.utcnow()
    s.commit()
    return jsonify({"success": True, "timezone": u.timezone})
