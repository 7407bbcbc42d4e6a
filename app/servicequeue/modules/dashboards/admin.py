from __future__ import annotations

from flask import Blueprint, jsonify

from app.servicequeue.constants import ROLE_SUPER_ADMIN
from app.servicequeue.db import db_session
from app.servicequeue.modules.dashboards.service import activity_feed, admin_stats, customer_ticket_rows
from app.servicequeue.rbac import require_role

bp = Blueprint("admin_dashboards", __name__)


@bp.get("/dashboard/stats")
@require_role(ROLE_SUPER_ADMIN)
def stats():
    s = db_session()
    return jsonify({"stats": admin_stats(s)})


@bp.get("/dashboard/activity")
@require_role(ROLE_SUPER_ADMIN)
def activity():
    s = db_session()
    return jsonify({"activities": activity_feed(s)})


@bp.get("/dashboard/customers")
@require_role(ROLE_SUPER_ADMIN)
def customers():
    s = db_session()
    return jsonify({"customers": customer_ticket_rows(s)})
