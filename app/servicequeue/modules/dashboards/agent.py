from __future__ import annotations

from flask import Blueprint, abort, jsonify

from app.servicequeue.constants import STAFF_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.modules.dashboards.service import agent_stats
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.modules.service_requests.service import serialize_request
from app.servicequeue.rbac import current_user, is_manager, require_role

bp = Blueprint("agent_dashboards", __name__)


def _require_agent_row(u) -> None:
    if not is_manager(u) and u.agent is None:
        abort(404, description="Agent not found")


def _latest(q, limit: int):
    return q.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc()).limit(limit).all()


@bp.get("/dashboard/all-requests")
@require_role(*STAFF_ROLES)
def all_requests():
    """Latest requests for the caller's companies; managers see every company."""
    s = db_session()
    u = current_user()
    _require_agent_row(u)
    q = s.query(ServiceRequest)
    if not is_manager(u):
        q = q.filter(ServiceRequest.company_id.in_(list(u.agent.assigned_company_ids or [])))
    return jsonify({"requests": [serialize_request(r) for r in _latest(q, 20)]})


@bp.get("/dashboard/assigned-requests")
@require_role(*STAFF_ROLES)
def assigned_requests():
    s = db_session()
    u = current_user()
    rows = _latest(s.query(ServiceRequest).filter(ServiceRequest.assigned_to_id == u.id), 10)
    return jsonify({"requests": [serialize_request(r) for r in rows]})


@bp.get("/dashboard/stats")
@require_role(*STAFF_ROLES)
def stats():
    s = db_session()
    u = current_user()
    _require_agent_row(u)
    return jsonify({"stats": agent_stats(s, u)})
