from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.servicequeue.api import invalid
from app.servicequeue.constants import CUSTOMER_ROLES
from app.servicequeue.db import db_session
from app.servicequeue.modules.dashboards.service import build_report, customer_stats, validate_report_params
from app.servicequeue.modules.service_requests.models import ServiceRequest
from app.servicequeue.modules.service_requests.service import serialize_request
from app.servicequeue.rbac import current_user, require_role

bp = Blueprint("customer_dashboards", __name__)


def _company_id() -> int:
    u = current_user()
    if u.company_id is None:
        abort(400, description="Company ID required")
    return u.company_id


@bp.get("/dashboard/stats")
@require_role(*CUSTOMER_ROLES)
def stats():
    s = db_session()
    return jsonify({"stats": customer_stats(s, _company_id())})


@bp.get("/dashboard/recent-requests")
@require_role(*CUSTOMER_ROLES)
def recent_requests():
    s = db_session()
    rows = (
        s.query(ServiceRequest)
        .filter(ServiceRequest.company_id == _company_id())
        .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        .limit(10)
        .all()
    )
    return jsonify({"requests": [serialize_request(r) for r in rows]})


@bp.get("/report")
@require_role(*CUSTOMER_ROLES)
def report():
    """Ticket totals, week-over-week change and a daily/weekly/monthly series."""
    s = db_session()
    company_id = _company_id()
    params, errors = validate_report_params(request.args)
    if errors:
        return invalid(errors)
    return jsonify(build_report(s, company_id, params))
